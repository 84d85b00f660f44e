"""
Intent Classifier
=================

Maps a raw query (plus short context hints) to a QueryIntent.

Classification flow:
    1. Ask the completion function, at low temperature, for a JSON intent
    2. Parse it strictly: `type` must be one of the five IntentType values,
       `confidence` a number in [0, 1]
    3. If parsing fails, retry once with a stricter corrective prompt
    4. If that fails too, or the backend is unreachable, fall back to the
       keyword heuristic (confidence 0.3, reasoning "fallback heuristic")

Classification never raises for backend or parsing problems. It raises
ValidationError for malformed input (empty query, malformed hints) so that
a batch can record the slot as failed.

Heuristic rules, first match wins:
    arithmetic / unit words / URL or data-file reference  -> tool_execution
    remember/recall, or personal pronoun + past/preference -> memory_chat
    "what is" / "explain" / "how does" ...                 -> knowledge_search
    anything else                                          -> conversation
"""

import asyncio
import re
from typing import Any

from memagent.agent.context import PromptBuilder
from memagent.agent.models import (
    MEMORY_INTENTS,
    TOOL_INTENTS,
    BatchClassification,
    BatchSummary,
    IntentType,
    QueryIntent,
)
from memagent.llm.completion import CompletionFunction, CompletionOptions
from memagent.tools import ToolRegistry
from memagent.utils.config import ExecutionConfig, get_config
from memagent.utils.errors import ClassificationError, ValidationError
from memagent.utils.json_utils import JsonExtractionError, extract_json_object
from memagent.utils.logger import Logger
from memagent.utils.timing import Stopwatch

logger = Logger("IntentClassifier")

HEURISTIC_CONFIDENCE = 0.3
HEURISTIC_REASONING = "fallback heuristic"

# ==============================================================================
# Heuristic patterns
# ==============================================================================

ARITHMETIC_EXPRESSION = re.compile(r"\d+(?:\.\d+)?\s*(?:[-+*/%^x×÷]|\*\*)\s*\(?\s*-?\d")
DATE_PATTERN = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b|\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b")
ARITHMETIC_WORDS = re.compile(
    r"\b(calculate|compute|plus|minus|times|multiplied|divided|multiply|divide|subtract|"
    r"sum of|product of|square root|percent of|percentage)\b",
    re.IGNORECASE
)
UNIT_WORDS = re.compile(
    r"\bconvert\b.*\b(to|into|in)\b|\b\d+(?:\.\d+)?\s*(km|kilometers?|miles?|kg|kilograms?|lbs?|pounds?|"
    r"celsius|fahrenheit|meters?|feet|inches|cm|mm|liters?|gallons?)\b",
    re.IGNORECASE
)
URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
API_WORDS = re.compile(r"\b(api|endpoint|http request|fetch from|call the)\b", re.IGNORECASE)
FILE_PATTERN = re.compile(r"[\w./-]+\.(?:json|txt|md|csv|yaml|yml|log|py)\b", re.IGNORECASE)
FILE_WORDS = re.compile(r"\b(read (?:the )?file|list (?:the )?(?:directory|folder)|file info)\b", re.IGNORECASE)
JSON_WORDS = re.compile(r"\b(json|parse)\b", re.IGNORECASE)

MEMORY_VERBS = re.compile(r"\b(remember|recall|remind me|forgot|forget)\b", re.IGNORECASE)
PERSONAL_PRONOUN = re.compile(r"\b(i|my|me|we|our|us)\b", re.IGNORECASE)
PAST_OR_PREFERENCE = re.compile(
    r"\b(did|told|said|mentioned|asked|discussed|was|were|had|last time|earlier|before|yesterday|"
    r"like|likes|love|prefer|favou?rite)\b",
    re.IGNORECASE
)

KNOWLEDGE_PATTERN = re.compile(
    r"^\s*(what is|what are|what's|whats|explain|how does|how do|define|describe|who is|who was|tell me about)\b",
    re.IGNORECASE
)


def has_personal_reference(query: str) -> bool:
    """True when the query talks about the user's own past or preferences."""
    return bool(
        MEMORY_VERBS.search(query)
        or (PERSONAL_PRONOUN.search(query) and PAST_OR_PREFERENCE.search(query))
    )


def detect_tools(query: str) -> list[str]:
    """Keyword detection of built-in tools, in a stable order."""
    detected = []
    undated = DATE_PATTERN.sub(" ", query)
    if ARITHMETIC_EXPRESSION.search(undated) or ARITHMETIC_WORDS.search(query) or UNIT_WORDS.search(query):
        detected.append("calculator")
    if URL_PATTERN.search(query) or API_WORDS.search(query):
        detected.append("api_call")
    file_reference = FILE_PATTERN.search(query)
    if FILE_WORDS.search(query) or (file_reference and not file_reference.group(0).lower().endswith(".json")):
        detected.append("file_reader")
    if JSON_WORDS.search(query) or re.search(r"\.json\b", query, re.IGNORECASE):
        detected.append("json_reader")
    return detected


def heuristic_intent(query: str, available_tools: list[str] | None = None) -> QueryIntent:
    """
    Deterministic classification used when the model cannot be.

    Args:
        query: The raw query
        available_tools: Registry tool names; detected tools outside it are dropped
    """
    tools = detect_tools(query)
    if available_tools is not None:
        tools = [t for t in tools if t in available_tools]

    if tools:
        intent_type = IntentType.TOOL_EXECUTION
    elif has_personal_reference(query):
        intent_type = IntentType.MEMORY_CHAT
    elif KNOWLEDGE_PATTERN.search(query):
        intent_type = IntentType.KNOWLEDGE_SEARCH
    else:
        intent_type = IntentType.CONVERSATION

    return QueryIntent(
        type=intent_type,
        confidence=HEURISTIC_CONFIDENCE,
        required_tools=tools if intent_type is IntentType.TOOL_EXECUTION else [],
        memory_context=intent_type in MEMORY_INTENTS,
        reasoning=HEURISTIC_REASONING,
    )


class IntentClassifier:
    """
    LLM-backed classifier with a corrective retry and a heuristic fallback.

    Example:
        classifier = IntentClassifier(completion, registry)

        intent = await classifier.classify("What is 15 + 27?")
        intent.type            # IntentType.TOOL_EXECUTION
        intent.required_tools  # ["calculator"]

        summary = await classifier.classify_batch(["Hello", "What is 2 * 3?"], concurrency=2)
        summary.average_confidence
    """

    def __init__(
        self,
        completion: CompletionFunction,
        registry: ToolRegistry,
        settings: ExecutionConfig | None = None,
        prompts: PromptBuilder | None = None
    ):
        self.completion = completion
        self.registry = registry
        self.settings = settings or get_config().execution
        self.prompts = prompts or PromptBuilder()

    @classmethod
    def intent_descriptions(cls) -> dict[str, str]:
        """The five intent types and what each one means."""
        return {t.value: d for t, d in PromptBuilder.INTENT_DESCRIPTIONS.items()}

    def detect_required_tools(self, query: str) -> list[str]:
        """Keyword tool detection, restricted to registered tools."""
        return [t for t in detect_tools(query) if t in self.registry]

    # ==========================================================================
    # Parsing
    # ==========================================================================

    def parse(self, raw_output: str, query: str) -> QueryIntent:
        """
        Parse a model answer into a QueryIntent.

        Raises:
            ClassificationError: The answer is not a structurally valid intent
        """
        try:
            data = extract_json_object(raw_output)
        except JsonExtractionError as e:
            raise ClassificationError(f"no JSON object in output ({e.reason})", raw_output)

        intent_type = IntentType.parse(data.get("type"))
        if intent_type is None:
            raise ClassificationError(f"type {data.get('type')!r} is not a known intent", raw_output)

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ClassificationError("confidence is missing or not a number", raw_output)
        if not 0.0 <= confidence <= 1.0:
            raise ClassificationError(f"confidence {confidence} is outside [0, 1]", raw_output)

        tools = data.get("requiredTools", [])
        if tools is None:
            tools = []
        if not isinstance(tools, list) or not all(isinstance(t, str) for t in tools):
            raise ClassificationError("requiredTools must be a list of tool names", raw_output)

        unknown = [t for t in tools if t not in self.registry]
        if unknown:
            logger.debug(f"Dropping unregistered tools from classification: {unknown}")
        tools = [t for t in tools if t in self.registry]
        if intent_type in TOOL_INTENTS and not tools:
            tools = self.detect_required_tools(query)

        memory_flag = data.get("memoryContext")
        if not isinstance(memory_flag, bool):
            memory_flag = intent_type in MEMORY_INTENTS

        reasoning = data.get("reasoning")
        return QueryIntent(
            type=intent_type,
            confidence=float(confidence),
            required_tools=tools if intent_type in TOOL_INTENTS else [],
            memory_context=memory_flag,
            reasoning=reasoning if isinstance(reasoning, str) else "No reasoning provided",
        )

    # ==========================================================================
    # Classification
    # ==========================================================================

    def _validate(self, query: Any, user_context: dict | None) -> None:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query must be a non-empty string", field="query")
        if user_context is None:
            return
        if not isinstance(user_context, dict):
            raise ValidationError("user context must be an object", field="userContext")
        for key in ("userId", "sessionId"):
            if key in user_context and (not isinstance(user_context[key], str) or not user_context[key].strip()):
                raise ValidationError(f"{key} hint must be a non-empty string", field=key)

    async def _complete(self, prompt: str, purpose: str, model: str | None, system: str | None = None) -> str:
        options = CompletionOptions(
            temperature=self.settings.classifier_temperature,
            model=model,
            system=system,
            metadata={"purpose": purpose},
        )
        result = await asyncio.wait_for(
            self.completion.complete(prompt, options),
            timeout=self.settings.classification_timeout,
        )
        return result.text

    async def classify(
        self,
        query: str,
        previous_intents: list[QueryIntent] | None = None,
        user_context: dict | None = None,
        model: str | None = None
    ) -> QueryIntent:
        """
        Classify a query.

        Args:
            query: The raw user query
            previous_intents: Earlier intents of the session (last three are used)
            user_context: Extra hints; "userId"/"sessionId" must be non-empty strings if given
            model: Completion model override

        Raises:
            ValidationError: Empty query or malformed hints
        """
        self._validate(query, user_context)

        system = self.prompts.classification_system(self.registry.get_all())
        prompt = self.prompts.classification_user(query, previous_intents, user_context)

        with Stopwatch() as sw:
            intent = await self._classify_with_retry(query, system, prompt, model)

        logger.info(f"Query classified as: {intent.type.value} (confidence: {intent.confidence})", {
            "tools": intent.required_tools,
            "duration_ms": sw.ms,
        })
        return intent

    async def _classify_with_retry(self, query: str, system: str, prompt: str, model: str | None) -> QueryIntent:
        try:
            raw = await self._complete(prompt, "classification", model, system=system)
        except Exception as e:
            error = ClassificationError(f"classification call failed: {str(e) or type(e).__name__}")
            logger.warning(f"{error}, using heuristic")
            return heuristic_intent(query, self.registry.list_names())

        try:
            return self.parse(raw, query)
        except ClassificationError as first:
            logger.debug(f"Unusable classification ({first}), retrying with corrective prompt")
            problem = str(first)

        try:
            raw = await self._complete(
                self.prompts.classification_retry(query, raw, problem),
                "classification_retry",
                model,
                system=system,
            )
            return self.parse(raw, query)
        except Exception as e:
            logger.warning(f"Classification retry failed ({str(e) or type(e).__name__}), using heuristic")
            return heuristic_intent(query, self.registry.list_names())

    async def classify_batch(
        self,
        queries: list[str],
        user_contexts: list[dict | None] | None = None,
        concurrency: int | None = None,
        model: str | None = None
    ) -> BatchSummary:
        """
        Classify several queries concurrently.

        A failing slot is recorded with success=False and never aborts the
        others. At most `concurrency` classifications run at once.

        Args:
            queries: Raw queries
            user_contexts: Optional per-query hints, aligned with `queries`
            concurrency: Cap on concurrent classifications (default from config)
        """
        limit = self.settings.batch_concurrency if concurrency is None else concurrency
        if limit < 1:
            raise ValidationError("concurrency must be >= 1", field="concurrency")
        if user_contexts is not None and len(user_contexts) != len(queries):
            raise ValidationError("user_contexts must align with queries", field="user_contexts")

        semaphore = asyncio.Semaphore(limit)
        contexts = user_contexts or [None] * len(queries)

        async def _one(query: str, user_context: dict | None) -> BatchClassification:
            async with semaphore:
                with Stopwatch() as sw:
                    try:
                        intent = await self.classify(query, user_context=user_context, model=model)
                        error = None
                    except Exception as e:
                        intent, error = None, str(e) or type(e).__name__
                if error is not None:
                    logger.warning(f"Batch slot failed: {error}")
                    return BatchClassification(query=query, success=False, error=error, duration_ms=sw.ms)
                return BatchClassification(query=query, success=True, intent=intent, duration_ms=sw.ms)

        results = await asyncio.gather(*[_one(q, c) for q, c in zip(queries, contexts)])
        summary = BatchSummary(results=list(results))

        logger.info("Batch classification complete", {
            "total": summary.total_queries,
            "failed": summary.failed_classifications,
            "average_confidence": round(summary.average_confidence, 3),
        })
        return summary
