"""
Agent Data Model
================

Request-scoped types of the orchestration pipeline:

    QueryIntent       - what the classifier decided (closed IntentType enum)
    ExecutionOptions  - the caller's knobs for one execute() call
    ToolExecutionRecord
                      - outcome of one tool in a plan
    ExecutionResult   - the composed answer with timings and counters
    BatchSummary      - classify_batch() output

None of these are shared between requests. `to_dict()` produces the
camelCase wire shape.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from memagent.memory.models import MemoryContext
from memagent.utils.errors import ValidationError

DETAIL_LEVELS = ("full", "standard", "minimal")


class IntentType(str, Enum):
    """The five execution paths. There is no "unknown" member."""
    CONVERSATION = "conversation"
    TOOL_EXECUTION = "tool_execution"
    MEMORY_CHAT = "memory_chat"
    HYBRID = "hybrid"
    KNOWLEDGE_SEARCH = "knowledge_search"

    @classmethod
    def parse(cls, value: Any) -> "IntentType | None":
        """Map a raw value onto a member; None when it is not one of the five."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Intents whose answer is built around memory
MEMORY_INTENTS = frozenset({IntentType.MEMORY_CHAT, IntentType.HYBRID, IntentType.KNOWLEDGE_SEARCH})

# Intents that run tools
TOOL_INTENTS = frozenset({IntentType.TOOL_EXECUTION, IntentType.HYBRID})


@dataclass
class QueryIntent:
    """
    A classified query.

    Attributes:
        type: The execution path
        confidence: Classifier confidence in [0, 1]
        required_tools: Tool names in execution order, without duplicates
        memory_context: Whether a memory lookup is warranted
        reasoning: Free-text explanation, for observability only
    """
    type: IntentType
    confidence: float
    required_tools: list[str] = field(default_factory=list)
    memory_context: bool = False
    reasoning: str = ""

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        # Ordered set
        self.required_tools = list(dict.fromkeys(self.required_tools))

    @classmethod
    def fallback(cls, reasoning: str) -> "QueryIntent":
        """The intent used when a classification cannot be read at all."""
        return cls(type=IntentType.CONVERSATION, confidence=0.0, reasoning=reasoning)

    @classmethod
    def coerce(cls, data: Any) -> "QueryIntent":
        """
        Read an intent supplied by a caller (e.g. previousIntents).

        Anything unreadable becomes a conversation intent with confidence 0.
        """
        if isinstance(data, QueryIntent):
            return data
        if not isinstance(data, dict):
            return cls.fallback("unparseable intent")

        intent_type = IntentType.parse(data.get("type"))
        if intent_type is None:
            return cls.fallback(f"unknown intent type: {data.get('type')!r}")

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        tools = data.get("requiredTools") or []

        return cls(
            type=intent_type,
            confidence=confidence,
            required_tools=[t for t in tools if isinstance(t, str)] if isinstance(tools, list) else [],
            memory_context=bool(data.get("memoryContext", intent_type in MEMORY_INTENTS)),
            reasoning=str(data.get("reasoning", "")),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "confidence": self.confidence,
            "requiredTools": list(self.required_tools),
            "memoryContext": self.memory_context,
            "reasoning": self.reasoning,
        }


@dataclass
class ExecutionOptions:
    """
    Options for one execute() call.

    Attributes:
        user_id: Required, scopes both memory stores
        session_id: Required, scopes episodic memory
        include_memory_context: Look up memory at all
        max_memory_results: Cap on episodic + semantic records
        include_reasoning: Attach the reasoning summary to the result
        model: Completion model override
        temperature: Temperature override for the answer call
        previous_intents: Earlier intents of this session, oldest first
        hint_intent: Skip classification and use this intent type
        user_context: Extra hints passed to the classifier
        tool_args: Arguments per tool name; skips parameter extraction for those tools
        tool_dependencies: Tool name -> names of tools whose results it consumes
        parallel_tools: Run independent tools concurrently
        store_interaction: Write the turn back to memory after answering
        detail: Response detail level ("full", "standard", "minimal")
        deadline_ms: Overall budget, checked between stages
        similarity_threshold: Semantic threshold override
    """
    user_id: str
    session_id: str
    include_memory_context: bool = True
    max_memory_results: int = 10
    include_reasoning: bool = True
    model: str | None = None
    temperature: float | None = None
    previous_intents: list[QueryIntent] = field(default_factory=list)
    hint_intent: str | None = None
    user_context: dict[str, Any] = field(default_factory=dict)
    tool_args: dict[str, dict] = field(default_factory=dict)
    tool_dependencies: dict[str, list[str]] = field(default_factory=dict)
    parallel_tools: bool = False
    store_interaction: bool = True
    detail: str = "standard"
    deadline_ms: float | None = None
    similarity_threshold: float | None = None

    def validate(self) -> None:
        """
        Raises:
            ValidationError: On the first invalid field
        """
        for name in ("user_id", "session_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required", field=name)

        for name in ("include_memory_context", "include_reasoning", "parallel_tools", "store_interaction"):
            if not isinstance(getattr(self, name), bool):
                raise ValidationError(f"{name} must be a boolean", field=name)
        for name in ("model", "hint_intent"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
        for name in ("user_context", "tool_args", "tool_dependencies"):
            if not isinstance(getattr(self, name), dict):
                raise ValidationError(f"{name} must be an object", field=name)

        if not _is_int(self.max_memory_results) or self.max_memory_results < 0:
            raise ValidationError("max_memory_results must be an integer >= 0", field="max_memory_results")
        if self.temperature is not None and (not _is_number(self.temperature) or not 0.0 <= self.temperature <= 2.0):
            raise ValidationError("temperature must be a number in [0, 2]", field="temperature")
        if not isinstance(self.detail, str) or self.detail not in DETAIL_LEVELS:
            raise ValidationError(f"detail must be one of {', '.join(DETAIL_LEVELS)}", field="detail")
        if self.similarity_threshold is not None and (
            not _is_number(self.similarity_threshold) or not 0.0 <= self.similarity_threshold <= 1.0
        ):
            raise ValidationError("similarity_threshold must be a number in [0, 1]", field="similarity_threshold")
        if self.deadline_ms is not None and (not _is_number(self.deadline_ms) or not self.deadline_ms > 0):
            raise ValidationError("deadline_ms must be a positive number", field="deadline_ms")
        if self.hint_intent is not None and IntentType.parse(self.hint_intent) is None:
            raise ValidationError(f"unknown hint intent: {self.hint_intent!r}", field="hint_intent")

        for name, args in self.tool_args.items():
            if not isinstance(args, dict):
                raise ValidationError(f"arguments for {name!r} must be an object", field="tool_args")
        for name, consumed in self.tool_dependencies.items():
            if not isinstance(consumed, list) or not all(isinstance(c, str) for c in consumed):
                raise ValidationError(f"dependencies of {name!r} must be a list of tool names", field="tool_dependencies")

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionOptions":
        """
        Build options from the camelCase request shape.

        Values are taken as given; call validate() before use.

        Raises:
            ValidationError: `data` is not an object, or previousIntents is not a list
        """
        if not isinstance(data, dict):
            raise ValidationError("request options must be an object", field="options")
        previous = data.get("previousIntents") or []
        if not isinstance(previous, list):
            raise ValidationError("previousIntents must be a list", field="previous_intents")

        return cls(
            user_id=data.get("userId"),
            session_id=data.get("sessionId"),
            include_memory_context=data.get("includeMemoryContext", True),
            max_memory_results=data.get("maxMemoryResults", 10),
            include_reasoning=data.get("includeReasoning", True),
            model=data.get("model"),
            temperature=data.get("temperature"),
            previous_intents=[QueryIntent.coerce(i) for i in previous],
            hint_intent=data.get("hintIntent"),
            user_context=_copy(data.get("userContext")),
            tool_args=_copy(data.get("toolArgs")),
            tool_dependencies=_copy(data.get("toolDependencies")),
            parallel_tools=data.get("parallelTools", False),
            store_interaction=data.get("storeInteraction", True),
            detail=data.get("detail", "standard"),
            deadline_ms=data.get("deadlineMs"),
            similarity_threshold=data.get("similarityThreshold"),
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _copy(value: Any) -> Any:
    """Shallow-copy dicts, default missing values to {}, leave anything else for validate()."""
    if value is None:
        return {}
    return dict(value) if isinstance(value, dict) else value


@dataclass
class ToolExecutionRecord:
    """
    Outcome of one tool in a plan.

    `skipped` marks a tool that never ran because a tool it consumes failed.
    """
    tool_name: str
    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: float = 0.0
    skipped: bool = False
    attempts: int = 0
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_data: bool = True) -> dict:
        result = {
            "toolName": self.tool_name,
            "success": self.success,
            "durationMs": self.duration_ms,
            "skipped": self.skipped,
            "attempts": self.attempts,
        }
        if self.success:
            if include_data:
                result["data"] = self.data
        else:
            result["error"] = self.error
        if include_data:
            result["args"] = self.args
        return result


@dataclass
class StageTimings:
    """Milliseconds spent per pipeline stage."""
    classification: float = 0.0
    memory_search: float = 0.0
    tool_execution: float = 0.0
    llm_response: float = 0.0
    total: float = 0.0


@dataclass
class ExecutionMetadata:
    execution_time: float
    memory_retrieved: int
    tools_executed: int
    confidence: float
    classification_time: float
    memory_search_time: float
    tool_execution_time: float
    llm_response_time: float
    degraded_context: bool = False
    deadline_exceeded: bool = False
    detail: str = "standard"

    def to_dict(self) -> dict:
        return {
            "executionTime": self.execution_time,
            "memoryRetrieved": self.memory_retrieved,
            "toolsExecuted": self.tools_executed,
            "confidence": self.confidence,
            "classificationTime": self.classification_time,
            "memorySearchTime": self.memory_search_time,
            "toolExecutionTime": self.tool_execution_time,
            "llmResponseTime": self.llm_response_time,
            "degradedContext": self.degraded_context,
            "deadlineExceeded": self.deadline_exceeded,
            "detail": self.detail,
        }


@dataclass
class ExecutionResult:
    """The composed outcome of one request."""
    success: bool
    response: str
    intent: QueryIntent
    memory_context: MemoryContext | None
    tool_results: list[ToolExecutionRecord]
    reasoning: str
    metadata: ExecutionMetadata
    error: str | None = None

    def to_dict(self) -> dict:
        detail = self.metadata.detail
        return {
            "success": self.success,
            "response": self.response,
            "intent": self.intent.to_dict(),
            "memoryContext": self.memory_context.to_dict(detail) if self.memory_context else None,
            "toolResults": [r.to_dict(include_data=detail != "minimal") for r in self.tool_results],
            "reasoning": self.reasoning,
            "metadata": self.metadata.to_dict(),
            "error": self.error,
        }


@dataclass
class BatchClassification:
    """One slot of a batch classification."""
    query: str
    success: bool
    intent: QueryIntent | None = None
    error: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "success": self.success,
            "intent": self.intent.to_dict() if self.intent else None,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


@dataclass
class BatchSummary:
    """
    Result of classify_batch().

    `average_confidence` covers the successful slots only (0.0 when none).
    """
    results: list[BatchClassification]

    @property
    def total_queries(self) -> int:
        return len(self.results)

    @property
    def successful_classifications(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_classifications(self) -> int:
        return self.total_queries - self.successful_classifications

    @property
    def average_confidence(self) -> float:
        confidences = [r.intent.confidence for r in self.results if r.success and r.intent]
        if not confidences:
            return 0.0
        return sum(confidences) / len(confidences)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "totalQueries": self.total_queries,
                "successfulClassifications": self.successful_classifications,
                "failedClassifications": self.failed_classifications,
                "averageConfidence": self.average_confidence,
            },
        }
