"""
Agent Core
==========

The single entry point of the orchestration core.

The agent is the "brain" of the system. For one request it:
1. Validates the request
2. Classifies the query (or takes the caller's hint intent)
3. Assembles the memory context
4. Routes to the execution path of the intent
5. Composes the ExecutionResult
6. Writes the turn back to memory

Request flow:
    Query + ExecutionOptions
         │
         ▼
    Validate ──────────── ValidationError (the only exception raised)
         │
         ├──────────────────────────┐
         ▼                          ▼
    Classify (or hint)        Assemble memory     (run concurrently)
         │                          │
         └────────────┬─────────────┘
                      ▼
              Route by intent.type
                      │
                      ▼
              Compose result ──► Write back (optional)

Memory assembly starts together with classification. Its context is kept
when the intent asks for memory or the query refers to the user's own
past; otherwise it is discarded.

An optional deadline is checked between stages. Once it has passed, the
agent stops starting new stages and returns the best result it has.
"""

import asyncio
import time
from pathlib import Path
from typing import Any

from memagent.agent.classifier import IntentClassifier, has_personal_reference
from memagent.agent.composer import ResponseComposer
from memagent.agent.context import PromptBuilder
from memagent.agent.models import (
    MEMORY_INTENTS,
    TOOL_INTENTS,
    BatchSummary,
    ExecutionOptions,
    ExecutionResult,
    IntentType,
    QueryIntent,
    StageTimings,
)
from memagent.agent.router import ExecutionRouter, RouteOutcome, partial_response
from memagent.agent.tools_executor import ToolExecutor
from memagent.llm.completion import CompletionFunction, OpenAICompletion
from memagent.memory import MemoryManager
from memagent.memory.assembler import ContextOptions
from memagent.memory.models import MemoryContext
from memagent.rag.embeddings import EmbeddingGenerator
from memagent.tools import ToolRegistry, register_builtin_tools
from memagent.utils.config import Config, get_config
from memagent.utils.errors import StepResult, ValidationError
from memagent.utils.logger import Logger
from memagent.utils.timing import Deadline, Stopwatch, elapsed_ms

logger = Logger("Agent")


class Agent:
    """
    The main agent that processes user requests.

    The agent coordinates:
    - Intent classification
    - Memory context assembly
    - Execution routing (tools and answer generation)
    - Response composition and memory write-back

    The completion function, the tool registry and the memory manager are
    passed in; the agent holds no other state between requests.

    Example:
        agent = Agent(completion, registry, memory)

        result = await agent.execute(
            "What is 15 + 27?",
            ExecutionOptions(user_id="U1", session_id="S1"),
        )

        print(result.response)
        print(result.metadata.tools_executed)  # 1
    """

    def __init__(
        self,
        completion: CompletionFunction,
        registry: ToolRegistry,
        memory: MemoryManager | None = None,
        config: Config | None = None
    ):
        """
        Initialize the agent.

        Args:
            completion: Completion function used by every LLM call
            registry: Tools available to tool_execution and hybrid requests
            memory: Memory manager; None disables memory entirely
            config: Configuration (default: get_config())
        """
        config = config or get_config()

        self.completion = completion
        self.registry = registry
        self.memory = memory
        self.config = config

        prompts = PromptBuilder()
        self.classifier = IntentClassifier(completion, registry, config.execution, prompts)
        self.executor = ToolExecutor(registry, completion, config.execution, prompts)
        self.router = ExecutionRouter(completion, self.executor, config.execution, prompts)
        self.composer = ResponseComposer()

        logger.info(f"Agent initialized with {len(registry)} tools", {
            "memory": memory is not None,
        })

    @classmethod
    def from_config(cls, config: Config | None = None, base_dir: Path | None = None) -> "Agent":
        """
        Build an agent with the OpenAI backends and the built-in tools.

        Args:
            config: Configuration (default: get_config())
            base_dir: Root the file tools may read under (default: working directory)
        """
        config = config or get_config()
        api_key = config.require_openai_key()

        completion = OpenAICompletion(
            api_key=api_key,
            model=config.openai.model,
            base_url=config.openai.base_url,
        )
        embedder = EmbeddingGenerator(
            api_key=api_key,
            model=config.openai.embedding_model,
            base_url=config.openai.base_url,
        )

        registry = register_builtin_tools(ToolRegistry(), base_dir=base_dir)
        memory = MemoryManager.from_config(embedder, config.memory)
        return cls(completion, registry, memory, config)

    # ==========================================================================
    # Classification
    # ==========================================================================

    async def classify(
        self,
        query: str,
        previous_intents: list[QueryIntent] | None = None,
        user_context: dict[str, Any] | None = None,
        model: str | None = None
    ) -> QueryIntent:
        """Classify a query without executing it."""
        return await self.classifier.classify(query, previous_intents, user_context, model)

    async def classify_batch(
        self,
        queries: list[str],
        user_contexts: list[dict | None] | None = None,
        concurrency: int | None = None,
        model: str | None = None
    ) -> BatchSummary:
        """Classify several queries concurrently (see IntentClassifier.classify_batch)."""
        return await self.classifier.classify_batch(queries, user_contexts, concurrency, model)

    def _hinted_intent(self, query: str, hint: str) -> QueryIntent:
        intent_type = IntentType.parse(hint)
        return QueryIntent(
            type=intent_type,
            confidence=1.0,
            required_tools=self.classifier.detect_required_tools(query) if intent_type in TOOL_INTENTS else [],
            memory_context=intent_type in MEMORY_INTENTS,
            reasoning=f"Intent supplied by caller: {intent_type.value}",
        )

    async def _classify_stage(self, query: str, options: ExecutionOptions) -> StepResult[QueryIntent]:
        with Stopwatch() as sw:
            if options.hint_intent is not None:
                intent = self._hinted_intent(query, options.hint_intent)
            else:
                user_context = {
                    **options.user_context,
                    "userId": options.user_id,
                    "sessionId": options.session_id,
                }
                previous = [QueryIntent.coerce(i) for i in options.previous_intents]
                intent = await self.classifier.classify(query, previous, user_context, options.model)
        return StepResult.success(intent, duration_ms=sw.ms)

    # ==========================================================================
    # Memory
    # ==========================================================================

    async def _memory_stage(self, query: str, options: ExecutionOptions) -> StepResult[MemoryContext]:
        with Stopwatch() as sw:
            try:
                context = await self.memory.build_context(
                    options.user_id,
                    options.session_id,
                    query,
                    ContextOptions(
                        max_results=options.max_memory_results,
                        similarity_threshold=options.similarity_threshold,
                    ),
                )
                error = None
            except Exception as e:
                context, error = None, e

        if error is not None:
            logger.warning(f"Memory assembly failed, continuing without memory: {str(error) or type(error).__name__}")
            empty = MemoryContext.empty(options.user_id, options.session_id, failures=["episodic", "semantic"])
            return StepResult(ok=False, value=empty, error=error, duration_ms=sw.ms)
        return StepResult.success(context, duration_ms=sw.ms)

    def _wants_memory(self, query: str, intent: QueryIntent) -> bool:
        return intent.memory_context or intent.type in MEMORY_INTENTS or has_personal_reference(query)

    async def _write_back(self, query: str, intent: QueryIntent, outcome: RouteOutcome, options: ExecutionOptions) -> None:
        tools_used = [r.tool_name for r in outcome.tool_results if not r.skipped]
        result = await self.memory.record_interaction(
            options.user_id,
            options.session_id,
            query,
            outcome.response,
            intent_type=intent.type.value,
            confidence=intent.confidence,
            tools_used=tools_used,
        )
        if not result.ok:
            logger.warning(f"Interaction was not stored: {result.error_message}")

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def execute(self, query: str, options: ExecutionOptions) -> ExecutionResult:
        """
        Process one request end to end.

        Args:
            query: The user query
            options: Request options; user_id and session_id are required

        Returns:
            A well-formed ExecutionResult. `success` is False only when the
            final answer could not be generated (or the deadline passed
            before any tool succeeded).

        Raises:
            ValidationError: Empty query or invalid options
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query must be a non-empty string", field="query")
        options.validate()

        start = time.perf_counter()
        deadline = Deadline(options.deadline_ms)
        timings = StageTimings()

        logger.info(f"Processing query for {options.user_id}/{options.session_id}", {
            "length": len(query),
            "hint": options.hint_intent,
        })

        # Classification and memory lookup run side by side
        use_memory = self.memory is not None and options.include_memory_context
        memory_task = asyncio.create_task(self._memory_stage(query, options)) if use_memory else None

        try:
            classified = await self._classify_stage(query, options)
        except BaseException:
            if memory_task is not None:
                memory_task.cancel()
            raise
        intent = classified.value
        timings.classification = classified.duration_ms

        context: MemoryContext | None = None
        if memory_task is not None:
            memory_step = await memory_task
            timings.memory_search = memory_step.duration_ms
            if self._wants_memory(query, intent):
                context = memory_step.value
            else:
                logger.debug(f"Memory context not used for {intent.type.value} query")

        if deadline.expired():
            logger.warning("Deadline exceeded before routing")
            outcome = RouteOutcome(
                success=False,
                response=partial_response([]),
                error="deadline exceeded",
                deadline_exceeded=True,
            )
        else:
            outcome = await self.router.route(query, intent, context, options, deadline)

        timings.tool_execution = outcome.tool_execution_time
        timings.llm_response = outcome.llm_response_time

        if (
            self.memory is not None
            and options.store_interaction
            and outcome.success
            and not outcome.deadline_exceeded
        ):
            await self._write_back(query, intent, outcome, options)

        timings.total = elapsed_ms(start)

        result = self.composer.compose(
            query,
            intent,
            context,
            outcome.tool_results,
            outcome.response,
            timings,
            success=outcome.success,
            error=outcome.error,
            include_reasoning=options.include_reasoning,
            detail=options.detail,
            deadline_exceeded=outcome.deadline_exceeded,
        )

        logger.info(f"Request finished: {intent.type.value}", {
            "success": result.success,
            "tools_executed": result.metadata.tools_executed,
            "memory_retrieved": result.metadata.memory_retrieved,
            "execution_ms": timings.total,
        })
        return result
