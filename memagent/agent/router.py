"""
Execution Router
================

Dispatches a classified query to one of five execution paths:

    conversation      -> one answer call, memory only as optional background
    tool_execution    -> run the tool plan, answer from the tool results
    memory_chat       -> answer only from the memory context
    hybrid            -> tool plan + memory context, one combined answer call
    knowledge_search  -> like memory_chat, with semantic memory first

Dispatch is an exhaustive table over IntentType, checked when the router
is built. Every path ends in exactly one terminal answer call; that call
is the only step whose failure makes the request fail. Earlier failures
(a tool, a memory store) only degrade what the answer call sees.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from memagent.agent.context import PromptBuilder
from memagent.agent.models import ExecutionOptions, IntentType, QueryIntent, ToolExecutionRecord
from memagent.agent.tools_executor import ToolExecutor
from memagent.llm.completion import CompletionFunction, CompletionOptions
from memagent.memory.models import MemoryContext
from memagent.utils.config import ExecutionConfig, get_config
from memagent.utils.errors import CompositionError, StepResult
from memagent.utils.json_utils import render_json
from memagent.utils.logger import Logger
from memagent.utils.timing import Deadline, Stopwatch

logger = Logger("ExecutionRouter")

# Default answer temperature per path; ExecutionOptions.temperature wins
PATH_TEMPERATURES = {
    IntentType.CONVERSATION: 0.8,
    IntentType.TOOL_EXECUTION: 0.7,
    IntentType.MEMORY_CHAT: 0.7,
    IntentType.HYBRID: 0.7,
    IntentType.KNOWLEDGE_SEARCH: 0.3,
}

RESTATE_TEMPERATURE = 0.5


@dataclass
class RouteOutcome:
    """
    What a path produced, before composition.

    Attributes:
        success: False only when the terminal answer call failed
        response: The answer text (a deterministic summary on short-circuit)
        tool_results: One record per planned tool, in plan order
        error: CompositionError message, or the deadline notice
        tool_execution_time: Milliseconds spent in the tool plan
        llm_response_time: Milliseconds spent in the answer call
        deadline_exceeded: The overall deadline cut the path short
    """
    success: bool
    response: str
    tool_results: list[ToolExecutionRecord] = field(default_factory=list)
    error: str | None = None
    tool_execution_time: float = 0.0
    llm_response_time: float = 0.0
    deadline_exceeded: bool = False


def partial_response(tool_results: list[ToolExecutionRecord]) -> str:
    """Plain-text summary used when the deadline stops a request before its answer call."""
    succeeded = [r for r in tool_results if r.success]
    if not succeeded:
        return "The request could not be completed before its deadline."
    lines = ["The request hit its deadline before an answer was written. Tool results so far:"]
    for record in succeeded:
        lines.append(f"- {record.tool_name}: {render_json(record.data, 500)}")
    return "\n".join(lines)


class ExecutionRouter:
    """
    Runs the execution path selected by a QueryIntent.

    Example:
        router = ExecutionRouter(completion, ToolExecutor(registry, completion))

        outcome = await router.route(
            "What is 15 + 27?",
            intent,
            context=None,
            options=ExecutionOptions(user_id="U1", session_id="S1"),
        )
        outcome.tool_results[0].data["result"]  # 42
    """

    def __init__(
        self,
        completion: CompletionFunction,
        executor: ToolExecutor,
        settings: ExecutionConfig | None = None,
        prompts: PromptBuilder | None = None
    ):
        self.completion = completion
        self.executor = executor
        self.settings = settings or get_config().execution
        self.prompts = prompts or PromptBuilder()

        self._paths: dict[IntentType, Callable[..., Awaitable[RouteOutcome]]] = {
            IntentType.CONVERSATION: self._conversation,
            IntentType.TOOL_EXECUTION: self._tool_execution,
            IntentType.MEMORY_CHAT: self._memory_chat,
            IntentType.HYBRID: self._hybrid,
            IntentType.KNOWLEDGE_SEARCH: self._knowledge_search,
        }
        missing = set(IntentType) - set(self._paths)
        if missing:
            raise RuntimeError(f"No execution path for intents: {sorted(t.value for t in missing)}")

    async def route(
        self,
        query: str,
        intent: QueryIntent,
        context: MemoryContext | None,
        options: ExecutionOptions,
        deadline: Deadline | None = None
    ) -> RouteOutcome:
        """
        Execute the path for `intent.type`.

        Never raises for tool, memory or completion failures; they are
        reported on the returned RouteOutcome.
        """
        deadline = deadline or Deadline(None)
        path = self._paths[intent.type]

        logger.debug(f"Routing to {intent.type.value}", {
            "tools": intent.required_tools,
            "memory": context.total if context else 0,
        })
        return await path(query, intent, context, options, deadline)

    # ==========================================================================
    # Paths
    # ==========================================================================

    async def _conversation(self, query, intent, context, options, deadline) -> RouteOutcome:
        system = self.prompts.answer_system(IntentType.CONVERSATION, context, [])
        return await self._finish(query, system, IntentType.CONVERSATION, options, deadline)

    async def _tool_execution(self, query, intent, context, options, deadline) -> RouteOutcome:
        step = await self._run_tools(query, intent, options, deadline)
        records, selected = step.value

        if not selected:
            prompt = self.prompts.restate_need(query, self.executor.registry.get_all())
            outcome = await self._finish(
                prompt, None, IntentType.TOOL_EXECUTION, options, deadline,
                temperature=RESTATE_TEMPERATURE, purpose="restate_need",
            )
            outcome.tool_execution_time = step.duration_ms
            return outcome

        system = self.prompts.answer_system(IntentType.TOOL_EXECUTION, None, records)
        outcome = await self._finish(
            f'User query: "{query}"', system, IntentType.TOOL_EXECUTION, options, deadline, records
        )
        outcome.tool_execution_time = step.duration_ms
        return outcome

    async def _memory_chat(self, query, intent, context, options, deadline) -> RouteOutcome:
        system = self.prompts.answer_system(IntentType.MEMORY_CHAT, context, [])
        return await self._finish(query, system, IntentType.MEMORY_CHAT, options, deadline)

    async def _hybrid(self, query, intent, context, options, deadline) -> RouteOutcome:
        step = await self._run_tools(query, intent, options, deadline)
        records, _ = step.value

        system = self.prompts.answer_system(IntentType.HYBRID, context, records)
        outcome = await self._finish(query, system, IntentType.HYBRID, options, deadline, records)
        outcome.tool_execution_time = step.duration_ms
        return outcome

    async def _knowledge_search(self, query, intent, context, options, deadline) -> RouteOutcome:
        system = self.prompts.answer_system(IntentType.KNOWLEDGE_SEARCH, context, [])
        return await self._finish(query, system, IntentType.KNOWLEDGE_SEARCH, options, deadline)

    # ==========================================================================
    # Shared steps
    # ==========================================================================

    async def _run_tools(
        self,
        query: str,
        intent: QueryIntent,
        options: ExecutionOptions,
        deadline: Deadline
    ) -> StepResult[tuple[list[ToolExecutionRecord], bool]]:
        """
        Run the tool plan of a tool-using path.

        Returns a StepResult whose value is (records, selected); `selected`
        is False when no tool was listed and selection found none.
        """
        with Stopwatch() as sw:
            names = list(intent.required_tools)
            tool_args = dict(options.tool_args)

            if not names:
                name, args = await self.executor.select_tool(query, options.model)
                if name is not None:
                    names = [name]
                    if args is not None and name not in tool_args:
                        tool_args[name] = args

            records: list[ToolExecutionRecord] = []
            if names:
                calls = self.executor.plan(names, tool_args, options.tool_dependencies)
                records = await self.executor.execute_plan(
                    query, calls, parallel=options.parallel_tools, deadline=deadline, model=options.model
                )

        return StepResult.success((records, bool(names)), duration_ms=sw.ms)

    async def _finish(
        self,
        prompt: str,
        system: str | None,
        intent_type: IntentType,
        options: ExecutionOptions,
        deadline: Deadline,
        tool_results: list[ToolExecutionRecord] | None = None,
        temperature: float | None = None,
        purpose: str = "answer"
    ) -> RouteOutcome:
        tool_results = tool_results or []

        if deadline.expired():
            logger.warning(f"Deadline exceeded before the answer call ({intent_type.value})")
            return RouteOutcome(
                success=any(r.success for r in tool_results),
                response=partial_response(tool_results),
                tool_results=tool_results,
                error="deadline exceeded",
                deadline_exceeded=True,
            )

        if options.temperature is not None:
            temperature = options.temperature
        elif temperature is None:
            temperature = PATH_TEMPERATURES[intent_type]

        completion_options = CompletionOptions(
            temperature=temperature,
            model=options.model,
            system=system,
            metadata={"purpose": purpose, "intent": intent_type.value},
        )
        step = await self._answer(prompt, completion_options, deadline)

        if not step.ok:
            logger.error("Answer generation failed", step.error, {"intent": intent_type.value})
            return RouteOutcome(
                success=False,
                response="",
                tool_results=tool_results,
                error=step.error_message,
                llm_response_time=step.duration_ms,
            )

        return RouteOutcome(
            success=True,
            response=step.value,
            tool_results=tool_results,
            llm_response_time=step.duration_ms,
        )

    async def _answer(self, prompt: str, options: CompletionOptions, deadline: Deadline) -> StepResult[str]:
        """The terminal completion call, with timeout and retry budget."""
        attempts = 1 + max(0, self.settings.completion_retries)
        last_error = "not attempted"
        text: str | None = None

        with Stopwatch() as sw:
            for attempt in range(1, attempts + 1):
                timeout = deadline.cap(self.settings.completion_timeout)
                try:
                    result = await asyncio.wait_for(self.completion.complete(prompt, options), timeout=timeout)
                except asyncio.TimeoutError:
                    last_error = f"timed out after {timeout:g}s"
                except Exception as e:
                    last_error = str(e) or type(e).__name__
                else:
                    text = result.text
                    break

                logger.warning(f"Answer attempt {attempt}/{attempts} failed: {last_error}")
                if deadline.expired():
                    last_error = f"{last_error} (deadline exceeded)"
                    break

        if text is None:
            return StepResult.failure(
                CompositionError(f"Failed to generate a response: {last_error}"), duration_ms=sw.ms
            )
        return StepResult.success(text, duration_ms=sw.ms)
