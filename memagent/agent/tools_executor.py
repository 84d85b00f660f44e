"""
Tool Executor
=============

Runs the tool plan of a tool_execution or hybrid request.

The executor:
1. Resolves arguments: supplied by the caller, or extracted from the
   query with a dedicated parameter-extraction completion call
2. Validates them against the tool's JSON Schema (via the registry)
3. Runs each tool under a per-tool timeout with a bounded retry count
4. Records every outcome in its own ToolExecutionRecord

Ordering:
    Sequential (default): tools run in the listed order.
    Parallel: tools are grouped into waves; a wave holds every tool whose
    dependencies already finished, and the tools of one wave run
    concurrently. Results are always returned in the listed order.

Dependencies:
    A tool depends on the tools named in its MCPTool.consumes, or in the
    caller's tool_dependencies override. Only dependencies listed earlier
    in the same plan count. When a dependency did not succeed, the
    dependent tool is not run and its record is marked `skipped`.

Failure isolation:
    One tool failing never stops the others. Missing tools and schema
    violations fail immediately; exceptions and timeouts are retried.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from memagent.agent.context import PromptBuilder
from memagent.agent.models import ToolExecutionRecord
from memagent.llm.completion import CompletionFunction, CompletionOptions
from memagent.tools import ToolRegistry
from memagent.utils.config import ExecutionConfig, get_config
from memagent.utils.errors import ToolExecutionError
from memagent.utils.json_utils import JsonExtractionError, extract_json_object
from memagent.utils.logger import Logger
from memagent.utils.timing import Deadline, Stopwatch

logger = Logger("ToolExecutor")

EXTRACTION_TEMPERATURE = 0.1


@dataclass
class ToolCall:
    """
    One planned tool invocation.

    Attributes:
        name: The tool name
        arguments: Caller-supplied arguments; None means extract from the query
        depends_on: Earlier tools in the plan whose results this one consumes
    """
    name: str
    arguments: dict[str, Any] | None = None
    depends_on: list[str] = field(default_factory=list)


class ToolExecutor:
    """
    Executes tool plans against an explicit registry.

    Example:
        executor = ToolExecutor(registry, completion)

        plan = executor.plan(["calculator"], tool_args={"calculator": {"expression": "15 + 27"}})
        records = await executor.execute_plan("What is 15 + 27?", plan)
        records[0].data  # {"expression": "15 + 27", "result": 42}
    """

    def __init__(
        self,
        registry: ToolRegistry,
        completion: CompletionFunction,
        settings: ExecutionConfig | None = None,
        prompts: PromptBuilder | None = None
    ):
        self.registry = registry
        self.completion = completion
        self.settings = settings or get_config().execution
        self.prompts = prompts or PromptBuilder()

    # ==========================================================================
    # Planning
    # ==========================================================================

    def plan(
        self,
        tool_names: list[str],
        tool_args: dict[str, dict] | None = None,
        dependencies: dict[str, list[str]] | None = None
    ) -> list[ToolCall]:
        """
        Turn an ordered list of tool names into ToolCalls.

        Dependencies on tools that are not listed earlier in the plan are dropped.
        """
        tool_args = tool_args or {}
        dependencies = dependencies or {}

        calls: list[ToolCall] = []
        seen: list[str] = []
        for name in dict.fromkeys(tool_names):
            tool = self.registry.get(name)
            declared = dependencies.get(name)
            if declared is None:
                declared = tool.consumes if tool else []

            depends_on = [d for d in declared if d in seen]
            dropped = [d for d in declared if d not in seen]
            if dropped:
                logger.debug(f"Ignoring dependencies of {name} not planned before it: {dropped}")

            args = tool_args.get(name)
            calls.append(ToolCall(name=name, arguments=dict(args) if args is not None else None, depends_on=depends_on))
            seen.append(name)
        return calls

    @staticmethod
    def waves(calls: list[ToolCall]) -> list[list[ToolCall]]:
        """Group calls so every call comes after all of its dependencies."""
        level: dict[str, int] = {}
        for call in calls:
            level[call.name] = 1 + max((level[d] for d in call.depends_on), default=-1)

        grouped: list[list[ToolCall]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for call in calls:
            grouped[level[call.name]].append(call)
        return grouped

    # ==========================================================================
    # Argument resolution
    # ==========================================================================

    async def extract_arguments(
        self,
        query: str,
        tool_name: str,
        upstream: list[ToolExecutionRecord] | None = None,
        model: str | None = None
    ) -> dict[str, Any]:
        """
        Ask the completion function for a tool's arguments.

        Returns an empty dict when nothing usable comes back; the schema
        check that follows reports which required fields are missing.
        """
        tool = self.registry.get(tool_name)
        if tool is None:
            return {}

        prompt = self.prompts.parameter_extraction(query, tool, upstream)
        options = CompletionOptions(
            temperature=EXTRACTION_TEMPERATURE,
            model=model,
            metadata={"purpose": "parameter_extraction", "tool": tool_name},
        )
        try:
            result = await asyncio.wait_for(
                self.completion.complete(prompt, options),
                timeout=self.settings.completion_timeout,
            )
            return extract_json_object(result.text)
        except JsonExtractionError as e:
            logger.warning(f"Could not read arguments for {tool_name}: {e.reason}")
        except Exception as e:
            logger.warning(f"Parameter extraction failed for {tool_name}: {str(e) or type(e).__name__}")
        return {}

    async def select_tool(self, query: str, model: str | None = None) -> tuple[str | None, dict | None]:
        """
        Let the completion function pick a tool for a query.

        Returns:
            (tool name, arguments or None); (None, None) when no tool applies
        """
        tools = self.registry.get_all()
        if not tools:
            return None, None

        options = CompletionOptions(
            temperature=EXTRACTION_TEMPERATURE,
            model=model,
            metadata={"purpose": "tool_selection"},
        )
        try:
            result = await asyncio.wait_for(
                self.completion.complete(self.prompts.tool_selection(query, tools), options),
                timeout=self.settings.completion_timeout,
            )
            choice = extract_json_object(result.text)
        except Exception as e:
            logger.warning(f"Tool selection failed: {str(e) or type(e).__name__}")
            return None, None

        name = choice.get("toolName")
        if not isinstance(name, str) or name.lower() == "none" or name not in self.registry:
            logger.info(f"No tool selected for query (answer: {name!r})")
            return None, None

        args = choice.get("args")
        return name, args if isinstance(args, dict) and args else None

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def execute_one(
        self,
        query: str,
        call: ToolCall,
        upstream: list[ToolExecutionRecord] | None = None,
        deadline: Deadline | None = None,
        model: str | None = None
    ) -> ToolExecutionRecord:
        """Resolve arguments and run one tool with timeout and retries."""
        deadline = deadline or Deadline(None)

        if call.name not in self.registry:
            logger.warning(f"Tool not found: {call.name}")
            return ToolExecutionRecord(tool_name=call.name, success=False, error=f"Tool '{call.name}' not found")

        with Stopwatch() as sw:
            args = call.arguments
            if args is None:
                args = await self.extract_arguments(query, call.name, upstream, model)

            record = await self._invoke_with_retries(call.name, args, deadline)

        record.duration_ms = sw.ms
        if record.success:
            logger.debug(f"Tool {call.name} succeeded", {"attempts": record.attempts})
        else:
            logger.warning(f"Tool {call.name} failed: {record.error}")
        return record

    async def _invoke_with_retries(self, name: str, args: dict, deadline: Deadline) -> ToolExecutionRecord:
        attempts = 0
        last_error = "not attempted"

        for _ in range(1 + max(0, self.settings.tool_retries)):
            if deadline.expired():
                last_error = "deadline exceeded"
                break

            attempts += 1
            timeout = deadline.cap(self.settings.tool_timeout)
            try:
                result = await asyncio.wait_for(self.registry.invoke(name, args), timeout=timeout)
            except ToolExecutionError as e:
                last_error = str(e)
                if not e.retryable:
                    break
                continue
            except asyncio.TimeoutError:
                last_error = f"timed out after {timeout:g}s"
                continue
            except Exception as e:
                last_error = str(e) or type(e).__name__
                continue

            # Tool-reported failures are final
            return ToolExecutionRecord(
                tool_name=name,
                success=result.success,
                data=result.data,
                error=None if result.success else (result.error or "tool reported failure"),
                attempts=attempts,
                args=args,
            )

        return ToolExecutionRecord(tool_name=name, success=False, error=last_error, attempts=attempts, args=args)

    def _skip_record(self, call: ToolCall, by_name: dict[str, ToolExecutionRecord]) -> ToolExecutionRecord | None:
        failed = [d for d in call.depends_on if d in by_name and not by_name[d].success]
        if not failed:
            return None
        logger.info(f"Skipping {call.name}: depends on failed tool(s) {failed}")
        return ToolExecutionRecord(
            tool_name=call.name,
            success=False,
            error=f"Skipped: depends on failed tool '{failed[0]}'",
            skipped=True,
        )

    async def execute_plan(
        self,
        query: str,
        calls: list[ToolCall],
        parallel: bool = False,
        deadline: Deadline | None = None,
        model: str | None = None
    ) -> list[ToolExecutionRecord]:
        """
        Run a plan and return one record per call, in plan order.

        Args:
            query: The user query (for parameter extraction)
            calls: The plan, see plan()
            parallel: Run independent tools concurrently
            deadline: Overall deadline; tools not started before it expires are skipped
            model: Completion model override for parameter extraction
        """
        deadline = deadline or Deadline(None)
        by_name: dict[str, ToolExecutionRecord] = {}

        def _upstream(call: ToolCall) -> list[ToolExecutionRecord]:
            return [by_name[d] for d in call.depends_on if d in by_name]

        async def _run(call: ToolCall) -> ToolExecutionRecord:
            skipped = self._skip_record(call, by_name)
            if skipped is not None:
                return skipped
            if deadline.expired():
                return ToolExecutionRecord(
                    tool_name=call.name, success=False, error="Skipped: deadline exceeded", skipped=True
                )
            return await self.execute_one(query, call, _upstream(call), deadline, model)

        if parallel:
            for wave in self.waves(calls):
                records = await asyncio.gather(*[_run(call) for call in wave])
                for call, record in zip(wave, records):
                    by_name[call.name] = record
        else:
            for call in calls:
                by_name[call.name] = await _run(call)

        records = [by_name[call.name] for call in calls]
        logger.info("Tool plan finished", {
            "tools": len(records),
            "succeeded": sum(1 for r in records if r.success),
            "skipped": sum(1 for r in records if r.skipped),
            "parallel": parallel,
        })
        return records
