"""
Response Composer
=================

Turns the pieces of a finished request into one ExecutionResult.

Counters:
    memoryRetrieved = episodic + semantic records in the context
    toolsExecuted   = tool records with success=True

The detail level only changes what `to_dict()` emits (vectors, memory
bodies, tool data); counters and success never depend on it.
"""

from memagent.agent.models import (
    ExecutionMetadata,
    ExecutionResult,
    QueryIntent,
    StageTimings,
    ToolExecutionRecord,
)
from memagent.memory.models import MemoryContext


class ResponseComposer:
    """
    Pure aggregation of request outputs.

    Example:
        result = ResponseComposer().compose(
            query, intent, context, tool_results, "The answer is 42.", timings
        )
        result.metadata.tools_executed  # 1
    """

    def reasoning(
        self,
        intent: QueryIntent,
        context: MemoryContext | None,
        tool_results: list[ToolExecutionRecord]
    ) -> str:
        parts = [
            f"Intent: {intent.type.value} (confidence: {intent.confidence})",
            f"Reasoning: {intent.reasoning}",
        ]
        if context is not None:
            parts.append(
                f"Memory context: {len(context.episodic_memories)} episodic, "
                f"{len(context.semantic_memories)} semantic memories"
            )
        if tool_results:
            parts.append(f"Tools executed: {', '.join(r.tool_name for r in tool_results)}")
        return " | ".join(parts)

    def compose(
        self,
        query: str,
        intent: QueryIntent,
        context: MemoryContext | None,
        tool_results: list[ToolExecutionRecord],
        completion_text: str,
        timings: StageTimings,
        success: bool = True,
        error: str | None = None,
        include_reasoning: bool = True,
        detail: str = "standard",
        deadline_exceeded: bool = False
    ) -> ExecutionResult:
        """
        Build the ExecutionResult.

        Args:
            query: The user query
            intent: The intent the request was routed by
            context: The memory context handed to the answer call, if any
            tool_results: Tool records in plan order
            completion_text: The answer text
            timings: Per-stage milliseconds
            success: False when the answer call failed
            error: The failure message, if any
            include_reasoning: Attach the reasoning summary
            detail: "full", "standard" or "minimal"
            deadline_exceeded: The overall deadline cut the request short
        """
        metadata = ExecutionMetadata(
            execution_time=timings.total,
            memory_retrieved=context.total if context else 0,
            tools_executed=sum(1 for r in tool_results if r.success),
            confidence=intent.confidence,
            classification_time=timings.classification,
            memory_search_time=timings.memory_search,
            tool_execution_time=timings.tool_execution,
            llm_response_time=timings.llm_response,
            degraded_context=bool(context and context.degraded),
            deadline_exceeded=deadline_exceeded,
            detail=detail,
        )

        return ExecutionResult(
            success=success,
            response=completion_text,
            intent=intent,
            memory_context=context,
            tool_results=list(tool_results),
            reasoning=self.reasoning(intent, context, tool_results) if include_reasoning else "",
            metadata=metadata,
            error=error,
        )
