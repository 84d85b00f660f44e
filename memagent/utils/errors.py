"""
Error Taxonomy
==============

The orchestration core distinguishes five failure classes. Only the first
one ever reaches the caller as an exception; the others are recovered
inside the pipeline and surface as fields on the returned objects.

    ValidationError        - malformed request, rejected before the core runs
    ClassificationError    - classifier output unusable, heuristic takes over
    MemoryUnavailableError - a store failed or timed out, context is degraded
    ToolExecutionError     - one tool failed, recorded in its own slot
    CompositionError       - the final answer could not be generated

Sub-steps return a StepResult instead of raising, so callers check
`result.ok` rather than relying on a log line to know what happened.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class AgentError(Exception):
    """Base class for all orchestration errors."""


class ValidationError(AgentError):
    """The request is malformed (missing user/session id, empty query, bad option)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ClassificationError(AgentError):
    """The completion backend was unreachable or returned an unusable classification."""

    def __init__(self, message: str, raw_output: str | None = None):
        super().__init__(message)
        self.raw_output = raw_output


class MemoryUnavailableError(AgentError):
    """A memory store errored or timed out."""

    def __init__(self, message: str, store: str):
        super().__init__(message)
        self.store = store


class ToolExecutionError(AgentError):
    """A tool is missing, rejected its arguments, raised, or timed out."""

    def __init__(self, message: str, tool_name: str, retryable: bool = True):
        super().__init__(message)
        self.tool_name = tool_name
        self.retryable = retryable


class CompositionError(AgentError):
    """The terminal completion call failed after its retry budget."""


@dataclass
class StepResult(Generic[T]):
    """
    Outcome of one fallible pipeline step.

    Attributes:
        ok: Whether the step produced a value
        value: The produced value (None when not ok)
        error: The error that stopped the step (None when ok)
        duration_ms: Wall time spent in the step
    """
    ok: bool
    value: T | None = None
    error: Exception | None = None
    duration_ms: float = 0.0

    @classmethod
    def success(cls, value: T, duration_ms: float = 0.0) -> "StepResult[T]":
        return cls(ok=True, value=value, duration_ms=duration_ms)

    @classmethod
    def failure(cls, error: Exception, duration_ms: float = 0.0) -> "StepResult[T]":
        return cls(ok=False, error=error, duration_ms=duration_ms)

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default
