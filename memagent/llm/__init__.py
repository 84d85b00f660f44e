"""
Completion backends.

The orchestration core only depends on the CompletionFunction contract;
OpenAICompletion is the production implementation.
"""

from memagent.llm.completion import (
    CompletionFunction,
    CompletionOptions,
    CompletionResult,
    OpenAICompletion,
)

__all__ = [
    "CompletionFunction",
    "CompletionOptions",
    "CompletionResult",
    "OpenAICompletion",
]
