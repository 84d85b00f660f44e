"""
Completion Function
===================

Maps a prompt (optionally with message history) to generated text.

The classifier, the tool executor and the router all talk to a
CompletionFunction; they never import a provider SDK themselves. Tests
substitute a scripted fake, production wires OpenAICompletion.

Every call carries `metadata["purpose"]` (classification, parameter
extraction, tool selection, answer, ...) so logs and test doubles can tell
the calls of one request apart.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import AsyncOpenAI

from memagent.utils.logger import Logger

logger = Logger("Completion")


@dataclass
class CompletionOptions:
    """
    Per-call generation settings.

    Attributes:
        temperature: Sampling temperature
        max_tokens: Upper bound on generated tokens (None = provider default)
        model: Model override (None = the backend's default model)
        system: Optional system message
        history: Prior messages in chat format, oldest first
        metadata: Free-form tags; "purpose" identifies the call site
    """
    temperature: float = 0.7
    max_tokens: int | None = None
    model: str | None = None
    system: str | None = None
    history: list[dict] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def purpose(self) -> str:
        return str(self.metadata.get("purpose", "general"))


@dataclass
class CompletionResult:
    """Generated text plus provider token usage."""
    text: str
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None


class CompletionFunction(Protocol):
    """The capability the orchestration core requires of an LLM backend."""

    async def complete(self, prompt: str, options: CompletionOptions) -> CompletionResult:
        ...


class OpenAICompletion:
    """
    Chat-completions backend using the official async OpenAI client.

    Example:
        llm = OpenAICompletion(api_key="sk-...", model="gpt-4o-mini")
        result = await llm.complete(
            "Say hi",
            CompletionOptions(temperature=0.2, metadata={"purpose": "answer"})
        )
        print(result.text)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None
    ):
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        logger.info(f"Completion backend initialized with model: {model}")

    def _build_messages(self, prompt: str, options: CompletionOptions) -> list[dict]:
        messages: list[dict] = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.extend(options.history)
        messages.append({"role": "user", "content": prompt})
        return messages

    async def complete(self, prompt: str, options: CompletionOptions) -> CompletionResult:
        model = options.model or self.model
        request: dict[str, Any] = {
            "model": model,
            "messages": self._build_messages(prompt, options),
            "temperature": options.temperature,
        }
        if options.max_tokens is not None:
            request["max_tokens"] = options.max_tokens

        logger.debug(f"Completion request ({options.purpose}, {len(prompt)} chars)")
        response = await self.client.chat.completions.create(**request)

        text = response.choices[0].message.content or ""
        usage = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(text=text, usage=usage, model=model)
