"""Shared fakes and fixtures.

FakeCompletion answers by the `purpose` tag every completion call carries,
FakeEmbedder is a deterministic bag-of-words embedding, and the failing
store doubles raise on every read and write.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from memagent.agent import Agent
from memagent.llm.completion import CompletionOptions, CompletionResult
from memagent.memory import MemoryManager
from memagent.memory.episodic import EpisodicStore
from memagent.memory.models import EpisodicMemoryRecord, EpisodicMetadata
from memagent.memory.semantic import SemanticStore
from memagent.rag.vectorstore import VectorStore
from memagent.tools import ToolRegistry, register_builtin_tools
from memagent.utils.config import Config, ExecutionConfig, MemoryConfig, OpenAIConfig

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════
# Completion
# ═══════════════════════════════════════════════════════════════════


class FakeCompletion:
    """Scripted completion function.

    `responses` maps a purpose ("classification", "answer", ...) to one of:
    a string, an exception instance, a callable (prompt, options) -> str,
    or a list of those consumed in order (the last one repeats).
    """

    def __init__(self, responses: dict[str, Any] | None = None, default: str = "OK"):
        self.responses = dict(responses or {})
        self.default = default
        self.calls: list[tuple[str, str, CompletionOptions]] = []

    async def complete(self, prompt: str, options: CompletionOptions) -> CompletionResult:
        self.calls.append((options.purpose, prompt, options))

        handler = self.responses.get(options.purpose, self.default)
        if isinstance(handler, list):
            handler = handler.pop(0) if len(handler) > 1 else handler[0]
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            handler = handler(prompt, options)
        return CompletionResult(text=handler, usage={"total_tokens": 1}, model=options.model)

    @property
    def purposes(self) -> list[str]:
        return [purpose for purpose, _, _ in self.calls]

    def calls_for(self, purpose: str) -> list[tuple[str, CompletionOptions]]:
        return [(prompt, options) for p, prompt, options in self.calls if p == purpose]


def intent_json(
    intent_type: str,
    confidence: float = 0.9,
    tools: list[str] | None = None,
    memory: bool | None = None,
    reasoning: str = "test classification",
) -> str:
    data: dict[str, Any] = {
        "type": intent_type,
        "confidence": confidence,
        "requiredTools": tools or [],
        "reasoning": reasoning,
    }
    if memory is not None:
        data["memoryContext"] = memory
    return json.dumps(data)


# ═══════════════════════════════════════════════════════════════════
# Embeddings and store doubles
# ═══════════════════════════════════════════════════════════════════


class FakeEmbedder:
    """Bag-of-words embedding: one hashed bucket per lower-cased word."""

    def __init__(self, dimension: int = 64):
        self.dimension = dimension
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        vector = [0.0] * self.dimension
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class FailingEpisodicStore:
    async def query(self, *args, **kwargs):
        raise ConnectionError("episodic store down")

    async def append(self, *args, **kwargs):
        raise ConnectionError("episodic store down")


class FailingSemanticStore:
    async def search_text(self, *args, **kwargs):
        raise ConnectionError("semantic store down")

    async def upsert(self, *args, **kwargs):
        raise ConnectionError("semantic store down")


class SlowEpisodicStore:
    async def query(self, *args, **kwargs):
        await asyncio.sleep(5)
        return []


async def add_episode(
    store: EpisodicStore,
    content: str,
    minutes: int = 0,
    importance: float = 0.5,
    user_id: str = "U1",
    session_id: str = "S1",
    tags: list[str] | None = None,
) -> EpisodicMemoryRecord:
    return await store.append(EpisodicMemoryRecord(
        user_id=user_id,
        session_id=session_id,
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        metadata=EpisodicMetadata(importance=importance, tags=tags or []),
    ))


# ═══════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════


@pytest.fixture
def memory_settings() -> MemoryConfig:
    return MemoryConfig(
        directory=Path("unused"),
        persist=False,
        max_results=10,
        similarity_threshold=0.3,
        recency_weight=0.5,
        importance_weight=0.5,
        candidate_limit=50,
        lookup_timeout=2.0,
    )


@pytest.fixture
def execution_settings() -> ExecutionConfig:
    return ExecutionConfig(
        classification_timeout=2.0,
        completion_timeout=2.0,
        completion_retries=1,
        tool_timeout=1.0,
        tool_retries=1,
        batch_concurrency=4,
        classifier_temperature=0.1,
    )


@pytest.fixture
def config(memory_settings, execution_settings) -> Config:
    return Config(
        openai=OpenAIConfig(api_key=None, model="test-model", embedding_model="fake", base_url=None),
        memory=memory_settings,
        execution=execution_settings,
        log_level="error",
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def episodic_store() -> EpisodicStore:
    return EpisodicStore()


@pytest.fixture
def semantic_store(embedder) -> SemanticStore:
    return SemanticStore(embedder, VectorStore(dimension=embedder.dimension))


@pytest.fixture
def memory(episodic_store, semantic_store, memory_settings) -> MemoryManager:
    return MemoryManager(episodic_store, semantic_store, memory_settings)


@pytest.fixture
def registry(tmp_path) -> ToolRegistry:
    return register_builtin_tools(ToolRegistry(), base_dir=tmp_path)


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def agent(completion, registry, memory, config) -> Agent:
    return Agent(completion, registry, memory, config)
