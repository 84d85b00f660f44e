"""
Memory System
=============

Two structurally different memory stores and the assembler that merges
them into a bounded context:

1. EPISODIC: time-ordered interaction records per (user, session)
2. SEMANTIC: concept/fact records found by vector similarity per user

This module provides a Facade - a single MemoryManager class that owns
both stores, builds contexts through the assembler, and exposes the
interaction write path and user-level maintenance.

Usage:
    from memagent.memory import MemoryManager

    memory = MemoryManager.from_config(embedder)

    context = await memory.build_context("U1", "S1", "What do I like?")

    await memory.record_interaction(
        "U1", "S1", "I like Python", "Noted!", intent_type="conversation", confidence=0.9
    )
"""

from pathlib import Path

from memagent.memory.models import (
    ContextWindow,
    EpisodicMemoryRecord,
    EpisodicMetadata,
    MemoryContext,
    ScoredRecord,
    SemanticMemoryRecord,
    SemanticMetadata,
)
from memagent.memory.episodic import EpisodicStore, new_interaction_record
from memagent.memory.semantic import SemanticStore
from memagent.memory.assembler import ContextOptions, MemoryContextAssembler
from memagent.rag.embeddings import EmbeddingFunction
from memagent.rag.vectorstore import VectorStore
from memagent.utils.config import MemoryConfig, get_config
from memagent.utils.errors import StepResult
from memagent.utils.logger import Logger
from memagent.utils.timing import Stopwatch

logger = Logger("Memory")

# Intents whose answers are worth remembering as facts
KNOWLEDGE_INTENTS = {"knowledge_search", "hybrid"}


class MemoryManager:
    """
    Facade over the episodic store, the semantic store and the assembler.

    Example:
        memory = MemoryManager(EpisodicStore(), SemanticStore(embedder, VectorStore()))

        await memory.add_knowledge("U1", "favourite language", "Python")
        context = await memory.build_context("U1", "S1", "Which language do I like?")

        print(await memory.stats("U1"))
        await memory.clear_user("U1")
    """

    def __init__(
        self,
        episodic: EpisodicStore,
        semantic: SemanticStore,
        settings: MemoryConfig | None = None
    ):
        self.settings = settings or get_config().memory
        self.episodic = episodic
        self.semantic = semantic
        self.assembler = MemoryContextAssembler(episodic, semantic, self.settings)

        logger.info("Memory system initialized")

    @classmethod
    def from_config(
        cls,
        embedder: EmbeddingFunction,
        settings: MemoryConfig | None = None
    ) -> "MemoryManager":
        """Build both stores where the configuration says they live."""
        settings = settings or get_config().memory
        directory: Path | None = settings.directory if settings.persist else None

        episodic = EpisodicStore(directory / "episodic" if directory else None)
        vectors = VectorStore(
            dimension=embedder.dimension,
            storage_path=directory / "semantic" if directory else None,
        )
        return cls(episodic, SemanticStore(embedder, vectors), settings)

    # ==========================================================================
    # Context
    # ==========================================================================

    async def build_context(
        self,
        user_id: str,
        session_id: str,
        query: str,
        options: ContextOptions | None = None
    ) -> MemoryContext:
        """Assemble the memory context for a query (see MemoryContextAssembler)."""
        return await self.assembler.build_context(user_id, session_id, query, options)

    # ==========================================================================
    # Write path
    # ==========================================================================

    async def record_interaction(
        self,
        user_id: str,
        session_id: str,
        query: str,
        answer: str,
        intent_type: str,
        confidence: float,
        tools_used: list[str] | None = None
    ) -> StepResult[EpisodicMemoryRecord]:
        """
        Store one question/answer turn.

        Always appends an episodic record; for knowledge-seeking intents the
        answer is also upserted as a semantic record keyed by the question.
        Failures are returned, never raised.
        """
        tags = [intent_type, "conversation"]
        if tools_used:
            tags.append("tool_call")

        error: Exception | None = None
        record = None
        with Stopwatch() as sw:
            try:
                record = await self.episodic.append(new_interaction_record(
                    user_id,
                    session_id,
                    query,
                    answer,
                    importance=confidence,
                    tags=tags,
                    context={"intent": intent_type, "confidence": confidence, "tools": list(tools_used or [])},
                ))
                if intent_type in KNOWLEDGE_INTENTS:
                    await self.semantic.upsert(SemanticMemoryRecord(
                        user_id=user_id,
                        concept=query,
                        description=answer,
                        metadata=SemanticMetadata(category=intent_type, confidence=confidence),
                    ))
            except Exception as e:
                error = e

        if error is not None:
            logger.warning(f"Failed to store interaction: {error}", {"user_id": user_id})
            return StepResult.failure(error, duration_ms=sw.ms)
        return StepResult.success(record, duration_ms=sw.ms)

    async def add_knowledge(
        self,
        user_id: str,
        concept: str,
        description: str,
        category: str = "general",
        confidence: float = 0.8
    ) -> SemanticMemoryRecord:
        """Store a fact directly in semantic memory."""
        return await self.semantic.upsert(SemanticMemoryRecord(
            user_id=user_id,
            concept=concept,
            description=description,
            metadata=SemanticMetadata(category=category, confidence=confidence),
        ))

    # ==========================================================================
    # Maintenance
    # ==========================================================================

    async def stats(self, user_id: str) -> dict:
        return {
            "episodic": await self.episodic.stats(user_id),
            "semantic": await self.semantic.stats(user_id),
        }

    async def clear_user(self, user_id: str) -> dict:
        """Forget everything stored for a user."""
        removed = {
            "episodic": await self.episodic.clear_user(user_id),
            "semantic": await self.semantic.clear_user(user_id),
        }
        logger.info(f"Cleared memory for {user_id}", removed)
        return removed


__all__ = [
    "MemoryManager",
    "MemoryContext",
    "ContextWindow",
    "ContextOptions",
    "EpisodicMemoryRecord",
    "EpisodicMetadata",
    "EpisodicStore",
    "MemoryContextAssembler",
    "ScoredRecord",
    "SemanticMemoryRecord",
    "SemanticMetadata",
    "SemanticStore",
]
