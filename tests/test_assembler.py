"""Tests for memory context assembly.

Coverage:
- Episodic scoring and slot allocation
- Truncation keeps the best records of each kind
- Idempotence for a fixed store state
- Partial and total store failure, lookup timeout
- Context window and option validation
"""

from __future__ import annotations

import pytest

from memagent.memory.assembler import ContextOptions, MemoryContextAssembler, allocate_slots, score_episodic
from memagent.memory.models import SemanticMemoryRecord
from memagent.utils.errors import ValidationError
from tests.conftest import (
    BASE_TIME,
    FailingEpisodicStore,
    FailingSemanticStore,
    SlowEpisodicStore,
    add_episode,
)


@pytest.fixture
def assembler(episodic_store, semantic_store, memory_settings) -> MemoryContextAssembler:
    return MemoryContextAssembler(episodic_store, semantic_store, memory_settings)


async def seed(episodic_store, semantic_store):
    importances = [0.2, 0.9, 0.5, 0.1, 0.7, 0.4]
    for minute, importance in enumerate(importances):
        await add_episode(episodic_store, f"User: message {minute} about python", minutes=minute, importance=importance)

    facts = [
        ("python", "a programming language the user likes"),
        ("python typing", "type hints for python code"),
        ("rust", "a systems programming language"),
        ("coffee", "the user drinks coffee every morning"),
    ]
    for concept, description in facts:
        await semantic_store.upsert(SemanticMemoryRecord(user_id="U1", concept=concept, description=description))
    # Another user's fact must never show up
    await semantic_store.upsert(SemanticMemoryRecord(user_id="U2", concept="python", description="secret"))


# ═══════════════════════════════════════════════════════════════════
# Scoring and allocation
# ═══════════════════════════════════════════════════════════════════


class TestScoring:

    @pytest.mark.asyncio
    async def test_recency_breaks_equal_importance(self, episodic_store):
        old = await add_episode(episodic_store, "old", minutes=0, importance=0.5)
        new = await add_episode(episodic_store, "new", minutes=10, importance=0.5)

        scored = score_episodic([old, new], recency_weight=0.5, importance_weight=0.5)

        assert [s.record.content for s in scored] == ["new", "old"]
        assert scored[0].score == pytest.approx(0.75)
        assert scored[1].score == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_importance_only(self, episodic_store):
        low = await add_episode(episodic_store, "low", minutes=10, importance=0.1)
        high = await add_episode(episodic_store, "high", minutes=0, importance=0.9)

        scored = score_episodic([low, high], recency_weight=0.0, importance_weight=1.0)

        assert [s.record.content for s in scored] == ["high", "low"]

    @pytest.mark.asyncio
    async def test_single_record_counts_as_most_recent(self, episodic_store):
        only = await add_episode(episodic_store, "only", importance=0.0)
        [scored] = score_episodic([only], recency_weight=1.0, importance_weight=1.0)
        assert scored.score == pytest.approx(0.5)

    @pytest.mark.parametrize("counts, limit, expected", [
        ((5, 5), 4, (2, 2)),
        ((10, 1), 4, (3, 1)),
        ((2, 8), 6, (1, 5)),
        ((1, 10), 5, (1, 4)),
        ((0, 3), 2, (0, 2)),
        ((3, 0), 2, (2, 0)),
        ((2, 1), 5, (2, 1)),
    ])
    def test_allocation(self, counts, limit, expected):
        assert allocate_slots(counts[0], counts[1], limit) == expected

    def test_single_slot_goes_to_better_top_score(self):
        assert allocate_slots(3, 3, 1, episodic_top=0.2, semantic_top=0.9) == (0, 1)
        assert allocate_slots(3, 3, 1, episodic_top=0.9, semantic_top=0.2) == (1, 0)


# ═══════════════════════════════════════════════════════════════════
# build_context
# ═══════════════════════════════════════════════════════════════════


class TestBuildContext:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [1, 2, 3, 5, 8])
    async def test_truncation_keeps_best(self, assembler, episodic_store, semantic_store, k):
        await seed(episodic_store, semantic_store)
        options = ContextOptions(max_results=k, similarity_threshold=0.0)

        context = await assembler.build_context("U1", "S1", "python programming language", options)

        assert context.total <= k

        all_episodic = score_episodic(await episodic_store.query("U1", "S1"), 0.5, 0.5)
        kept_ids = {m.id for m in context.episodic_memories}
        kept_scores = [s.score for s in all_episodic if s.id in kept_ids]
        dropped_scores = [s.score for s in all_episodic if s.id not in kept_ids]
        if kept_scores and dropped_scores:
            assert min(kept_scores) >= max(dropped_scores)

        all_semantic = await semantic_store.search_text("U1", "python programming language", threshold=0.0, limit=100)
        kept_ids = {m.id for m in context.semantic_memories}
        kept_scores = [s.score for s in all_semantic if s.id in kept_ids]
        dropped_scores = [s.score for s in all_semantic if s.id not in kept_ids]
        if kept_scores and dropped_scores:
            assert min(kept_scores) >= max(dropped_scores)

    @pytest.mark.asyncio
    async def test_both_kinds_get_a_slot(self, assembler, episodic_store, semantic_store):
        await seed(episodic_store, semantic_store)

        context = await assembler.build_context("U1", "S1", "python", ContextOptions(max_results=2, similarity_threshold=0.0))

        assert len(context.episodic_memories) == 1
        assert len(context.semantic_memories) == 1

    @pytest.mark.asyncio
    async def test_equal_candidate_pools_split_evenly(self, assembler, episodic_store, semantic_store):
        for i in range(30):
            await add_episode(episodic_store, f"User: note {i} about python", minutes=i)
            await semantic_store.upsert(SemanticMemoryRecord(user_id="U1", concept=f"python fact {i}", description="python"))

        context = await assembler.build_context("U1", "S1", "python", ContextOptions(max_results=10, similarity_threshold=0.0))

        assert len(context.episodic_memories) == 5
        assert len(context.semantic_memories) == 5

    @pytest.mark.asyncio
    async def test_sequences_sorted_by_score(self, assembler, episodic_store, semantic_store):
        await seed(episodic_store, semantic_store)

        context = await assembler.build_context("U1", "S1", "python", ContextOptions(similarity_threshold=0.0))

        episodic_scores = [context.score_of(m.id) for m in context.episodic_memories]
        semantic_scores = [context.score_of(m.id) for m in context.semantic_memories]
        assert episodic_scores == sorted(episodic_scores, reverse=True)
        assert semantic_scores == sorted(semantic_scores, reverse=True)

    @pytest.mark.asyncio
    async def test_user_scoping(self, assembler, episodic_store, semantic_store):
        await seed(episodic_store, semantic_store)
        await add_episode(episodic_store, "someone else", user_id="U2")
        await add_episode(episodic_store, "other session", session_id="S2")

        context = await assembler.build_context("U1", "S1", "python", ContextOptions(similarity_threshold=0.0))

        assert all(m.user_id == "U1" and m.session_id == "S1" for m in context.episodic_memories)
        assert all(m.user_id == "U1" for m in context.semantic_memories)
        assert "secret" not in [m.description for m in context.semantic_memories]

    @pytest.mark.asyncio
    async def test_idempotent(self, assembler, episodic_store, semantic_store):
        await seed(episodic_store, semantic_store)
        options = ContextOptions(max_results=5, similarity_threshold=0.0)

        first = await assembler.build_context("U1", "S1", "python language", options)
        second = await assembler.build_context("U1", "S1", "python language", options)

        assert [m.id for m in first.episodic_memories] == [m.id for m in second.episodic_memories]
        assert [m.id for m in first.semantic_memories] == [m.id for m in second.semantic_memories]
        assert first.context_window.relevance_score == second.context_window.relevance_score

    @pytest.mark.asyncio
    async def test_context_window(self, assembler, episodic_store):
        for minute in (5, 1, 3):
            await add_episode(episodic_store, f"note {minute}", minutes=minute)

        context = await assembler.build_context("U1", "S1", "anything")

        window = context.context_window
        assert window.start_time == BASE_TIME.replace(minute=1)
        assert window.end_time >= window.start_time
        scores = [context.score_of(m.id) for m in context.episodic_memories]
        assert window.relevance_score == pytest.approx(sum(scores) / len(scores), abs=1e-6)
        assert window.degraded is False

    @pytest.mark.asyncio
    async def test_empty_stores(self, assembler):
        context = await assembler.build_context("U1", "S1", "anything")
        assert context.is_empty()
        assert context.degraded is False
        assert context.context_window.relevance_score == 0.0

    @pytest.mark.asyncio
    async def test_zero_max_results(self, assembler, episodic_store):
        await add_episode(episodic_store, "something")
        context = await assembler.build_context("U1", "S1", "something", ContextOptions(max_results=0))
        assert context.is_empty()

    @pytest.mark.asyncio
    async def test_pinned_record_survives_truncation(self, assembler, episodic_store):
        pinned = await add_episode(episodic_store, "pinned", minutes=0, importance=0.0)
        for minute in range(1, 6):
            await add_episode(episodic_store, f"newer {minute}", minutes=minute, importance=1.0)

        options = ContextOptions(max_results=2, pin_record_id=pinned.id)
        context = await assembler.build_context("U1", "S1", "x", options)

        assert pinned.id in [m.id for m in context.episodic_memories]
        assert context.total <= 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [
        ContextOptions(max_results=-1),
        ContextOptions(similarity_threshold=1.5),
        ContextOptions(recency_weight=0.0, importance_weight=0.0),
    ])
    async def test_invalid_options(self, assembler, options):
        with pytest.raises(ValidationError):
            await assembler.build_context("U1", "S1", "q", options)


# ═══════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════


class TestFailures:

    @pytest.mark.asyncio
    async def test_semantic_failure_keeps_episodic(self, episodic_store, memory_settings):
        await add_episode(episodic_store, "User: I like Python", minutes=0)
        await add_episode(episodic_store, "User: Python is great", minutes=1)
        assembler = MemoryContextAssembler(episodic_store, FailingSemanticStore(), memory_settings)

        context = await assembler.build_context("U1", "S1", "What do I like?")

        assert len(context.episodic_memories) == 2
        assert context.semantic_memories == []
        assert context.degraded is True
        assert context.failures == ["semantic"]

    @pytest.mark.asyncio
    async def test_episodic_failure_keeps_semantic(self, semantic_store, memory_settings):
        await semantic_store.upsert(SemanticMemoryRecord(user_id="U1", concept="python", description="liked"))
        assembler = MemoryContextAssembler(FailingEpisodicStore(), semantic_store, memory_settings)

        context = await assembler.build_context("U1", "S1", "python", ContextOptions(similarity_threshold=0.0))

        assert len(context.semantic_memories) == 1
        assert context.failures == ["episodic"]

    @pytest.mark.asyncio
    async def test_total_failure_is_empty_not_error(self, memory_settings):
        assembler = MemoryContextAssembler(FailingEpisodicStore(), FailingSemanticStore(), memory_settings)

        context = await assembler.build_context("U1", "S1", "anything")

        assert context.is_empty()
        assert context.degraded is True
        assert sorted(context.failures) == ["episodic", "semantic"]

    @pytest.mark.asyncio
    async def test_lookup_timeout(self, semantic_store, memory_settings):
        assembler = MemoryContextAssembler(SlowEpisodicStore(), semantic_store, memory_settings)

        context = await assembler.build_context("U1", "S1", "anything", ContextOptions(timeout=0.05))

        assert context.failures == ["episodic"]
