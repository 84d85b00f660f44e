"""Tests for the episodic and semantic stores and the memory facade.

Coverage:
- Episodic: ordering, session links, filters, keyword search, ownership, persistence
- Semantic: embedding on upsert, user scoping, access tracking, dimension checks
- EmbeddingGenerator caching against a stubbed OpenAI client
- MemoryManager write path
"""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from memagent.memory import MemoryManager
from memagent.memory.episodic import EpisodicStore
from memagent.memory.models import EpisodicMemoryRecord, SemanticMemoryRecord
from memagent.memory.semantic import SemanticStore
from memagent.rag.embeddings import EmbeddingGenerator
from memagent.rag.vectorstore import DimensionMismatchError, VectorStore
from tests.conftest import BASE_TIME, FakeEmbedder, add_episode


# ═══════════════════════════════════════════════════════════════════
# Episodic
# ═══════════════════════════════════════════════════════════════════


class TestEpisodicStore:

    @pytest.mark.asyncio
    async def test_newest_first_with_links(self, episodic_store):
        first = await add_episode(episodic_store, "first", minutes=0)
        second = await add_episode(episodic_store, "second", minutes=1)

        records = await episodic_store.query("U1", "S1")

        assert [r.content for r in records] == ["second", "first"]
        assert first.relationships.next == second.id
        assert second.relationships.previous == first.id

    @pytest.mark.asyncio
    async def test_filters(self, episodic_store):
        await add_episode(episodic_store, "talked about Python", minutes=0, tags=["code"])
        await add_episode(episodic_store, "talked about tea", minutes=5)
        await add_episode(episodic_store, "other session", session_id="S2")

        assert len(await episodic_store.query("U1", "S1")) == 2
        assert len(await episodic_store.query("U1", None)) == 3
        assert [r.content for r in await episodic_store.query("U1", "S1", text="python")] == ["talked about Python"]
        assert len(await episodic_store.query("U1", "S1", tags=["code"])) == 1
        assert len(await episodic_store.query("U1", "S1", since=BASE_TIME + timedelta(minutes=1))) == 1
        assert len(await episodic_store.query("U1", "S1", limit=1)) == 1
        assert await episodic_store.query("U2", "S1") == []

    @pytest.mark.asyncio
    async def test_keyword_search_scores(self, episodic_store):
        await add_episode(episodic_store, "python and rust", minutes=0)
        await add_episode(episodic_store, "only python", minutes=1)

        hits = await episodic_store.search("U1", "python rust")

        assert [h.record.content for h in hits] == ["python and rust", "only python"]
        assert [h.score for h in hits] == [1.0, 0.5]

    @pytest.mark.asyncio
    async def test_update_and_ownership(self, episodic_store):
        record = await add_episode(episodic_store, "draft")

        updated = await episodic_store.update(record.id, "U1", content="final", importance=3, tags=["b", "a", "b"])
        assert updated.content == "final"
        assert updated.metadata.importance == 1.0
        assert updated.metadata.tags == ["a", "b"]

        with pytest.raises(PermissionError):
            await episodic_store.update(record.id, "U2", content="hijack")
        with pytest.raises(KeyError):
            await episodic_store.update("missing", "U1")

    @pytest.mark.asyncio
    async def test_delete_relinks_neighbours(self, episodic_store):
        a = await add_episode(episodic_store, "a", minutes=0)
        b = await add_episode(episodic_store, "b", minutes=1)
        c = await add_episode(episodic_store, "c", minutes=2)

        assert await episodic_store.delete(b.id, "U1") is True
        assert a.relationships.next == c.id
        assert c.relationships.previous == a.id
        assert await episodic_store.delete(b.id, "U1") is False

    @pytest.mark.asyncio
    async def test_stats_and_clear(self, episodic_store):
        await add_episode(episodic_store, "a")
        await add_episode(episodic_store, "b", session_id="S2")

        stats = await episodic_store.stats("U1")
        assert stats["count"] == 2
        assert stats["sessions"] == 2

        assert await episodic_store.clear_user("U1") == 2
        assert (await episodic_store.stats("U1"))["count"] == 0

    @pytest.mark.asyncio
    async def test_persistence(self, tmp_path):
        store = EpisodicStore(tmp_path)
        record = await add_episode(store, "remember me", importance=0.9, tags=["note"])

        reloaded = EpisodicStore(tmp_path)
        loaded = await reloaded.get(record.id)

        assert loaded.content == "remember me"
        assert loaded.timestamp == record.timestamp
        assert loaded.metadata.importance == 0.9
        assert loaded.metadata.tags == ["note"]

    def test_importance_clamped(self):
        record = EpisodicMemoryRecord.from_dict({
            "userId": "U1",
            "sessionId": "S1",
            "content": "x",
            "timestamp": BASE_TIME.isoformat(),
            "metadata": {"importance": 7},
        })
        assert record.metadata.importance == 1.0


# ═══════════════════════════════════════════════════════════════════
# Semantic
# ═══════════════════════════════════════════════════════════════════


class TestSemanticStore:

    @pytest.mark.asyncio
    async def test_upsert_embeds_record(self, semantic_store, embedder):
        record = await semantic_store.upsert(SemanticMemoryRecord("U1", "python", "a language"))

        assert record.id
        assert len(record.vector) == embedder.dimension
        assert embedder.calls == 1

    @pytest.mark.asyncio
    async def test_search_is_scoped_and_thresholded(self, semantic_store):
        await semantic_store.upsert(SemanticMemoryRecord("U1", "python", "programming language"))
        await semantic_store.upsert(SemanticMemoryRecord("U1", "coffee", "morning drink"))
        await semantic_store.upsert(SemanticMemoryRecord("U2", "python", "programming language"))

        hits = await semantic_store.search_text("U1", "python programming language", threshold=0.5)

        assert [h.record.concept for h in hits] == ["python"]
        assert hits[0].record.user_id == "U1"
        assert 0.5 <= hits[0].score <= 1.0

    @pytest.mark.asyncio
    async def test_search_counts_access(self, semantic_store):
        record = await semantic_store.upsert(SemanticMemoryRecord("U1", "python", "language"))

        await semantic_store.search_text("U1", "python language", threshold=0.1)
        await semantic_store.search_text("U1", "python language", threshold=0.1)

        stored = await semantic_store.get(record.id)
        assert stored.metadata.access_count == 2
        assert stored.metadata.last_accessed is not None

    @pytest.mark.asyncio
    async def test_dimension_checks(self, semantic_store, embedder):
        with pytest.raises(DimensionMismatchError):
            await semantic_store.upsert(SemanticMemoryRecord("U1", "x", "y", vector=[1.0, 2.0]))
        with pytest.raises(DimensionMismatchError):
            await semantic_store.search("U1", [1.0, 2.0])
        with pytest.raises(DimensionMismatchError):
            SemanticStore(embedder, VectorStore(dimension=embedder.dimension + 1))

    @pytest.mark.asyncio
    async def test_delete_ownership(self, semantic_store):
        record = await semantic_store.upsert(SemanticMemoryRecord("U1", "x", "y"))

        with pytest.raises(PermissionError):
            await semantic_store.delete(record.id, "U2")
        assert await semantic_store.delete(record.id, "U1") is True
        assert await semantic_store.delete(record.id, "U1") is False


# ═══════════════════════════════════════════════════════════════════
# Embeddings
# ═══════════════════════════════════════════════════════════════════


class StubEmbeddingsAPI:
    def __init__(self):
        self.requests = []

    async def create(self, model, input):
        self.requests.append(input)
        texts = input if isinstance(input, list) else [input]
        return SimpleNamespace(data=[SimpleNamespace(embedding=[float(len(t)), 1.0]) for t in texts])


class TestEmbeddingGenerator:

    @pytest.mark.asyncio
    async def test_cache(self):
        api = StubEmbeddingsAPI()
        generator = EmbeddingGenerator(api_key="unused", client=SimpleNamespace(embeddings=api))

        assert await generator.embed("abc") == [3.0, 1.0]
        assert await generator.embed("abc") == [3.0, 1.0]

        assert api.requests == ["abc"]
        assert generator.get_cache_size() == 1
        assert generator.dimension == 1536

    @pytest.mark.asyncio
    async def test_batch_only_requests_uncached(self):
        api = StubEmbeddingsAPI()
        generator = EmbeddingGenerator(api_key="unused", client=SimpleNamespace(embeddings=api))
        await generator.embed("a")

        vectors = await generator.embed_batch(["a", "bb", "ccc"])

        assert vectors == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]
        assert api.requests == ["a", ["bb", "ccc"]]


# ═══════════════════════════════════════════════════════════════════
# Facade
# ═══════════════════════════════════════════════════════════════════


class TestMemoryManager:

    @pytest.mark.asyncio
    async def test_record_interaction(self, memory, episodic_store, semantic_store):
        result = await memory.record_interaction(
            "U1", "S1", "What is Python?", "A language.", intent_type="knowledge_search", confidence=0.8
        )

        assert result.ok is True
        assert result.value.content == "User: What is Python?\nAssistant: A language."
        assert result.value.context["intent"] == "knowledge_search"
        assert len(episodic_store) == 1
        assert (await semantic_store.stats("U1"))["categories"] == {"knowledge_search": 1}

    @pytest.mark.asyncio
    async def test_conversation_not_stored_as_fact(self, memory, semantic_store):
        await memory.record_interaction("U1", "S1", "Hi", "Hello!", intent_type="conversation", confidence=0.9)
        assert (await semantic_store.stats("U1"))["count"] == 0

    @pytest.mark.asyncio
    async def test_add_knowledge_then_recall(self, memory):
        await memory.add_knowledge("U1", "favourite language", "Python")

        context = await memory.build_context("U1", "S1", "favourite language")

        assert [m.description for m in context.semantic_memories] == ["Python"]

    @pytest.mark.asyncio
    async def test_stats_and_clear(self, memory):
        await memory.add_knowledge("U1", "a", "b")
        await memory.record_interaction("U1", "S1", "q", "a", intent_type="conversation", confidence=0.5)

        stats = await memory.stats("U1")
        assert stats["episodic"]["count"] == 1
        assert stats["semantic"]["count"] == 1

        assert await memory.clear_user("U1") == {"episodic": 1, "semantic": 1}

    def test_from_config_in_memory(self, memory_settings):
        manager = MemoryManager.from_config(FakeEmbedder(), memory_settings)
        assert manager.episodic.storage_path is None
        assert manager.semantic.vector_store.storage_path is None
