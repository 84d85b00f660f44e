"""Tests for the numpy vector index.

Coverage:
- Cosine ranking, threshold, top_k, metadata filters
- Dimension checks
- Persistence round trip through documents.json / embeddings.npy
"""

from __future__ import annotations

import pytest

from memagent.rag.vectorstore import DimensionMismatchError, VectorDocument, VectorStore


@pytest.fixture
def store() -> VectorStore:
    store = VectorStore(dimension=3)
    store.upsert(VectorDocument("x", [1.0, 0.0, 0.0], metadata={"user_id": "U1"}))
    store.upsert(VectorDocument("xy", [1.0, 1.0, 0.0], metadata={"user_id": "U1"}))
    store.upsert(VectorDocument("y", [0.0, 1.0, 0.0], metadata={"user_id": "U2"}))
    store.upsert(VectorDocument("neg", [-1.0, 0.0, 0.0], metadata={"user_id": "U1"}))
    return store


class TestSearch:

    def test_ranked_by_similarity(self, store):
        hits = store.search([1.0, 0.0, 0.0])
        assert [doc.id for doc, _ in hits][:2] == ["x", "xy"]
        assert hits[0][1] == pytest.approx(1.0)
        assert hits[1][1] == pytest.approx(0.7071, abs=1e-4)

    def test_scores_clamped_to_unit_interval(self, store):
        scores = {doc.id: score for doc, score in store.search([1.0, 0.0, 0.0])}
        assert scores["neg"] == 0.0
        assert all(0.0 <= s <= 1.0 for s in scores.values())

    def test_threshold_and_top_k(self, store):
        assert [d.id for d, _ in store.search([1.0, 0.0, 0.0], threshold=0.5)] == ["x", "xy"]
        assert [d.id for d, _ in store.search([1.0, 0.0, 0.0], top_k=1)] == ["x"]
        assert store.search([1.0, 0.0, 0.0], top_k=0) == []

    def test_metadata_filter(self, store):
        hits = store.search([0.0, 1.0, 0.0], threshold=0.1, filter_metadata={"user_id": "U1"})
        assert [d.id for d, _ in hits] == ["xy"]

    def test_ties_broken_by_id(self):
        store = VectorStore(dimension=2)
        store.upsert(VectorDocument("b", [1.0, 0.0]))
        store.upsert(VectorDocument("a", [2.0, 0.0]))
        assert [d.id for d, _ in store.search([1.0, 0.0])] == ["a", "b"]

    def test_zero_query_vector(self, store):
        assert store.search([0.0, 0.0, 0.0]) == []

    def test_empty_store(self):
        assert VectorStore().search([1.0, 2.0]) == []


class TestWrites:

    def test_dimension_mismatch(self, store):
        with pytest.raises(DimensionMismatchError):
            store.upsert(VectorDocument("bad", [1.0, 2.0]))
        with pytest.raises(DimensionMismatchError):
            store.search([1.0, 2.0])

    def test_dimension_inferred(self):
        store = VectorStore()
        store.upsert(VectorDocument("a", [1.0, 2.0, 3.0, 4.0]))
        assert store.dimension == 4

    def test_upsert_replaces(self, store):
        store.upsert(VectorDocument("x", [0.0, 0.0, 1.0], metadata={"user_id": "U1"}))
        assert len(store) == 4
        assert store.search([0.0, 0.0, 1.0])[0][0].id == "x"

    def test_delete_where(self, store):
        assert store.delete_where(user_id="U1") == 3
        assert [d.id for d in store.documents()] == ["y"]
        assert store.delete("y") is True
        assert store.delete("y") is False


class TestPersistence:

    def test_round_trip(self, tmp_path):
        store = VectorStore(dimension=2, storage_path=tmp_path)
        store.upsert(VectorDocument("a", [1.0, 0.0], payload={"text": "alpha"}, metadata={"user_id": "U1"}))
        store.upsert(VectorDocument("b", [0.0, 1.0], payload={"text": "beta"}))

        reloaded = VectorStore(storage_path=tmp_path)

        assert len(reloaded) == 2
        assert reloaded.dimension == 2
        assert reloaded.get("a").payload == {"text": "alpha"}
        assert reloaded.search([1.0, 0.0])[0][0].id == "a"

    def test_clear_removes_embeddings_file(self, tmp_path):
        store = VectorStore(dimension=2, storage_path=tmp_path)
        store.upsert(VectorDocument("a", [1.0, 0.0]))
        store.clear()

        assert not (tmp_path / "embeddings.npy").exists()
        assert len(VectorStore(storage_path=tmp_path)) == 0
