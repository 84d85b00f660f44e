"""
Semantic Store
==============

Concept/fact records indexed by vector similarity, scoped by user.

The store pairs an EmbeddingFunction with a VectorStore:

    upsert(record)  - embeds `concept: description` when the record has no
                      vector yet, then indexes it under the user's id
    search(...)     - cosine search restricted to one user, with a
                      similarity threshold and a result limit

Every search hit counts as an access: `metadata.access_count` is
incremented and `metadata.last_accessed` set, and the change is written
back to the index.
"""

import asyncio
import uuid
from collections import Counter

from memagent.memory.models import ScoredRecord, SemanticMemoryRecord, utc_now
from memagent.rag.embeddings import EmbeddingFunction
from memagent.rag.vectorstore import DimensionMismatchError, VectorDocument, VectorStore
from memagent.utils.logger import Logger

logger = Logger("SemanticStore")


class SemanticStore:
    """
    Example:
        store = SemanticStore(embedder, VectorStore(dimension=embedder.dimension))

        await store.upsert(SemanticMemoryRecord(
            user_id="U1", concept="favourite language", description="Python"
        ))
        hits = await store.search_text("U1", "which language?", threshold=0.5, limit=5)
    """

    def __init__(self, embedder: EmbeddingFunction, vector_store: VectorStore):
        self.embedder = embedder
        self.vector_store = vector_store
        self._lock = asyncio.Lock()

        if vector_store.dimension is not None and vector_store.dimension != embedder.dimension:
            raise DimensionMismatchError(
                f"Vector store holds {vector_store.dimension}-d vectors but the "
                f"embedding function produces {embedder.dimension}-d vectors"
            )

    def _to_document(self, record: SemanticMemoryRecord) -> VectorDocument:
        return VectorDocument(
            id=record.id,
            embedding=list(record.vector),
            payload=record.to_dict(include_vector=False),
            metadata={"user_id": record.user_id, "category": record.metadata.category},
        )

    @staticmethod
    def _to_record(document: VectorDocument) -> SemanticMemoryRecord:
        return SemanticMemoryRecord.from_dict({**document.payload, "vector": document.embedding})

    async def upsert(self, record: SemanticMemoryRecord) -> SemanticMemoryRecord:
        """
        Insert or replace a record, embedding it first if needed.

        Raises:
            DimensionMismatchError: The vector does not match the embedding size
        """
        if not record.id:
            record.id = uuid.uuid4().hex
        if not record.vector:
            record.vector = await self.embedder.embed(record.text)
        if len(record.vector) != self.embedder.dimension:
            raise DimensionMismatchError(
                f"Expected a {self.embedder.dimension}-d vector, got {len(record.vector)}"
            )

        async with self._lock:
            self.vector_store.upsert(self._to_document(record))

        logger.debug(f"Upserted semantic record {record.id}", {"concept": record.concept})
        return record

    async def search(
        self,
        user_id: str,
        query_vector: list[float],
        threshold: float = 0.7,
        limit: int = 10
    ) -> list[ScoredRecord]:
        """
        Similarity search over one user's records.

        Returns:
            ScoredRecords best first, each score in [0, 1] and >= threshold
        """
        if len(query_vector) != self.embedder.dimension:
            raise DimensionMismatchError(
                f"Expected a {self.embedder.dimension}-d query vector, got {len(query_vector)}"
            )

        async with self._lock:
            hits = self.vector_store.search(
                query_vector,
                top_k=limit,
                threshold=threshold,
                filter_metadata={"user_id": user_id},
            )

            results: list[ScoredRecord] = []
            now = utc_now()
            for document, score in hits:
                record = self._to_record(document)
                record.metadata.access_count += 1
                record.metadata.last_accessed = now
                self.vector_store.upsert(self._to_document(record))
                results.append(ScoredRecord(record=record, score=score))

        return results

    async def search_text(
        self,
        user_id: str,
        text: str,
        threshold: float = 0.7,
        limit: int = 10
    ) -> list[ScoredRecord]:
        """Embed `text` and search with the resulting vector."""
        vector = await self.embedder.embed(text)
        return await self.search(user_id, vector, threshold=threshold, limit=limit)

    async def get(self, record_id: str) -> SemanticMemoryRecord | None:
        document = self.vector_store.get(record_id)
        return self._to_record(document) if document else None

    async def delete(self, record_id: str, user_id: str) -> bool:
        """Delete a record owned by `user_id`; False when it does not exist."""
        async with self._lock:
            document = self.vector_store.get(record_id)
            if document is None:
                return False
            if document.metadata.get("user_id") != user_id:
                raise PermissionError(f"Record {record_id} does not belong to {user_id}")
            return self.vector_store.delete(record_id)

    async def clear_user(self, user_id: str) -> int:
        async with self._lock:
            removed = self.vector_store.delete_where(user_id=user_id)
        logger.info(f"Cleared {removed} semantic records for {user_id}")
        return removed

    async def stats(self, user_id: str) -> dict:
        documents = [d for d in self.vector_store.documents() if d.metadata.get("user_id") == user_id]
        categories = Counter(d.metadata.get("category", "general") for d in documents)
        return {"count": len(documents), "categories": dict(categories)}
