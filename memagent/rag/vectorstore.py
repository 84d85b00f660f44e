"""
Vector Store
============

A numpy-backed vector index with optional file persistence. It is the
similarity engine underneath the semantic memory store.

Search computes cosine similarity between the query vector and every
stored vector, applies metadata filters, drops hits under the threshold,
and returns the best `top_k` with their scores:

    cos(A, B) = (A · B) / (||A|| * ||B||)

Negative similarities are clamped to 0 so that scores are always in
[0, 1] for the callers that rank on them.

Persistence (when a storage path is given):
    documents.json  - ids, payloads and metadata, in insertion order
    embeddings.npy  - the matching vectors as one float32 matrix
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from memagent.utils.logger import Logger

logger = Logger("VectorStore")


@dataclass
class VectorDocument:
    """
    One indexed vector.

    Attributes:
        id: Unique identifier
        embedding: The vector
        payload: Arbitrary JSON-serializable data stored alongside
        metadata: Filterable key/value pairs (e.g. {"user_id": "U1"})
    """
    id: str
    embedding: list[float]
    payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "payload": self.payload, "metadata": self.metadata}


class DimensionMismatchError(ValueError):
    """A vector does not have the index's fixed dimensionality."""


class VectorStore:
    """
    Cosine-similarity index over VectorDocuments.

    Example:
        store = VectorStore(dimension=3)
        store.upsert(VectorDocument(id="a", embedding=[1, 0, 0], metadata={"user_id": "U1"}))

        hits = store.search([0.9, 0.1, 0], top_k=5, threshold=0.5,
                            filter_metadata={"user_id": "U1"})
        for doc, score in hits:
            print(doc.id, score)
    """

    def __init__(self, dimension: int | None = None, storage_path: Path | None = None):
        """
        Args:
            dimension: Fixed vector size; inferred from the first insert when None
            storage_path: Directory for persistence; None keeps everything in memory
        """
        self.dimension = dimension
        self.storage_path = storage_path

        self._documents: dict[str, VectorDocument] = {}
        self._matrix: np.ndarray | None = None
        self._matrix_ids: list[str] = []

        if storage_path is not None:
            storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

        logger.info(f"Vector store initialized with {len(self._documents)} documents")

    @property
    def _documents_file(self) -> Path:
        return self.storage_path / "documents.json"

    @property
    def _embeddings_file(self) -> Path:
        return self.storage_path / "embeddings.npy"

    def _load(self) -> None:
        if not self._documents_file.exists():
            return

        with open(self._documents_file) as f:
            docs_data = json.load(f)

        embeddings = np.load(self._embeddings_file) if self._embeddings_file.exists() else None
        if embeddings is None or len(embeddings) != len(docs_data):
            logger.warning("Embeddings file missing or out of sync, starting with an empty index")
            return

        for row, doc_data in zip(embeddings, docs_data):
            self._documents[doc_data["id"]] = VectorDocument(
                id=doc_data["id"],
                embedding=row.tolist(),
                payload=doc_data.get("payload", {}),
                metadata=doc_data.get("metadata", {}),
            )

        if self._documents and self.dimension is None:
            self.dimension = int(embeddings.shape[1])

        logger.debug(f"Loaded {len(self._documents)} documents from disk")

    def _save(self) -> None:
        if self.storage_path is None:
            return

        docs = list(self._documents.values())
        with open(self._documents_file, "w") as f:
            json.dump([doc.to_dict() for doc in docs], f, default=str)

        if docs:
            np.save(self._embeddings_file, np.array([doc.embedding for doc in docs], dtype=np.float32))
        elif self._embeddings_file.exists():
            self._embeddings_file.unlink()

    def _check_dimension(self, vector: list[float]) -> None:
        if self.dimension is None:
            self.dimension = len(vector)
        elif len(vector) != self.dimension:
            raise DimensionMismatchError(
                f"Expected vectors of dimension {self.dimension}, got {len(vector)}"
            )

    def _ensure_matrix(self) -> None:
        """Rebuild the search matrix after writes."""
        if self._matrix is not None:
            return
        self._matrix_ids = list(self._documents.keys())
        if self._matrix_ids:
            self._matrix = np.array(
                [self._documents[i].embedding for i in self._matrix_ids],
                dtype=np.float64
            )
        else:
            self._matrix = np.zeros((0, self.dimension or 0))

    def upsert(self, document: VectorDocument) -> None:
        """Insert or replace a document."""
        self._check_dimension(document.embedding)
        self._documents[document.id] = document
        self._matrix = None
        self._save()

    def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        threshold: float = 0.0,
        filter_metadata: dict[str, Any] | None = None
    ) -> list[tuple[VectorDocument, float]]:
        """
        Find the documents most similar to the query vector.

        Args:
            query_vector: The query embedding
            top_k: Maximum number of hits
            threshold: Minimum similarity (inclusive)
            filter_metadata: Exact-match metadata filters; None values are ignored

        Returns:
            (document, similarity) pairs, best first; ties broken by id
        """
        if not self._documents or top_k <= 0:
            return []

        self._check_dimension(query_vector)
        self._ensure_matrix()

        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        doc_norms = np.linalg.norm(self._matrix, axis=1)
        doc_norms = np.where(doc_norms == 0, 1, doc_norms)
        similarities = np.clip(self._matrix @ query / (doc_norms * query_norm), 0.0, 1.0)

        filters = {k: v for k, v in (filter_metadata or {}).items() if v is not None}

        hits: list[tuple[VectorDocument, float]] = []
        for doc_id, similarity in zip(self._matrix_ids, similarities):
            score = float(similarity)
            if score < threshold:
                continue
            doc = self._documents[doc_id]
            if any(doc.metadata.get(k) != v for k, v in filters.items()):
                continue
            hits.append((doc, score))

        hits.sort(key=lambda hit: (-hit[1], hit[0].id))
        return hits[:top_k]

    def get(self, doc_id: str) -> VectorDocument | None:
        return self._documents.get(doc_id)

    def delete(self, doc_id: str) -> bool:
        if doc_id not in self._documents:
            return False
        del self._documents[doc_id]
        self._matrix = None
        self._save()
        return True

    def delete_where(self, **metadata: Any) -> int:
        """Delete every document whose metadata matches all given pairs."""
        doomed = [
            doc_id for doc_id, doc in self._documents.items()
            if all(doc.metadata.get(k) == v for k, v in metadata.items())
        ]
        for doc_id in doomed:
            del self._documents[doc_id]
        if doomed:
            self._matrix = None
            self._save()
        return len(doomed)

    def documents(self) -> list[VectorDocument]:
        return list(self._documents.values())

    def clear(self) -> None:
        self._documents.clear()
        self._matrix = None
        self._save()
        logger.info("Vector store cleared")

    def __len__(self) -> int:
        return len(self._documents)
