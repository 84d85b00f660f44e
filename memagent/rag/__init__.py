"""
Vector Retrieval
================

The building blocks semantic memory is searched with:

- embeddings.py: turn text into vectors (OpenAI embeddings, cached)
- vectorstore.py: store vectors and search them by cosine similarity

How a semantic lookup works:
1. On write: the record's "concept: description" text is embedded and stored
2. On search: the query is embedded and the closest vectors are returned
3. Only hits above the similarity threshold reach the memory context
"""

from memagent.rag.embeddings import EmbeddingFunction, EmbeddingGenerator
from memagent.rag.vectorstore import DimensionMismatchError, VectorDocument, VectorStore

__all__ = [
    "DimensionMismatchError",
    "EmbeddingFunction",
    "EmbeddingGenerator",
    "VectorDocument",
    "VectorStore",
]
