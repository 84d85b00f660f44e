"""
Embedding Function
==================

Maps text to a fixed-size vector for the semantic memory store.

The vector size is fixed per deployment: every vector written to the
semantic store and every query vector must come from the same model, or
similarity search is meaningless. SemanticStore checks dimensions on
write and on search.

Repeated texts (the same query asked twice in a session, re-upserted
concepts) are served from an in-process cache keyed by a hash of the text.
"""

import hashlib
from typing import Protocol, Sequence

from openai import AsyncOpenAI

from memagent.utils.logger import Logger

logger = Logger("Embeddings")

# Known output sizes of OpenAI embedding models
MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class EmbeddingFunction(Protocol):
    """The capability the semantic store requires: text in, vector out."""

    dimension: int

    async def embed(self, text: str) -> list[float]:
        ...


class EmbeddingGenerator:
    """
    OpenAI-backed embedding function with caching.

    Example:
        embedder = EmbeddingGenerator(api_key="sk-...", model="text-embedding-3-small")

        vector = await embedder.embed("I like Python")
        vectors = await embedder.embed_batch(["first", "second"])
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None
    ):
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.dimension = MODEL_DIMENSIONS.get(model, 1536)

        # Key: md5 of text, Value: embedding vector
        self._cache: dict[str, list[float]] = {}

        logger.info(f"Embedding generator initialized with model: {model} (dim={self.dimension})")

    def _hash_text(self, text: str) -> str:
        return hashlib.md5(text.encode()).hexdigest()

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: The text to embed

        Returns:
            Vector embedding as a list of floats
        """
        cache_key = self._hash_text(text)
        if cache_key in self._cache:
            logger.debug("Embedding cache hit")
            return self._cache[cache_key]

        response = await self.client.embeddings.create(model=self.model, input=text)
        embedding = list(response.data[0].embedding)

        self._cache[cache_key] = embedding
        logger.debug(f"Generated embedding (dim={len(embedding)})")
        return embedding

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed several texts with one API call for the uncached ones.

        Returns:
            Vectors in the same order as the input texts
        """
        if not texts:
            return []

        results: list[list[float] | None] = []
        pending: list[tuple[int, str]] = []

        for i, text in enumerate(texts):
            cached = self._cache.get(self._hash_text(text))
            results.append(cached)
            if cached is None:
                pending.append((i, text))

        if pending:
            logger.debug(f"Generating {len(pending)} embeddings (batch)")
            response = await self.client.embeddings.create(
                model=self.model,
                input=[text for _, text in pending]
            )
            for (index, text), item in zip(pending, response.data):
                embedding = list(item.embedding)
                results[index] = embedding
                self._cache[self._hash_text(text)] = embedding

        return [r for r in results if r is not None]

    def get_cache_size(self) -> int:
        return len(self._cache)
