"""Embedding abstractions, a deterministic baseline and a LangChain adapter."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from hashlib import blake2b
from math import log, sqrt
from typing import Any

from chat_agent.errors import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents, one vector per input, in input order."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Feature-hashed bag of words, L2-normalised.

    Needs no network or model weights, so it backs offline deployments and
    the test suite. Production deployments use `LangChainEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 1:
            raise ConfigurationError(f"dimension must be positive, got {dimension}")
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        counts = Counter(token.lower() for token in _WORD_PATTERN.findall(text))
        vector = [0.0] * self.dimension
        for token, count in counts.items():
            bucket, sign = self._bucket(token)
            # Sublinear tf: 1 + ln(count).
            vector[bucket] += sign * (1.0 + log(count))

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = blake2b(token.encode("utf-8"), digest_size=8, person=b"chat-agent").digest()
        value = int.from_bytes(digest, "little")
        return value % self.dimension, (1.0 if value >> 63 else -1.0)


class LangChainEmbedder(Embedder):
    """Adapts any `langchain_core.embeddings.Embeddings` to this interface.

    Provider failures (quota, network, auth) and malformed output surface as
    `EmbeddingError`. No fallback vectors are ever synthesized.
    """

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = self._embeddings.embed_documents(list(texts))
        except Exception as exc:
            logger.warning("Embedding batch of %d texts failed: %s", len(texts), exc)
            raise EmbeddingError(f"embedding request failed: {exc}") from exc
        return _check_vectors(vectors, expected=len(texts))

    def embed_query(self, text: str) -> list[float]:
        try:
            vector = self._embeddings.embed_query(text)
        except Exception as exc:
            logger.warning("Query embedding failed: %s", exc)
            raise EmbeddingError(f"embedding request failed: {exc}") from exc
        return _check_vectors([vector], expected=1)[0]


def _check_vectors(vectors: Any, *, expected: int) -> list[list[float]]:
    rows = [list(map(float, vector)) for vector in vectors]
    if len(rows) != expected:
        raise EmbeddingError(f"expected {expected} vectors, got {len(rows)}")
    dimensions = {len(row) for row in rows}
    if len(dimensions) > 1 or 0 in dimensions:
        raise EmbeddingError(f"embedding vectors have inconsistent length: {sorted(dimensions)}")
    return rows
