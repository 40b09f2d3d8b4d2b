from math import isclose, sqrt

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from chat_agent.errors import EmbeddingError
from chat_agent.ingest.embedder import HashingEmbedder, LangChainEmbedder


class _QuotaExceededEmbeddings(Embeddings):
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("quota exceeded")

    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("quota exceeded")


class _ShortEmbeddings(Embeddings):
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[1.0, 0.0]]

    def embed_query(self, text: str) -> list[float]:
        return [1.0, 0.0]


def test_hashing_embedder_is_deterministic_and_ordered() -> None:
    embedder = HashingEmbedder(dimension=64)
    texts = ["The sky is blue.", "Grass is green.", "The sky is blue."]

    vectors = embedder.embed_documents(texts)

    assert len(vectors) == 3
    assert all(len(vector) == 64 for vector in vectors)
    assert vectors[0] == vectors[2]
    assert vectors[0] != vectors[1]
    assert isclose(sqrt(sum(v * v for v in vectors[1])), 1.0)
    assert embedder.embed_query("Grass is green.") == vectors[1]


def test_hashing_embedder_ignores_punctuation_and_case() -> None:
    embedder = HashingEmbedder()

    assert embedder.embed_query("Grass?") == embedder.embed_query("grass")


def test_langchain_embedder_wraps_provider() -> None:
    embedder = LangChainEmbedder(DeterministicFakeEmbedding(size=16))

    vectors = embedder.embed_documents(["alpha", "beta"])

    assert [len(vector) for vector in vectors] == [16, 16]
    assert embedder.embed_documents(["alpha"])[0] == vectors[0]
    assert len(embedder.embed_query("alpha")) == 16


def test_provider_failure_surfaces_as_embedding_error() -> None:
    embedder = LangChainEmbedder(_QuotaExceededEmbeddings())

    with pytest.raises(EmbeddingError, match="quota exceeded"):
        embedder.embed_documents(["alpha"])
    with pytest.raises(EmbeddingError):
        embedder.embed_query("alpha")


def test_vector_count_mismatch_is_rejected() -> None:
    embedder = LangChainEmbedder(_ShortEmbeddings())

    with pytest.raises(EmbeddingError, match="expected 2 vectors"):
        embedder.embed_documents(["alpha", "beta"])
