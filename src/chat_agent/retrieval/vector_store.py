"""Session-scoped vector index contract and in-memory implementation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Literal, Protocol

from chat_agent.types import DocumentChunk, ScoredChunk

logger = logging.getLogger(__name__)

Metric = Literal["cosine", "inner_product"]


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """A (vector, chunk, metadata) triple; the vector is the chunk's embedding."""

    chunk: DocumentChunk
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def vector(self) -> tuple[float, ...]:
        return self.chunk.embedding

    @property
    def key(self) -> tuple[str, int]:
        return (self.chunk.source_filename, self.chunk.ordinal)


class VectorIndex(Protocol):
    """Minimal per-session vector index contract."""

    def insert(self, session_id: str, entries: list[IndexEntry]) -> int:
        """Add entries; already-present (filename, ordinal) keys are skipped."""

    def query(self, session_id: str, query_vector: list[float], top_k: int) -> list[ScoredChunk]:
        """Return up to `top_k` entries of this session, best first."""

    def count(self, session_id: str) -> int:
        """Number of entries stored for the session."""

    def discard(self, session_id: str) -> bool:
        """Drop every entry of the session."""


@dataclass(slots=True)
class _StoredVector:
    entry: IndexEntry
    sequence: int
    norm: float


@dataclass(slots=True)
class _Partition:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: dict[tuple[str, int], _StoredVector] = field(default_factory=dict)
    dimension: int | None = None
    next_sequence: int = 0


class InMemoryVectorIndex:
    """Exact nearest-neighbour index, one partition per session.

    The metric is fixed at construction and used for every query, so insert
    and query time always agree on distance. Equal scores rank by ingestion
    order.
    """

    def __init__(self, metric: Metric = "cosine") -> None:
        if metric not in ("cosine", "inner_product"):
            raise ValueError(f"Unsupported metric: {metric}")
        self.metric = metric
        self._partitions: dict[str, _Partition] = {}
        self._registry_lock = threading.Lock()

    def insert(self, session_id: str, entries: list[IndexEntry]) -> int:
        partition = self._partition(session_id, create=True)
        assert partition is not None
        inserted = 0
        with partition.lock:
            for entry in entries:
                if entry.chunk.session_id != session_id:
                    raise ValueError(
                        f"entry for session {entry.chunk.session_id!r} "
                        f"cannot be inserted into {session_id!r}"
                    )
                if entry.key in partition.records:
                    continue
                dimension = len(entry.vector)
                if partition.dimension is None:
                    partition.dimension = dimension
                elif dimension != partition.dimension:
                    raise ValueError(
                        f"vector dimension {dimension} does not match index dimension "
                        f"{partition.dimension}"
                    )
                partition.records[entry.key] = _StoredVector(
                    entry=entry,
                    sequence=partition.next_sequence,
                    norm=_norm(entry.vector),
                )
                partition.next_sequence += 1
                inserted += 1
        logger.debug("Inserted %d/%d entries into session %s", inserted, len(entries), session_id)
        return inserted

    def query(self, session_id: str, query_vector: list[float], top_k: int) -> list[ScoredChunk]:
        partition = self._partition(session_id, create=False)
        if partition is None or top_k <= 0:
            return []
        with partition.lock:
            records = list(partition.records.values())
            dimension = partition.dimension
        if not records:
            return []
        if dimension is not None and len(query_vector) != dimension:
            raise ValueError(
                f"query dimension {len(query_vector)} does not match index dimension {dimension}"
            )

        query_norm = _norm(query_vector)
        scored = [
            (self._score(query_vector, query_norm, record), record.sequence, record)
            for record in records
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            ScoredChunk(chunk=record.entry.chunk, score=score, rank=i + 1)
            for i, (score, _, record) in enumerate(scored[:top_k])
        ]

    def count(self, session_id: str) -> int:
        partition = self._partition(session_id, create=False)
        if partition is None:
            return 0
        with partition.lock:
            return len(partition.records)

    def discard(self, session_id: str) -> bool:
        with self._registry_lock:
            return self._partitions.pop(session_id, None) is not None

    def _score(self, query_vector: list[float], query_norm: float, record: _StoredVector) -> float:
        dot = sum(x * y for x, y in zip(query_vector, record.entry.vector, strict=True))
        if self.metric == "inner_product":
            return dot
        if query_norm == 0 or record.norm == 0:
            return 0.0
        return dot / (query_norm * record.norm)

    def _partition(self, session_id: str, *, create: bool) -> _Partition | None:
        with self._registry_lock:
            partition = self._partitions.get(session_id)
            if partition is None and create:
                partition = _Partition()
                self._partitions[session_id] = partition
            return partition


def _norm(vector: tuple[float, ...] | list[float]) -> float:
    return sqrt(sum(value * value for value in vector))
