"""Query-time retrieval scoped to one session."""

from __future__ import annotations

import logging

from chat_agent.config import RetrievalConfig
from chat_agent.ingest.embedder import Embedder
from chat_agent.retrieval.vector_store import VectorIndex
from chat_agent.types import ScoredChunk

logger = logging.getLogger(__name__)


class SessionRetriever:
    """Embeds a query and looks it up in the session's partition of the index."""

    def __init__(
        self,
        vector_index: VectorIndex,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.vector_index = vector_index
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def has_documents(self, session_id: str | None) -> bool:
        return session_id is not None and self.vector_index.count(session_id) > 0

    def retrieve(
        self,
        session_id: str,
        query: str,
        *,
        top_k: int | None = None,
    ) -> list[ScoredChunk]:
        # Skip the embedding call entirely for sessions with nothing indexed.
        if not self.has_documents(session_id):
            return []
        query_embedding = self.embedder.embed_query(query)
        hits = self.vector_index.query(session_id, query_embedding, top_k or self.config.top_k)
        logger.debug("Retrieved %d chunks for session %s", len(hits), session_id)
        return hits
