"""End-to-end ingest pipeline: chunk -> embed -> insert."""

from __future__ import annotations

import logging

from chat_agent.errors import EmbeddingError, IngestionError
from chat_agent.ingest.chunker import TextChunker
from chat_agent.ingest.document_store import DocumentStore, UploadStatus
from chat_agent.ingest.embedder import Embedder
from chat_agent.retrieval.vector_store import IndexEntry, VectorIndex
from chat_agent.types import DocumentChunk

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Coordinates document store, chunker, embedder and vector index.

    Embedding runs outside any lock. The session write lock is taken only for
    the duplicate re-check, the document record and the in-memory insert, so
    two uploads to one session are serialised while uploads to different
    sessions proceed independently.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        chunker: TextChunker,
        embedder: Embedder,
        vector_index: VectorIndex,
    ) -> None:
        self._document_store = document_store
        self._chunker = chunker
        self._embedder = embedder
        self._vector_index = vector_index

    def ingest_text(self, session_id: str, filename: str, text: str) -> int:
        """Ingest one uploaded document and return the number of chunks inserted."""

        if not session_id:
            raise IngestionError("session_id is required")
        if not filename:
            raise IngestionError("filename is required")

        self._document_store.ensure_session(session_id)
        if not text.strip():
            logger.info("Skipping empty upload %s for session %s", filename, session_id)
            return 0

        status = self._document_store.check(session_id, filename, text)
        if status is UploadStatus.DUPLICATE:
            logger.info("Upload %s already ingested in session %s", filename, session_id)
            return 0
        if status is UploadStatus.CONFLICT:
            raise IngestionError(
                f"{filename!r} was already ingested with different content in session {session_id!r}"
            )

        texts = list(self._chunker.split(text))
        try:
            embeddings = self._embedder.embed_documents(texts)
        except EmbeddingError as exc:
            logger.error("Embedding failed for %s in session %s: %s", filename, session_id, exc)
            raise IngestionError(f"could not embed {filename!r}: {exc.message}") from exc

        entries = [
            IndexEntry(
                chunk=DocumentChunk(
                    chunk_id=f"{filename}-chunk-{ordinal:04d}",
                    session_id=session_id,
                    source_filename=filename,
                    text=chunk_text,
                    ordinal=ordinal,
                    embedding=tuple(embedding),
                ),
                metadata={"source": filename, "ordinal": ordinal, "chars": len(chunk_text)},
            )
            for ordinal, (chunk_text, embedding) in enumerate(zip(texts, embeddings, strict=True))
        ]

        with self._document_store.session_lock(session_id):
            status = self._document_store.check(session_id, filename, text)
            if status is UploadStatus.DUPLICATE:
                return 0
            if status is UploadStatus.CONFLICT:
                raise IngestionError(
                    f"{filename!r} was already ingested with different content "
                    f"in session {session_id!r}"
                )
            # The document is recorded only once its vectors are in the index,
            # so a failed insert leaves the upload retryable.
            try:
                inserted = self._vector_index.insert(session_id, entries)
            except ValueError as exc:
                logger.error("Index rejected %s for session %s: %s", filename, session_id, exc)
                raise IngestionError(f"could not index {filename!r}: {exc}") from exc
            self._document_store.record(session_id, filename, text)

        logger.info("Ingested %s into session %s: %d chunks", filename, session_id, inserted)
        return inserted

    def discard_session(self, session_id: str) -> bool:
        removed_docs = self._document_store.discard(session_id)
        removed_vectors = self._vector_index.discard(session_id)
        return removed_docs or removed_vectors
