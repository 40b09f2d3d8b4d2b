"""In-memory raw document storage partitioned by session."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from hashlib import sha256

logger = logging.getLogger(__name__)


class UploadStatus(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class StoredDocument:
    filename: str
    text: str
    content_hash: str


@dataclass(slots=True)
class _Session:
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Guards `documents` and `hashes` for the duration of one read or write.
    guard: threading.Lock = field(default_factory=threading.Lock)
    documents: dict[str, StoredDocument] = field(default_factory=dict)
    hashes: dict[str, str] = field(default_factory=dict)


def content_hash(text: str) -> str:
    return sha256(text.encode("utf-8")).hexdigest()


class DocumentStore:
    """Holds uploaded text per session and hands out per-session write locks.

    The registry lock only guards session creation; writers on different
    sessions hold different locks and never wait on each other. Reads of a
    session's documents take its short-lived guard, so `check` is safe to call
    without the write lock while another upload is being recorded.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, _Session] = {}
        self._registry_lock = threading.Lock()

    def ensure_session(self, session_id: str) -> None:
        self._session(session_id)

    def has_session(self, session_id: str) -> bool:
        with self._registry_lock:
            return session_id in self._sessions

    def session_lock(self, session_id: str) -> threading.Lock:
        return self._session(session_id).lock

    def check(self, session_id: str, filename: str, text: str) -> UploadStatus:
        """Classify an upload against the documents already in the session.

        Caller must hold `session_lock(session_id)` when the answer is used to
        decide a write.
        """

        session = self._session(session_id)
        digest = content_hash(text)
        with session.guard:
            existing = session.documents.get(filename)
            known_digest = digest in session.hashes
        if existing is not None:
            if existing.content_hash == digest:
                return UploadStatus.DUPLICATE
            return UploadStatus.CONFLICT
        if known_digest:
            return UploadStatus.DUPLICATE
        return UploadStatus.NEW

    def record(self, session_id: str, filename: str, text: str) -> StoredDocument:
        document = StoredDocument(filename=filename, text=text, content_hash=content_hash(text))
        session = self._session(session_id)
        with session.guard:
            session.documents[filename] = document
            session.hashes.setdefault(document.content_hash, filename)
        return document

    def documents(self, session_id: str) -> list[StoredDocument]:
        with self._registry_lock:
            session = self._sessions.get(session_id)
        if session is None:
            return []
        with session.guard:
            return list(session.documents.values())

    def discard(self, session_id: str) -> bool:
        with self._registry_lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            with removed.guard:
                count = len(removed.documents)
            logger.info("Discarded session %s (%d documents)", session_id, count)
        return removed is not None

    def _session(self, session_id: str) -> _Session:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = _Session()
                self._sessions[session_id] = session
                logger.debug("Created session %s", session_id)
            return session
