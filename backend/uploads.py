"""Chunked upload reassembly for payloads too large for a single request.

Protocol: init -> chunk* -> finalize. Sessions live in an ``UploadStore``;
the default in-memory store is process-local, so a deployment running more
than one API process must either pin uploads to one instance or provide a
shared store implementing the same get/set/delete interface.
"""
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional
from config import UPLOAD_SESSION_TTL, MAX_UPLOAD_CHUNKS
from errors import NotFound, ValidationError, IncompleteUpload

logger = logging.getLogger(__name__)


@dataclass
class UploadSession:
    upload_id: str
    total_chunks: int
    resource_id: Optional[str] = None
    file_size: Optional[int] = None
    chunks: list = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def received_chunks(self) -> int:
        return sum(1 for c in self.chunks if c is not None)

    @property
    def complete(self) -> bool:
        return self.received_chunks == self.total_chunks


class UploadStore:
    """Key/value interface for upload sessions."""

    def get(self, key: str) -> Optional[UploadSession]:
        raise NotImplementedError

    def set(self, key: str, session: UploadSession) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryUploadStore(UploadStore):
    """Single-process store; drops sessions older than ``ttl`` seconds on access."""

    def __init__(self, ttl: int = UPLOAD_SESSION_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def _evict_stale(self):
        cutoff = self.clock() - self.ttl
        stale = [k for k, s in self._sessions.items() if s.created_at < cutoff]
        for key in stale:
            del self._sessions[key]
        if stale:
            logger.info("evicted %d stale upload session(s)", len(stale))

    def get(self, key):
        with self._lock:
            self._evict_stale()
            return self._sessions.get(key)

    def set(self, key, session):
        with self._lock:
            self._evict_stale()
            self._sessions[key] = session

    def delete(self, key):
        with self._lock:
            self._sessions.pop(key, None)

    def __len__(self):
        with self._lock:
            return len(self._sessions)


class UploadAssembler:
    def __init__(self, store: UploadStore, clock: Callable[[], float] = time.time,
                 max_chunks: int = MAX_UPLOAD_CHUNKS):
        self.store = store
        self.clock = clock
        self.max_chunks = max_chunks

    def init_upload(self, resource_id, total_chunks: int, file_size: Optional[int] = None) -> str:
        """Open a session with ``total_chunks`` empty slots and return its id."""
        if total_chunks is None or total_chunks < 1:
            raise ValidationError("totalChunks must be a positive integer")
        if total_chunks > self.max_chunks:
            raise ValidationError(f"totalChunks must be at most {self.max_chunks}")
        upload_id = f"{resource_id}-{int(self.clock() * 1000)}-{uuid.uuid4().hex[:8]}"
        self.store.set(upload_id, UploadSession(
            upload_id=upload_id,
            total_chunks=total_chunks,
            resource_id=str(resource_id),
            file_size=file_size,
            chunks=[None] * total_chunks,
            created_at=self.clock(),
        ))
        return upload_id

    def _session(self, upload_id, resource_id=None) -> UploadSession:
        session = self.store.get(upload_id)
        # a session only feeds the resource it was opened for
        if session is None or (resource_id is not None and session.resource_id != str(resource_id)):
            raise NotFound("Upload session not found")
        return session

    def receive_chunk(self, upload_id: str, chunk_index: int, data: str, resource_id=None) -> tuple[int, int]:
        """Store one chunk; resending an index overwrites it.

        Returns:
            tuple[int, int]: (received, total) for progress display.
        """
        session = self._session(upload_id, resource_id)
        if not 0 <= chunk_index < session.total_chunks:
            raise ValidationError(f"chunkIndex must be between 0 and {session.total_chunks - 1}")
        session.chunks[chunk_index] = data if data is not None else ""
        self.store.set(upload_id, session)
        return session.received_chunks, session.total_chunks

    def finalize(self, upload_id: str, apply: Callable[[str], None], resource_id=None) -> str:
        """Join all chunks in index order and hand the result to ``apply``.

        The session survives an incomplete finalize so missing chunks can
        still be sent. Once complete it is removed, whether or not ``apply``
        succeeds.

        Raises:
            NotFound: unknown upload id, a session opened for another resource,
                or ``apply`` could not find the resource.
            IncompleteUpload: not every slot has been filled.
        """
        session = self._session(upload_id, resource_id)
        if not session.complete:
            raise IncompleteUpload(received=session.received_chunks, expected=session.total_chunks)

        content = "".join(session.chunks)
        self.store.delete(upload_id)
        apply(content)
        logger.info("upload %s finalized (%d chunks, %d chars)", upload_id, session.total_chunks, len(content))
        return content
