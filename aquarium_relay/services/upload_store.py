"""
Server-side receiver sessions for the binary chunked upload protocol.

Each WebSocket connection owns one UploadSessionStore. A session is created
by a metadata message, filled slot by slot by chunk frames (in any order),
and removed once its chunks are reassembled into the original file.

Sessions left behind by abandoned uploads are evicted by sweep(), which the
server runs periodically.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from ..core.errors import ChunkIndexError, FramingError, MissingChunksError, SessionNotFoundError
from ..schemas import ChunkHeader, FileUploadAck, FileUploadMetadata
from . import chunk_codec
from .reassembly import ChunkSlots

logger = logging.getLogger(__name__)

METADATA_ACK_INDEX = -1


@dataclass
class ReceiverSession:
    """Bookkeeping for one in-progress upload on the server"""
    session_id: str
    filename: str
    filesize: int
    total_chunks: int
    mime_type: str
    created_at: float
    last_activity: float
    chunks: ChunkSlots = field(init=False)

    def __post_init__(self):
        self.chunks = ChunkSlots(self.total_chunks)

    @property
    def received_chunks(self) -> int:
        return self.chunks.count

    def missing_chunks(self) -> List[int]:
        return self.chunks.missing()

    def is_complete(self) -> bool:
        return self.chunks.is_complete()


@dataclass
class CompletedUpload:
    """A fully reassembled file, ready to broadcast to displays"""
    session_id: str
    filename: str
    filesize: int
    mime_type: str
    data: bytes


class UploadSessionStore:
    """
    Per-connection map of sessionId -> ReceiverSession.
    
    Key features:
    - Slot array preallocated from totalChunks, filled by explicit index
    - Completion only when every distinct slot is present
    - Missing slots at reassembly time raise and keep the session
    - Idle sessions evicted by sweep() after ttl seconds
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self.sessions: Dict[str, ReceiverSession] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    def __iter__(self) -> Iterator[ReceiverSession]:
        return iter(list(self.sessions.values()))

    def get(self, session_id: str) -> Optional[ReceiverSession]:
        return self.sessions.get(session_id)

    def on_metadata(self, metadata: FileUploadMetadata) -> FileUploadAck:
        """Create (or overwrite) the session announced by metadata"""
        if metadata.session_id in self.sessions:
            logger.warning(f"Session {metadata.session_id} announced twice, overwriting")

        now = self.clock()
        self.sessions[metadata.session_id] = ReceiverSession(
            session_id=metadata.session_id,
            filename=metadata.filename,
            filesize=metadata.filesize,
            total_chunks=metadata.total_chunks,
            mime_type=metadata.mime_type,
            created_at=now,
            last_activity=now,
        )
        logger.info(
            f"Upload session {metadata.session_id} created for {metadata.filename} "
            f"({metadata.filesize} bytes, {metadata.total_chunks} chunks)"
        )
        return FileUploadAck(session_id=metadata.session_id, chunk_index=METADATA_ACK_INDEX)

    def on_chunk(self, frame: bytes) -> Tuple[FileUploadAck, ReceiverSession]:
        """
        Store one chunk frame in its session slot.
        
        Raises:
            FramingError: frame cannot be split or header is incomplete
            SessionNotFoundError: sessionId was never announced (nothing is created)
            ChunkIndexError: index outside [0, totalChunks)
        """
        raw_header, payload = chunk_codec.unpack_frame(frame)
        try:
            header = ChunkHeader.model_validate(raw_header)
        except ValidationError as e:
            session_id = raw_header.get("sessionId")
            raise FramingError(
                f"Invalid chunk header: {e.errors()[0]['msg']}",
                session_id if isinstance(session_id, str) else None,
            )

        session = self.sessions.get(header.session_id)
        if session is None:
            logger.warning(f"Chunk {header.chunk_index} for unknown session {header.session_id}")
            raise SessionNotFoundError(header.session_id)

        try:
            is_new = session.chunks.put(header.chunk_index, payload)
        except ChunkIndexError as e:
            e.session_id = header.session_id
            raise
        if not is_new:
            logger.info(f"Duplicate chunk {header.chunk_index} for session {header.session_id}, slot overwritten")
        session.last_activity = self.clock()

        logger.debug(
            f"Chunk {header.chunk_index + 1}/{session.total_chunks} received for {session.filename} "
            f"({session.received_chunks}/{session.total_chunks} slots filled)"
        )
        return FileUploadAck(session_id=header.session_id, chunk_index=header.chunk_index), session

    def check_completion(self, session_id: str) -> Optional[CompletedUpload]:
        """Reassemble if every slot has arrived, otherwise return None"""
        session = self.sessions.get(session_id)
        if session is None or not session.is_complete():
            return None
        return self.reassemble(session_id)

    def reassemble(self, session_id: str) -> CompletedUpload:
        """
        Concatenate all slots in index order and drop the session.
        
        Raises:
            SessionNotFoundError: unknown session
            MissingChunksError: some slot is empty; the session is kept
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        try:
            chunks = session.chunks.ordered()
        except MissingChunksError as e:
            logger.error(f"Session {session_id} cannot be reassembled, missing chunks: {e.missing}")
            raise MissingChunksError(e.missing, session_id)

        data = chunk_codec.join(chunks)
        if len(data) != session.filesize:
            logger.warning(
                f"Session {session_id} reassembled {len(data)} bytes, metadata announced {session.filesize}"
            )

        del self.sessions[session_id]
        logger.info(f"Upload session {session_id} complete: {session.filename} ({len(data)} bytes)")

        return CompletedUpload(
            session_id=session_id,
            filename=session.filename,
            filesize=session.filesize,
            mime_type=session.mime_type,
            data=data,
        )

    def sweep(self, now: Optional[float] = None) -> List[ReceiverSession]:
        """Evict sessions idle for longer than ttl and return them"""
        now = self.clock() if now is None else now
        expired = [s for s in self.sessions.values() if now - s.last_activity > self.ttl]
        for session in expired:
            del self.sessions[session.session_id]
            logger.warning(
                f"Upload session {session.session_id} ({session.filename}) evicted after "
                f"{now - session.last_activity:.0f}s idle, "
                f"{session.received_chunks}/{session.total_chunks} chunks received"
            )
        return expired

    def clear(self) -> int:
        """Drop every session (connection closed); returns how many were abandoned"""
        abandoned = len(self.sessions)
        if abandoned:
            logger.info(f"Discarding {abandoned} unfinished upload session(s)")
        self.sessions.clear()
        return abandoned
