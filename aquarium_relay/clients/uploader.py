"""Sender side of the binary chunked upload: one state machine per file."""
import asyncio
import logging
import mimetypes
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Set

from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import TransferError, UploadProtocolError, UploadValidationError
from ..schemas import ChunkHeader, FileUploadAck, FileUploadMetadata, now_ms
from ..services import chunk_codec

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["UploadSession", float], None]


class UploadState(str, Enum):
    IDLE = "idle"
    METADATA_SENT = "metadata-sent"
    CHUNK_IN_FLIGHT = "chunk-in-flight"
    CHUNK_ACKED = "chunk-acked"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class UploadResult:
    session_id: str
    filename: str
    filesize: int
    mime_type: str
    total_chunks: int
    elapsed: float


def guess_mime_type(filename: str) -> str:
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "application/octet-stream"


def generate_session_id() -> str:
    return uuid.uuid4().hex


class UploadSession:
    """
    Sends one file as metadata followed by chunk frames, one chunk in flight.
    
    Flow:
    1. start(): validate, send file-upload-metadata          -> METADATA_SENT
    2. ack -1: send chunk 0                                  -> CHUNK_IN_FLIGHT
    3. ack i == current_chunk: advance, wait send_delay,
       send next chunk                                       -> CHUNK_ACKED -> CHUNK_IN_FLIGHT
    4. last ack                                              -> COMPLETE (result resolved)
    
    Any send failure or malformed ack moves to ERROR and rejects the result.
    Nothing is retried; a new attempt needs a new session.
    """

    def __init__(
        self,
        transport,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        chunk_size: int = settings.CHUNK_SIZE,
        max_file_size: int = settings.MAX_BINARY_UPLOAD_SIZE,
        send_delay: float = settings.CHUNK_SEND_DELAY,
        supported_types=settings.SUPPORTED_MIME_TYPES,
        on_progress: Optional[ProgressCallback] = None,
        session_id: Optional[str] = None,
    ):
        self.transport = transport
        self.data = bytes(data)
        self.filename = filename
        self.filesize = len(self.data)
        self.mime_type = mime_type or guess_mime_type(filename)
        self.chunk_size = chunk_size
        self.max_file_size = max_file_size
        self.send_delay = send_delay
        self.supported_types = tuple(supported_types)
        self.on_progress = on_progress
        self.session_id = session_id or generate_session_id()

        self.state = UploadState.IDLE
        self.total_chunks = chunk_codec.count_chunks(self.filesize, chunk_size)
        self.acknowledged_chunks: Set[int] = set()
        self.current_chunk = 0
        self.pending_ack = False
        self.started_at: Optional[float] = None

        self.result: asyncio.Future = asyncio.get_running_loop().create_future()
        self._next_send: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"<UploadSession(session_id={self.session_id}, filename={self.filename}, state={self.state.value})>"

    @property
    def finished(self) -> bool:
        return self.state in (UploadState.COMPLETE, UploadState.ERROR)

    def validate(self) -> None:
        if self.mime_type not in self.supported_types:
            raise UploadValidationError(f"{self.filename}: unsupported file type {self.mime_type}", self.session_id)
        if self.filesize > self.max_file_size:
            raise UploadValidationError(
                f"{self.filename}: file too large ({self.filesize} bytes, max {self.max_file_size})",
                self.session_id,
            )

    def metadata(self) -> FileUploadMetadata:
        return FileUploadMetadata(
            session_id=self.session_id,
            filename=self.filename,
            filesize=self.filesize,
            total_chunks=self.total_chunks,
            mime_type=self.mime_type,
            chunk_size=self.chunk_size,
            timestamp=now_ms(),
        )

    async def start(self) -> asyncio.Future:
        """
        Validate and announce the upload.
        
        Raises:
            UploadValidationError: before anything is sent
        """
        if self.state is not UploadState.IDLE:
            raise UploadProtocolError(f"Session {self.session_id} already started", self.session_id)
        self.validate()

        self.started_at = time.monotonic()
        logger.info(f"🚀 Starting binary upload: {self.filename} (Session: {self.session_id})")
        try:
            await self.transport.send_event("file-upload-metadata", self.metadata().to_wire())
        except (TransferError, OSError) as e:
            self.fail(e)
            return self.result

        self.state = UploadState.METADATA_SENT
        logger.info(f"📋 Metadata sent: {self.total_chunks} chunks of {self.chunk_size} bytes")
        return self.result

    async def on_ack(self, payload: Any) -> None:
        """Entry point for every file-upload-ack addressed to this session"""
        if self.finished:
            return
        try:
            ack = FileUploadAck.model_validate(payload)
        except ValidationError as e:
            self.fail(UploadProtocolError(f"Malformed ack: {e.errors()[0]['msg']}", self.session_id))
            return

        if ack.chunk_index == -1:
            await self.on_metadata_ack()
        else:
            self.on_chunk_ack(ack.chunk_index)

    async def on_metadata_ack(self) -> None:
        if self.state is not UploadState.METADATA_SENT:
            logger.warning(f"Unexpected metadata ack for {self.session_id} in state {self.state.value}")
            return
        logger.info(f"✅ Metadata acknowledged for {self.filename}")
        self.state = UploadState.CHUNK_IN_FLIGHT
        await self.send_next_chunk()

    async def send_next_chunk(self) -> None:
        """Send current_chunk unless a chunk is already in flight or all are sent"""
        if self.finished or self.pending_ack or self.current_chunk >= self.total_chunks:
            return

        index = self.current_chunk
        start = index * self.chunk_size
        header = ChunkHeader(
            session_id=self.session_id,
            chunk_index=index,
            total_chunks=self.total_chunks,
            filename=self.filename,
        )
        try:
            frame = chunk_codec.pack_frame(header.to_wire(), self.data[start:start + self.chunk_size])
            self.pending_ack = True
            self.state = UploadState.CHUNK_IN_FLIGHT
            await self.transport.send_bytes(frame)
        except (TransferError, OSError) as e:
            self.fail(e)
            return

        progress = (index + 1) / self.total_chunks * 100
        logger.debug(f"📦 Chunk {index + 1}/{self.total_chunks} sent ({len(frame)} bytes framed)")
        if self.on_progress:
            self.on_progress(self, progress)

    def on_chunk_ack(self, index: int) -> None:
        if index != self.current_chunk or not self.pending_ack:
            logger.warning(f"Ignoring ack for chunk {index} of {self.session_id} (expecting {self.current_chunk})")
            return

        self.acknowledged_chunks.add(index)
        self.current_chunk += 1
        self.pending_ack = False
        self.state = UploadState.CHUNK_ACKED

        if self.current_chunk >= self.total_chunks:
            self.complete()
        else:
            self._next_send = asyncio.ensure_future(self._send_after_delay())

    async def _send_after_delay(self) -> None:
        await asyncio.sleep(self.send_delay)
        await self.send_next_chunk()

    def complete(self) -> None:
        self.state = UploadState.COMPLETE
        elapsed = time.monotonic() - (self.started_at or time.monotonic())
        logger.info(f"✅ Binary upload completed: {self.filename} in {elapsed:.1f}s")
        if not self.result.done():
            self.result.set_result(UploadResult(
                session_id=self.session_id,
                filename=self.filename,
                filesize=self.filesize,
                mime_type=self.mime_type,
                total_chunks=self.total_chunks,
                elapsed=elapsed,
            ))

    def fail(self, error: Exception) -> None:
        if self.finished:
            return
        self.state = UploadState.ERROR
        self.pending_ack = False
        if self._next_send and not self._next_send.done() and self._next_send is not asyncio.current_task():
            self._next_send.cancel()
        if not isinstance(error, TransferError):
            error = UploadProtocolError(f"Upload failed: {error}", self.session_id)
        logger.error(f"❌ Upload of {self.filename} failed: {error}")
        if not self.result.done():
            self.result.set_exception(error)

    async def wait(self, timeout: Optional[float] = None) -> UploadResult:
        """Wait for the final ack; a timeout fails the session"""
        try:
            return await asyncio.wait_for(asyncio.shield(self.result), timeout)
        except asyncio.TimeoutError:
            self.fail(UploadProtocolError(f"Upload timed out after {timeout}s", self.session_id))
            return await self.result
