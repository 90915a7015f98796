"""
Relay dispatcher: one table that says what happens to every event name.

Routes:
    REGISTER            - role registration, followed by a client-count broadcast
    BROADCAST_DISPLAYS  - controller publishes, every display receives it verbatim
    UPLOAD_SESSION      - handled by the sender's own UploadSessionStore
    REPLY_SENDER        - answered point-to-point (ping, test-event)
    SERVER_ONLY         - events the server emits; dropped if a client sends them
"""
import base64
import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import MissingChunksError, TransferError
from ..schemas import (
    BinaryImageMetadata,
    Envelope,
    FileUploadComplete,
    FileUploadError,
    FileUploadMetadata,
    ImageReplaceMessage,
    now_ms,
)
from . import chunk_codec
from .registry import Connection, ConnectionRegistry, Role
from .upload_store import CompletedUpload

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    REGISTER = "register"
    # control surface
    CHARACTER_HOVER = "character-hover"
    CHARACTER_CLICK = "character-click"
    CHARACTER_SCALE = "character-scale"
    CHARACTER_SHAKE = "character-shake"
    SPECIAL_EFFECT = "special-effect"
    MUSIC_CONTROL = "music-control"
    # whole-image and legacy Base64 chunk paths
    IMAGE_REPLACE = "image-replace"
    IMAGE_SIMPLE = "image-simple"
    IMAGE_START = "image-start"
    IMAGE_CHUNK = "image-chunk"
    IMAGE_COMPLETE = "image-complete"
    # binary chunked upload
    FILE_UPLOAD_METADATA = "file-upload-metadata"
    FILE_UPLOAD_CHUNK = "file-upload-chunk"
    # diagnostics
    PING = "ping"
    TEST_EVENT = "test-event"
    # server -> client
    CLIENT_COUNT = "client-count"
    FILE_UPLOAD_ACK = "file-upload-ack"
    FILE_UPLOAD_ERROR = "file-upload-error"
    FILE_UPLOAD_COMPLETE = "file-upload-complete"
    IMAGE_REPLACE_BINARY_METADATA = "image-replace-binary-metadata"
    IMAGE_REPLACE_BINARY_DATA = "image-replace-binary-data"
    PONG = "pong"
    TEST_RESPONSE = "test-response"
    ERROR = "error"


class Route(str, Enum):
    REGISTER = "register"
    BROADCAST_DISPLAYS = "broadcast-displays"
    UPLOAD_SESSION = "upload-session"
    REPLY_SENDER = "reply-sender"
    SERVER_ONLY = "server-only"


ROUTES: Dict[EventKind, Route] = {
    EventKind.REGISTER: Route.REGISTER,
    EventKind.CHARACTER_HOVER: Route.BROADCAST_DISPLAYS,
    EventKind.CHARACTER_CLICK: Route.BROADCAST_DISPLAYS,
    EventKind.CHARACTER_SCALE: Route.BROADCAST_DISPLAYS,
    EventKind.CHARACTER_SHAKE: Route.BROADCAST_DISPLAYS,
    EventKind.SPECIAL_EFFECT: Route.BROADCAST_DISPLAYS,
    EventKind.MUSIC_CONTROL: Route.BROADCAST_DISPLAYS,
    EventKind.IMAGE_REPLACE: Route.BROADCAST_DISPLAYS,
    EventKind.IMAGE_SIMPLE: Route.BROADCAST_DISPLAYS,
    EventKind.IMAGE_START: Route.BROADCAST_DISPLAYS,
    EventKind.IMAGE_CHUNK: Route.BROADCAST_DISPLAYS,
    EventKind.IMAGE_COMPLETE: Route.BROADCAST_DISPLAYS,
    EventKind.FILE_UPLOAD_METADATA: Route.UPLOAD_SESSION,
    EventKind.FILE_UPLOAD_CHUNK: Route.UPLOAD_SESSION,
    EventKind.PING: Route.REPLY_SENDER,
    EventKind.TEST_EVENT: Route.REPLY_SENDER,
    EventKind.CLIENT_COUNT: Route.SERVER_ONLY,
    EventKind.FILE_UPLOAD_ACK: Route.SERVER_ONLY,
    EventKind.FILE_UPLOAD_ERROR: Route.SERVER_ONLY,
    EventKind.FILE_UPLOAD_COMPLETE: Route.SERVER_ONLY,
    EventKind.IMAGE_REPLACE_BINARY_METADATA: Route.SERVER_ONLY,
    EventKind.IMAGE_REPLACE_BINARY_DATA: Route.SERVER_ONLY,
    EventKind.PONG: Route.SERVER_ONLY,
    EventKind.TEST_RESPONSE: Route.SERVER_ONLY,
    EventKind.ERROR: Route.SERVER_ONLY,
}


def route_for(event: str) -> Optional[Route]:
    try:
        return ROUTES[EventKind(event)]
    except ValueError:
        return None


def _describe(data: Any) -> str:
    if isinstance(data, dict):
        return ", ".join(f"{k}={v}" for k, v in data.items() if k != "data")
    return repr(data)


class RelayDispatcher:
    """Applies ROUTES to messages arriving on one server connection at a time"""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def connect(self, connection: Connection) -> None:
        self.registry.add(connection)

    async def disconnect(self, connection: Connection) -> None:
        logger.info(f"❌ Client disconnected: {connection.id}")
        connection.uploads.clear()
        self.registry.remove(connection)
        await self.registry.broadcast_client_count()

    async def dispatch_text(self, connection: Connection, text: str) -> None:
        """Parse a JSON envelope and route it"""
        try:
            envelope = Envelope.model_validate_json(text)
        except ValidationError:
            logger.warning(f"Malformed message from {connection.id}: {text[:80]!r}")
            await connection.send_event(EventKind.ERROR.value, {"message": "Malformed message"})
            return
        await self.dispatch(connection, envelope.event, envelope.data)

    async def dispatch(self, connection: Connection, event: str, data: Any = None) -> None:
        route = route_for(event)
        if route is None:
            logger.warning(f"Unknown event {event!r} from {connection.id}, dropped")
            return

        if route is Route.REGISTER:
            await self.handle_register(connection, data)
        elif route is Route.BROADCAST_DISPLAYS:
            await self.forward_to_displays(connection, event, data)
        elif route is Route.UPLOAD_SESSION:
            if event == EventKind.FILE_UPLOAD_METADATA.value:
                await self.handle_upload_metadata(connection, data)
            else:
                logger.warning(f"{event} must be sent as a binary frame, dropped")
                await self.send_upload_error(connection, FileUploadError(message="Invalid chunk format"))
        elif route is Route.REPLY_SENDER:
            await self.reply(connection, event, data)
        else:
            logger.warning(f"Client {connection.id} sent server-only event {event}, dropped")

    async def handle_register(self, connection: Connection, data: Any) -> None:
        try:
            role = Role(data)
        except ValueError:
            logger.warning(f"Unknown role {data!r} from {connection.id}")
        else:
            self.registry.register(connection, role)
        await self.registry.broadcast_client_count()

    async def forward_to_displays(self, connection: Connection, event: str, data: Any) -> int:
        """Fan a controller event out to every display without touching the payload"""
        if connection.role is Role.DISPLAY:
            logger.warning(f"Display {connection.id} tried to publish {event}, dropped")
            return 0

        if event in (EventKind.IMAGE_REPLACE.value, EventKind.IMAGE_SIMPLE.value) and isinstance(data, dict):
            payload = data.get("data")
            if not isinstance(payload, str):
                payload = ""
            logger.info(f"📥 {event}: {data.get('filename')} ({data.get('mimeType')}, {len(payload) / 1024:.1f}KB)")
            if len(payload) > settings.MAX_DIRECT_UPLOAD_SIZE:
                logger.warning(f"⚠️ Large image data: {len(payload) / 1024:.1f}KB")
        elif event == EventKind.IMAGE_CHUNK.value and isinstance(data, dict):
            logger.debug(f"📥 Chunk {data.get('chunkIndex')} of {data.get('filename')}")
        else:
            logger.info(f"{event}: {_describe(data)}")

        return await self.registry.broadcast(event, data, role=Role.DISPLAY)

    async def reply(self, connection: Connection, event: str, data: Any) -> None:
        if event == EventKind.PING.value:
            await connection.send_event(EventKind.PONG.value, data)
        elif event == EventKind.TEST_EVENT.value:
            logger.info(f"🧪 Test event received: {data}")
            await connection.send_event(EventKind.TEST_RESPONSE.value, {"received": True, "timestamp": now_ms()})

    async def send_upload_error(self, connection: Connection, error: FileUploadError) -> None:
        await connection.send_event(EventKind.FILE_UPLOAD_ERROR.value, error.to_wire())

    async def handle_upload_metadata(self, connection: Connection, data: Any) -> None:
        try:
            metadata = FileUploadMetadata.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid upload metadata from {connection.id}: {e.errors()[0]['msg']}")
            session_id = data.get("sessionId") if isinstance(data, dict) else None
            if not isinstance(session_id, str):
                session_id = None
            await self.send_upload_error(
                connection, FileUploadError(message="Invalid upload metadata", session_id=session_id)
            )
            return

        if metadata.filesize > settings.MAX_BINARY_UPLOAD_SIZE:
            logger.warning(f"Upload {metadata.session_id} from {connection.id} too large: {metadata.filesize} bytes")
            await self.send_upload_error(
                connection, FileUploadError(message="File too large", session_id=metadata.session_id)
            )
            return

        expected = chunk_codec.count_chunks(metadata.filesize, metadata.chunk_size or settings.CHUNK_SIZE)
        if metadata.total_chunks != expected:
            logger.warning(
                f"Upload {metadata.session_id} from {connection.id} announced {metadata.total_chunks} chunks, "
                f"{expected} expected"
            )
            await self.send_upload_error(
                connection, FileUploadError(message="Inconsistent chunk count", session_id=metadata.session_id)
            )
            return

        logger.info(f"📋 File upload metadata: {metadata.filename} ({metadata.total_chunks} chunks)")
        ack = connection.uploads.on_metadata(metadata)
        await connection.send_event(EventKind.FILE_UPLOAD_ACK.value, ack.to_wire())

    async def dispatch_binary(self, connection: Connection, frame: bytes) -> None:
        """A binary frame from a client is always a file-upload-chunk"""
        store = connection.uploads
        try:
            ack, session = store.on_chunk(frame)
        except TransferError as e:
            logger.warning(f"Chunk from {connection.id} rejected: {e.message}")
            await self.send_upload_error(connection, FileUploadError(message=e.message, session_id=e.session_id))
            return

        await connection.send_event(EventKind.FILE_UPLOAD_ACK.value, ack.to_wire())

        try:
            completed = store.check_completion(session.session_id)
        except MissingChunksError as e:
            await self.send_upload_error(
                connection,
                FileUploadError(message=e.message, session_id=e.session_id, missing_chunks=e.missing),
            )
            return

        if completed is not None:
            await self.publish_completed(connection, completed)

    async def publish_completed(self, connection: Connection, upload: CompletedUpload) -> None:
        """Send a reassembled file to displays as raw binary and as Base64, then tell the uploader"""
        logger.info(f"📤 Broadcasting binary image to displays: {upload.filename} ({upload.filesize / 1024:.1f}KB)")

        binary_metadata = BinaryImageMetadata(
            filename=upload.filename,
            mime_type=upload.mime_type,
            size=upload.filesize,
        ).to_wire()
        for display in self.registry.members(Role.DISPLAY):
            await display.send_event_with_bytes(
                EventKind.IMAGE_REPLACE_BINARY_METADATA.value, binary_metadata, upload.data
            )

        compat = ImageReplaceMessage(
            filename=upload.filename,
            mime_type=upload.mime_type,
            size=upload.filesize,
            data=base64.b64encode(upload.data).decode("ascii"),
            timestamp=now_ms(),
            upload_method="binary-chunked",
        ).to_wire()
        await self.registry.broadcast(EventKind.IMAGE_REPLACE.value, compat, role=Role.DISPLAY)

        await connection.send_event(
            EventKind.FILE_UPLOAD_COMPLETE.value,
            FileUploadComplete(
                session_id=upload.session_id,
                filename=upload.filename,
                filesize=upload.filesize,
            ).to_wire(),
        )

    async def sweep_sessions(self) -> int:
        """Evict idle upload sessions on every connection; returns how many were dropped"""
        evicted = 0
        for connection in self.registry:
            for session in connection.uploads.sweep():
                evicted += 1
                await self.send_upload_error(
                    connection, FileUploadError(message="Session timed out", session_id=session.session_id)
                )
        return evicted
