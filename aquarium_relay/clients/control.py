"""Control-panel client: uploads images and publishes control events to displays."""
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from ..core.config import settings
from ..core.errors import TransferError, TransportError, UploadValidationError
from ..schemas import ClientCount, ImageReplaceMessage, now_ms
from .uploader import ProgressCallback, UploadResult, UploadSession, guess_mime_type

logger = logging.getLogger(__name__)

CONTROL_EVENTS = (
    "character-hover",
    "character-click",
    "character-scale",
    "character-shake",
    "special-effect",
    "music-control",
)


class ControlClient:
    """
    Controller connection to the relay.
    
    A background reader routes file-upload-ack/error events to the active
    UploadSession they belong to, so several uploads may share one socket.
    """

    def __init__(
        self,
        url: str = settings.RELAY_URL,
        chunk_size: int = settings.CHUNK_SIZE,
        send_delay: float = settings.CHUNK_SEND_DELAY,
        upload_timeout: float = settings.UPLOAD_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.chunk_size = chunk_size
        self.send_delay = send_delay
        self.upload_timeout = upload_timeout
        self.websocket = None
        self.client_count: Optional[ClientCount] = None
        self.uploads: Dict[str, UploadSession] = {}
        self._reader: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "ControlClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        try:
            self.websocket = await websockets.connect(self.url, max_size=settings.MAX_MESSAGE_SIZE)
        except OSError as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}")
        logger.info(f"🔗 Connected to {self.url}")
        await self.send_event("register", "controller")
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        self._fail_all(TransportError("Connection closed"))

    async def send_event(self, event: str, data: Any = None) -> None:
        if self.websocket is None:
            raise TransportError("Not connected")
        try:
            await self.websocket.send(json.dumps({"event": event, "data": data}, separators=(",", ":")))
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed while sending {event}: {e}")

    async def send_bytes(self, data: bytes) -> None:
        if self.websocket is None:
            raise TransportError("Not connected")
        try:
            await self.websocket.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed while sending chunk: {e}")

    async def send_control(self, event: str, data: Dict[str, Any]) -> None:
        """Publish a character/effect/music event to every display"""
        if event not in CONTROL_EVENTS:
            raise ValueError(f"Unknown control event: {event}")
        await self.send_event(event, data)

    async def character_action(self, action: str, character: str, x: float = 0, y: float = 0) -> None:
        await self.send_control(f"character-{action}", {"character": character, "x": x, "y": y})

    async def special_effect(self, effect_type: str) -> None:
        await self.send_control("special-effect", {"type": effect_type})

    async def music_control(self, action: str) -> None:
        await self.send_control("music-control", {"action": action})

    async def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Run one chunked upload to completion (all chunks acknowledged)"""
        session = UploadSession(
            self,
            data,
            filename,
            mime_type=mime_type,
            chunk_size=self.chunk_size,
            send_delay=self.send_delay,
            on_progress=on_progress,
        )
        session.validate()
        self.uploads[session.session_id] = session
        try:
            await session.start()
            return await session.wait(self.upload_timeout)
        finally:
            self.uploads.pop(session.session_id, None)

    async def replace_image(self, data: bytes, filename: str, mime_type: Optional[str] = None) -> None:
        """
        Direct path: the whole image as one Base64 image-replace message.

        Raises:
            UploadValidationError: unsupported type or larger than MAX_DIRECT_UPLOAD_SIZE
        """
        mime_type = mime_type or guess_mime_type(filename)
        if mime_type not in settings.SUPPORTED_MIME_TYPES:
            raise UploadValidationError(f"{filename}: unsupported file type {mime_type}")
        if len(data) > settings.MAX_DIRECT_UPLOAD_SIZE:
            raise UploadValidationError(
                f"{filename}: file too large for direct upload ({len(data)} bytes, "
                f"max {settings.MAX_DIRECT_UPLOAD_SIZE})"
            )

        message = ImageReplaceMessage(
            filename=filename,
            mime_type=mime_type,
            size=len(data),
            data=base64.b64encode(data).decode("ascii"),
            timestamp=now_ms(),
            upload_method="base64",
        )
        await self.send_event("image-replace", message.to_wire())
        logger.info(f"📤 Sent {filename} directly ({len(data) / 1024:.1f}KB)")

    async def upload_file(self, file_path, on_progress: Optional[ProgressCallback] = None) -> UploadResult:
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        return await self.upload(file_path.read_bytes(), file_path.name, on_progress=on_progress)

    async def _read_loop(self) -> None:
        try:
            async for message in self.websocket:
                if isinstance(message, bytes):
                    logger.debug(f"Ignoring {len(message)}-byte binary frame")
                    continue
                await self.handle_message(message)
        except ConnectionClosed as e:
            logger.warning(f"Connection to relay closed: {e}")
        finally:
            self._fail_all(TransportError("Connection closed"))

    async def handle_message(self, text: str) -> None:
        try:
            envelope = json.loads(text)
            event, data = envelope["event"], envelope.get("data")
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Malformed message from relay: {text[:80]!r}")
            return

        if event == "file-upload-ack":
            await self.handle_ack(data)
        elif event == "file-upload-error":
            self.handle_upload_error(data if isinstance(data, dict) else {"message": str(data)})
        elif event == "file-upload-complete" and isinstance(data, dict):
            logger.info(f"🎉 Upload complete: {data.get('filename')} ({data.get('filesize')} bytes)")
        elif event == "client-count":
            try:
                self.client_count = ClientCount.model_validate(data)
            except ValidationError:
                logger.warning(f"Malformed client-count: {data!r}")
                return
            logger.info(f"📊 Displays: {self.client_count.displays}, controllers: {self.client_count.controllers}")
        else:
            logger.debug(f"Event {event} ignored by controller")

    async def handle_ack(self, data: Any) -> None:
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        session = self.uploads.get(session_id)
        if session is not None:
            await session.on_ack(data)
        elif session_id is None and len(self.uploads) == 1:
            # nothing to route by; the only active upload rejects it as malformed
            await next(iter(self.uploads.values())).on_ack(data)
        else:
            logger.warning(f"Ack for unknown upload session: {data!r}")

    def handle_upload_error(self, data: Dict[str, Any]) -> None:
        message = data.get("message", "Upload error")
        session = self.uploads.get(data.get("sessionId"))
        error = TransferError(message, data.get("sessionId"))
        if session is not None:
            session.fail(error)
            return
        # no session named: every upload with a chunk in flight could be the culprit
        for session in list(self.uploads.values()):
            if not session.finished:
                session.fail(TransferError(message, session.session_id))

    def _fail_all(self, error: TransferError) -> None:
        for session in list(self.uploads.values()):
            session.fail(TransferError(error.message, session.session_id))


def print_progress(session: UploadSession, percent: float) -> None:
    print(f"  📤 {session.filename} {percent:.1f}%")


async def run_uploads(paths: List[str], url: str) -> int:
    failures = 0
    async with ControlClient(url) as client:
        for path in paths:
            try:
                result = await client.upload_file(path, on_progress=print_progress)
                print(f"✓ {result.filename}: {result.filesize} bytes in {result.total_chunks} chunks ({result.elapsed:.2f}s)")
            except (TransferError, FileNotFoundError) as e:
                print(f"✗ {path}: {e}")
                failures += 1
    return failures


def main():
    """CLI for the control client"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if len(sys.argv) < 2:
        print("Usage:")
        print("  Upload images:  python -m aquarium_relay.clients.control <file>... [--url ws://host:port/ws]")
        sys.exit(1)

    args = sys.argv[1:]
    url = settings.RELAY_URL
    if "--url" in args:
        url_idx = args.index("--url")
        if len(args) > url_idx + 1:
            url = args[url_idx + 1]
        del args[url_idx:url_idx + 2]

    try:
        failures = asyncio.run(run_uploads(args, url))
    except TransportError as e:
        print(f"\n✗ {e}")
        sys.exit(1)
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
