"""
Display client: receives images and control events from the relay.

Images are applied through an ImageReplacer; the bundled DirectorySurface
writes each replaced image to <output_dir>/<target><ext>, which a kiosk page
or a watcher process can pick up.
"""
import asyncio
import json
import logging
import mimetypes
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.config import settings
from ..core.errors import TransportError
from ..services.image_replacer import DisplaySurface, ImageReplacer, ImageResource

logger = logging.getLogger(__name__)

ControlCallback = Callable[[str, Any], None]


class DirectorySurface(DisplaySurface):
    """Writes every applied image into a directory, one file per target"""

    def __init__(self, output_dir, targets: Optional[Iterable[str]] = None):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.targets = set(targets) if targets is not None else None
        self.applied: Dict[str, Path] = {}

    def find_targets(self, filename: str, candidates: List[str]) -> List[str]:
        if self.targets is None:
            return super().find_targets(filename, candidates)
        return [c for c in candidates if c in self.targets]

    def apply(self, target: str, resource: ImageResource) -> None:
        extension = Path(resource.filename).suffix or mimetypes.guess_extension(resource.mime_type) or ""
        stem = re.sub(r"[^A-Za-z0-9_-]+", "_", target).strip("_") or "image"
        path = self.output_dir / f"{stem}{extension.lower()}"
        path.write_bytes(resource.data)
        self.applied[target] = path
        logger.info(f"🖼️ {target} <- {resource.filename} ({path})")

    def list_available_targets(self) -> List[str]:
        return sorted(self.targets) if self.targets is not None else sorted(self.applied)


class DisplayClient:
    """
    Display connection to the relay.
    
    image-replace-binary-metadata is remembered until the next binary frame,
    which carries that image's bytes. The Base64 copy the server sends right
    after a binary-chunked upload is skipped when the binary copy was applied.
    """

    def __init__(
        self,
        replacer: ImageReplacer,
        url: str = settings.RELAY_URL,
        on_control: Optional[ControlCallback] = None,
    ):
        self.replacer = replacer
        self.url = url
        self.on_control = on_control
        self.websocket = None
        self.client_count: Optional[Dict[str, int]] = None
        self.pending_binary: Optional[Dict[str, Any]] = None
        self.last_binary_filename: Optional[str] = None

    async def connect(self) -> None:
        try:
            self.websocket = await websockets.connect(self.url, max_size=settings.MAX_MESSAGE_SIZE)
        except OSError as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}")
        await self.websocket.send(json.dumps({"event": "register", "data": "display"}))
        logger.info(f"📺 Registered as display at {self.url}")

    async def run(self) -> None:
        """Process messages until the relay closes the connection"""
        if self.websocket is None:
            await self.connect()
        try:
            async for message in self.websocket:
                if isinstance(message, bytes):
                    self.handle_bytes(message)
                else:
                    self.handle_text(message)
        except ConnectionClosed as e:
            logger.warning(f"Connection to relay closed: {e}")

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()

    def handle_text(self, text: str) -> None:
        try:
            envelope = json.loads(text)
            event, data = envelope["event"], envelope.get("data")
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Malformed message from relay: {text[:80]!r}")
            return
        self.handle_event(event, data)

    def handle_event(self, event: str, data: Any) -> Optional[ImageResource]:
        if event == "image-replace-binary-metadata":
            if not isinstance(data, dict):
                logger.error("❌ Invalid binary image metadata")
                return None
            logger.info(f"⚡ Received binary image metadata: {data.get('filename')}")
            self.pending_binary = data
        elif event in ("image-replace", "image-simple"):
            if not isinstance(data, dict):
                logger.error(f"❌ Invalid {event} payload")
                return None
            if data.get("uploadMethod") == "binary-chunked" and data.get("filename") == self.last_binary_filename:
                logger.debug(f"Skipping Base64 copy of {self.last_binary_filename}, binary copy already applied")
                self.last_binary_filename = None
                return None
            return self.replacer.handle_image_message(data)
        elif event == "image-start":
            self.replacer.start_chunked_receive(data)
        elif event == "image-chunk":
            self.replacer.receive_chunk(data)
        elif event == "image-complete":
            return self.replacer.complete_chunked_receive(data)
        elif event == "client-count":
            self.client_count = data
            logger.info(f"📊 Client count updated: {data}")
        elif self.on_control is not None:
            self.on_control(event, data)
        else:
            logger.info(f"{event}: {data}")
        return None

    def handle_bytes(self, payload: bytes) -> Optional[ImageResource]:
        if self.pending_binary is None:
            logger.warning(f"Binary frame ({len(payload)} bytes) without metadata, dropped")
            return None
        metadata, self.pending_binary = self.pending_binary, None
        resource = self.replacer.handle_binary(metadata, payload)
        self.last_binary_filename = metadata.get("filename") if resource is not None else None
        return resource


async def run_display(output_dir: str, url: str) -> None:
    surface = DirectorySurface(output_dir)
    client = DisplayClient(ImageReplacer(surface), url)
    await client.connect()
    try:
        await client.run()
    finally:
        await client.close()


def main():
    """CLI for the display client"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python -m aquarium_relay.clients.display <output_dir> [--url ws://host:port/ws]")
        sys.exit(1)

    output_dir = sys.argv[1]
    url = settings.RELAY_URL
    if "--url" in sys.argv:
        url_idx = sys.argv.index("--url")
        if len(sys.argv) > url_idx + 1:
            url = sys.argv[url_idx + 1]

    try:
        asyncio.run(run_display(output_dir, url))
    except TransportError as e:
        print(f"\n✗ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
