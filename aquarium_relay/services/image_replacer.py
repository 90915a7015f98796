"""
Display-side image replacement.

Turns received payloads (raw binary, Base64, data URLs, or legacy Base64
fragments) into ImageResource objects and hands them to a DisplaySurface,
addressed by targets derived from the filename:

    character3.png       -> .character3
    walking-left-1.gif   -> .walking-left
    walking-right-2.webp -> .walking-right-2
    anything             -> [data-image-name="anything"]  (if the surface has it)
"""
import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import DecodeError, MissingChunksError, TransferError
from ..schemas import ImageChunk, ImageComplete, ImageStart
from .reassembly import ChunkSlots

logger = logging.getLogger(__name__)

_NON_BASE64 = re.compile(r"[^A-Za-z0-9+/=]")
_EXTENSIONS = r"(?:png|gif|jpg|jpeg|webp)"
_CHARACTER = re.compile(rf"character(\d+)\.{_EXTENSIONS}$", re.IGNORECASE)
_WALKING = re.compile(rf"walking-(left|right)-(\d+)\.{_EXTENSIONS}$", re.IGNORECASE)


@dataclass
class ImageResource:
    """A decoded image ready to be shown"""
    filename: str
    mime_type: str
    data: bytes
    upload_method: str = "binary"
    received_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.data)


class DisplaySurface:
    """
    Where images end up. Subclasses decide what "showing" an image means.
    
    find_targets() filters candidate selectors down to the ones that exist on
    this surface; the default accepts every pattern-derived candidate.
    """

    def find_targets(self, filename: str, candidates: List[str]) -> List[str]:
        return [c for c in candidates if not c.startswith("[data-image-name=")]

    def apply(self, target: str, resource: ImageResource) -> None:
        raise NotImplementedError

    def list_available_targets(self) -> List[str]:
        return []


def resolve_targets(filename: str) -> List[str]:
    """Candidate selectors for filename, most specific first"""
    targets = []

    match = _CHARACTER.search(filename)
    if match:
        targets.append(f".character{int(match.group(1))}")

    match = _WALKING.search(filename)
    if match:
        direction, number = match.group(1).lower(), int(match.group(2))
        targets.append(f".walking-{direction}" if number == 1 else f".walking-{direction}-{number}")

    targets.append(f'[data-image-name="{filename}"]')
    return targets


def clean_base64(payload: str) -> str:
    """
    Normalize a Base64 string that may have been mangled in transit.
    
    Strips a data URL prefix, drops characters outside the Base64 alphabet,
    and re-pads to a multiple of 4 (a single dangling character is dropped).
    """
    if not isinstance(payload, str):
        raise DecodeError("Invalid Base64 input")

    if payload.startswith("data:"):
        marker = payload.find("base64,")
        if marker == -1:
            raise DecodeError("Invalid data URL format")
        payload = payload[marker + len("base64,"):]

    cleaned = _NON_BASE64.sub("", payload).rstrip("=")
    remainder = len(cleaned) % 4
    if remainder == 1:
        cleaned = cleaned[:-1]
    elif remainder:
        cleaned += "=" * (4 - remainder)
    return cleaned


def decode_base64(payload: str) -> bytes:
    cleaned = clean_base64(payload)
    if not cleaned:
        raise DecodeError("Empty image data received")
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Base64 decode error: {e}")


def decode_fragments(fragments: Sequence[str]) -> bytes:
    """
    Decode ordered Base64 fragments.
    
    Fragments produced by encoding consecutive byte slices each carry their own
    padding, so when every fragment but the last sits on a 4-character boundary
    they are decoded one by one. Otherwise the text is joined and decoded once.
    """
    cleaned = [_NON_BASE64.sub("", f) for f in fragments]
    if len(cleaned) > 1 and all(len(f) % 4 == 0 for f in cleaned[:-1]):
        return b"".join(decode_base64(f) for f in cleaned if f)
    return decode_base64("".join(cleaned))


class _FragmentAssembly:
    def __init__(self, start: ImageStart):
        self.start = start
        self.slots: ChunkSlots = ChunkSlots(start.total_chunks)
        self.next_index = 0


class ImageReplacer:
    """Decodes incoming images and applies them to a DisplaySurface by filename"""

    def __init__(self, surface: DisplaySurface, supported_types: Sequence[str] = settings.SUPPORTED_MIME_TYPES):
        self.surface = surface
        self.supported_types = tuple(supported_types)
        self.images: Dict[str, ImageResource] = {}
        self.assemblies: Dict[str, _FragmentAssembly] = {}

    def handle_binary(self, metadata: Dict[str, Any], raw: bytes, upload_method: str = "binary") -> Optional[ImageResource]:
        """Fast path: raw bytes are the image, no text decoding involved"""
        filename = metadata.get("filename")
        mime_type = metadata.get("mimeType") or metadata.get("mime_type")
        if not filename:
            logger.error("Binary image without filename, skipped")
            return None
        logger.info(f"⚡ Processing binary image: {filename} ({len(raw) / 1024:.1f}KB)")
        return self._apply(ImageResource(filename, mime_type, bytes(raw), metadata.get("uploadMethod") or upload_method))

    def handle_base64(self, metadata: Dict[str, Any], payload: str) -> Optional[ImageResource]:
        """
        Compat path: payload is Base64 or a data URL.
        
        Raises:
            DecodeError: nothing decodable left after cleanup
        """
        raw = decode_base64(payload)
        return self.handle_binary(metadata, raw, upload_method="base64")

    def handle_image_message(self, message: Dict[str, Any]) -> Optional[ImageResource]:
        """image-replace / image-simple: decode failures are logged, never raised"""
        try:
            return self.handle_base64(message, message.get("data"))
        except DecodeError as e:
            logger.error(f"❌ Failed to process image {message.get('filename')}: {e.message}")
            return None

    def start_chunked_receive(self, metadata: Dict[str, Any]) -> None:
        try:
            start = ImageStart.model_validate(metadata)
        except ValidationError as e:
            logger.error(f"❌ Invalid image-start: {e.errors()[0]['msg']}")
            return
        if start.filename in self.assemblies:
            logger.warning(f"Restarting chunked receive for {start.filename}")
        self.assemblies[start.filename] = _FragmentAssembly(start)
        logger.info(f"📦 Starting large image receive: {start.filename} ({start.total_chunks} chunks)")

    def receive_chunk(self, chunk: Dict[str, Any]) -> bool:
        """Store one Base64 fragment by its index (or the next implicit index)"""
        try:
            message = ImageChunk.model_validate(chunk)
        except ValidationError as e:
            logger.error(f"❌ Invalid image-chunk: {e.errors()[0]['msg']}")
            return False

        assembly = self.assemblies.get(message.filename)
        if assembly is None:
            logger.error(f"❌ Received chunk for {message.filename} without start signal")
            return False

        index = assembly.next_index if message.chunk_index is None else message.chunk_index
        try:
            is_new = assembly.slots.put(index, message.data)
        except TransferError as e:
            logger.error(f"❌ {message.filename}: {e.message}")
            return False
        assembly.next_index = max(assembly.next_index, index + 1)

        if not is_new:
            logger.warning(f"⚠️ Duplicate chunk received: {index}")
        logger.debug(f"📥 Received chunk {index + 1}/{assembly.slots.total} for {message.filename}")
        return True

    def complete_chunked_receive(self, complete: Dict[str, Any]) -> Optional[ImageResource]:
        try:
            filename = ImageComplete.model_validate(complete).filename
        except ValidationError as e:
            logger.error(f"❌ Invalid image-complete: {e.errors()[0]['msg']}")
            return None

        assembly = self.assemblies.pop(filename, None)
        if assembly is None:
            logger.error(f"❌ Received complete signal for {filename} without data")
            return None

        try:
            raw = decode_fragments(assembly.slots.ordered())
        except MissingChunksError as e:
            logger.error(f"❌ {filename} incomplete, missing chunks: {e.missing}")
            return None
        except DecodeError as e:
            logger.error(f"❌ Failed to process large image {filename}: {e.message}")
            return None

        metadata = {"filename": filename, "mimeType": assembly.start.mime_type}
        return self.handle_binary(metadata, raw, upload_method="base64-chunked")

    def _apply(self, resource: ImageResource) -> Optional[ImageResource]:
        if resource.mime_type not in self.supported_types:
            logger.warning(f"⚠️ Unsupported image type: {resource.mime_type} ({resource.filename})")
            return None

        targets = self.surface.find_targets(resource.filename, resolve_targets(resource.filename))
        if not targets:
            logger.warning(f"⚠️ No target elements found for: {resource.filename}")
            return None

        for target in targets:
            self.surface.apply(target, resource)

        self.images[resource.filename] = resource
        logger.info(f"✅ Image replaced: {resource.filename} -> {', '.join(targets)} ({resource.size / 1024:.1f}KB)")
        return resource
