"""
Chunk codec: split payloads into fixed-size chunks and pack/unpack the
binary frames that carry them.

Frame layout (no length prefix):

    UTF8(JSON(header)) + b"|||" + raw chunk bytes

The receiver takes everything before the FIRST delimiter as the header, so
pack_frame refuses headers whose JSON text contains the delimiter. Payload
bytes are never searched and may contain it freely.
"""
import json
import logging
from typing import List, Sequence, Tuple

from ..core.errors import FramingError

logger = logging.getLogger(__name__)

DELIMITER = b"|||"
DEFAULT_CHUNK_SIZE = 64 * 1024


def count_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """ceil(size / chunk_size); an empty payload still travels as one chunk"""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if size <= 0:
        return 1
    return (size + chunk_size - 1) // chunk_size


def split(buffer: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[bytes]:
    """
    Split buffer into consecutive slices of chunk_size bytes.
    
    The last slice may be shorter. A zero-length buffer yields one empty
    slice so the protocol stays uniform (metadata, one chunk, one ack).
    """
    total = count_chunks(len(buffer), chunk_size)
    view = memoryview(buffer)
    return [bytes(view[i * chunk_size:(i + 1) * chunk_size]) for i in range(total)]


def join(chunks: Sequence[bytes]) -> bytes:
    """Concatenate chunks in the given (index) order"""
    return b"".join(chunks)


def pack_frame(header: dict, chunk: bytes) -> bytes:
    """Encode header as compact JSON and prepend it to the chunk bytes"""
    try:
        header_bytes = json.dumps(header, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise FramingError(f"Header is not JSON serializable: {e}")
    
    if DELIMITER in header_bytes:
        raise FramingError(
            "Header contains the frame delimiter",
            header.get("sessionId") if isinstance(header, dict) else None,
        )
    
    return header_bytes + DELIMITER + bytes(chunk)


def unpack_frame(frame: bytes) -> Tuple[dict, bytes]:
    """
    Split a frame into (header dict, chunk bytes).
    
    Raises:
        FramingError: no delimiter, undecodable header, or header is not a JSON object
    """
    frame = bytes(frame)
    delimiter_index = frame.find(DELIMITER)
    if delimiter_index == -1:
        raise FramingError("Invalid chunk format")
    
    try:
        header = json.loads(frame[:delimiter_index].decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise FramingError(f"Invalid chunk header: {e}")
    
    if not isinstance(header, dict):
        raise FramingError("Invalid chunk header: expected a JSON object")
    
    return header, frame[delimiter_index + len(DELIMITER):]
