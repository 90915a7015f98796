"""
Pydantic schemas for the payloads carried inside WebSocket event envelopes.

Field names are snake_case in Python and camelCase on the wire, so browser
controllers and displays keep speaking the same JSON they always did.
"""
import time
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from ..core.config import settings


def now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit used on the wire"""
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base model: camelCase aliases, accepts either spelling on input"""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Envelope(BaseModel):
    """Text frame wrapper: every JSON message names its event"""
    event: str = Field(..., min_length=1)
    data: Any = None


class FileUploadMetadata(WireModel):
    """Announces a chunked upload before the first chunk frame"""
    session_id: str = Field(..., alias="sessionId", min_length=1)
    filename: str
    filesize: int = Field(..., ge=0)
    total_chunks: int = Field(..., alias="totalChunks", ge=1, le=settings.MAX_TOTAL_CHUNKS)
    mime_type: str = Field("application/octet-stream", alias="mimeType")
    chunk_size: Optional[int] = Field(None, alias="chunkSize", gt=0)
    timestamp: Optional[int] = None


class ChunkHeader(WireModel):
    """JSON header packed in front of every binary chunk frame"""
    session_id: str = Field(..., alias="sessionId", min_length=1)
    chunk_index: int = Field(..., alias="chunkIndex")
    total_chunks: int = Field(..., alias="totalChunks", ge=1)
    filename: str = ""


class FileUploadAck(WireModel):
    """chunk_index == -1 acknowledges the metadata frame"""
    session_id: str = Field(..., alias="sessionId")
    chunk_index: int = Field(..., alias="chunkIndex", ge=-1)


class FileUploadError(WireModel):
    message: str
    session_id: Optional[str] = Field(None, alias="sessionId")
    missing_chunks: Optional[List[int]] = Field(None, alias="missingChunks")


class FileUploadComplete(WireModel):
    session_id: str = Field(..., alias="sessionId")
    filename: str
    filesize: int


class ClientCount(WireModel):
    displays: int
    controllers: int


class BinaryImageMetadata(WireModel):
    """Sent to displays right before the raw image-replace-binary-data frame"""
    type: str = "image_replace_binary"
    filename: str
    mime_type: str = Field(..., alias="mimeType")
    size: int
    timestamp: int = Field(default_factory=now_ms)
    upload_method: str = Field("binary-chunked", alias="uploadMethod")


class ImageReplaceMessage(WireModel):
    """Whole image as Base64 (or a data URL) in one JSON message"""
    type: str = "image_replace"
    filename: str
    mime_type: str = Field(..., alias="mimeType")
    size: Optional[int] = None
    data: str
    timestamp: Optional[int] = None
    upload_method: Optional[str] = Field(None, alias="uploadMethod")


class ImageStart(WireModel):
    """Legacy chunked path: announces a sequence of Base64 fragments"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    filename: str
    total_chunks: int = Field(..., alias="totalChunks", ge=1, le=settings.MAX_TOTAL_CHUNKS)
    chunk_size: Optional[int] = Field(None, alias="chunkSize")
    mime_type: str = Field("image/png", alias="mimeType")
    size: Optional[int] = None


class ImageChunk(WireModel):
    filename: str
    chunk_index: Optional[int] = Field(None, alias="chunkIndex", ge=0)
    total_chunks: Optional[int] = Field(None, alias="totalChunks")
    data: str


class ImageComplete(WireModel):
    filename: str
