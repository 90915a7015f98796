"""Core module exports"""
from .config import settings, Settings
from .errors import (
    TransferError,
    FramingError,
    SessionNotFoundError,
    ChunkIndexError,
    MissingChunksError,
    DecodeError,
    UploadValidationError,
    UploadProtocolError,
    TransportError,
)

__all__ = [
    "settings",
    "Settings",
    "TransferError",
    "FramingError",
    "SessionNotFoundError",
    "ChunkIndexError",
    "MissingChunksError",
    "DecodeError",
    "UploadValidationError",
    "UploadProtocolError",
    "TransportError",
]
