"""Schemas module exports"""
from .events import (
    now_ms,
    Envelope,
    FileUploadMetadata,
    ChunkHeader,
    FileUploadAck,
    FileUploadError,
    FileUploadComplete,
    ClientCount,
    BinaryImageMetadata,
    ImageReplaceMessage,
    ImageStart,
    ImageChunk,
    ImageComplete,
)

__all__ = [
    "now_ms",
    "Envelope",
    "FileUploadMetadata",
    "ChunkHeader",
    "FileUploadAck",
    "FileUploadError",
    "FileUploadComplete",
    "ClientCount",
    "BinaryImageMetadata",
    "ImageReplaceMessage",
    "ImageStart",
    "ImageChunk",
    "ImageComplete",
]
