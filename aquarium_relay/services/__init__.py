"""Services module exports"""
from . import chunk_codec
from .reassembly import ChunkSlots
from .upload_store import UploadSessionStore, ReceiverSession, CompletedUpload
from .registry import Connection, ConnectionRegistry, Role
from .dispatcher import RelayDispatcher, EventKind, Route, ROUTES
from .image_replacer import ImageReplacer, ImageResource, DisplaySurface, resolve_targets

relay_registry = ConnectionRegistry()
relay_dispatcher = RelayDispatcher(relay_registry)

__all__ = [
    "chunk_codec",
    "ChunkSlots",
    "UploadSessionStore",
    "ReceiverSession",
    "CompletedUpload",
    "Connection",
    "ConnectionRegistry",
    "Role",
    "RelayDispatcher",
    "EventKind",
    "Route",
    "ROUTES",
    "ImageReplacer",
    "ImageResource",
    "DisplaySurface",
    "resolve_targets",
    "relay_registry",
    "relay_dispatcher",
]
