"""
Connection registry: the single source of truth for who is connected and in
which role, plus the fan-out helpers built on top of it.
"""
import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set

from starlette.websockets import WebSocketDisconnect

from ..core.config import settings
from ..schemas import ClientCount
from .upload_store import UploadSessionStore

logger = logging.getLogger(__name__)


class Role(str, Enum):
    DISPLAY = "display"
    CONTROLLER = "controller"


class Connection:
    """
    One live WebSocket plus the state the server keeps for it.
    
    Wraps anything with async send_text/send_bytes (Starlette's WebSocket),
    so sends to a peer that already went away are logged instead of raised.
    """

    def __init__(self, websocket, connection_id: Optional[str] = None, session_ttl: Optional[float] = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex[:12]
        self.role: Optional[Role] = None
        self.open = True
        self.pair_lock = asyncio.Lock()
        self.uploads = UploadSessionStore(
            ttl=settings.SESSION_TTL_SECONDS if session_ttl is None else session_ttl
        )

    def __repr__(self):
        return f"<Connection(id={self.id}, role={self.role.value if self.role else None})>"

    async def send_event(self, event: str, data: Any = None) -> bool:
        if not self.open:
            return False
        try:
            await self.websocket.send_text(json.dumps({"event": event, "data": data}, separators=(",", ":")))
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(f"Send of {event} to {self.id} failed: {e}")
            self.open = False
            return False

    async def send_bytes(self, data: bytes) -> bool:
        if not self.open:
            return False
        try:
            await self.websocket.send_bytes(data)
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(f"Binary send to {self.id} failed: {e}")
            self.open = False
            return False

    async def send_event_with_bytes(self, event: str, data: Any, payload: bytes) -> bool:
        """Text event immediately followed by its binary frame, never interleaved with another pair"""
        async with self.pair_lock:
            if not await self.send_event(event, data):
                return False
            return await self.send_bytes(payload)


class ConnectionRegistry:
    """
    Process-wide registry of connections and their roles.
    
    Mutated only from the event loop, so no locking is needed. Every change
    of role membership is followed by a client-count broadcast.
    """

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.displays: Set[str] = set()
        self.controllers: Set[str] = set()

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self.connections.values()))

    def __len__(self) -> int:
        return len(self.connections)

    def add(self, connection: Connection) -> None:
        self.connections[connection.id] = connection
        logger.info(f"🔗 Client connected: {connection.id}")

    def remove(self, connection: Connection) -> None:
        """Forget a connection; safe to call more than once"""
        self.connections.pop(connection.id, None)
        self.displays.discard(connection.id)
        self.controllers.discard(connection.id)
        connection.open = False

    def register(self, connection: Connection, role: Role) -> None:
        """Put connection into exactly one role set"""
        self.displays.discard(connection.id)
        self.controllers.discard(connection.id)
        if role is Role.DISPLAY:
            self.displays.add(connection.id)
            logger.info(f"📺 Display registered: {connection.id}")
        else:
            self.controllers.add(connection.id)
            logger.info(f"🎮 Controller registered: {connection.id}")
        connection.role = role

    def counts(self) -> ClientCount:
        return ClientCount(displays=len(self.displays), controllers=len(self.controllers))

    def members(self, role: Role) -> List[Connection]:
        ids = self.displays if role is Role.DISPLAY else self.controllers
        return [self.connections[i] for i in list(ids) if i in self.connections]

    async def broadcast(self, event: str, data: Any = None, role: Optional[Role] = None) -> int:
        """Send an event to every connection in role (or to everyone); returns deliveries"""
        targets = self.members(role) if role else list(self)
        delivered = 0
        for connection in targets:
            if await connection.send_event(event, data):
                delivered += 1
        return delivered

    async def broadcast_client_count(self) -> ClientCount:
        counts = self.counts()
        await self.broadcast("client-count", counts.to_wire())
        logger.info(f"📊 Clients: {counts.displays} display(s), {counts.controllers} controller(s)")
        return counts
