"""
Relay endpoints: the WebSocket every client talks through, plus a read-only
view of who is connected.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..services import Connection, RelayDispatcher, relay_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])


def get_dispatcher() -> RelayDispatcher:
    """Dependency for the process-wide dispatcher"""
    return relay_dispatcher


@router.websocket("/ws")
async def relay_socket(
    websocket: WebSocket,
    dispatcher: Annotated[RelayDispatcher, Depends(get_dispatcher)]
):
    """
    One connection per display or controller.
    
    Text frames are JSON envelopes {"event", "data"}; binary frames are chunk
    frames of the file upload protocol.
    """
    await websocket.accept()
    connection = Connection(websocket)
    await dispatcher.connect(connection)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await dispatcher.dispatch_binary(connection, message["bytes"])
            elif message.get("text") is not None:
                await dispatcher.dispatch_text(connection, message["text"])
    except WebSocketDisconnect:
        pass
    finally:
        await dispatcher.disconnect(connection)


@router.get("/clients")
async def list_clients(dispatcher: Annotated[RelayDispatcher, Depends(get_dispatcher)]):
    """Connected clients, their roles and unfinished uploads"""
    registry = dispatcher.registry
    counts = registry.counts()
    return {
        "displays": counts.displays,
        "controllers": counts.controllers,
        "connections": [
            {
                "id": connection.id,
                "role": connection.role.value if connection.role else None,
                "pending_uploads": [
                    {
                        "session_id": session.session_id,
                        "filename": session.filename,
                        "progress": f"{session.received_chunks}/{session.total_chunks}",
                        "missing_chunks": session.missing_chunks(),
                    }
                    for session in connection.uploads
                ],
            }
            for connection in registry
        ],
    }
