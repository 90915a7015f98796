"""End-to-end relay behaviour over FastAPI's WebSocket test client"""
import json
import os

import pytest
from fastapi.testclient import TestClient

from aquarium_relay.api import get_dispatcher
from aquarium_relay.main import app
from aquarium_relay.services import ConnectionRegistry, RelayDispatcher, chunk_codec


@pytest.fixture
def client():
    dispatcher = RelayDispatcher(ConnectionRegistry())
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def next_event(ws, name):
    """Skip ahead to the next text event called name and return its data"""
    while True:
        message = ws.receive()
        if message.get("text") is None:
            continue
        envelope = json.loads(message["text"])
        if envelope["event"] == name:
            return envelope["data"]


def register(ws, role):
    ws.send_json({"event": "register", "data": role})
    return next_event(ws, "client-count")


def test_root_and_health(client):
    assert client.get("/").json()["websocket"] == "/ws"
    assert client.get("/health").json() == {"status": "healthy", "displays": 0, "controllers": 0}


def test_registration_updates_counts(client):
    with client.websocket_connect("/ws") as display:
        assert register(display, "display") == {"displays": 1, "controllers": 0}
        with client.websocket_connect("/ws") as controller:
            assert register(controller, "controller") == {"displays": 1, "controllers": 1}
            assert next_event(display, "client-count") == {"displays": 1, "controllers": 1}
            assert client.get("/health").json()["controllers"] == 1
        assert next_event(display, "client-count") == {"displays": 1, "controllers": 0}


def test_ping(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "ping", "data": "hi"})
        assert next_event(ws, "pong") == "hi"


def test_binary_upload_end_to_end(client):
    data = os.urandom(200000)
    chunks = chunk_codec.split(data, 65536)

    with client.websocket_connect("/ws") as display:
        register(display, "display")
        with client.websocket_connect("/ws") as controller:
            register(controller, "controller")

            controller.send_json({"event": "file-upload-metadata", "data": {
                "sessionId": "s1",
                "filename": "character1.png",
                "filesize": len(data),
                "totalChunks": len(chunks),
                "mimeType": "image/png",
            }})
            assert next_event(controller, "file-upload-ack") == {"sessionId": "s1", "chunkIndex": -1}

            pending = client.get("/clients").json()["connections"]
            uploads = [u for c in pending for u in c["pending_uploads"]]
            assert uploads == [{
                "session_id": "s1",
                "filename": "character1.png",
                "progress": "0/4",
                "missing_chunks": [0, 1, 2, 3],
            }]

            for index, chunk in enumerate(chunks):
                header = {"sessionId": "s1", "chunkIndex": index, "totalChunks": len(chunks), "filename": "character1.png"}
                controller.send_bytes(chunk_codec.pack_frame(header, chunk))
                assert next_event(controller, "file-upload-ack")["chunkIndex"] == index

            assert next_event(controller, "file-upload-complete") == {
                "sessionId": "s1", "filename": "character1.png", "filesize": 200000,
            }

            metadata = next_event(display, "image-replace-binary-metadata")
            assert metadata["filename"] == "character1.png"
            assert metadata["size"] == 200000
            assert display.receive()["bytes"] == data
            assert next_event(display, "image-replace")["uploadMethod"] == "binary-chunked"


def test_chunk_for_unknown_session(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(chunk_codec.pack_frame({"sessionId": "nope", "chunkIndex": 0, "totalChunks": 1}, b"x"))
        assert next_event(ws, "file-upload-error") == {"message": "Session not found", "sessionId": "nope"}


def test_malformed_text(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("boo")
        assert next_event(ws, "error") == {"message": "Malformed message"}


@pytest.mark.parametrize("event, data, reply", [
    ("file-upload-metadata",
     {"sessionId": "s1", "filename": "a.png", "filesize": 4, "totalChunks": 10 ** 19, "mimeType": "image/png"},
     "file-upload-error"),
    ("file-upload-metadata",
     {"sessionId": "s1", "filename": "a.png", "filesize": 4, "totalChunks": 10 ** 6, "mimeType": "image/png"},
     "file-upload-error"),
    ("file-upload-metadata",
     {"sessionId": "s1", "filename": "a.png", "filesize": 10 ** 12, "totalChunks": 1, "mimeType": "image/png"},
     "file-upload-error"),
    ("image-replace", {"filename": "a.png", "mimeType": "image/png", "data": 5}, None),
    ("image-simple", {"filename": "a.png", "data": {"nested": True}}, None),
])
def test_out_of_bounds_values_leave_socket_usable(client, event, data, reply):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": event, "data": data})
        if reply is not None:
            assert next_event(ws, reply)["sessionId"] == "s1"
        ws.send_json({"event": "ping", "data": "still here"})
        assert next_event(ws, "pong") == "still here"
    assert client.get("/health").json()["status"] == "healthy"
