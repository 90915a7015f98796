"""Shared fakes for relay tests"""
import json

import pytest

from aquarium_relay.services import Connection, ConnectionRegistry, RelayDispatcher


class FakeWebSocket:
    """Stands in for Starlette's WebSocket: records everything the server sends"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(("event", json.loads(text)))

    async def send_bytes(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(("bytes", bytes(data)))

    def events(self, name=None):
        return [
            item["data"]
            for kind, item in self.sent
            if kind == "event" and (name is None or item["event"] == name)
        ]

    def event_names(self):
        return [item["event"] for kind, item in self.sent if kind == "event"]

    def binary(self):
        return [item for kind, item in self.sent if kind == "bytes"]


class RecordingTransport:
    """Sender-side transport that only records what an UploadSession sends"""

    def __init__(self, fail_after=None):
        self.events = []
        self.frames = []
        self.fail_after = fail_after

    async def send_event(self, event, data=None):
        self.events.append((event, data))

    async def send_bytes(self, data):
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise OSError("connection reset")
        self.frames.append(bytes(data))


@pytest.fixture
def dispatcher():
    return RelayDispatcher(ConnectionRegistry())


@pytest.fixture
def make_connection():
    def factory(connection_id=None, fail=False, session_ttl=300.0):
        return Connection(FakeWebSocket(fail=fail), connection_id=connection_id, session_ttl=session_ttl)
    return factory


@pytest.fixture
def recording_transport():
    return RecordingTransport
