"""
Pytest configuration and fixtures for testing.

Provides a fake connection that records every frame the router sends,
a router wired to a temporary uploads directory, and an aiohttp test
client for the HTTP/WebSocket surface.
"""

import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from arenacast.router import EventRouter
from main import create_app


class FakeConnection:
    """Stands in for an aiohttp WebSocketResponse"""

    def __init__(self):
        self.send_str = AsyncMock(side_effect=self._record)
        self.close = AsyncMock()
        self.frames = []

    async def _record(self, text):
        self.frames.append(json.loads(text))

    def events(self, event=None):
        """Payloads of all received frames, optionally of one event type"""
        return [
            frame["data"] for frame in self.frames
            if event is None or frame["type"] == event
        ]

    def types(self):
        return [frame["type"] for frame in self.frames]

    def clear(self):
        self.frames.clear()


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def router(tmp_path):
    return EventRouter(uploads_dir=tmp_path / "uploads", max_upload_bytes=1024)


@pytest.fixture
def connect(router):
    """
    Connect a fake endpoint, optionally announcing a role.

    Returns (session_id, connection) with the connect-time frames cleared.
    """

    async def _connect(role=None, name=None):
        conn = FakeConnection()
        session_id = await router.connect(conn)
        if role == "mobile":
            data = {"name": name} if name is not None else {}
            await router.handle(session_id, {"type": "register-mobile-device", "data": data})
        elif role is not None:
            await router.handle(session_id, {"type": f"{role}-connected"})
        conn.clear()
        return session_id, conn

    return _connect


@pytest.fixture
def static_dir(tmp_path):
    static = tmp_path / "public"
    static.mkdir()
    for page in ("index.html", "mobile.html", "control-room.html", "arena-display.html"):
        (static / page).write_text(f"<html><body>{page}</body></html>")
    return static


@pytest_asyncio.fixture
async def client(tmp_path, static_dir):
    app = create_app(
        static_dir=static_dir,
        uploads_dir=tmp_path / "uploads",
        public_url="https://192.168.0.13:3000",
        rate_limit=1000,
    )
    async with TestClient(TestServer(app)) as test_client:
        yield test_client
