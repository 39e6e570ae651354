"""Shared fixtures and fakes for unit tests."""

from __future__ import annotations

import typing as t
from unittest.mock import AsyncMock

import pytest

from mcp_sysinfo.core.dispatcher import ProtocolDispatcher
from mcp_sysinfo.core.models import Session, SessionKind
from mcp_sysinfo.core.session_manager import SessionStore
from mcp_sysinfo.sysinfo import CPUInfo, MemoryInfo, SystemInfo
from mcp_sysinfo.tools import build_default_registry


class FakeCollector:
    """Deterministic collector; set `fail` to make the next samples raise."""

    def __init__(self, info: t.Optional[SystemInfo] = None) -> None:
        self.info = info or make_system_info()
        self.calls = 0
        self.fail: t.Optional[Exception] = None

    def __call__(self) -> SystemInfo:
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        return self.info


def make_system_info(usage: float = 12.5, used_percent: float = 50.0) -> SystemInfo:
    return SystemInfo(
        cpu=CPUInfo(count=8, model_name="Test CPU @ 3.00GHz", usage_percent=usage),
        memory=MemoryInfo(
            total_bytes=16 * 1024**3,
            available_bytes=8 * 1024**3,
            used_bytes=8 * 1024**3,
            used_percent=used_percent,
        ),
    )


@pytest.fixture
def fake_collector():
    return FakeCollector()


@pytest.fixture
def store():
    """Fresh session store with small buffers."""
    return SessionStore(outbox_size=10, max_events=10)


@pytest.fixture
def session(store) -> Session:
    """An explicit, initialized session registered in the store."""
    return store.create(SessionKind.EXPLICIT)


@pytest.fixture
def dispatcher(store, fake_collector):
    return ProtocolDispatcher(
        store,
        build_default_registry(fake_collector),
        fake_collector,
        server_name="test-server",
        server_version="0.0.1",
        instructions="test instructions",
    )


@pytest.fixture
def mock_asgi_app():
    """Mock ASGI application."""

    async def app(scope, receive, send):
        _ = await receive()
        await send(
            {
                "type": "http.response.start",
                "status": 200,
                "headers": [(b"content-type", b"application/json"), (b"mcp-session-id", b"abc123")],
            }
        )
        await send({"type": "http.response.body", "body": b'{"result": "ok"}'})

    return app


@pytest.fixture
def http_scope():
    """Create a sample HTTP scope."""
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/mcp",
        "query_string": b"",
        "root_path": "",
        "headers": [
            (b"content-type", b"application/json"),
            (b"user-agent", b"test-client/1.0"),
        ],
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "state": {},
    }


@pytest.fixture
def mock_receive():
    """Mock ASGI receive callable."""

    async def receive():
        return {
            "type": "http.request",
            "body": b'{"jsonrpc": "2.0", "method": "ping", "id": 1}',
            "more_body": False,
        }

    return receive


@pytest.fixture
def mock_send():
    """Mock ASGI send callable."""
    return AsyncMock()


@pytest.fixture
def initialize_request():
    """Sample initialize request."""
    return {
        "jsonrpc": "2.0",
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "clientInfo": {"name": "test-client", "version": "1.0"},
            "capabilities": {},
        },
        "id": 1,
    }


@pytest.fixture
def initialized_notification():
    """Sample initialized notification."""
    return {"jsonrpc": "2.0", "method": "notifications/initialized"}


def stored_messages(session: Session) -> t.List[dict]:
    """Every message the session has stored for delivery, oldest first."""
    return [entry.message for entry in session.event_log.events_after(0)]


@pytest.fixture
def drain():
    return stored_messages


@pytest.fixture
def system_info_factory():
    return make_system_info
