"""Unit tests for ASGITransportWrapper."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from mcp_sysinfo.core.asgi_wrapper import ASGITransportWrapper, mask_api_key
from mcp_sysinfo.utils.config import AuthConfig


def with_headers(scope, *headers, method=None, path=None):
    scope = dict(scope)
    scope["headers"] = list(scope["headers"]) + [(k.encode(), v.encode()) for k, v in headers]
    if method:
        scope["method"] = method
    if path:
        scope["path"] = path
    return scope


def sent_status(send):
    starts = [c.args[0] for c in send.call_args_list if c.args[0]["type"] == "http.response.start"]
    assert len(starts) == 1
    return starts[0]["status"]


def sent_body(send):
    return b"".join(c.args[0].get("body", b"") for c in send.call_args_list if c.args[0]["type"] == "http.response.body")


@pytest.mark.asyncio
class TestASGITransportWrapper:
    """Test ASGITransportWrapper functionality."""

    async def test_non_http_passthrough(self, mock_asgi_app):
        inner = AsyncMock()
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(inner)
        scope = {"type": "lifespan"}

        await wrapped(scope, AsyncMock(), AsyncMock())

        inner.assert_awaited_once()
        assert inner.call_args.args[0] is scope

    async def test_auth_disabled_passes(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper().wrap(mock_asgi_app)

        await wrapped(http_scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_missing_key_rejected(self, mock_asgi_app, http_scope, mock_receive, mock_send, caplog):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret-key-123")).wrap(mock_asgi_app)
        scope = with_headers(http_scope, ("x-api-key", "wrong-key-98765"))

        with caplog.at_level(logging.WARNING, logger="mcp_sysinfo.core.asgi_wrapper"):
            await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 401
        assert json.loads(sent_body(mock_send)) == {
            "error": "Unauthorized",
            "message": "API key required",
            "code": "AUTH_INVALID_API_KEY",
        }
        assert "wron***8765" in caplog.text
        assert "wrong-key-98765" not in caplog.text

    async def test_valid_key_passes(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(mock_asgi_app)
        scope = with_headers(http_scope, ("X-API-Key", "secret"))

        await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_allowed_user_agent_passes(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(mock_asgi_app)
        scope = dict(http_scope, headers=[(b"user-agent", b"Cursor/1.2.3")])

        await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_health_check_is_public(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(mock_asgi_app)
        scope = with_headers(http_scope, ("accept", "application/json"), method="GET", path="/")

        await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_sse_stream_on_root_needs_key(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(mock_asgi_app)
        scope = with_headers(http_scope, ("accept", "text/event-stream"), method="GET", path="/")

        await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 401

    async def test_skip_paths(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret", skip_paths=["/mcp"])).wrap(mock_asgi_app)

        await wrapped(http_scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_cors_preflight_passes(self, mock_asgi_app, http_scope, mock_receive, mock_send):
        wrapped = ASGITransportWrapper(AuthConfig(api_key="secret")).wrap(mock_asgi_app)
        scope = dict(http_scope, method="OPTIONS")

        await wrapped(scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_exception_before_response_becomes_500(self, http_scope, mock_receive, mock_send, caplog):
        async def failing_app(scope, receive, send):
            raise RuntimeError("boom")

        wrapped = ASGITransportWrapper().wrap(failing_app)

        with caplog.at_level(logging.ERROR, logger="mcp_sysinfo.core.asgi_wrapper"):
            await wrapped(http_scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 500
        assert "Unhandled error" in caplog.text

    async def test_exception_after_response_started_is_contained(self, http_scope, mock_receive, mock_send):
        async def failing_stream(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            raise RuntimeError("stream broke")

        wrapped = ASGITransportWrapper().wrap(failing_stream)

        await wrapped(http_scope, mock_receive, mock_send)

        assert sent_status(mock_send) == 200

    async def test_request_is_logged_with_session(self, mock_asgi_app, http_scope, mock_receive, mock_send, caplog):
        wrapped = ASGITransportWrapper().wrap(mock_asgi_app)

        with caplog.at_level(logging.INFO, logger="mcp_sysinfo.core.asgi_wrapper"):
            await wrapped(http_scope, mock_receive, mock_send)

        assert "HTTP POST /mcp status=200 session=abc123" in caplog.text


class TestMaskApiKey:
    @pytest.mark.parametrize(
        "key, masked",
        [(None, "empty"), ("", "empty"), ("short", "***"), ("abcdefghijkl", "abcd***ijkl")],
    )
    def test_mask(self, key, masked):
        assert mask_api_key(key) == masked
