from __future__ import annotations

import json
import logging
import time
import typing as t

from mcp_sysinfo.utils.config import AuthConfig

Scope = t.Dict[str, t.Any]
Receive = t.Callable[[], t.Awaitable[t.Dict[str, t.Any]]]
Send = t.Callable[[t.Dict[str, t.Any]], t.Awaitable[None]]
ASGIApp = t.Callable[[Scope, Receive, Send], t.Awaitable[None]]


def mask_api_key(key: t.Optional[str]) -> str:
    if not key:
        return "empty"
    if len(key) <= 8:
        return "***"
    return key[:4] + "***" + key[-4:]


class ASGITransportWrapper:
    """ASGI wrapper around the MCP HTTP endpoint.

    Logs every request with its outcome, enforces the shared API key and
    contains faults raised while serving one connection so they never reach
    the server loop or other sessions.

    Usage:
        wrapper = ASGITransportWrapper(auth_config)
        asgi_app = wrapper.wrap(inner_app)
    """

    def __init__(self, auth: t.Optional[AuthConfig] = None, *, health_path: str = "/") -> None:
        self._auth = auth or AuthConfig()
        self._health_path = health_path
        self._logger = logging.getLogger(__name__)

    def wrap(self, inner_app: ASGIApp) -> ASGIApp:
        async def app(scope: Scope, receive: Receive, send: Send) -> None:
            if scope.get("type") != "http":
                # Pass through non-HTTP scopes untouched (e.g., lifespan)
                await inner_app(scope, receive, send)
                return

            headers = self._headers(scope)
            method = scope.get("method", "")
            path = scope.get("path", "")
            session_id = headers.get("mcp-session-id", "-")
            started = time.perf_counter()
            status: t.Optional[int] = None

            if not self._authorized(scope, headers):
                self._logger.warning(
                    "Unauthorized request method=%s path=%s session=%s user_agent=%s api_key=%s",
                    method,
                    path,
                    session_id,
                    headers.get("user-agent", ""),
                    mask_api_key(headers.get("x-api-key")),
                )
                await self._send_json(
                    send,
                    401,
                    {"error": "Unauthorized", "message": "API key required", "code": "AUTH_INVALID_API_KEY"},
                )
                return

            async def wrapped_send(message: t.Dict[str, t.Any]) -> None:
                nonlocal status, session_id
                if message.get("type") == "http.response.start":
                    status = message.get("status")
                    for key, value in message.get("headers") or []:
                        if key.decode("latin1").lower() == "mcp-session-id":
                            session_id = value.decode("latin1")
                await send(message)

            try:
                await inner_app(scope, receive, wrapped_send)
            except Exception:
                self._logger.exception("Unhandled error method=%s path=%s session=%s", method, path, session_id)
                if status is None:
                    status = 500
                    await self._send_json(send, 500, {"error": "Internal Server Error"})
            finally:
                self._logger.info(
                    "HTTP %s %s status=%s session=%s duration=%.3fs",
                    method,
                    path,
                    status,
                    session_id,
                    time.perf_counter() - started,
                )

        return app

    def _authorized(self, scope: Scope, headers: t.Dict[str, str]) -> bool:
        auth = self._auth
        if not auth.enabled:
            return True
        if scope.get("method") == "OPTIONS":
            return True
        path = scope.get("path", "")
        if path in auth.skip_paths:
            return True
        if (
            path == self._health_path
            and scope.get("method") == "GET"
            and "text/event-stream" not in headers.get("accept", "")
        ):
            return True
        user_agent = headers.get("user-agent", "")
        if any(user_agent.startswith(prefix) for prefix in auth.allowed_user_agents):
            self._logger.debug("Allowed user agent %s, skipping API key check", user_agent)
            return True
        return headers.get("x-api-key") == auth.api_key

    @staticmethod
    def _headers(scope: Scope) -> t.Dict[str, str]:
        headers: t.Dict[str, str] = {}
        for key_bytes, val_bytes in scope.get("headers", []) or []:
            headers[key_bytes.decode("latin1").lower()] = val_bytes.decode("latin1")
        return headers

    @staticmethod
    async def _send_json(send: Send, status: int, payload: t.Dict[str, t.Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
