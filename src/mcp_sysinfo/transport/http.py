"""Streamable HTTP binding: one endpoint answering POST, GET and DELETE."""

from __future__ import annotations

import logging
import typing as t

import mcp.types as types
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from mcp_sysinfo.core.dispatcher import (
    DEFAULT_PROTOCOL_VERSION,
    ProtocolDispatcher,
    collapse_responses,
    parse_messages,
)
from mcp_sysinfo.core.errors import (
    ChannelClosedError,
    ChannelFullError,
    MCPError,
    SessionNotFoundError,
    error_response,
    http_status_for,
)
from mcp_sysinfo.core.models import Session, SessionKind, StreamConflictError
from mcp_sysinfo.tools.monitor import StreamingCall
from mcp_sysinfo.utils.config import StreamConfig

from .sse import SSE_HEADERS, RequestEventStream, SessionEventStream, format_event, parse_last_event_id

_logger = logging.getLogger(__name__)

JSON = t.Dict[str, t.Any]
Spawn = t.Callable[[t.Callable[[], t.Awaitable[t.Any]]], None]

SESSION_HEADER = "Mcp-Session-Id"
SESSION_QUERY_PARAM = "sessionId"
LEGACY_SSE_PATH = "/sse"
JSON_MEDIA_TYPES = ("application/json", "application/*", "*/*")
SSE_MEDIA_TYPE = "text/event-stream"


def parse_accept(header: t.Optional[str]) -> t.Tuple[bool, bool]:
    """Return (accepts_json, accepts_sse). A missing header means JSON."""
    if not header or not header.strip():
        return True, False
    media_types = [part.split(";", 1)[0].strip().lower() for part in header.split(",")]
    accepts_json = any(m in JSON_MEDIA_TYPES for m in media_types)
    accepts_sse = SSE_MEDIA_TYPE in media_types
    return accepts_json, accepts_sse


class StreamableHTTPTransport:
    """Binds the protocol dispatcher to HTTP requests.

    `spawn` starts a coroutine function in the server's task group; streaming
    tool calls answered over SSE run there so they outlive the handler that
    dispatched them.
    """

    def __init__(
        self,
        dispatcher: ProtocolDispatcher,
        spawn: Spawn,
        stream_config: t.Optional[StreamConfig] = None,
        *,
        server_name: str = "mcp-system-info",
        server_version: str = "1.0.0",
        mcp_path: str = "/mcp",
    ) -> None:
        self._dispatcher = dispatcher
        self._spawn = spawn
        self._config = stream_config or StreamConfig()
        self._server_name = server_name
        self._server_version = server_version
        self._mcp_path = mcp_path

    @property
    def store(self):
        return self._dispatcher.store

    def routes(self, paths: t.Iterable[str]) -> t.List[Route]:
        seen: t.List[str] = []
        for path in paths:
            if path not in seen:
                seen.append(path)
        return [Route(path, endpoint=self.handle, methods=["GET", "POST", "DELETE"]) for path in seen]

    async def handle(self, request: Request) -> Response:
        if request.method == "POST":
            return await self.handle_post(request)
        if request.method == "GET":
            return await self.handle_get(request)
        return await self.handle_delete(request)

    @staticmethod
    def session_id_from(request: Request) -> t.Optional[str]:
        return request.headers.get(SESSION_HEADER) or request.query_params.get(SESSION_QUERY_PARAM) or None

    async def handle_post(self, request: Request) -> Response:
        accepts_json, accepts_sse = parse_accept(request.headers.get("accept"))
        if not (accepts_json or accepts_sse):
            _logger.warning("Rejecting POST with unacceptable Accept header %r", request.headers.get("accept"))
            return JSONResponse(
                error_response(
                    None,
                    types.INVALID_REQUEST,
                    "Not Acceptable: client must accept application/json or text/event-stream",
                ),
                status_code=406,
            )

        body = await request.body()
        try:
            messages, is_batch = parse_messages(body)
        except MCPError as exc:
            _logger.warning("Rejecting POST body: %s", exc.message)
            return JSONResponse(exc.to_response(None), status_code=exc.http_status)

        session_id = self.session_id_from(request)
        # Responses and deferred calls in input order.
        outcomes: t.List[t.Union[JSON, StreamingCall]] = []
        for message in messages:
            result = await self._dispatcher.dispatch(message, session_id)
            if result.created_session:
                session_id = result.session_id
            if result.response is not None:
                outcomes.append(result.response)
            elif result.call is not None:
                outcomes.append(result.call)

        session = self.store.get(session_id) if session_id else None
        headers = {SESSION_HEADER: session.id} if session is not None else {}
        if not outcomes:
            return Response(status_code=202, headers=headers)

        has_calls = any(isinstance(o, StreamingCall) for o in outcomes)
        use_sse = accepts_sse and (has_calls or not self._config.json_response or not accepts_json)
        if use_sse and session is not None and all(self._outcome_id(o) is not None for o in outcomes):
            response = self._stream_outcomes(session, outcomes, headers)
            if response is not None:
                return response

        responses: t.List[JSON] = []
        for outcome in outcomes:
            if isinstance(outcome, StreamingCall):
                responses.append(await outcome.run_inline())
            else:
                responses.append(outcome)

        payload = collapse_responses(responses)
        if payload is None:
            return Response(status_code=202, headers=headers)
        status = http_status_for(payload) if not is_batch and isinstance(payload, dict) else 200
        return JSONResponse(payload, status_code=status, headers=headers)

    def _stream_outcomes(
        self,
        session: Session,
        outcomes: t.List[t.Union[JSON, StreamingCall]],
        headers: t.Dict[str, str],
    ) -> t.Optional[Response]:
        try:
            channel = session.open_request_channel(self._outcome_id(o) for o in outcomes)
        except ChannelClosedError:
            return None
        try:
            for outcome in outcomes:
                if not isinstance(outcome, StreamingCall):
                    session.send(outcome, related_request_id=outcome["id"])
        except (ChannelFullError, ChannelClosedError) as exc:
            _logger.warning("Falling back to JSON for session %s: %s", session.id, exc)
            session.close_request_channel(channel)
            return None

        for outcome in outcomes:
            if isinstance(outcome, StreamingCall):
                self._spawn(outcome.run)

        stream = RequestEventStream(
            session,
            channel,
            keepalive_interval=self._config.keepalive_seconds,
            idle_timeout=self._config.idle_timeout_seconds,
        )
        return StreamingResponse(
            stream,
            media_type=SSE_MEDIA_TYPE,
            headers={**SSE_HEADERS, **headers},
            background=BackgroundTask(session.close_request_channel, channel),
        )

    @staticmethod
    def _outcome_id(outcome: t.Union[JSON, StreamingCall]) -> t.Any:
        if isinstance(outcome, StreamingCall):
            return outcome.request_id
        return outcome.get("id")

    async def handle_get(self, request: Request) -> Response:
        _, accepts_sse = parse_accept(request.headers.get("accept"))
        if not accepts_sse:
            return JSONResponse(self.server_info())

        session_id = self.session_id_from(request)
        preamble: t.List[str] = []
        if session_id:
            session = self.store.get(session_id)
            if session is None:
                return JSONResponse(SessionNotFoundError("Session not found").to_response(None), status_code=404)
            remove_on_close = False
        else:
            session = self.store.create(SessionKind.AUTO_PROVISIONED)
            preamble.append(format_event(f"/?{SESSION_QUERY_PARAM}={session.id}", event="endpoint"))
            remove_on_close = True
            _logger.info("Auto-provisioned session %s for GET stream", session.id)

        try:
            stream = SessionEventStream(
                session,
                self.store,
                last_event_id=parse_last_event_id(request.headers.get("last-event-id")),
                keepalive_interval=self._config.keepalive_seconds,
                idle_timeout=self._config.idle_timeout_seconds,
                remove_on_close=remove_on_close,
                preamble=preamble,
            )
        except StreamConflictError as exc:
            _logger.warning("Refusing second stream: %s", exc)
            return JSONResponse(
                error_response(None, types.INVALID_REQUEST, "Conflict: session already has an open stream"),
                status_code=409,
            )
        except ChannelClosedError:
            return JSONResponse(SessionNotFoundError("Session not found").to_response(None), status_code=404)

        return StreamingResponse(
            stream,
            media_type=SSE_MEDIA_TYPE,
            headers={**SSE_HEADERS, SESSION_HEADER: session.id},
            background=BackgroundTask(stream.release),
        )

    async def handle_delete(self, request: Request) -> Response:
        session_id = self.session_id_from(request)
        if session_id:
            self.store.remove(session_id)
        return Response(status_code=204)

    def server_info(self) -> JSON:
        return {
            "status": "ok",
            "message": "MCP System Info Server is running",
            "name": self._server_name,
            "version": self._server_version,
            "protocol": DEFAULT_PROTOCOL_VERSION,
            "endpoints": {"mcp": self._mcp_path, "legacy_sse": LEGACY_SSE_PATH},
        }
