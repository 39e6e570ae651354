from __future__ import annotations

import json
import logging
import typing as t
from dataclasses import dataclass

import mcp.types as types

from mcp_sysinfo.sysinfo import Collector
from mcp_sysinfo.tools.monitor import MonitorSettings, StreamingCall, StreamingToolRunner
from mcp_sysinfo.tools.registry import ToolRegistry, ToolSpec

from .errors import (
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MCPError,
    MethodNotFoundError,
    ParseError,
    SessionNotFoundError,
)
from .models import MessageKind, Session, SessionKind, classify
from .session_manager import SessionStore

JSON = t.Dict[str, t.Any]

_logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
DEFAULT_PROTOCOL_VERSION = types.LATEST_PROTOCOL_VERSION

# Methods an auto-provisioned session may use before the client confirms
# initialization.
UNINITIALIZED_ALLOWED = frozenset(
    {
        "ping",
        "tools/list",
        "initialized",
        "notifications/initialized",
        "notifications/cancelled",
    }
)


@dataclass
class DispatchResult:
    """Outcome of dispatching one message.

    `response` is the reply to deliver now, `session_id` the session the
    message ended up bound to (the new id after `initialize`), and `call` an
    unstarted streaming tool invocation the transport must run.
    """

    response: t.Optional[JSON] = None
    session_id: t.Optional[str] = None
    call: t.Optional[StreamingCall] = None
    created_session: bool = False


def parse_messages(body: t.Union[bytes, str]) -> t.Tuple[t.List[t.Any], bool]:
    """Decode a request body into a list of messages and whether it was a batch."""
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ParseError("Parse error", data=str(exc)) from exc
    if isinstance(payload, list):
        if not payload:
            raise InvalidRequestError("Invalid Request: empty batch")
        return payload, True
    return [payload], False


def collapse_responses(responses: t.Sequence[JSON]) -> t.Union[JSON, t.List[JSON], None]:
    if not responses:
        return None
    if len(responses) == 1:
        return responses[0]
    return list(responses)


class ProtocolDispatcher:
    """Interprets JSON-RPC messages against session state.

    This class is transport-agnostic: transports hand in a decoded message and
    the session id they received, and deliver whatever comes back.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: ToolRegistry,
        collector: Collector,
        server_name: str = "mcp-system-info",
        server_version: str = "1.0.0",
        instructions: t.Optional[str] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._collector = collector
        self._server_name = server_name
        self._server_version = server_version
        self._instructions = instructions

    @property
    def store(self) -> SessionStore:
        return self._store

    async def dispatch(self, message: t.Any, session_id: t.Optional[str]) -> DispatchResult:
        kind = classify(message)
        if kind is MessageKind.INVALID:
            request_id = message.get("id") if isinstance(message, dict) else None
            if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
                request_id = None
            _logger.warning("Invalid JSON-RPC message: %r", message)
            return DispatchResult(
                response=InvalidRequestError("Invalid Request").to_response(request_id),
                session_id=session_id,
            )
        if kind is MessageKind.RESPONSE:
            _logger.debug("Ignoring client response id=%s session=%s", message.get("id"), session_id)
            return DispatchResult(session_id=session_id)

        method: str = message["method"]
        if kind is MessageKind.NOTIFICATION:
            try:
                self._handle_notification(method, message.get("params"), session_id)
            except Exception:
                _logger.exception("Error handling notification method=%s session=%s", method, session_id)
            return DispatchResult(session_id=session_id)

        request_id = message["id"]
        try:
            return await self._handle_request(method, request_id, message.get("params"), session_id)
        except MCPError as exc:
            _logger.warning("Request failed method=%s id=%s: %s", method, request_id, exc.message)
            return DispatchResult(response=exc.to_response(request_id), session_id=session_id)
        except Exception as exc:
            _logger.exception("Unexpected error handling method=%s id=%s", method, request_id)
            return DispatchResult(
                response=InternalError(f"Internal error: {exc}").to_response(request_id),
                session_id=session_id,
            )

    async def _handle_request(
        self,
        method: str,
        request_id: t.Any,
        params: t.Any,
        session_id: t.Optional[str],
    ) -> DispatchResult:
        if method == "initialize":
            return self._initialize(request_id, params, session_id)

        # Unknown tools are reported as such whatever state the session is in.
        tool = self._resolve_tool(params) if method == "tools/call" else None

        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError("Session not found")
        if not session.initialized and method not in UNINITIALIZED_ALLOWED:
            raise InvalidRequestError("Session not initialized")

        if method == "ping":
            return self._result(request_id, {}, session)
        if method == "tools/list":
            return self._result(request_id, {"tools": self._registry.list_tools()}, session)
        if tool is not None:
            return await self._call_tool(request_id, tool[0], tool[1], session)
        raise MethodNotFoundError("Method not found", data={"method": method})

    def _initialize(self, request_id: t.Any, params: t.Any, session_id: t.Optional[str]) -> DispatchResult:
        if session_id:
            raise InvalidRequestError("Invalid Request: initialize must not carry a session id")
        params = params if isinstance(params, dict) else {}
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else DEFAULT_PROTOCOL_VERSION

        session = self._store.create(SessionKind.EXPLICIT)
        client_info = params.get("clientInfo") or {}
        session.metadata.update(
            {
                "client_name": client_info.get("name", "unknown"),
                "client_version": client_info.get("version"),
                "protocol_version": version,
                "client_capabilities": params.get("capabilities", {}),
            }
        )
        _logger.info(
            "Initialize handled session=%s client=%s protocol=%s",
            session.id,
            session.metadata["client_name"],
            version,
        )
        result: JSON = {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self._server_name, "version": self._server_version},
            "sessionId": session.id,
        }
        if self._instructions:
            result["instructions"] = self._instructions
        return DispatchResult(
            response={"jsonrpc": "2.0", "id": request_id, "result": result},
            session_id=session.id,
            created_session=True,
        )

    def _resolve_tool(self, params: t.Any) -> t.Tuple[ToolSpec, JSON]:
        if not isinstance(params, dict):
            raise InvalidParamsError("Invalid params")
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("Missing tool name")
        spec = self._registry.get(name)
        if spec is None:
            raise MethodNotFoundError("Tool not found", data={"name": name})
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("Tool arguments must be an object")
        return spec, arguments

    async def _call_tool(self, request_id: t.Any, spec: ToolSpec, arguments: JSON, session: Session) -> DispatchResult:
        _logger.info("Executing tool session=%s tool=%s id=%s", session.id, spec.name, request_id)
        if spec.streaming:
            settings = MonitorSettings.from_arguments(arguments)
            runner = StreamingToolRunner(self._collector, settings, request_id)
            return DispatchResult(
                session_id=session.id,
                call=StreamingCall(session=session, request_id=request_id, runner=runner),
            )

        if spec.handler is None:
            raise InternalError(f"Tool {spec.name} has no handler")
        content = await spec.handler(arguments)
        return self._result(request_id, {"content": content, "isError": False}, session)

    def _handle_notification(self, method: str, params: t.Any, session_id: t.Optional[str]) -> None:
        session = self._store.get(session_id)
        if session is None:
            _logger.debug("Dropping notification method=%s for unknown session=%s", method, session_id)
            return
        if method in ("initialized", "notifications/initialized"):
            session.mark_initialized()
            _logger.info("Session initialized id=%s", session.id)
        elif method == "notifications/cancelled":
            request_id = params.get("requestId") if isinstance(params, dict) else None
            if request_id is not None and session.cancel_call(request_id):
                _logger.info("Cancelled request id=%s session=%s", request_id, session.id)
        else:
            _logger.debug("Ignoring notification method=%s session=%s", method, session.id)

    @staticmethod
    def _result(request_id: t.Any, result: JSON, session: Session) -> DispatchResult:
        return DispatchResult(response={"jsonrpc": "2.0", "id": request_id, "result": result}, session_id=session.id)
