from __future__ import annotations

import typing as t

import mcp.types as types

JSON = t.Dict[str, t.Any]
RequestId = t.Union[str, int, None]

SESSION_NOT_FOUND = -32001


def error_response(request_id: RequestId, code: int, message: str, data: t.Any = None) -> JSON:
    error: JSON = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


class MCPError(Exception):
    """An error that maps onto a JSON-RPC error envelope."""

    code: int = types.INTERNAL_ERROR
    http_status: int = 200

    def __init__(self, message: str, data: t.Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_response(self, request_id: RequestId) -> JSON:
        return error_response(request_id, self.code, self.message, self.data)


class ParseError(MCPError):
    code = types.PARSE_ERROR
    http_status = 400


class InvalidRequestError(MCPError):
    code = types.INVALID_REQUEST
    http_status = 400


class MethodNotFoundError(MCPError):
    code = types.METHOD_NOT_FOUND


class InvalidParamsError(MCPError):
    code = types.INVALID_PARAMS


class InternalError(MCPError):
    code = types.INTERNAL_ERROR


class ToolExecutionError(MCPError):
    code = types.INTERNAL_ERROR


class SessionNotFoundError(MCPError):
    code = SESSION_NOT_FOUND
    http_status = 404


class ChannelFullError(Exception):
    """Raised to a producer when a session channel is at capacity."""


class ChannelClosedError(Exception):
    """Raised to a producer when the session it writes to has been closed."""


_STATUS_BY_CODE = {
    types.PARSE_ERROR: ParseError.http_status,
    types.INVALID_REQUEST: InvalidRequestError.http_status,
    SESSION_NOT_FOUND: SessionNotFoundError.http_status,
}


def http_status_for(response: t.Optional[JSON]) -> int:
    if not response or "error" not in response:
        return 200
    return _STATUS_BY_CODE.get(response["error"].get("code"), 200)
