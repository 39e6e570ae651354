"""Core module: sessions, protocol errors and the HTTP wrapper.

The dispatcher lives in `mcp_sysinfo.core.dispatcher` and is imported from
there, since it depends on the tools package which in turn uses this one.
"""

from .asgi_wrapper import ASGITransportWrapper
from .errors import (
    ChannelClosedError,
    ChannelFullError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MCPError,
    MethodNotFoundError,
    ParseError,
    SessionNotFoundError,
    ToolExecutionError,
)
from .models import MessageKind, Session, SessionKind, SessionStatus, StreamConflictError, classify
from .session_manager import SessionStore

__all__ = [
    # Sessions
    "SessionStore",
    "Session",
    "SessionKind",
    "SessionStatus",
    "StreamConflictError",
    # Messages
    "MessageKind",
    "classify",
    # HTTP
    "ASGITransportWrapper",
    # Errors
    "MCPError",
    "ParseError",
    "InvalidRequestError",
    "MethodNotFoundError",
    "InvalidParamsError",
    "InternalError",
    "ToolExecutionError",
    "SessionNotFoundError",
    "ChannelFullError",
    "ChannelClosedError",
]
