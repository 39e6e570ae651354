"""mcp_sysinfo

An MCP server exposing host CPU and memory metrics as tools, over Streamable
HTTP (with SSE streams and resumable replay) or stdio.
"""

__version__ = "1.0.0"

from .core.asgi_wrapper import ASGITransportWrapper  # noqa: E402
from .core.dispatcher import DispatchResult, ProtocolDispatcher  # noqa: E402
from .core.errors import MCPError  # noqa: E402
from .core.models import Session, SessionKind, SessionStatus  # noqa: E402
from .core.session_manager import SessionStore  # noqa: E402
from .event import EventEntry, EventId, EventLog, InMemoryEventLog  # noqa: E402
from .server import SystemInfoServer  # noqa: E402
from .sysinfo import SystemInfo, collect_metrics  # noqa: E402
from .tools import StreamingToolRunner, ToolRegistry, ToolSpec  # noqa: E402
from .utils.config import ServerConfig  # noqa: E402

__all__ = [
    "SystemInfoServer",
    "ServerConfig",
    "ProtocolDispatcher",
    "DispatchResult",
    "ASGITransportWrapper",
    "SessionStore",
    "Session",
    "SessionKind",
    "SessionStatus",
    "EventLog",
    "EventEntry",
    "EventId",
    "InMemoryEventLog",
    "ToolRegistry",
    "ToolSpec",
    "StreamingToolRunner",
    "SystemInfo",
    "collect_metrics",
    "MCPError",
]
