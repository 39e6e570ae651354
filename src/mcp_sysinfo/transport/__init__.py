"""Transport bindings of the protocol dispatcher."""

from .http import StreamableHTTPTransport, parse_accept
from .sse import RequestEventStream, SessionEventStream, format_event, parse_last_event_id
from .stdio import StdioTransport

__all__ = [
    "RequestEventStream",
    "SessionEventStream",
    "StdioTransport",
    "StreamableHTTPTransport",
    "format_event",
    "parse_accept",
    "parse_last_event_id",
]
