from .base import EventLog
from .inmemory import InMemoryEventLog
from .types import EventEntry, EventId, JSONRPCMessage

__all__ = [
    "EventId",
    "EventEntry",
    "EventLog",
    "InMemoryEventLog",
    "JSONRPCMessage",
]
