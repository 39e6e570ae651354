from __future__ import annotations

import typing as t
from dataclasses import dataclass

EventId = int
JSONRPCMessage = t.Dict[str, t.Any]


@dataclass(frozen=True)
class EventEntry:
    event_id: EventId
    message: JSONRPCMessage


__all__ = [
    "EventEntry",
    "EventId",
    "JSONRPCMessage",
]
