from __future__ import annotations

import typing as t
from abc import ABC, abstractmethod

from .types import EventEntry, EventId, JSONRPCMessage


class EventLog(ABC):
    """Ordered, bounded history of outbound messages of one session."""

    @abstractmethod
    def store_event(self, message: JSONRPCMessage) -> EventId:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def events_after(self, last_event_id: EventId) -> t.List[EventEntry]:  # pragma: no cover - interface
        raise NotImplementedError

    @property
    @abstractmethod
    def last_event_id(self) -> EventId:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:  # pragma: no cover - interface
        raise NotImplementedError
