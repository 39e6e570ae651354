from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, List

from .base import EventLog
from .types import EventEntry, EventId, JSONRPCMessage

_logger = logging.getLogger(__name__)


class InMemoryEventLog(EventLog):
    """Ring buffer of the last `max_events` messages with contiguous integer ids.

    Ids start at 1 and never repeat within one log. Once the buffer is full the
    oldest entry is evicted, whether or not it was ever delivered.
    """

    def __init__(self, max_events: int = 100) -> None:
        if max_events < 1:
            raise ValueError("max_events must be positive")
        self._max_events = max_events
        self._entries: Deque[EventEntry] = deque(maxlen=max_events)
        self._next_id: EventId = 1
        self._lock = threading.Lock()

    @property
    def max_events(self) -> int:
        return self._max_events

    @property
    def last_event_id(self) -> EventId:
        return self._next_id - 1

    def store_event(self, message: JSONRPCMessage) -> EventId:
        with self._lock:
            event_id = self._next_id
            self._next_id += 1
            self._entries.append(EventEntry(event_id=event_id, message=message))
            return event_id

    def events_after(self, last_event_id: EventId) -> List[EventEntry]:
        with self._lock:
            entries = list(self._entries)
        if not entries:
            return []
        oldest = entries[0].event_id
        if last_event_id < oldest - 1:
            # Entries between the marker and the retention window are gone; the
            # client gets what is still retained.
            _logger.warning(
                "Replay gap: requested events after %d but oldest retained is %d",
                last_event_id,
                oldest,
            )
        return [entry for entry in entries if entry.event_id > last_event_id]

    def __len__(self) -> int:
        return len(self._entries)
