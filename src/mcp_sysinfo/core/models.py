from __future__ import annotations

import enum
import logging
import threading
import time
import typing as t
import uuid
from dataclasses import dataclass, field

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from mcp_sysinfo.event import EventEntry, EventId, EventLog, InMemoryEventLog

from .errors import ChannelClosedError, ChannelFullError

_logger = logging.getLogger(__name__)

JSON = t.Dict[str, t.Any]
RequestId = t.Union[str, int]


class SessionStatus(str, enum.Enum):
    READY = "READY"
    TERMINATED = "TERMINATED"


class SessionKind(str, enum.Enum):
    EXPLICIT = "EXPLICIT"
    AUTO_PROVISIONED = "AUTO_PROVISIONED"


class MessageKind(str, enum.Enum):
    REQUEST = "request"
    NOTIFICATION = "notification"
    RESPONSE = "response"
    INVALID = "invalid"


def classify(message: t.Any) -> MessageKind:
    if not isinstance(message, dict):
        return MessageKind.INVALID
    has_id = "id" in message
    if has_id and (isinstance(message["id"], bool) or not isinstance(message["id"], (str, int, type(None)))):
        return MessageKind.INVALID
    if "method" in message:
        if not isinstance(message["method"], str):
            return MessageKind.INVALID
        return MessageKind.REQUEST if has_id else MessageKind.NOTIFICATION
    if has_id and ("result" in message or "error" in message):
        return MessageKind.RESPONSE
    return MessageKind.INVALID


class StreamConflictError(Exception):
    """Raised when a second general stream tries to attach to a session."""


def generate_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RequestChannel:
    """Per-request delivery channel used by a POST answered over SSE."""

    request_ids: t.Tuple[RequestId, ...]
    send_stream: MemoryObjectSendStream
    receive_stream: MemoryObjectReceiveStream


@dataclass
class Session:
    id: str
    kind: SessionKind = SessionKind.EXPLICIT
    status: SessionStatus = SessionStatus.READY
    initialized: bool = False
    outbox_size: int = 100
    event_log: EventLog = field(default_factory=InMemoryEventLog)
    metadata: t.Dict[str, t.Any] = field(default_factory=dict)
    created_at: float = field(default_factory=lambda: time.time())
    last_activity_at: float = field(default_factory=lambda: time.time())

    def __post_init__(self) -> None:
        self._outbox_send: t.Optional[MemoryObjectSendStream] = None
        self._outbox_receive: t.Optional[MemoryObjectReceiveStream] = None
        self._request_channels: t.Dict[RequestId, RequestChannel] = {}
        self._calls: t.Dict[RequestId, anyio.CancelScope] = {}
        self._stream_attached = False
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self.status is SessionStatus.TERMINATED

    @property
    def auto_provisioned(self) -> bool:
        return self.kind is SessionKind.AUTO_PROVISIONED

    def touch(self) -> None:
        self.last_activity_at = time.time()

    def mark_initialized(self) -> None:
        with self._lock:
            self.initialized = True

    def send(self, message: JSON, related_request_id: t.Optional[RequestId] = None) -> EventId:
        """Store `message` in the event log and queue it for delivery.

        Messages related to a request with an open request channel go to that
        channel, everything else to the general outbox while a stream is
        attached. With no live consumer the message is only stored and can be
        replayed later. Fails fast with ChannelFullError when a live consumer
        lags `outbox_size` messages behind; nothing is stored then.
        """
        with self._lock:
            if self.closed:
                raise ChannelClosedError(self.id)
            channel = self._request_channels.get(related_request_id) if related_request_id is not None else None
            target = channel.send_stream if channel is not None else self._outbox_send
            if target is not None:
                stats = target.statistics()
                if stats.current_buffer_used >= stats.max_buffer_size:
                    raise ChannelFullError(f"channel full for session {self.id}")
            event_id = self.event_log.store_event(message)
            if target is None:
                return event_id
            try:
                target.send_nowait(EventEntry(event_id=event_id, message=message))
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                # The consumer went away; the entry stays replayable from the log.
                _logger.debug("Session %s: channel gone, event %d kept in log", self.id, event_id)
            return event_id

    def attach_stream(self) -> MemoryObjectReceiveStream:
        """Open the general outbox; it carries messages sent from now on."""
        with self._lock:
            if self.closed:
                raise ChannelClosedError(self.id)
            if self._stream_attached:
                raise StreamConflictError(f"session {self.id} already has an open stream")
            self._outbox_send, self._outbox_receive = anyio.create_memory_object_stream(
                max_buffer_size=self.outbox_size
            )
            self._stream_attached = True
            return self._outbox_receive

    def detach_stream(self) -> None:
        with self._lock:
            send_stream, receive_stream = self._outbox_send, self._outbox_receive
            self._outbox_send = self._outbox_receive = None
            self._stream_attached = False
        if send_stream is not None:
            send_stream.close()
        if receive_stream is not None:
            receive_stream.close()

    @property
    def stream_attached(self) -> bool:
        return self._stream_attached

    def open_request_channel(self, request_ids: t.Iterable[RequestId]) -> RequestChannel:
        send_stream, receive_stream = anyio.create_memory_object_stream(max_buffer_size=self.outbox_size)
        channel = RequestChannel(tuple(request_ids), send_stream, receive_stream)
        with self._lock:
            if self.closed:
                send_stream.close()
                receive_stream.close()
                raise ChannelClosedError(self.id)
            for request_id in channel.request_ids:
                self._request_channels[request_id] = channel
        return channel

    def close_request_channel(self, channel: RequestChannel) -> None:
        with self._lock:
            for request_id in channel.request_ids:
                if self._request_channels.get(request_id) is channel:
                    del self._request_channels[request_id]
        channel.send_stream.close()
        channel.receive_stream.close()

    def register_call(self, request_id: RequestId, scope: anyio.CancelScope) -> None:
        with self._lock:
            if self.closed:
                scope.cancel()
                return
            self._calls[request_id] = scope

    def unregister_call(self, request_id: RequestId) -> None:
        with self._lock:
            self._calls.pop(request_id, None)

    def cancel_call(self, request_id: RequestId) -> bool:
        with self._lock:
            scope = self._calls.pop(request_id, None)
        if scope is None:
            return False
        scope.cancel()
        return True

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.status = SessionStatus.TERMINATED
            calls = list(self._calls.values())
            self._calls.clear()
            channels = {id(c): c for c in self._request_channels.values()}
            self._request_channels.clear()
            # An attached stream still drains what is buffered, then ends.
            if self._outbox_send is not None:
                self._outbox_send.close()
        for scope in calls:
            scope.cancel()
        for channel in channels.values():
            channel.send_stream.close()
