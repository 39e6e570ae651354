"""Server-Sent-Events delivery of session events.

Two strategies share one live loop: `SessionEventStream` is the long-lived
general stream of a session (GET), `RequestEventStream` answers one POST and
ends once every request in it has its response.
"""

from __future__ import annotations

import json
import logging
import typing as t

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream

from mcp_sysinfo.core.models import RequestChannel, Session
from mcp_sysinfo.core.session_manager import SessionStore
from mcp_sysinfo.event import EventEntry, EventId

_logger = logging.getLogger(__name__)

PING_FRAME = ": ping\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(
    data: t.Union[t.Dict[str, t.Any], t.List[t.Any], str],
    event_id: t.Optional[EventId] = None,
    event: t.Optional[str] = None,
) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    if event:
        lines.append(f"event: {event}")
    payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines.extend(f"data: {line}" for line in payload.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


def parse_last_event_id(value: t.Optional[str]) -> t.Optional[EventId]:
    if not value:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        _logger.warning("Ignoring non-numeric Last-Event-ID %r", value)
        return None
    return parsed if parsed >= 0 else None


async def tail(
    receive: MemoryObjectReceiveStream,
    keepalive_interval: float,
    idle_timeout: float,
) -> t.AsyncIterator[t.Optional[EventEntry]]:
    """Multi-way wait on a session channel.

    Yields the next entry as soon as it arrives, or None when a keepalive is
    due. Returns when the channel is closed or nothing arrived for
    `idle_timeout` seconds.
    """
    now = anyio.current_time()
    idle_deadline = now + idle_timeout
    next_ping = now + keepalive_interval
    while True:
        now = anyio.current_time()
        if now >= idle_deadline:
            _logger.info("Stream idle for %.0fs, closing", idle_timeout)
            return
        if now >= next_ping:
            next_ping = now + keepalive_interval
            yield None
            continue
        entry: t.Optional[EventEntry] = None
        with anyio.move_on_after(min(next_ping, idle_deadline) - now):
            try:
                entry = await receive.receive()
            except (anyio.EndOfStream, anyio.ClosedResourceError):
                _logger.debug("Session channel closed, ending stream")
                return
        if entry is not None:
            idle_deadline = anyio.current_time() + idle_timeout
            yield entry


class SessionEventStream:
    """General event stream of a session: replay, then live-tail the outbox.

    Attaching happens on construction so a conflicting second stream can be
    refused before any response is sent.
    """

    def __init__(
        self,
        session: Session,
        store: SessionStore,
        *,
        last_event_id: t.Optional[EventId] = None,
        keepalive_interval: float = 30.0,
        idle_timeout: float = 300.0,
        remove_on_close: bool = False,
        preamble: t.Sequence[str] = (),
    ) -> None:
        self._session = session
        self._store = store
        self._last_event_id = last_event_id
        self._keepalive_interval = keepalive_interval
        self._idle_timeout = idle_timeout
        self._remove_on_close = remove_on_close
        self._preamble = list(preamble)
        self._receive = session.attach_stream()
        self._released = False

    def __aiter__(self) -> t.AsyncIterator[str]:
        return self._frames()

    async def _frames(self) -> t.AsyncIterator[str]:
        session = self._session
        delivered: EventId = 0
        try:
            for frame in self._preamble:
                yield frame
            if self._last_event_id is not None:
                missed = session.event_log.events_after(self._last_event_id)
                _logger.info(
                    "Replaying %d events after %d for session %s",
                    len(missed),
                    self._last_event_id,
                    session.id,
                )
                delivered = self._last_event_id
                for entry in missed:
                    yield format_event(entry.message, entry.event_id)
                    delivered = entry.event_id
            async for entry in tail(self._receive, self._keepalive_interval, self._idle_timeout):
                if entry is None:
                    yield PING_FRAME
                elif entry.event_id > delivered:
                    yield format_event(entry.message, entry.event_id)
                    delivered = entry.event_id
        finally:
            self.release()

    def release(self) -> None:
        """Detach from the session; remove it if it was provisioned for this stream."""
        if self._released:
            return
        self._released = True
        self._session.detach_stream()
        _logger.info("Stream closed for session %s", self._session.id)
        if self._remove_on_close:
            self._store.remove(self._session.id)


class RequestEventStream:
    """Answers one POST over SSE: ends after every request id got its response."""

    def __init__(
        self,
        session: Session,
        channel: RequestChannel,
        *,
        keepalive_interval: float = 30.0,
        idle_timeout: float = 300.0,
    ) -> None:
        self._session = session
        self._channel = channel
        self._keepalive_interval = keepalive_interval
        self._idle_timeout = idle_timeout

    def __aiter__(self) -> t.AsyncIterator[str]:
        return self._frames()

    async def _frames(self) -> t.AsyncIterator[str]:
        pending = set(self._channel.request_ids)
        try:
            async for entry in tail(self._channel.receive_stream, self._keepalive_interval, self._idle_timeout):
                if entry is None:
                    yield PING_FRAME
                    continue
                yield format_event(entry.message, entry.event_id)
                message = entry.message
                if "method" not in message and message.get("id") in pending:
                    pending.discard(message["id"])
                    if not pending:
                        return
        finally:
            self._session.close_request_channel(self._channel)
            _logger.debug("Request stream closed for session %s ids=%s", self._session.id, self._channel.request_ids)
