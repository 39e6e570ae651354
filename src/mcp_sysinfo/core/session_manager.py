from __future__ import annotations

import logging
import threading
import time
import typing as t

import anyio

from mcp_sysinfo.event import InMemoryEventLog

from .models import Session, SessionKind, generate_session_id

_logger = logging.getLogger(__name__)


class SessionStore:
    """Owns the table of live sessions: creation, lookup, expiry and teardown.

    Every operation runs under one re-entrant lock without awaiting, so calls
    from any task or thread are linearizable. A `get` racing a `remove`
    returns either the live session or None, never a half-closed entry.
    """

    def __init__(
        self,
        outbox_size: int = 100,
        max_events: int = 100,
        id_factory: t.Callable[[], str] = generate_session_id,
    ) -> None:
        self._sessions: t.Dict[str, Session] = {}
        self._lock = threading.RLock()
        self._outbox_size = outbox_size
        self._max_events = max_events
        self._id_factory = id_factory

    def create(self, kind: SessionKind = SessionKind.EXPLICIT) -> Session:
        with self._lock:
            session_id = self._id_factory()
            while session_id in self._sessions:
                session_id = self._id_factory()
            session = Session(
                id=session_id,
                kind=kind,
                initialized=kind is SessionKind.EXPLICIT,
                outbox_size=self._outbox_size,
                event_log=InMemoryEventLog(self._max_events),
            )
            self._sessions[session_id] = session
            total = len(self._sessions)
        _logger.info("Session created id=%s kind=%s total=%d", session_id, kind.value, total)
        return session

    def get(self, session_id: t.Optional[str]) -> t.Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.touch()
        if session is None:
            _logger.warning("Session not found id=%s", session_id)
        else:
            _logger.debug("Session accessed id=%s", session_id)
        return session

    def remove(self, session_id: t.Optional[str]) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None) if session_id else None
            if session is not None:
                session.close()
            remaining = len(self._sessions)
        if session is None:
            _logger.warning("Attempted to remove non-existent session id=%s", session_id)
            return False
        _logger.info(
            "Session removed id=%s duration=%.1fs remaining=%d",
            session_id,
            time.time() - session.created_at,
            remaining,
        )
        return True

    def sweep_expired(self, max_age: float) -> t.List[str]:
        cutoff = time.time() - max_age
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.last_activity_at < cutoff]
            for sid in expired:
                self._sessions.pop(sid).close()
            remaining = len(self._sessions)
        if expired:
            _logger.info(
                "Cleaned up expired sessions count=%d remaining=%d max_age=%ss",
                len(expired),
                remaining,
                max_age,
            )
        return expired

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            _logger.info("Closed %d sessions on shutdown", len(sessions))

    async def run_sweeper(self, interval: float, max_age: float) -> None:
        while True:
            await anyio.sleep(interval)
            self.sweep_expired(max_age)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
