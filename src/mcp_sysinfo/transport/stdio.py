"""Line-delimited JSON-RPC over standard input/output.

One JSON message (or batch) per line in each direction. The session created by
the first successful `initialize` is bound to the transport for its lifetime;
everything the session queues for delivery is written to stdout by a writer
task, interleaved with direct replies under a single write lock.
"""

from __future__ import annotations

import json
import logging
import sys
import typing as t
from io import TextIOWrapper

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream

from mcp_sysinfo.core.dispatcher import ProtocolDispatcher, collapse_responses, parse_messages
from mcp_sysinfo.core.errors import MCPError
from mcp_sysinfo.core.models import Session

_logger = logging.getLogger(__name__)

JSON = t.Dict[str, t.Any]


class _NonClosingTextIOWrapper(TextIOWrapper):
    """Never closes the process' real stdin/stdout handles."""

    def close(self) -> None:
        if self.closed:
            return
        if self.writable():
            self.flush()


def _wrap_process_stdio(binary_stream: t.BinaryIO) -> "anyio.AsyncFile[str]":
    return anyio.wrap_file(_NonClosingTextIOWrapper(binary_stream, encoding="utf-8"))


class StdioTransport:
    def __init__(
        self,
        dispatcher: ProtocolDispatcher,
        *,
        stdin: t.Optional[t.AsyncIterable[str]] = None,
        stdout: t.Optional[t.Any] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._stdin = stdin
        self._stdout = stdout
        self._session_id: t.Optional[str] = None
        self._write_lock = anyio.Lock()

    @property
    def session_id(self) -> t.Optional[str]:
        return self._session_id

    async def run(self) -> None:
        stdin = self._stdin if self._stdin is not None else _wrap_process_stdio(sys.stdin.buffer)
        if self._stdout is None:
            self._stdout = _wrap_process_stdio(sys.stdout.buffer)

        _logger.info("stdio transport started")
        async with anyio.create_task_group() as tg:
            async for line in stdin:
                line = line.strip()
                if not line:
                    continue
                await self._handle_line(line, tg)

            _logger.info("stdin closed, shutting down stdio transport")
            if self._session_id:
                self._dispatcher.store.remove(self._session_id)

    async def _handle_line(self, line: str, tg: TaskGroup) -> None:
        try:
            messages, _ = parse_messages(line)
        except MCPError as exc:
            _logger.warning("Malformed input line: %s", exc.message)
            await self._write(exc.to_response(None))
            return

        responses: t.List[JSON] = []
        for message in messages:
            result = await self._dispatcher.dispatch(message, self._session_id)
            if result.created_session:
                self._session_id = result.session_id
                session = self._dispatcher.store.get(self._session_id)
                if session is not None:
                    tg.start_soon(self._drain, session, session.attach_stream())
            if result.response is not None:
                responses.append(result.response)
            if result.call is not None:
                tg.start_soon(result.call.run)

        payload = collapse_responses(responses)
        if payload is not None:
            await self._write(payload)

    async def _drain(self, session: Session, receive: MemoryObjectReceiveStream) -> None:
        try:
            async for entry in receive:
                await self._write(entry.message)
        finally:
            session.detach_stream()
            _logger.debug("Outbox writer finished for session %s", session.id)

    async def _write(self, payload: t.Union[JSON, t.List[JSON]]) -> None:
        data = json.dumps(payload, separators=(",", ":"))
        async with self._write_lock:
            await self._stdout.write(data + "\n")
            await self._stdout.flush()
