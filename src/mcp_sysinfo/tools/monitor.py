"""Periodic system monitoring for the `system_monitor_stream` tool.

A run emits a `tool_progress` start notification, one progress notification
per sampling tick and, once the duration has elapsed, the JSON-RPC response
for the originating request. All output goes through an `emit` callable
(normally `Session.send`); the runner never touches a transport.
"""

from __future__ import annotations

import functools
import logging
import typing as t
from dataclasses import dataclass
from datetime import datetime

import anyio
import mcp.types as types

from mcp_sysinfo.core.errors import ChannelClosedError, ChannelFullError, InvalidParamsError, error_response
from mcp_sysinfo.core.models import RequestId, Session
from mcp_sysinfo.sysinfo import Collector
from mcp_sysinfo.utils.durations import format_duration, parse_duration

from .registry import JSON, ToolSpec

_logger = logging.getLogger(__name__)

TOOL_NAME = "system_monitor_stream"
PROGRESS_METHOD = "tool_progress"
DEFAULT_DURATION = "30s"
DEFAULT_INTERVAL = "2s"
FINAL_RETRY_INTERVAL = 0.05
FINAL_DELIVERY_TIMEOUT = 30.0
REQUEST_CANCELLED_MESSAGE = "Request cancelled"

INPUT_SCHEMA: JSON = {
    "type": "object",
    "properties": {
        "duration": {
            "type": "string",
            "description": "Monitoring duration (e.g., '30s', '5m')",
        },
        "interval": {
            "type": "string",
            "description": "Update interval (e.g., '1s', '2s')",
        },
    },
    "required": [],
}

Emit = t.Callable[[JSON], t.Any]


def monitor_tool_spec() -> ToolSpec:
    return ToolSpec(
        name=TOOL_NAME,
        description="Streams real-time system information: CPU and memory monitoring",
        input_schema=INPUT_SCHEMA,
        streaming=True,
    )


@dataclass(frozen=True)
class MonitorSettings:
    duration: float
    interval: float

    @classmethod
    def from_arguments(cls, arguments: t.Optional[JSON]) -> "MonitorSettings":
        arguments = arguments or {}
        duration = cls._parse(arguments.get("duration"), DEFAULT_DURATION, "duration")
        interval = cls._parse(arguments.get("interval"), DEFAULT_INTERVAL, "interval")
        if duration < 0:
            raise InvalidParamsError(f"Invalid duration format: negative duration {arguments.get('duration')!r}")
        if interval <= 0:
            raise InvalidParamsError(f"Invalid interval format: non-positive interval {arguments.get('interval')!r}")
        return cls(duration=duration, interval=interval)

    @staticmethod
    def _parse(value: t.Any, default: str, name: str) -> float:
        if value is None or value == "":
            value = default
        try:
            return parse_duration(value)
        except ValueError as exc:
            raise InvalidParamsError(f"Invalid {name} format: {exc}") from exc


def _notification(params: JSON) -> JSON:
    return {"jsonrpc": "2.0", "method": PROGRESS_METHOD, "params": params}


class StreamingToolRunner:
    """Samples the collector every `interval` until `duration` has elapsed.

    Cancelling the surrounding scope stops the run without emitting anything
    further. A failed sample is reported in its progress notification and the
    run continues.
    """

    def __init__(self, collector: Collector, settings: MonitorSettings, request_id: RequestId) -> None:
        self._collector = collector
        self._settings = settings
        self._request_id = request_id

    @property
    def settings(self) -> MonitorSettings:
        return self._settings

    async def run(self, emit: Emit) -> int:
        settings = self._settings
        start_params = {
            "phase": "start",
            "duration": format_duration(settings.duration),
            "interval": format_duration(settings.interval),
        }
        if not self._deliver(emit, _notification(start_params)):
            return 0

        start = anyio.current_time()
        deadline = start + settings.duration
        iteration = 0
        tick = 0
        while True:
            tick += 1
            await anyio.sleep_until(start + tick * settings.interval)
            if anyio.current_time() >= deadline:
                _logger.info("Stream duration completed request_id=%s samples=%d", self._request_id, iteration)
                await self._deliver_final(emit, self._completed(iteration))
                return iteration

            iteration += 1
            if not self._deliver(emit, _notification(await self._sample(iteration))):
                _logger.info("Session closed, stopping monitor request_id=%s", self._request_id)
                return iteration

    async def _sample(self, iteration: int) -> JSON:
        try:
            info = await anyio.to_thread.run_sync(self._collector)
        except Exception as exc:  # noqa: BLE001 - one failed sample must not abort the run
            _logger.error("Failed to get system info during stream iteration=%d: %s", iteration, exc)
            return {"iteration": iteration, "error": str(exc)}
        params: JSON = {"iteration": iteration, "timestamp": datetime.now().strftime("%H:%M:%S")}
        params.update(info.to_dict())
        return params

    def _completed(self, total: int) -> JSON:
        text = f"System monitor stream completed: {total} samples collected"
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "result": {
                "status": "completed",
                "total_samples": total,
                "content": [types.TextContent(type="text", text=text).model_dump(exclude_none=True)],
                "isError": False,
            },
        }

    def _deliver(self, emit: Emit, message: JSON) -> bool:
        try:
            emit(message)
        except ChannelFullError as exc:
            _logger.warning("Dropped monitor event request_id=%s: %s", self._request_id, exc)
        except ChannelClosedError:
            return False
        return True

    async def _deliver_final(self, emit: Emit, message: JSON) -> None:
        """Waits for room on a full channel; a request stream ends only on this message."""
        with anyio.move_on_after(FINAL_DELIVERY_TIMEOUT):
            while True:
                try:
                    emit(message)
                    return
                except ChannelFullError:
                    await anyio.sleep(FINAL_RETRY_INTERVAL)
                except ChannelClosedError:
                    return
        _logger.warning(
            "Dropped final response request_id=%s: channel still full after %.0fs",
            self._request_id,
            FINAL_DELIVERY_TIMEOUT,
        )


@dataclass
class StreamingCall:
    """A deferred `tools/call` of a streaming tool, bound to its session.

    The transport decides where it runs: `run()` routes everything through the
    session (request channel or outbox), `run_inline()` keeps the final
    response for a plain JSON reply.
    """

    session: Session
    request_id: RequestId
    runner: StreamingToolRunner

    async def run(self, emit: t.Optional[Emit] = None) -> t.Optional[int]:
        if emit is None:
            emit = functools.partial(self.session.send, related_request_id=self.request_id)
        with anyio.CancelScope() as scope:
            self.session.register_call(self.request_id, scope)
            try:
                return await self.runner.run(emit)
            finally:
                self.session.unregister_call(self.request_id)
        _logger.info("Streaming call cancelled session=%s request_id=%s", self.session.id, self.request_id)
        return None

    async def run_inline(self) -> JSON:
        """Run to completion and return the response for the originating request.

        A run that ends without one (cancelled, or its session closed) is
        answered with an error envelope so the caller always has a reply.
        """
        responses: t.List[JSON] = []

        def emit(message: JSON) -> None:
            if "id" in message:
                responses.append(message)
            else:
                self.session.send(message, related_request_id=self.request_id)

        await self.run(emit)
        if responses:
            return responses[0]
        return error_response(self.request_id, types.INTERNAL_ERROR, REQUEST_CANCELLED_MESSAGE)
