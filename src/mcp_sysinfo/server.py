from __future__ import annotations

import contextlib
import logging
import typing as t

import anyio
from anyio.abc import TaskGroup
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from mcp_sysinfo.core.asgi_wrapper import ASGIApp, ASGITransportWrapper
from mcp_sysinfo.core.dispatcher import ProtocolDispatcher
from mcp_sysinfo.core.session_manager import SessionStore
from mcp_sysinfo.sysinfo import Collector, collect_metrics
from mcp_sysinfo.tools import ToolRegistry, build_default_registry
from mcp_sysinfo.transport.http import LEGACY_SSE_PATH, SESSION_HEADER, StreamableHTTPTransport
from mcp_sysinfo.transport.stdio import StdioTransport
from mcp_sysinfo.utils.config import ServerConfig

_logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Use get_system_info for a one-off CPU and memory snapshot, or "
    "system_monitor_stream to receive periodic samples as tool_progress notifications."
)


class SystemInfoServer:
    """Wires the session store, tool registry and dispatcher to a transport.

    Usage:
        server = SystemInfoServer(ServerConfig.from_env())
        uvicorn.run(server.http_app(), ...)   # or: anyio.run(server.serve_stdio)
    """

    def __init__(
        self,
        config: t.Optional[ServerConfig] = None,
        collector: Collector = collect_metrics,
        registry: t.Optional[ToolRegistry] = None,
        instructions: t.Optional[str] = INSTRUCTIONS,
    ) -> None:
        self.config = config or ServerConfig()
        self.store = SessionStore(
            outbox_size=self.config.session.outbox_size,
            max_events=self.config.session.max_events,
        )
        self.registry = registry if registry is not None else build_default_registry(collector)
        self.dispatcher = ProtocolDispatcher(
            self.store,
            self.registry,
            collector,
            server_name=self.config.name,
            server_version=self.config.version,
            instructions=instructions,
        )
        self._task_group: t.Optional[TaskGroup] = None

    @property
    def running(self) -> bool:
        return self._task_group is not None

    @contextlib.asynccontextmanager
    async def run(self) -> t.AsyncIterator["SystemInfoServer"]:
        """Open the task group for background work; close every session on exit."""
        if self._task_group is not None:
            raise RuntimeError("SystemInfoServer.run() is already active")
        session_config = self.config.session
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            tg.start_soon(self.store.run_sweeper, session_config.sweep_interval_seconds, session_config.ttl_seconds)
            _logger.info("Server %s %s started", self.config.name, self.config.version)
            try:
                yield self
            finally:
                _logger.info("Server shutting down...")
                self._task_group = None
                self.store.close_all()
                tg.cancel_scope.cancel()

    def spawn(self, fn: t.Callable[..., t.Awaitable[t.Any]], *args: t.Any) -> None:
        if self._task_group is None:
            raise RuntimeError("server is not running")
        self._task_group.start_soon(fn, *args)

    def http_app(self) -> ASGIApp:
        http_config = self.config.http
        transport = StreamableHTTPTransport(
            self.dispatcher,
            self.spawn,
            self.config.stream,
            server_name=self.config.name,
            server_version=self.config.version,
            mcp_path=http_config.path,
        )

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> t.AsyncIterator[None]:
            async with self.run():
                yield

        app = Starlette(
            routes=transport.routes(["/", http_config.path, LEGACY_SSE_PATH]),
            middleware=[
                Middleware(
                    CORSMiddleware,
                    allow_origins=http_config.cors_origins,
                    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                    allow_headers=["*"],
                    expose_headers=[SESSION_HEADER],
                )
            ],
            lifespan=lifespan,
        )
        return ASGITransportWrapper(self.config.auth, health_path="/").wrap(app)

    async def serve_stdio(
        self,
        stdin: t.Optional[t.AsyncIterable[str]] = None,
        stdout: t.Optional[t.Any] = None,
    ) -> None:
        async with self.run():
            await StdioTransport(self.dispatcher, stdin=stdin, stdout=stdout).run()
