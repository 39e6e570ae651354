from __future__ import annotations

import logging
import os
import sys

import anyio
import click

from mcp_sysinfo.server import SystemInfoServer
from mcp_sysinfo.utils.config import ServerConfig, parse_seconds

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--transport",
    type=click.Choice(["http", "stdio"], case_sensitive=False),
    default=None,
    help="Transport to serve on (default: http when PORT is set, else stdio)",
)
@click.option("--host", default=None, help="Host to bind for HTTP")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP")
@click.option("--path", default=None, help="MCP endpoint path in addition to /")
@click.option(
    "--log-level",
    default="INFO",
    help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
@click.option(
    "--json-response",
    is_flag=True,
    default=False,
    help="Answer POST requests with JSON instead of SSE streams when possible",
)
@click.option("--api-key", default=None, help="Shared secret required in the X-API-Key header")
@click.option("--session-ttl", default=None, help="Idle session expiry, e.g. 1800 or 30m")
def main(
    transport: str | None,
    host: str | None,
    port: int | None,
    path: str | None,
    log_level: str,
    json_response: bool,
    api_key: str | None,
    session_ttl: str | None,
) -> int:
    # stderr keeps stdout free for stdio framing
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = ServerConfig.from_env()
        if session_ttl:
            config.session.ttl_seconds = parse_seconds(session_ttl)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    if host:
        config.http.host = host
    if port:
        config.http.port = port
    if path:
        config.http.path = path if path.startswith("/") else "/" + path
    if json_response:
        config.stream.json_response = True
    if api_key:
        config.auth.api_key = api_key

    if transport is None:
        transport = "http" if os.environ.get("PORT") else "stdio"

    server = SystemInfoServer(config)
    if transport.lower() == "stdio":
        logger.info("Starting %s on stdio", config.name)
        anyio.run(server.serve_stdio)
        return 0

    if not config.auth.enabled:
        logger.warning("MCP_API_KEY not set, authentication disabled")
    logger.info("Starting %s on http://%s:%d (MCP path %s)", config.name, config.http.host, config.http.port, config.http.path)

    import uvicorn

    uvicorn.run(server.http_app(), host=config.http.host, port=config.http.port, log_level=log_level.lower())
    return 0


if __name__ == "__main__":
    main()
