from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from mcp_sysinfo import __version__

from .durations import parse_duration


def parse_seconds(value: str) -> float:
    """Accept plain seconds ("90") or a duration string ("1m30s")."""
    try:
        return float(value)
    except ValueError:
        return parse_duration(value)


@dataclass
class SessionConfig:
    ttl_seconds: float = 1800.0
    sweep_interval_seconds: float = 60.0
    outbox_size: int = 100
    max_events: int = 100


@dataclass
class StreamConfig:
    keepalive_seconds: float = 30.0
    idle_timeout_seconds: float = 300.0
    json_response: bool = False


@dataclass
class AuthConfig:
    api_key: Optional[str] = None
    allowed_user_agents: List[str] = dataclasses.field(default_factory=lambda: ["Cursor/"])
    skip_paths: List[str] = dataclasses.field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass
class HTTPConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    path: str = "/mcp"
    cors_origins: List[str] = dataclasses.field(default_factory=lambda: ["*"])


@dataclass
class ServerConfig:
    name: str = "mcp-system-info"
    version: str = __version__
    session: SessionConfig = dataclasses.field(default_factory=SessionConfig)
    stream: StreamConfig = dataclasses.field(default_factory=StreamConfig)
    auth: AuthConfig = dataclasses.field(default_factory=AuthConfig)
    http: HTTPConfig = dataclasses.field(default_factory=HTTPConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        def build(dc_cls, key):
            values = data.get(key, {})
            return dc_cls(**values)

        return cls(
            name=data.get("name", cls.name),
            version=data.get("version", cls.version),
            session=build(SessionConfig, "session"),
            stream=build(StreamConfig, "stream"),
            auth=build(AuthConfig, "auth"),
            http=build(HTTPConfig, "http"),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("PORT"):
            port = int(env["PORT"])
            if port <= 0:
                raise ValueError(f"invalid PORT value {env['PORT']!r}")
            config.http.port = port
        if env.get("HOST"):
            config.http.host = env["HOST"]
        if env.get("MCP_API_KEY"):
            config.auth.api_key = env["MCP_API_KEY"]
        if env.get("MCP_SESSION_TTL"):
            config.session.ttl_seconds = parse_seconds(env["MCP_SESSION_TTL"])
        if env.get("MCP_JSON_RESPONSE"):
            config.stream.json_response = env["MCP_JSON_RESPONSE"].strip().lower() in ("1", "true", "yes", "on")
        return config
