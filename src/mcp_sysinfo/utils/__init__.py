"""Configuration and parsing helpers."""

from .config import AuthConfig, HTTPConfig, ServerConfig, SessionConfig, StreamConfig, parse_seconds
from .durations import format_duration, parse_duration

__all__ = [
    "AuthConfig",
    "HTTPConfig",
    "ServerConfig",
    "SessionConfig",
    "StreamConfig",
    "format_duration",
    "parse_duration",
    "parse_seconds",
]
