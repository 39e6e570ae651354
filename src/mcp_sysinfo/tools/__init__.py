"""Tool catalog and handlers exposed by the server."""

from .monitor import MonitorSettings, StreamingCall, StreamingToolRunner
from .registry import ToolRegistry, ToolSpec, build_default_registry

__all__ = [
    "MonitorSettings",
    "StreamingCall",
    "StreamingToolRunner",
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
]
