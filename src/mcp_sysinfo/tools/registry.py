from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass, field

import mcp.types as types

from mcp_sysinfo.sysinfo import Collector

JSON = t.Dict[str, t.Any]
ToolHandler = t.Callable[[JSON], t.Awaitable[t.List[JSON]]]

_logger = logging.getLogger(__name__)


@dataclass
class ToolSpec:
    """Static catalog entry: name, description, JSON input schema and handler.

    Streaming tools have no handler; their calls are driven by a
    StreamingToolRunner instead.
    """

    name: str
    description: str
    input_schema: JSON = field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: t.Optional[ToolHandler] = None
    streaming: bool = False

    def __post_init__(self) -> None:
        if not self.streaming and self.handler is None:
            raise ValueError(f"tool {self.name!r} needs a handler")

    def to_tool(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: t.Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"tool {spec.name!r} already registered")
        self._tools[spec.name] = spec
        _logger.debug("Registered tool %s streaming=%s", spec.name, spec.streaming)

    def get(self, name: str) -> t.Optional[ToolSpec]:
        return self._tools.get(name)

    def list_tools(self) -> t.List[JSON]:
        return [spec.to_tool().model_dump(by_alias=True, exclude_none=True) for spec in self._tools.values()]

    def names(self) -> t.List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_default_registry(collector: Collector) -> ToolRegistry:
    from .monitor import monitor_tool_spec
    from .system_info import system_info_tool_spec

    registry = ToolRegistry()
    registry.register(system_info_tool_spec(collector))
    registry.register(monitor_tool_spec())
    _logger.info("Registered MCP tools: %s", ", ".join(registry.names()))
    return registry
