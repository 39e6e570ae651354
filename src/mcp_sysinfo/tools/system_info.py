from __future__ import annotations

import logging
import typing as t

import anyio
import mcp.types as types

from mcp_sysinfo.core.errors import ToolExecutionError
from mcp_sysinfo.sysinfo import Collector

from .registry import JSON, ToolSpec

_logger = logging.getLogger(__name__)

TOOL_NAME = "get_system_info"

INPUT_SCHEMA: JSON = {
    "type": "object",
    "properties": {
        "random_string": {
            "type": "string",
            "description": "Dummy parameter for no-parameter tools",
        },
    },
}


def system_info_tool_spec(collector: Collector) -> ToolSpec:
    async def handler(arguments: JSON) -> t.List[JSON]:
        try:
            info = await anyio.to_thread.run_sync(collector)
        except Exception as exc:  # noqa: BLE001 - collaborator failure surfaces as a tool error
            _logger.error("Failed to get system information: %s", exc)
            raise ToolExecutionError(f"Error getting system information: {exc}") from exc
        _logger.debug(
            "System information retrieved cpu_count=%d memory_total=%d",
            info.cpu.count,
            info.memory.total_bytes,
        )
        return [types.TextContent(type="text", text=info.format_text()).model_dump(exclude_none=True)]

    return ToolSpec(
        name=TOOL_NAME,
        description="Gets system information: CPU and memory",
        input_schema=INPUT_SCHEMA,
        handler=handler,
    )
