from __future__ import annotations

import logging
import platform
import time

import psutil

from .types import CPUInfo, MemoryInfo, SystemInfo

_logger = logging.getLogger(__name__)

_CPUINFO_PATH = "/proc/cpuinfo"


class CollectorError(Exception):
    """Raised when the operating system refuses a metrics query."""


def cpu_model_name(cpuinfo_path: str = _CPUINFO_PATH) -> str:
    try:
        with open(cpuinfo_path, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                key, _, value = line.partition(":")
                if key.strip() in ("model name", "Model", "Hardware"):
                    return value.strip()
    except OSError:
        pass
    return platform.processor() or platform.machine()


def collect_metrics() -> SystemInfo:
    """Take one CPU/memory snapshot. Stateless and safe to call concurrently."""
    start = time.perf_counter()
    try:
        count = psutil.cpu_count(logical=True) or 0
        usage = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
    except (OSError, psutil.Error) as exc:
        _logger.error("Failed to collect system metrics: %s", exc)
        raise CollectorError(f"failed to collect system metrics: {exc}") from exc

    info = SystemInfo(
        cpu=CPUInfo(count=count, model_name=cpu_model_name(), usage_percent=float(usage)),
        memory=MemoryInfo(
            total_bytes=int(memory.total),
            available_bytes=int(memory.available),
            used_bytes=int(memory.used),
            used_percent=float(memory.percent),
        ),
    )
    _logger.debug(
        "System metrics collected in %.3fs cpu_count=%d cpu_usage=%.1f memory_used_percent=%.1f",
        time.perf_counter() - start,
        count,
        info.cpu.usage_percent,
        info.memory.used_percent,
    )
    return info
