from .collector import CollectorError, collect_metrics
from .types import Collector, CPUInfo, MemoryInfo, SystemInfo

__all__ = [
    "Collector",
    "CollectorError",
    "CPUInfo",
    "MemoryInfo",
    "SystemInfo",
    "collect_metrics",
]
