from __future__ import annotations

import typing as t
from dataclasses import asdict, dataclass

GIB = 1024**3


@dataclass(frozen=True)
class CPUInfo:
    count: int
    model_name: str
    usage_percent: float


@dataclass(frozen=True)
class MemoryInfo:
    total_bytes: int
    available_bytes: int
    used_bytes: int
    used_percent: float


@dataclass(frozen=True)
class SystemInfo:
    cpu: CPUInfo
    memory: MemoryInfo

    def to_dict(self) -> t.Dict[str, t.Any]:
        return asdict(self)

    def format_text(self) -> str:
        cpu, mem = self.cpu, self.memory
        return (
            "System Information\n"
            f"CPU: {cpu.model_name or 'unknown'}\n"
            f"  Cores: {cpu.count}\n"
            f"  Usage: {cpu.usage_percent:.1f}%\n"
            "Memory:\n"
            f"  Total: {mem.total_bytes / GIB:.2f} GB ({mem.total_bytes} bytes)\n"
            f"  Used: {mem.used_bytes / GIB:.2f} GB ({mem.used_percent:.1f}%)\n"
            f"  Available: {mem.available_bytes / GIB:.2f} GB\n"
        )


Collector = t.Callable[[], SystemInfo]
