"""Configuración y contadores de BackpressureQueue."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class BackpressureConfig:
    max_queue_size: int = 256
    drop_oldest: bool = True  # False: se rechaza el item nuevo

    def __post_init__(self) -> None:
        if self.max_queue_size <= 0:
            raise ValueError("max_queue_size must be > 0")

    @classmethod
    def from_env(cls, prefix: str = "FANOUT", default_size: int = 256) -> "BackpressureConfig":
        """Lee {prefix}_QUEUE_MAX_SIZE y {prefix}_DROP_OLDEST."""
        return cls(
            max_queue_size=int(os.getenv(f"{prefix}_QUEUE_MAX_SIZE", str(default_size))),
            drop_oldest=os.getenv(f"{prefix}_DROP_OLDEST", "true").strip().lower() == "true",
        )


@dataclass
class BackpressureStats:
    max_size: int
    enqueued: int = 0
    dequeued: int = 0
    dropped: int = 0
    current_size: int = 0

    @property
    def utilization_pct(self) -> float:
        return self.current_size / self.max_size * 100 if self.max_size else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["utilization_pct"] = round(self.utilization_pct, 1)
        return data
