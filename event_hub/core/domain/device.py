"""Device - estado conocido de un dispositivo edge.

Los registros son inmutables: el DeviceRegistry reemplaza la instancia
completa en cada upsert, así que un lector nunca ve un Device a medio
actualizar.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ConnectionStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class DeviceMetrics:
    """Snapshot de métricas reportadas por el dispositivo."""

    cpu_usage: float = 0.0
    npu_usage: float = 0.0
    memory_used_mb: float = 0.0
    temperature_c: float = 0.0
    fps: float = 0.0

    # wire name -> atributo
    WIRE_FIELDS = {
        "cpuUsage": "cpu_usage",
        "npuUsage": "npu_usage",
        "memoryUsedMb": "memory_used_mb",
        "temperatureC": "temperature_c",
        "fps": "fps",
    }

    def merge(self, partial: Mapping[str, float]) -> "DeviceMetrics":
        """Mezcla métricas parciales (claves de atributo) sobre el snapshot actual."""
        known = {k: float(v) for k, v in partial.items() if v is not None and hasattr(self, k)}
        if not known:
            return self
        return replace(self, **known)

    def to_dict(self) -> Dict[str, float]:
        return {wire: getattr(self, attr) for wire, attr in self.WIRE_FIELDS.items()}


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    status: ConnectionStatus = ConnectionStatus.ONLINE
    firmware_version: str = ""
    capabilities: Tuple[str, ...] = ()
    metrics: DeviceMetrics = field(default_factory=DeviceMetrics)
    last_seen: Optional[datetime] = None
    registered_at: Optional[datetime] = None
    first_seen_via_event: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.ONLINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "firmwareVersion": self.firmware_version,
            "capabilities": list(self.capabilities),
            "metrics": self.metrics.to_dict(),
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "autoRegistered": self.first_seen_via_event,
        }
