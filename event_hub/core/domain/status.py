"""SystemStatus - vista derivada, nunca almacenada."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class AlertCounts:
    critical: int = 0
    warning: int = 0
    info: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"critical": self.critical, "warning": self.warning, "info": self.info}


@dataclass(frozen=True)
class EdgeSummary:
    connected_devices: int = 0
    total_fps: float = 0.0
    avg_fps: float = 0.0
    avg_npu_usage: float = 0.0
    avg_temperature: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "connectedDevices": self.connected_devices,
            "totalFps": round(self.total_fps, 2),
            "avgFps": round(self.avg_fps, 2),
            "avgNpuUsage": round(self.avg_npu_usage, 2),
            "avgTemperature": round(self.avg_temperature, 2),
        }


@dataclass(frozen=True)
class CentralSummary:
    model_loaded: Optional[str] = None
    inference_mode: str = "vlm"
    uptime: float = 0.0

    def to_dict(self) -> dict:
        return {
            "modelLoaded": self.model_loaded,
            "inferenceMode": self.inference_mode,
            "uptime": round(self.uptime, 1),
        }


@dataclass(frozen=True)
class SystemStatus:
    edge: EdgeSummary = field(default_factory=EdgeSummary)
    central: CentralSummary = field(default_factory=CentralSummary)
    alerts: AlertCounts = field(default_factory=AlertCounts)

    def to_dict(self) -> dict:
        return {
            "edge": self.edge.to_dict(),
            "central": self.central.to_dict(),
            "alerts": self.alerts.to_dict(),
        }
