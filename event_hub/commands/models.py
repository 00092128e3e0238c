"""Comandos de control hacia dispositivos edge."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping


class CommandType(str, Enum):
    SET_FPS = "SET_FPS"
    CHANGE_MODEL = "CHANGE_MODEL"
    ENABLE_DEBUG = "ENABLE_DEBUG"
    SET_DETECTION_THRESHOLD = "SET_DETECTION_THRESHOLD"
    SHUTDOWN = "SHUTDOWN"
    RELOAD_MODEL = "RELOAD_MODEL"
    SWITCH_MODEL_VARIANT = "SWITCH_MODEL_VARIANT"


@dataclass(frozen=True)
class Command:
    command_id: str
    type: CommandType
    device_id: str
    issued_at: datetime
    parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commandId": self.command_id,
            "type": self.type.value,
            "deviceId": self.device_id,
            "parameters": dict(self.parameters),
            "issuedAt": self.issued_at.isoformat(),
        }
