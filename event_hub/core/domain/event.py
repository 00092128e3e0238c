"""DetectionEvent - registro inmutable de telemetría/alerta de un dispositivo.

Los cuatro tipos de evento comparten un sobre común (id, dispositivo,
severidad, timestamps, metadata) y llevan un payload específico del tipo:

    DETECTION_ALERT -> DetectionPayload   (boxes, frame opcional)
    HEALTH_UPDATE   -> HealthPayload      (firmware, capacidades)
    MODEL_LOADED    -> ModelLoadedPayload (modelo y versión)
    SYSTEM_ERROR    -> SystemErrorPayload (código de error)

Cualquier tipo puede traer métricas embebidas; el pipeline las aplica
al DeviceRegistry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class EventType(str, Enum):
    DETECTION_ALERT = "DETECTION_ALERT"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    MODEL_LOADED = "MODEL_LOADED"
    HEALTH_UPDATE = "HEALTH_UPDATE"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class BoundingBox:
    class_id: int
    class_name: str
    confidence: float
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classId": self.class_id,
            "className": self.class_name,
            "confidence": self.confidence,
            "xMin": self.x_min,
            "yMin": self.y_min,
            "xMax": self.x_max,
            "yMax": self.y_max,
        }


@dataclass(frozen=True)
class DetectionPayload:
    boxes: Tuple[BoundingBox, ...] = ()
    frame_data: Optional[str] = None


@dataclass(frozen=True)
class HealthPayload:
    firmware_version: Optional[str] = None
    capabilities: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ModelLoadedPayload:
    model_id: str
    version: Optional[str] = None


@dataclass(frozen=True)
class SystemErrorPayload:
    error_code: Optional[str] = None


EventPayload = Union[DetectionPayload, HealthPayload, ModelLoadedPayload, SystemErrorPayload]

PAYLOAD_BY_TYPE = {
    EventType.DETECTION_ALERT: DetectionPayload,
    EventType.HEALTH_UPDATE: HealthPayload,
    EventType.MODEL_LOADED: ModelLoadedPayload,
    EventType.SYSTEM_ERROR: SystemErrorPayload,
}


def _frozen_mapping(data: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class DetectionEvent:
    """Evento canónico. Nunca se muta después de creado.

    ``seq`` es el orden de llegada global (monótono); ``timestamp`` es el
    timestamp embebido por el dispositivo (o la hora de ingesta si venía
    ausente o malformado) y puede llegar desordenado.
    """

    id: str
    seq: int
    device_id: str
    device_name: str
    type: EventType
    severity: Severity
    description: str
    timestamp: datetime
    received_at: datetime
    payload: EventPayload
    metadata: Mapping[str, str] = field(default_factory=dict)
    metrics: Optional[Mapping[str, float]] = None
    msg_id: Optional[str] = None

    def __post_init__(self) -> None:
        expected = PAYLOAD_BY_TYPE[self.type]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.type.value} requires {expected.__name__}, got {type(self.payload).__name__}"
            )
        object.__setattr__(self, "metadata", _frozen_mapping(self.metadata))
        if self.metrics is not None:
            object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    def to_dict(self, include_frame: bool = True) -> Dict[str, Any]:
        """Serialización wire (camelCase) usada por REST y por el canal en vivo."""
        data: Dict[str, Any] = {
            "id": self.id,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "receivedAt": self.received_at.isoformat(),
            "metadata": dict(self.metadata),
        }
        if self.metrics is not None:
            data["metrics"] = dict(self.metrics)

        payload = self.payload
        if isinstance(payload, DetectionPayload):
            data["boxes"] = [b.to_dict() for b in payload.boxes]
            if include_frame and payload.frame_data is not None:
                data["frameData"] = payload.frame_data
        elif isinstance(payload, HealthPayload):
            if payload.firmware_version is not None:
                data["firmwareVersion"] = payload.firmware_version
            if payload.capabilities is not None:
                data["capabilities"] = list(payload.capabilities)
        elif isinstance(payload, ModelLoadedPayload):
            data["model"] = {"id": payload.model_id, "version": payload.version}
        elif isinstance(payload, SystemErrorPayload):
            if payload.error_code is not None:
                data["errorCode"] = payload.error_code
        return data
