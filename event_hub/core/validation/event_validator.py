"""Validadores de payloads de eventos de dispositivo.

Valida y normaliza eventos crudos (HTTP, MQTT) al formato interno.
El tipo de evento discrimina el payload: cada uno de los cuatro tipos
tiene su propio schema y un tipo desconocido se rechaza.

Formato esperado (camelCase; se aceptan también claves snake_case):
{
    "deviceId": "edge-1",
    "deviceName": "Edge-RK3588-Gate-01",
    "type": "DETECTION_ALERT",
    "severity": "critical",
    "description": "Persona en zona restringida",
    "timestamp": "2026-01-31T08:00:00.123456Z",
    "metadata": {"traceId": "trace-1001", "frameId": "4821"},
    "metrics": {"fps": 24.5, "npuUsage": 61.0},
    "boxes": [{"classId": 0, "className": "person", "confidence": 0.91,
               "xMin": 0.1, "yMin": 0.2, "xMax": 0.4, "yMax": 0.8}],
    "frameData": "<base64 jpeg>",
    "msgId": "edge-1:4821"
}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    FiniteFloat,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from ..clock import parse_iso_timestamp
from ..domain.event import EventType, Severity

logger = logging.getLogger(__name__)

# snake_case -> camelCase aceptados por compatibilidad
_SNAKE_ALIASES = {
    "device_id": "deviceId",
    "device_name": "deviceName",
    "event_type": "type",
    "frame_data": "frameData",
    "msg_id": "msgId",
    "model_id": "modelId",
    "firmware_version": "firmwareVersion",
    "error_code": "errorCode",
}

DEFAULT_FRAME_MAX_BYTES = 2 * 1024 * 1024


def _parse_timestamp_lenient(value: Any) -> Optional[datetime]:
    """Nunca falla: un timestamp ausente o malformado se reemplaza por la hora de ingesta."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # epoch en segundos o milisegundos
            seconds = value / 1000.0 if value > 1e11 else float(value)
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(value, str):
            return parse_iso_timestamp(value)
    except (ValueError, OverflowError, OSError):
        return None
    return None


class MetricsIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cpuUsage: Optional[FiniteFloat] = Field(default=None, ge=0, le=100)
    npuUsage: Optional[FiniteFloat] = Field(default=None, ge=0, le=100)
    memoryUsedMb: Optional[FiniteFloat] = Field(default=None, ge=0)
    temperatureC: Optional[FiniteFloat] = Field(default=None, ge=-50, le=150)
    fps: Optional[FiniteFloat] = Field(default=None, ge=0)

    def to_partial(self) -> Dict[str, float]:
        return self.model_dump(exclude_none=True)


class BoundingBoxIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    classId: int = Field(..., ge=0)
    className: str = Field(..., min_length=1)
    confidence: FiniteFloat = Field(..., ge=0, le=1)
    xMin: FiniteFloat = Field(..., ge=0, le=1)
    yMin: FiniteFloat = Field(..., ge=0, le=1)
    xMax: FiniteFloat = Field(..., ge=0, le=1)
    yMax: FiniteFloat = Field(..., ge=0, le=1)

    @model_validator(mode="after")
    def check_rectangle(self) -> "BoundingBoxIn":
        if self.xMin > self.xMax or self.yMin > self.yMax:
            raise ValueError("bounding box min corner must not exceed max corner")
        return self


class _RawEventBase(BaseModel):
    """Sobre común a los cuatro tipos de evento."""

    model_config = ConfigDict(extra="ignore")

    deviceId: str = Field(..., min_length=1, max_length=128)
    deviceName: Optional[str] = Field(default=None, max_length=256)
    severity: Severity = Severity.INFO
    description: str = Field(default="", max_length=2048)
    timestamp: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    metrics: Optional[MetricsIn] = None
    msgId: Optional[str] = Field(default=None, max_length=256)

    @field_validator("deviceId")
    @classmethod
    def strip_device_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("deviceId is required")
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def lenient_timestamp(cls, v: Any) -> Optional[datetime]:
        return _parse_timestamp_lenient(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def stringify_metadata(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("metadata must be an object")
        return {str(k): "" if val is None else str(val) for k, val in v.items()}


class DetectionAlertIn(_RawEventBase):
    type: Literal["DETECTION_ALERT"]
    boxes: List[BoundingBoxIn] = Field(default_factory=list)
    frameData: Optional[str] = None


class HealthUpdateIn(_RawEventBase):
    type: Literal["HEALTH_UPDATE"]
    firmwareVersion: Optional[str] = Field(default=None, max_length=64)
    capabilities: Optional[List[str]] = None


class ModelLoadedIn(_RawEventBase):
    type: Literal["MODEL_LOADED"]
    modelId: Optional[str] = Field(default=None, max_length=256)
    version: Optional[str] = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def resolve_model_id(self) -> "ModelLoadedIn":
        if not self.modelId:
            self.modelId = self.metadata.get("modelId") or self.metadata.get("model")
        if not self.modelId:
            raise ValueError("MODEL_LOADED requires modelId")
        if self.version is None:
            self.version = self.metadata.get("version")
        return self


class SystemErrorIn(_RawEventBase):
    type: Literal["SYSTEM_ERROR"]
    errorCode: Optional[str] = Field(default=None, max_length=128)


RawEvent = Annotated[
    Union[DetectionAlertIn, HealthUpdateIn, ModelLoadedIn, SystemErrorIn],
    Field(discriminator="type"),
]

_RAW_EVENT_ADAPTER: TypeAdapter = TypeAdapter(RawEvent)


@dataclass
class ValidationResult:
    """Resultado de validación."""

    valid: bool
    payload: Optional[Union[DetectionAlertIn, HealthUpdateIn, ModelLoadedIn, SystemErrorIn]] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    details: Dict[str, List[str]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def event_type(self) -> Optional[EventType]:
        return EventType(self.payload.type) if self.payload is not None else None


def _flatten_errors(exc: PydanticValidationError) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for err in exc.errors():
        if err.get("type") in ("union_tag_invalid", "union_tag_not_found"):
            out.setdefault("type", []).append(
                "type must be one of " + ", ".join(t.value for t in EventType)
            )
            continue
        # el primer elemento de loc es el tag del union; no aporta al cliente
        loc = [str(p) for p in err.get("loc", ()) if str(p) not in EventType.__members__]
        key = ".".join(loc) or "non_field_errors"
        out.setdefault(key, []).append(err.get("msg", "invalid"))
    return out


def _reason_for(details: Dict[str, List[str]]) -> str:
    if "type" in details:
        return "unknown_type"
    if "severity" in details:
        return "unknown_severity"
    return "malformed"


def validate_event(data: Any, *, frame_max_bytes: int = DEFAULT_FRAME_MAX_BYTES) -> ValidationResult:
    """Valida un evento crudo.

    Args:
        data: Diccionario decodificado del transporte
        frame_max_bytes: Tamaño máximo aceptado para frameData (base64)

    Returns:
        ValidationResult con payload validado o error
    """
    if not isinstance(data, dict):
        return ValidationResult(valid=False, error="Event payload must be a JSON object", reason="malformed")

    warnings: List[str] = []
    data = dict(data)
    for snake, camel in _SNAKE_ALIASES.items():
        if camel not in data and snake in data:
            data[camel] = data.pop(snake)
            warnings.append(f"Used snake_case {snake} instead of {camel}")

    if isinstance(data.get("type"), str):
        data["type"] = data["type"].strip().upper()
    if isinstance(data.get("severity"), str):
        data["severity"] = data["severity"].strip().lower()

    try:
        payload = _RAW_EVENT_ADAPTER.validate_python(data)
    except PydanticValidationError as e:
        details = _flatten_errors(e)
        reason = _reason_for(details)
        error = "; ".join(f"{k}: {v[0]}" for k, v in details.items())
        logger.debug("[VALIDATOR] Event rejected reason=%s error=%s", reason, error)
        return ValidationResult(valid=False, error=error, reason=reason, details=details)

    if isinstance(payload, DetectionAlertIn) and payload.frameData is not None:
        if len(payload.frameData) > frame_max_bytes:
            error = f"frameData exceeds {frame_max_bytes} bytes"
            logger.debug("[VALIDATOR] Event rejected reason=frame_too_large device=%s", payload.deviceId)
            return ValidationResult(
                valid=False,
                error=error,
                reason="frame_too_large",
                details={"frameData": [error]},
            )

    if data.get("timestamp") not in (None, "") and payload.timestamp is None:
        warnings.append("Malformed timestamp replaced by ingestion time")

    return ValidationResult(valid=True, payload=payload, warnings=warnings)
