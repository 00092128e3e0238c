"""Modelos de dominio del hub de eventos."""

from .device import ConnectionStatus, Device, DeviceMetrics
from .event import (
    BoundingBox,
    DetectionEvent,
    DetectionPayload,
    EventType,
    HealthPayload,
    ModelLoadedPayload,
    Severity,
    SystemErrorPayload,
)
from .status import AlertCounts, CentralSummary, EdgeSummary, SystemStatus

__all__ = [
    "AlertCounts",
    "BoundingBox",
    "CentralSummary",
    "ConnectionStatus",
    "DetectionEvent",
    "DetectionPayload",
    "Device",
    "DeviceMetrics",
    "EdgeSummary",
    "EventType",
    "HealthPayload",
    "ModelLoadedPayload",
    "Severity",
    "SystemErrorPayload",
    "SystemStatus",
]
