"""Query Service - lecturas de solo lectura sobre el estado en memoria.

Cada consulta toma su snapshot bajo el lock del store, así que nunca
ve una ingesta a medias (p. ej. el evento en el historial pero las
alertas sin actualizar). Nada aquí hace I/O de red.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime, timedelta
from typing import List, Optional

from ..core.aggregation.aggregator import AggregationEngine
from ..core.clock import Clock, utcnow
from ..core.domain.device import Device
from ..core.domain.event import DetectionEvent, EventType, Severity
from ..core.domain.status import SystemStatus
from ..core.history.event_history import EventHistory
from ..core.registry.device_registry import DeviceRegistry
from ..errors import NotFoundError, ValidationError

# ventana máxima de events_history (un año)
MAX_HISTORY_HOURS = 24 * 365


def _parse_enum(enum_cls, value: Optional[str], field: str, normalize=str.lower):
    if value is None or value == "":
        return None
    try:
        return enum_cls(normalize(value.strip()))
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} '{value}'",
            details={field: [f"must be one of {allowed}"]},
        ) from None


class QueryService:
    def __init__(
        self,
        registry: DeviceRegistry,
        history: EventHistory,
        aggregator: AggregationEngine,
        *,
        lock: Optional[threading.RLock] = None,
        clock: Clock = utcnow,
        default_limit: int = 100,
        max_limit: int = 500,
    ):
        self._registry = registry
        self._history = history
        self._aggregator = aggregator
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._default_limit = default_limit
        self._max_limit = max_limit

    # -- dispositivos ------------------------------------------------------

    def list_devices(self) -> List[Device]:
        return self._registry.list(self._clock())

    def get_device(self, device_id: str) -> Device:
        return self._registry.get(device_id, self._clock())

    # -- eventos -----------------------------------------------------------

    def list_events(
        self,
        limit: Optional[int] = None,
        device_id: Optional[str] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[DetectionEvent]:
        """Más recientes primero; filtros antes de truncar a ``limit``."""
        if limit is None:
            limit = self._default_limit
        if limit < 1:
            raise ValidationError("limit must be >= 1", details={"limit": ["must be >= 1"]})
        limit = min(limit, self._max_limit)

        wanted_severity = _parse_enum(Severity, severity, "severity")
        wanted_type = _parse_enum(EventType, event_type, "type", normalize=str.upper)

        def predicate(event: DetectionEvent) -> bool:
            if device_id and event.device_id != device_id:
                return False
            if wanted_severity is not None and event.severity != wanted_severity:
                return False
            if wanted_type is not None and event.type != wanted_type:
                return False
            return True

        return self._history.recent(limit, predicate)

    def get_event(self, event_id: str) -> DetectionEvent:
        event = self._history.find(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    def events_history(self, hours: float, now: Optional[datetime] = None) -> dict:
        """Eventos del buffer cuyo timestamp embebido cae en las últimas ``hours`` horas."""
        if not math.isfinite(hours) or not 0 < hours <= MAX_HISTORY_HOURS:
            message = f"hours must be a finite number in (0, {MAX_HISTORY_HOURS}]"
            raise ValidationError(message, details={"hours": [message]})
        cutoff = (now or self._clock()) - timedelta(hours=hours)
        events = self._history.since(cutoff)
        return {"count": len(events), "hours": hours, "events": events}

    # -- agregado ----------------------------------------------------------

    def status(self, now: Optional[datetime] = None) -> SystemStatus:
        with self._lock:
            return self._aggregator.current_status(now or self._clock())
