"""Pipeline de ingesta de eventos.

Pipeline por evento:
1. Validación (schema por tipo, enumeraciones cerradas, tamaño de frame)
2. Deduplicación por msgId (reintentos del dispositivo)
3. Política de registro de dispositivos desconocidos
4. Efectos atómicos bajo el lock del store:
   a. upsert en el DeviceRegistry (métricas embebidas)
   b. append al historial acotado
   c. actualización incremental del AggregationEngine
   d. broadcast en el FanOutHub
   e. sinks opcionales (catálogo de modelos, mirror a Redis)

Sin reintentos: cada evento es una unidad fire-and-forget. Un payload
malo se devuelve como IngestResult con error; nunca se lanza.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..aggregation.aggregator import AggregationEngine
from ..clock import Clock, utcnow
from ..domain.device import DeviceMetrics
from ..domain.event import (
    BoundingBox,
    DetectionEvent,
    DetectionPayload,
    EventPayload,
    EventType,
    HealthPayload,
    ModelLoadedPayload,
    SystemErrorPayload,
)
from ..history.event_history import EventHistory
from ..registry.device_registry import DeviceRegistry
from ..validation import DeduplicationCache, validate_event
from ..validation.event_validator import (
    DEFAULT_FRAME_MAX_BYTES,
    DetectionAlertIn,
    HealthUpdateIn,
    ModelLoadedIn,
    SystemErrorIn,
)
from ...errors import ValidationError
from ...fanout.hub import FanOutHub
from ...metrics import prometheus as prom
from ...metrics.ingestion_metrics import IngestionMetricsService

logger = logging.getLogger(__name__)

# Recibe cada evento aceptado dentro de la sección crítica. No debe hacer I/O.
EventSink = Callable[[DetectionEvent], None]


@dataclass
class IngestResult:
    """Resultado de ingest(). ok=False implica error != None."""

    ok: bool
    event: Optional[DetectionEvent] = None
    error: Optional[ValidationError] = None
    duplicate: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def reason(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.error.details.get("reason", [None])[0]


def _wire_metrics_to_attrs(metrics: Optional[Dict[str, float]]) -> Dict[str, float]:
    if not metrics:
        return {}
    return {
        DeviceMetrics.WIRE_FIELDS[k]: v
        for k, v in metrics.items()
        if k in DeviceMetrics.WIRE_FIELDS
    }


def _build_payload(raw: Any) -> EventPayload:
    if isinstance(raw, DetectionAlertIn):
        boxes = tuple(
            BoundingBox(
                class_id=b.classId,
                class_name=b.className,
                confidence=b.confidence,
                x_min=b.xMin,
                y_min=b.yMin,
                x_max=b.xMax,
                y_max=b.yMax,
            )
            for b in raw.boxes
        )
        return DetectionPayload(boxes=boxes, frame_data=raw.frameData)
    if isinstance(raw, HealthUpdateIn):
        caps = tuple(raw.capabilities) if raw.capabilities is not None else None
        return HealthPayload(firmware_version=raw.firmwareVersion, capabilities=caps)
    if isinstance(raw, ModelLoadedIn):
        return ModelLoadedPayload(model_id=raw.modelId, version=raw.version)
    if isinstance(raw, SystemErrorIn):
        return SystemErrorPayload(error_code=raw.errorCode)
    raise TypeError(f"Unsupported payload {type(raw).__name__}")


class IngestionPipeline:
    """Transforma eventos crudos en DetectionEvents y aplica sus efectos.

    Uso:
        pipeline = IngestionPipeline(registry, history, aggregator, hub, lock=store_lock)
        result = pipeline.ingest({"deviceId": "edge-1", "type": "HEALTH_UPDATE"})
        if not result.ok:
            raise result.error
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        history: EventHistory,
        aggregator: AggregationEngine,
        hub: FanOutHub,
        *,
        lock: Optional[threading.RLock] = None,
        clock: Clock = utcnow,
        dedup: Optional[DeduplicationCache] = None,
        auto_register: bool = True,
        frame_max_bytes: int = DEFAULT_FRAME_MAX_BYTES,
        sinks: Sequence[EventSink] = (),
        timing: Optional[IngestionMetricsService] = None,
    ):
        self._registry = registry
        self._history = history
        self._aggregator = aggregator
        self._hub = hub
        self._lock = lock or threading.RLock()
        self._clock = clock
        self._dedup = dedup
        self._auto_register = auto_register
        self._frame_max_bytes = frame_max_bytes
        self._sinks: List[EventSink] = list(sinks)
        self._timing = timing
        self._seq = itertools.count(1)

        self._accepted = 0
        self._rejected = 0
        self._duplicates = 0

    def add_sink(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def ingest(self, raw: Any) -> IngestResult:
        started = time.perf_counter()
        try:
            return self._ingest(raw)
        finally:
            prom.INGEST_LATENCY.observe(time.perf_counter() - started)

    def _ingest(self, raw: Any) -> IngestResult:
        # 1. Validación (fuera del lock: no toca estado compartido)
        result = self._validate(raw)
        if isinstance(result, IngestResult):
            return result
        validated, warnings = result

        with self._lock:
            # 2. Duplicados
            dedup_key = None
            if self._dedup is not None and validated.msgId:
                dedup_key = DeduplicationCache.generate_key(validated.deviceId, validated.msgId)
                original = self._dedup.lookup(dedup_key)
                if original is not None:
                    self._duplicates += 1
                    prom.EVENTS_DEDUPLICATED.inc()
                    logger.debug(
                        "[INGEST] Duplicate msgId=%s device=%s -> %s",
                        validated.msgId, validated.deviceId, original.id,
                    )
                    return IngestResult(ok=True, event=original, duplicate=True, warnings=warnings)

            # 3. Dispositivo conocido o auto-registrado
            known = self._registry.contains(validated.deviceId)
            if not known and not self._auto_register:
                return self._reject(
                    "unknown_device",
                    f"Device {validated.deviceId} is not registered",
                    {"deviceId": ["unknown device"]},
                )

            # 4. Construcción del evento canónico
            received_at = self._clock()
            event = self._build_event(validated, received_at)

            # 4a. Registry
            self._apply_to_registry(validated, event, auto_registered=not known)
            # 4b + 4c. Historial y agregación
            evicted = self._history.append(event)
            self._aggregator.on_event_appended(event, evicted)
            # 4d. Fan-out
            delivered = self._hub.broadcast(event)
            # 4e. Sinks
            for sink in self._sinks:
                self._run_sink(sink, event)

            if dedup_key is not None:
                self._dedup.mark_seen(dedup_key, event)
            self._accepted += 1

        prom.EVENTS_INGESTED.labels(type=event.type.value, severity=event.severity.value).inc()
        prom.FANOUT_DELIVERIES.inc(delivered)
        if self._timing is not None:
            self._timing.record_event(event.device_id, event.timestamp, event.received_at)

        logger.debug(
            "[INGEST] Accepted %s seq=%d device=%s type=%s severity=%s subscribers=%d",
            event.id, event.seq, event.device_id, event.type.value, event.severity.value, delivered,
        )
        return IngestResult(ok=True, event=event, warnings=warnings)

    def _validate(self, raw: Any):
        result = validate_event(raw, frame_max_bytes=self._frame_max_bytes)
        if not result.valid:
            details = dict(result.details)
            return self._reject(result.reason or "malformed", result.error or "Invalid event", details)
        return result.payload, result.warnings

    def _reject(self, reason: str, message: str, details: Dict[str, List[str]]) -> IngestResult:
        details = dict(details)
        details["reason"] = [reason]
        with self._lock:
            self._rejected += 1
        prom.EVENTS_REJECTED.labels(reason=reason).inc()
        logger.warning("[INGEST] Rejected event reason=%s error=%s", reason, message)
        return IngestResult(ok=False, error=ValidationError(message, details=details))

    def _build_event(self, validated: Any, received_at: datetime) -> DetectionEvent:
        seq = next(self._seq)
        metrics = validated.metrics.to_partial() if validated.metrics is not None else None
        return DetectionEvent(
            id=f"event-{seq}",
            seq=seq,
            device_id=validated.deviceId,
            device_name=validated.deviceName or self._known_name(validated.deviceId),
            type=EventType(validated.type),
            severity=validated.severity,
            description=validated.description,
            # reloj del dispositivo ausente o malformado -> hora de ingesta
            timestamp=validated.timestamp or received_at,
            received_at=received_at,
            payload=_build_payload(validated),
            metadata=validated.metadata,
            metrics=metrics or None,
            msg_id=validated.msgId,
        )

    def _known_name(self, device_id: str) -> str:
        device = self._registry.find(device_id)
        return device.name if device is not None else device_id

    def _apply_to_registry(self, validated: Any, event: DetectionEvent, *, auto_registered: bool) -> None:
        firmware = None
        capabilities = None
        if isinstance(event.payload, HealthPayload):
            firmware = event.payload.firmware_version
            capabilities = event.payload.capabilities
        self._registry.upsert(
            event.device_id,
            name=validated.deviceName,
            metrics=_wire_metrics_to_attrs(event.metrics),
            firmware_version=firmware,
            capabilities=capabilities,
            seen_at=event.received_at,
            auto_registered=auto_registered,
        )

    def _run_sink(self, sink: EventSink, event: DetectionEvent) -> None:
        try:
            sink(event)
        except Exception as e:
            # un sink roto nunca tumba la ingesta
            prom.SINK_FAILURES.labels(sink=getattr(sink, "__name__", type(sink).__name__)).inc()
            logger.error("[INGEST] Sink failed for %s: %s", event.id, e)

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "accepted": self._accepted,
                "rejected": self._rejected,
                "duplicates": self._duplicates,
                "history_size": len(self._history),
                "history_evicted": self._history.evicted_total,
                "dedup": self._dedup.stats if self._dedup is not None else None,
            }
