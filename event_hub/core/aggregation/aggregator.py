"""Motor de agregación del estado del sistema.

Mantiene contadores incrementales, O(1) por evento y por transición
de dispositivo:
- alertas por severidad (DETECTION_ALERT y SYSTEM_ERROR) presentes en el historial
- dispositivos conectados (online) y sumas de fps / npu / temperatura

La reconciliación recalcula todo desde cero a partir del registry y
del historial. Es la red de seguridad ante drift, no la ruta caliente.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from ..domain.device import Device
from ..domain.event import DetectionEvent, EventType, ModelLoadedPayload, Severity
from ..domain.status import AlertCounts, CentralSummary, EdgeSummary, SystemStatus
from ..history.event_history import EventHistory
from ..registry.device_registry import DeviceRegistry

logger = logging.getLogger(__name__)

_FLOAT_TOLERANCE = 1e-6

# HEALTH_UPDATE y MODEL_LOADED son telemetría: no cuentan como alertas
ALERT_TYPES = frozenset({EventType.DETECTION_ALERT, EventType.SYSTEM_ERROR})


def is_alert(event: DetectionEvent) -> bool:
    return event.type in ALERT_TYPES


@dataclass
class _Tallies:
    critical: int = 0
    warning: int = 0
    info: int = 0
    connected: int = 0
    fps_sum: float = 0.0
    npu_sum: float = 0.0
    temp_sum: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return dict(self.__dict__)


class AggregationEngine:
    """Vista derivada del registry + historial.

    Uso:
        engine = AggregationEngine(registry, history)
        engine.on_event_appended(event, evicted)
        status = engine.current_status()
        drift = engine.reconcile()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        history: EventHistory,
        *,
        inference_mode: str = "vlm",
        lock: Optional[threading.RLock] = None,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._history = history
        self._inference_mode = inference_mode
        self._lock = lock or threading.RLock()
        self._time = time_fn
        self._started_at = time_fn()
        self._tallies = _Tallies()
        self._model_loaded: Optional[str] = None
        self._drift_corrections = 0

        registry.add_listener(self.on_device_changed)

    # ------------------------------------------------------------------
    # Actualizaciones incrementales
    # ------------------------------------------------------------------

    def on_device_changed(self, before: Optional[Device], after: Device) -> None:
        with self._lock:
            if before is not None and before.is_connected:
                self._tallies.connected = self._decrement(self._tallies.connected, 1, "connected")
                self._tallies.fps_sum -= before.metrics.fps
                self._tallies.npu_sum -= before.metrics.npu_usage
                self._tallies.temp_sum -= before.metrics.temperature_c
            if after.is_connected:
                self._tallies.connected += 1
                self._tallies.fps_sum += after.metrics.fps
                self._tallies.npu_sum += after.metrics.npu_usage
                self._tallies.temp_sum += after.metrics.temperature_c
            if self._tallies.connected == 0:
                # sin dispositivos conectados las sumas son exactamente 0
                self._tallies.fps_sum = self._tallies.npu_sum = self._tallies.temp_sum = 0.0

    def on_event_appended(self, event: DetectionEvent, evicted: Optional[DetectionEvent] = None) -> None:
        with self._lock:
            if is_alert(event):
                self._count(event.severity, +1)
            if evicted is not None and is_alert(evicted):
                self._count(evicted.severity, -1)
            if isinstance(event.payload, ModelLoadedPayload):
                self._model_loaded = event.payload.model_id

    def _count(self, severity: Severity, delta: int) -> None:
        name = severity.value
        current = getattr(self._tallies, name)
        if delta < 0:
            setattr(self._tallies, name, self._decrement(current, -delta, name))
        else:
            setattr(self._tallies, name, current + delta)

    def _decrement(self, current: int, amount: int, name: str) -> int:
        # Los contadores nunca quedan negativos; si pasaría, hay drift.
        if current - amount < 0:
            logger.warning("[AGG] Counter %s would go negative (%d - %d); clamped", name, current, amount)
            self._drift_corrections += 1
            return 0
        return current - amount

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    def current_status(self, now: Optional[datetime] = None) -> SystemStatus:
        with self._lock:
            # liveness perezoso: las transiciones offline llegan vía listener
            self._registry.sweep_stale(now)
            t = self._tallies
            connected = t.connected
            edge = EdgeSummary(
                connected_devices=connected,
                total_fps=max(t.fps_sum, 0.0),
                avg_fps=max(t.fps_sum, 0.0) / connected if connected else 0.0,
                avg_npu_usage=max(t.npu_sum, 0.0) / connected if connected else 0.0,
                avg_temperature=t.temp_sum / connected if connected else 0.0,
            )
            central = CentralSummary(
                model_loaded=self._model_loaded,
                inference_mode=self._inference_mode,
                uptime=self._time() - self._started_at,
            )
            alerts = AlertCounts(critical=t.critical, warning=t.warning, info=t.info)
            return SystemStatus(edge=edge, central=central, alerts=alerts)

    # ------------------------------------------------------------------
    # Reconciliación
    # ------------------------------------------------------------------

    @staticmethod
    def _rescan(devices: Iterable[Device], events: Iterable[DetectionEvent]) -> _Tallies:
        fresh = _Tallies()
        for device in devices:
            if device.is_connected:
                fresh.connected += 1
                fresh.fps_sum += device.metrics.fps
                fresh.npu_sum += device.metrics.npu_usage
                fresh.temp_sum += device.metrics.temperature_c
        for event in events:
            if not is_alert(event):
                continue
            name = event.severity.value
            setattr(fresh, name, getattr(fresh, name) + 1)
        return fresh

    def reconcile(self) -> Dict[str, Dict[str, float]]:
        """Recalcula los contadores desde cero y los reemplaza.

        Returns:
            Drift detectado por contador: {nombre: {"incremental": x, "rescan": y}}
        """
        with self._lock:
            fresh = self._rescan(self._registry.snapshot(), self._history.snapshot())
            drift: Dict[str, Dict[str, float]] = {}
            current = self._tallies.as_dict()
            for name, value in fresh.as_dict().items():
                if not math.isclose(current[name], value, abs_tol=_FLOAT_TOLERANCE):
                    drift[name] = {"incremental": current[name], "rescan": value}

            # el modelo cargado sigue al último MODEL_LOADED presente
            for event in reversed(self._history.snapshot()):
                if isinstance(event.payload, ModelLoadedPayload):
                    self._model_loaded = event.payload.model_id
                    break

            self._tallies = fresh
            if drift:
                self._drift_corrections += 1
                logger.warning("[AGG] Reconciliation corrected drift: %s", drift)
            else:
                logger.debug("[AGG] Reconciliation OK")
            return drift

    @property
    def drift_corrections(self) -> int:
        with self._lock:
            return self._drift_corrections
