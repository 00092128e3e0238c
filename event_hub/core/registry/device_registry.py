"""Device Registry
---------------
Fuente única de verdad del estado de cada dispositivo edge.

Responsabilidades:
- Registrar dispositivos (explícitamente o en su primer evento)
- Mezclar métricas/salud entrantes y actualizar last_seen
- Evaluar liveness: online -> degraded -> offline según last_seen

La transición a offline se evalúa de forma perezosa en cada lectura y
en el barrido periódico; nunca la empuja el propio dispositivo.

Concurrencia: todas las escrituras se serializan con el lock del store.
Para el mismo device_id gana el último upsert aplicado (orden de
llegada, no timestamp embebido).
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ..clock import Clock, utcnow
from ..domain.device import ConnectionStatus, Device, DeviceMetrics
from ...errors import NotFoundError

logger = logging.getLogger(__name__)

# (antes, después). antes=None para un dispositivo nuevo.
DeviceListener = Callable[[Optional[Device], Device], None]


@dataclass(frozen=True)
class LivenessPolicy:
    """Umbrales de liveness.

    offline_after_sec = heartbeat_interval × missed_beats.
    degraded_after_sec es opcional (None = sin estado degraded).
    """

    offline_after_sec: float = 30.0
    degraded_after_sec: Optional[float] = None

    def __post_init__(self) -> None:
        if self.offline_after_sec <= 0:
            raise ValueError("offline_after_sec must be > 0")
        if self.degraded_after_sec is not None and self.degraded_after_sec >= self.offline_after_sec:
            raise ValueError("degraded_after_sec must be shorter than offline_after_sec")

    @classmethod
    def from_env(cls) -> "LivenessPolicy":
        interval = float(os.getenv("DEVICE_HEARTBEAT_INTERVAL_SEC", "10"))
        beats = int(os.getenv("DEVICE_MISSED_BEATS", "3"))
        degraded = float(os.getenv("DEVICE_DEGRADED_AFTER_SEC", "0") or 0)
        return cls(
            offline_after_sec=interval * beats,
            degraded_after_sec=degraded if degraded > 0 else None,
        )

    def evaluate(self, device: Device, now: datetime) -> ConnectionStatus:
        if device.last_seen is None:
            return ConnectionStatus.OFFLINE
        elapsed = (now - device.last_seen).total_seconds()
        if elapsed > self.offline_after_sec:
            return ConnectionStatus.OFFLINE
        if self.degraded_after_sec is not None and elapsed > self.degraded_after_sec:
            return ConnectionStatus.DEGRADED
        return ConnectionStatus.ONLINE


class DeviceRegistry:
    """Registro thread-safe de dispositivos.

    Uso:
        registry = DeviceRegistry(LivenessPolicy(offline_after_sec=30))
        registry.upsert("edge-1", metrics={"fps": 25.0})
        devices = registry.list()
        registry.sweep_stale()
    """

    def __init__(
        self,
        policy: Optional[LivenessPolicy] = None,
        *,
        lock: Optional[threading.RLock] = None,
        clock: Clock = utcnow,
    ):
        self._policy = policy or LivenessPolicy()
        self._lock = lock or threading.RLock()
        self._clock = clock
        # dict preserva orden de inserción -> list() estable entre llamadas
        self._devices: Dict[str, Device] = {}
        self._listeners: List[DeviceListener] = []

    @property
    def policy(self) -> LivenessPolicy:
        return self._policy

    def add_listener(self, listener: DeviceListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def register(
        self,
        device_id: str,
        name: Optional[str] = None,
        *,
        firmware_version: str = "",
        capabilities: Iterable[str] = (),
    ) -> Device:
        """Pre-registra un dispositivo conocido. Queda offline hasta su primer evento."""
        with self._lock:
            existing = self._devices.get(device_id)
            if existing is not None:
                updated = replace(
                    existing,
                    name=name or existing.name,
                    firmware_version=firmware_version or existing.firmware_version,
                    capabilities=tuple(capabilities) or existing.capabilities,
                )
                self._store(existing, updated)
                return updated

            device = Device(
                id=device_id,
                name=name or device_id,
                status=ConnectionStatus.OFFLINE,
                firmware_version=firmware_version,
                capabilities=tuple(capabilities),
                registered_at=self._clock(),
            )
            self._store(None, device)
            logger.info("[REGISTRY] Registered device %s (%s)", device_id, device.name)
            return device

    def upsert(
        self,
        device_id: str,
        *,
        name: Optional[str] = None,
        metrics: Optional[Mapping[str, float]] = None,
        firmware_version: Optional[str] = None,
        capabilities: Optional[Iterable[str]] = None,
        seen_at: Optional[datetime] = None,
        auto_registered: bool = False,
    ) -> Device:
        """Mezcla estado parcial sobre el registro y marca el dispositivo online.

        Args:
            metrics: métricas parciales con nombres de atributo de DeviceMetrics.
            seen_at: hora de llegada del evento (por defecto, ahora).
        """
        now = seen_at or self._clock()
        with self._lock:
            before = self._devices.get(device_id)
            if before is None:
                base = Device(
                    id=device_id,
                    name=name or device_id,
                    registered_at=now,
                    first_seen_via_event=auto_registered,
                )
            else:
                base = before

            after = replace(
                base,
                name=name or base.name,
                status=ConnectionStatus.ONLINE,
                metrics=base.metrics.merge(metrics or {}),
                firmware_version=firmware_version if firmware_version is not None else base.firmware_version,
                capabilities=tuple(capabilities) if capabilities is not None else base.capabilities,
                last_seen=now,
            )
            self._store(before, after)

            if before is None:
                logger.info(
                    "[REGISTRY] First-seen device %s (auto_registered=%s)",
                    device_id,
                    auto_registered,
                )
            elif before.status != ConnectionStatus.ONLINE:
                logger.info("[REGISTRY] Device %s back online (was %s)", device_id, before.status.value)
            return after

    def contains(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def find(self, device_id: str, now: Optional[datetime] = None) -> Optional[Device]:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            return self._apply_liveness(device, now or self._clock())

    def get(self, device_id: str, now: Optional[datetime] = None) -> Device:
        device = self.find(device_id, now)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    def list(self, now: Optional[datetime] = None) -> List[Device]:
        """Snapshot ordenado por inserción, con liveness evaluado a ``now``."""
        now = now or self._clock()
        with self._lock:
            return [self._apply_liveness(d, now) for d in list(self._devices.values())]

    def sweep_stale(self, now: Optional[datetime] = None) -> List[Device]:
        """Aplica transiciones de liveness a todos los dispositivos.

        Returns:
            Dispositivos cuyo estado cambió en este barrido.
        """
        now = now or self._clock()
        changed: List[Device] = []
        with self._lock:
            for device in list(self._devices.values()):
                updated = self._apply_liveness(device, now)
                if updated is not device:
                    changed.append(updated)
        return changed

    def snapshot(self) -> List[Device]:
        """Copia sin evaluar liveness (ruta de reconciliación)."""
        with self._lock:
            return list(self._devices.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def _apply_liveness(self, device: Device, now: datetime) -> Device:
        status = self._policy.evaluate(device, now)
        if status == device.status:
            return device
        # Solo degradamos; subir a online requiere un evento real.
        if status == ConnectionStatus.ONLINE:
            return device
        if device.status == ConnectionStatus.OFFLINE and status == ConnectionStatus.DEGRADED:
            return device
        updated = replace(device, status=status)
        self._store(device, updated)
        logger.info(
            "[REGISTRY] Device %s %s -> %s (last_seen=%s)",
            device.id,
            device.status.value,
            status.value,
            device.last_seen.isoformat() if device.last_seen else None,
        )
        return updated

    def _store(self, before: Optional[Device], after: Device) -> None:
        self._devices[after.id] = after
        for listener in self._listeners:
            listener(before, after)
