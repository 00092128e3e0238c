"""Live Fan-Out Hub.

Empuja cada evento ingerido a todos los suscriptores conectados, en
orden de ingesta. Cada suscriptor tiene su propia cola acotada
(BackpressureQueue en modo drop-oldest): un suscriptor lento pierde
sus mensajes más antiguos pendientes y nunca bloquea al broadcaster
ni afecta a los demás.

broadcast() puede llamarse desde cualquier hilo (HTTP threadpool,
callback de MQTT). Los consumidores son corutinas del event loop: el
put despierta al consumidor vía loop.call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..core.domain.event import DetectionEvent, EventType, Severity
from .backpressure import BackpressureQueue
from .backpressure_config import BackpressureConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FanOutConfig:
    queue_max_size: int = 256
    stall_timeout_sec: float = 60.0

    @classmethod
    def from_env(cls) -> "FanOutConfig":
        return cls(
            queue_max_size=int(os.getenv("FANOUT_QUEUE_MAX_SIZE", "256")),
            stall_timeout_sec=float(os.getenv("FANOUT_STALL_TIMEOUT_SEC", "60")),
        )


@dataclass(frozen=True)
class SubscriptionFilter:
    """Filtros opcionales del canal en vivo. None = sin filtro."""

    device_id: Optional[str] = None
    severity: Optional[Severity] = None
    type: Optional[EventType] = None

    @classmethod
    def parse(
        cls,
        device_id: Optional[str] = None,
        severity: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> "SubscriptionFilter":
        """Desde query params. Valores desconocidos -> ValueError."""
        return cls(
            device_id=device_id or None,
            severity=Severity(severity.strip().lower()) if severity else None,
            type=EventType(event_type.strip().upper()) if event_type else None,
        )

    def matches(self, event: DetectionEvent) -> bool:
        if self.device_id is not None and event.device_id != self.device_id:
            return False
        if self.severity is not None and event.severity != self.severity:
            return False
        if self.type is not None and event.type != self.type:
            return False
        return True


class Subscriber:
    """Conexión en vivo con su cola de salida.

    Uso (desde una corutina):
        sub = hub.subscribe()
        while True:
            message = await sub.next(timeout=30)
    """

    def __init__(
        self,
        subscriber_id: str,
        config: FanOutConfig,
        *,
        filters: Optional[SubscriptionFilter] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self.id = subscriber_id
        self.filters = filters or SubscriptionFilter()
        self._loop = loop
        self._time = time_fn
        self._wakeup = asyncio.Event() if loop is not None else None
        self._closed = False
        self._connected_at = time_fn()
        self._last_drain_at = self._connected_at
        self._delivered = 0
        self._queue: BackpressureQueue[Dict[str, Any]] = BackpressureQueue(
            BackpressureConfig(max_queue_size=config.queue_max_size, drop_oldest=True),
            on_put=self._notify,
        )

    # -- lado productor (cualquier hilo) ----------------------------------

    def offer(self, message: Dict[str, Any]) -> bool:
        """Encola sin bloquear. Retorna False si se descartó un mensaje viejo."""
        if self._closed:
            return True
        if self._queue.size == 0:
            # el estancamiento se mide desde el primer mensaje pendiente
            self._last_drain_at = self._time()
        before = self._queue.dropped
        self._queue.put(message)
        dropped = self._queue.dropped > before
        if dropped:
            logger.debug("[FANOUT] Subscriber %s queue full, dropped oldest", self.id)
        return not dropped

    def _notify(self) -> None:
        if self._loop is None or self._wakeup is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # loop cerrado: la conexión ya no existe
            self._closed = True

    # -- lado consumidor (event loop) -------------------------------------

    def poll(self) -> Optional[Dict[str, Any]]:
        """Siguiente mensaje pendiente sin esperar."""
        message = self._queue.get_nowait()
        if message is not None:
            self._last_drain_at = self._time()
            self._delivered += 1
        return message

    async def next(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Espera el siguiente mensaje. None si timeout o si se cerró."""
        if self._wakeup is None:
            raise RuntimeError("Subscriber was created without an event loop")
        while not self._closed:
            message = self.poll()
            if message is not None:
                return message
            self._wakeup.clear()
            # re-chequeo: un put pudo entrar entre poll() y clear()
            message = self.poll()
            if message is not None:
                return message
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                return None
        return None

    def close(self) -> None:
        self._closed = True
        self._queue.clear()
        if self._wakeup is not None and self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self._wakeup.set)
            except RuntimeError:
                pass

    # -- observabilidad ----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.size

    @property
    def dropped(self) -> int:
        return self._queue.dropped

    def stalled_for(self, now: Optional[float] = None) -> float:
        """Segundos sin drenar teniendo mensajes pendientes (0 si la cola está vacía)."""
        if self._queue.size == 0:
            return 0.0
        return (now if now is not None else self._time()) - self._last_drain_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pending": self.pending,
            "delivered": self._delivered,
            "dropped": self.dropped,
            "filters": {
                "deviceId": self.filters.device_id,
                "severity": self.filters.severity.value if self.filters.severity else None,
                "type": self.filters.type.value if self.filters.type else None,
            },
        }


class FanOutHub:
    """Registro de suscriptores + broadcast.

    broadcast() se invoca dentro de la sección crítica de ingesta, así el
    orden de encolado en cada suscriptor coincide con el orden global.
    """

    def __init__(
        self,
        config: Optional[FanOutConfig] = None,
        *,
        time_fn: Callable[[], float] = time.monotonic,
        on_drop: Optional[Callable[[Subscriber], None]] = None,
    ):
        self._config = config or FanOutConfig.from_env()
        self._time = time_fn
        self._on_drop = on_drop
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._broadcasts = 0
        self._evicted = 0

    @property
    def config(self) -> FanOutConfig:
        return self._config

    def subscribe(
        self,
        filters: Optional[SubscriptionFilter] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscriber:
        """Crea un suscriptor. Recibe solo eventos ingeridos desde ahora."""
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        subscriber = Subscriber(
            f"sub-{next(self._ids)}",
            self._config,
            filters=filters,
            loop=loop,
            time_fn=self._time,
        )
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
            total = len(self._subscribers)
        logger.info("[FANOUT] Subscriber %s connected (total=%d)", subscriber.id, total)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Idempotente. Retorna True solo la primera vez."""
        with self._lock:
            removed = self._subscribers.pop(subscriber.id, None)
            total = len(self._subscribers)
        subscriber.close()
        if removed is None:
            return False
        logger.info(
            "[FANOUT] Subscriber %s disconnected (dropped=%d, total=%d)",
            subscriber.id,
            subscriber.dropped,
            total,
        )
        return True

    def broadcast(self, event: DetectionEvent) -> int:
        """Encola el evento en cada suscriptor vivo cuyo filtro lo acepte.

        Returns:
            Número de suscriptores a los que se encoló.
        """
        with self._lock:
            targets = list(self._subscribers.values())
            self._broadcasts += 1

        message: Optional[Dict[str, Any]] = None
        delivered = 0
        for subscriber in targets:
            if subscriber.closed or not subscriber.filters.matches(event):
                continue
            if message is None:
                # se serializa una sola vez; todos comparten el mismo dict
                message = event.to_dict()
            if not subscriber.offer(message) and self._on_drop is not None:
                self._on_drop(subscriber)
            delivered += 1
        return delivered

    def sweep_stalled(self, now: Optional[float] = None) -> List[Subscriber]:
        """Expulsa suscriptores con mensajes pendientes que no drenan hace tiempo,
        y los que quedaron cerrados sin desuscribirse."""
        now = now if now is not None else self._time()
        with self._lock:
            candidates = list(self._subscribers.values())

        evicted: List[Subscriber] = []
        for subscriber in candidates:
            stalled = subscriber.stalled_for(now)
            if subscriber.closed or stalled > self._config.stall_timeout_sec:
                pending = subscriber.pending
                if self.unsubscribe(subscriber):
                    evicted.append(subscriber)
                    logger.warning(
                        "[FANOUT] Evicted subscriber %s (stalled %.1fs, pending=%d)",
                        subscriber.id,
                        stalled,
                        pending,
                    )
        with self._lock:
            self._evicted += len(evicted)
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subscribers.values())

    @property
    def stats(self) -> dict:
        with self._lock:
            subs = list(self._subscribers.values())
            broadcasts = self._broadcasts
            evicted = self._evicted
        return {
            "subscribers": len(subs),
            "broadcasts": broadcasts,
            "evicted": evicted,
            "queue_max_size": self._config.queue_max_size,
            "per_subscriber": [s.to_dict() for s in subs],
        }
