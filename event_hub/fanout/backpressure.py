"""Cola acotada con backpressure.

Nunca bloquea al productor. Con la cola llena hay dos políticas:

- drop_oldest=True: se descarta el pendiente más antiguo (canal en vivo,
  mirror a Redis: importa lo reciente).
- drop_oldest=False: se rechaza el nuevo (comandos: lo ya aceptado se
  respeta).

El consumidor puede ser un hilo (get con timeout) o una corutina que se
despierta vía on_put y usa get_nowait.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Generic, List, Optional, TypeVar

from .backpressure_config import BackpressureConfig, BackpressureStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackpressureQueue(Generic[T]):
    """Cola thread-safe FIFO con límite de tamaño.

    Uso:
        queue = BackpressureQueue[Command](BackpressureConfig(max_queue_size=64, drop_oldest=False))
        if not queue.put(command):
            ...  # llena
        pending = queue.drain()

    ``on_put`` corre fuera del lock tras cada put aceptado. ``on_drop``
    recibe el item desplazado en modo drop_oldest.
    """

    def __init__(
        self,
        config: Optional[BackpressureConfig] = None,
        *,
        on_put: Optional[Callable[[], None]] = None,
        on_drop: Optional[Callable[[T], None]] = None,
    ):
        self._config = config or BackpressureConfig.from_env()
        self._items: Deque[T] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._on_put = on_put
        self._on_drop = on_drop
        self._counters = BackpressureStats(max_size=self._config.max_queue_size)

    @property
    def config(self) -> BackpressureConfig:
        return self._config

    # -- productor ---------------------------------------------------------

    def put(self, item: T) -> bool:
        """False solo si se rechazó el item nuevo (drop_oldest=False y llena)."""
        displaced: List[T] = []
        with self._cond:
            if len(self._items) >= self._config.max_queue_size:
                self._counters.dropped += 1
                if not self._config.drop_oldest:
                    return False
                displaced.append(self._items.popleft())
            self._items.append(item)
            self._counters.enqueued += 1
            self._cond.notify()

        if displaced:
            logger.debug("Backpressure: queue at %d, displaced oldest", self._config.max_queue_size)
            if self._on_drop is not None:
                self._on_drop(displaced[0])
        if self._on_put is not None:
            self._on_put()
        return True

    # -- consumidor --------------------------------------------------------

    def _pop(self, limit: Optional[int]) -> List[T]:
        # requiere el lock tomado
        count = len(self._items) if limit is None else min(limit, len(self._items))
        out = [self._items.popleft() for _ in range(count)]
        self._counters.dequeued += len(out)
        return out

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Espera hasta ``timeout`` segundos (None = indefinido). None si no llegó nada."""
        with self._cond:
            if not self._items:
                self._cond.wait(timeout)
            popped = self._pop(1)
        return popped[0] if popped else None

    def get_nowait(self) -> Optional[T]:
        with self._cond:
            popped = self._pop(1)
        return popped[0] if popped else None

    def drain(self, max_items: Optional[int] = None) -> List[T]:
        """Hasta ``max_items`` items (todos si None) en orden FIFO, sin esperar."""
        with self._cond:
            return self._pop(max_items)

    def wake(self) -> None:
        """Libera a los hilos bloqueados en get() (al detener un worker)."""
        with self._cond:
            self._cond.notify_all()

    def clear(self) -> int:
        with self._cond:
            count = len(self._items)
            self._items.clear()
            return count

    # -- observabilidad ----------------------------------------------------

    @property
    def size(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._counters.dropped

    @property
    def stats(self) -> BackpressureStats:
        """Copia de los contadores en este instante."""
        with self._cond:
            return replace(self._counters, current_size=len(self._items))
