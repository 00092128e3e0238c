"""Buffer acotado de historial de eventos.

FIFO por orden de llegada: al superar la capacidad se expulsa el más
antiguo. El evento expulsado se devuelve para que el agregador pueda
descontarlo de sus contadores.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Optional

from ..domain.event import DetectionEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500


class EventHistory:
    def __init__(self, capacity: int = DEFAULT_CAPACITY, *, lock: Optional[threading.RLock] = None):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._events: Deque[DetectionEvent] = deque()
        self._lock = lock or threading.RLock()
        self._evicted_total = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, event: DetectionEvent) -> Optional[DetectionEvent]:
        """Agrega un evento. Retorna el evento expulsado, si hubo."""
        with self._lock:
            evicted = None
            if len(self._events) >= self._capacity:
                evicted = self._events.popleft()
                self._evicted_total += 1
            self._events.append(event)
            return evicted

    def snapshot(self) -> List[DetectionEvent]:
        """Copia en orden de llegada (más antiguo primero)."""
        with self._lock:
            return list(self._events)

    def recent(
        self,
        limit: Optional[int] = None,
        predicate: Optional[Callable[[DetectionEvent], bool]] = None,
    ) -> List[DetectionEvent]:
        """Eventos más recientes primero, filtrados y truncados a ``limit``."""
        with self._lock:
            events = list(self._events)

        result: List[DetectionEvent] = []
        for event in reversed(events):
            if predicate is not None and not predicate(event):
                continue
            result.append(event)
            if limit is not None and len(result) >= limit:
                break
        return result

    def since(self, cutoff: datetime) -> List[DetectionEvent]:
        """Eventos con timestamp embebido posterior a ``cutoff``, más recientes primero."""
        return self.recent(predicate=lambda e: e.timestamp > cutoff)

    def find(self, event_id: str) -> Optional[DetectionEvent]:
        with self._lock:
            for event in reversed(self._events):
                if event.id == event_id:
                    return event
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def evicted_total(self) -> int:
        with self._lock:
            return self._evicted_total
