"""Mirror de eventos aceptados a Redis Streams.

El pipeline llama al mirror dentro de su sección crítica, así que el
mirror solo encola (sin I/O). Un único worker drena la cola y hace
XADD: un solo consumidor preserva el orden de ingesta en el stream.

Si Redis cae, los eventos se descartan (drop-oldest en la cola y
publish fallido contado); el mirror nunca frena la ingesta.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from ..core.domain.event import DetectionEvent
from ..fanout.backpressure import BackpressureQueue
from ..fanout.backpressure_config import BackpressureConfig
from ..metrics import prometheus as prom
from .connection import RedisConnection
from .publisher import RedisPublisher

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
RECONNECT_INTERVAL_SEC = 5.0


class RedisMirror:
    """Sink del pipeline + worker thread.

    Uso:
        mirror = RedisMirror(publisher, connection)
        mirror.start()
        pipeline.add_sink(mirror)
        ...
        mirror.stop()
    """

    def __init__(
        self,
        publisher: RedisPublisher,
        connection: RedisConnection,
        *,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        reconnect_interval_sec: float = RECONNECT_INTERVAL_SEC,
    ):
        self._publisher = publisher
        self._conn = connection
        self._queue: BackpressureQueue[DetectionEvent] = BackpressureQueue(
            BackpressureConfig(max_queue_size=max_queue_size, drop_oldest=True)
        )
        self._reconnect_interval = reconnect_interval_sec
        self._last_connect_attempt: Optional[float] = None
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self._published = 0
        self._failed = 0
        self._lock = threading.Lock()

    def __call__(self, event: DetectionEvent) -> None:
        self._queue.put(event)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._worker_loop, daemon=True, name="redis-mirror")
        self._worker.start()
        logger.info("[REDIS] Mirror started stream=%s", self._publisher.stream_name)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        self._queue.wake()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        self._conn.close()
        logger.info("[REDIS] Mirror stopped. %s", self.stats)

    def _ensure_connected(self) -> bool:
        if self._conn.is_connected:
            return True
        now = time.monotonic()
        if self._last_connect_attempt is not None and now - self._last_connect_attempt < self._reconnect_interval:
            return False
        self._last_connect_attempt = now
        return self._conn.connect()

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            event = self._queue.get(timeout=1.0)
            if event is None:
                continue
            self.publish_one(event)

    def publish_one(self, event: DetectionEvent) -> bool:
        ok = self._ensure_connected() and self._publisher.publish(event)
        with self._lock:
            if ok:
                self._published += 1
            else:
                self._failed += 1
        if not ok:
            prom.SINK_FAILURES.labels(sink="redis").inc()
        return ok

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def stats(self) -> dict:
        with self._lock:
            published, failed = self._published, self._failed
        queue = self._queue.stats
        return {
            "connected": self._conn.is_connected,
            "stream": self._publisher.stream_name,
            "published": published,
            "failed": failed,
            "queue_depth": queue.current_size,
            "dropped": queue.dropped,
        }
