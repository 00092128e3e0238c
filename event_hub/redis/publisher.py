"""Publicador de eventos a Redis Streams."""

from __future__ import annotations

import logging

import orjson
import redis

from ..core.domain.event import DetectionEvent
from .connection import RedisConnection

logger = logging.getLogger(__name__)

DEFAULT_STREAM = "events:ingested"
DEFAULT_MAX_LEN = 10000


def to_stream_fields(event: DetectionEvent) -> dict:
    """Campos planos para XADD. El frame no viaja: el stream es para consumidores de metadatos."""
    return {
        "id": event.id,
        "seq": str(event.seq),
        "device_id": event.device_id,
        "type": event.type.value,
        "severity": event.severity.value,
        "timestamp": event.timestamp.isoformat(),
        "event": orjson.dumps(event.to_dict(include_frame=False)),
    }


class RedisPublisher:
    """Publica eventos aceptados a un stream con maxlen aproximado."""

    def __init__(
        self,
        connection: RedisConnection,
        stream_name: str = DEFAULT_STREAM,
        max_len: int = DEFAULT_MAX_LEN,
    ):
        self._conn = connection
        self._stream = stream_name
        self._max_len = max_len

    def publish(self, event: DetectionEvent) -> bool:
        """Returns: True si se publicó correctamente."""
        if not self._conn.is_connected:
            return False

        try:
            self._conn.client.xadd(
                self._stream,
                to_stream_fields(event),
                maxlen=self._max_len,
                approximate=True,
            )
            logger.debug("[REDIS] Published: %s device=%s", event.id, event.device_id)
            return True
        except redis.RedisError as e:
            self._conn.mark_broken()
            logger.warning("[REDIS] Publish failed for %s: %s", event.id, e)
            return False

    @property
    def stream_name(self) -> str:
        return self._stream
