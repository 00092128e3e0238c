"""Conexión a Redis para el mirror de eventos.

Un solo cliente compartido por el worker del mirror. El estado
"connected" lo baja el publisher ante un error de red y el worker
decide cuándo reintentar.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class RedisConnection:
    def __init__(self, url: Optional[str] = None, *, timeout_sec: float = 5.0):
        self._url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._timeout = timeout_sec
        self._client: Optional[redis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def safe_url(self) -> str:
        # host:puerto/db, sin credenciales
        return self._url.rsplit("@", 1)[-1]

    def connect(self) -> bool:
        """Crea el cliente y verifica con PING. False si Redis no responde."""
        client = redis.Redis.from_url(
            self._url,
            decode_responses=False,
            socket_timeout=self._timeout,
            socket_connect_timeout=self._timeout,
            health_check_interval=30,
        )
        try:
            client.ping()
        except redis.RedisError as e:
            self._connected = False
            logger.warning("[REDIS] Connection to %s failed: %s", self.safe_url, e)
            return False

        self._client = client
        self._connected = True
        logger.info("[REDIS] Connected: %s", self.safe_url)
        return True

    def mark_broken(self) -> None:
        if self._connected:
            logger.warning("[REDIS] Connection to %s lost", self.safe_url)
        self._connected = False

    def close(self) -> None:
        self._connected = False
        if self._client is None:
            return
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.debug("[REDIS] Close failed: %s", e)
        self._client = None
