"""Cache de deduplicación por msgId del cliente.

Los dispositivos reintentan por su cuenta (el pipeline no reintenta),
así que un mismo evento puede llegar dos veces. Si el msgId ya se vio
dentro del TTL, el pipeline responde con el evento original sin
repetir efectos secundarios.

- TTL de 60 segundos por defecto
- Limpieza automática cuando el cache supera 50% de capacidad
"""

from __future__ import annotations

import hashlib
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class DeduplicationCache:
    def __init__(
        self,
        ttl_seconds: float = 60,
        max_size: int = 10000,
        *,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._time = time_fn
        # key -> (seen_at, evento original)
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(device_id: str, msg_id: str) -> str:
        """FORMATO: MD5(device_id:msg_id)[:16]. El msgId solo es único por dispositivo."""
        data = f"{device_id}:{msg_id}"
        return hashlib.md5(data.encode()).hexdigest()[:16]

    def lookup(self, key: str) -> Optional[Any]:
        """Retorna el evento original si la clave está vigente."""
        with self._lock:
            self._cleanup()
            entry = self._cache.get(key)
            if entry is not None and self._time() - entry[0] <= self._ttl:
                self._hits += 1
                return entry[1]
            self._misses += 1
            return None

    def mark_seen(self, key: str, original: Any) -> None:
        with self._lock:
            self._cache[key] = (self._time(), original)
            if len(self._cache) > self._max_size:
                # descarta la entrada más antigua (dict preserva inserción)
                self._cache.pop(next(iter(self._cache)))

    def _cleanup(self) -> None:
        if len(self._cache) <= self._max_size // 2:
            return
        now = self._time()
        expired = [k for k, (seen, _) in self._cache.items() if now - seen > self._ttl]
        for k in expired:
            del self._cache[k]

    @property
    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
            }
