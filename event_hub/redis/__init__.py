"""Redis layer - mirror de eventos a Redis Streams."""

from .connection import RedisConnection
from .mirror import RedisMirror
from .publisher import RedisPublisher

__all__ = ["RedisConnection", "RedisMirror", "RedisPublisher"]
