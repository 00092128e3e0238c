"""Cliente del canal en vivo (/ws).

Consume eventos del hub y reconecta con backoff exponencial
(1s, 2s, 4s ... hasta 30s). El backoff vuelve a 1s después de una
conexión exitosa. Tras reconectar solo llegan eventos nuevos; el
backfill se pide por REST (/events o /events/history).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import orjson
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class ExponentialBackoff:
    """min(base * 2^n, cap)."""

    def __init__(self, base: float = 1.0, cap: float = 30.0):
        if base <= 0 or cap < base:
            raise ValueError("expected 0 < base <= cap")
        self.base = base
        self.cap = cap
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def next_delay(self) -> float:
        delay = min(self.base * (2 ** self._attempt), self.cap)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        self._attempt = 0


class LiveFeedClient:
    """Suscriptor del hub con reconexión automática.

    Uso:
        client = LiveFeedClient("ws://localhost:8000/ws", on_event=print)
        task = asyncio.create_task(client.run())
        ...
        await client.stop()
    """

    def __init__(
        self,
        url: str,
        on_event: EventHandler,
        *,
        backoff: Optional[ExponentialBackoff] = None,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self._on_event = on_event
        self._backoff = backoff or ExponentialBackoff()
        self._connect = connect
        self._sleep = sleep
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.connected = False
        self.received = 0
        self.reconnects = 0
        self.handler_errors = 0

    async def run(self) -> None:
        self._task = asyncio.current_task()
        while not self._stop_event.is_set():
            try:
                logger.info("[LIVE] Connecting to %s", self.url)
                async with self._connect(self.url) as ws:
                    self.connected = True
                    self._backoff.reset()
                    logger.info("[LIVE] Connected")
                    await self._receive_loop(ws)
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("[LIVE] Connection error: %s", e)
            finally:
                self.connected = False

            if self._stop_event.is_set():
                break
            delay = self._backoff.next_delay()
            self.reconnects += 1
            logger.info("[LIVE] Reconnecting in %.1fs (attempt %d)", delay, self._backoff.attempt)
            await self._sleep(delay)

    async def _receive_loop(self, ws) -> None:
        try:
            async for message in ws:
                try:
                    event = orjson.loads(message)
                except orjson.JSONDecodeError as e:
                    logger.warning("[LIVE] Invalid JSON: %s", e)
                    continue
                self.received += 1
                try:
                    result = self._on_event(event)
                    if asyncio.iscoroutine(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # un handler roto no corta el canal
                    self.handler_errors += 1
                    logger.exception("[LIVE] Event handler failed")
        except ConnectionClosed as e:
            logger.warning("[LIVE] Connection closed: %s", e)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
