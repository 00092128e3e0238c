"""Tareas periódicas del hub (asyncio).

- liveness sweep: aplica online -> degraded -> offline
- reconcile: recalcula los contadores de agregación desde cero
- fan-out sweep: expulsa suscriptores que no drenan

Se crean en el lifespan de la app y se cancelan al apagar. Una
excepción en una iteración se loguea y la tarea sigue viva.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval_sec: float, func: Callable[[], object]):
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self.name = name
        self.interval_sec = interval_sec
        self._func = func
        self._task: Optional[asyncio.Task] = None
        self._runs = 0
        self._errors = 0

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            self.run_once()

    def run_once(self) -> None:
        try:
            self._func()
            self._runs += 1
        except Exception as e:
            self._errors += 1
            logger.exception("[SCHEDULER] Task %s failed: %s", self.name, e)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "interval_sec": self.interval_sec,
            "alive": self.is_alive,
            "runs": self._runs,
            "errors": self._errors,
        }


class TaskScheduler:
    def __init__(self) -> None:
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(self, name: str, interval_sec: float, func: Callable[[], object]) -> PeriodicTask:
        task = PeriodicTask(name, interval_sec, func)
        self._tasks[name] = task
        return task

    def start(self) -> None:
        for task in self._tasks.values():
            task.start()
        logger.info("[SCHEDULER] Started %s", ", ".join(self._tasks) or "no tasks")

    async def stop(self) -> None:
        for task in self._tasks.values():
            await task.stop()
        logger.info("[SCHEDULER] Stopped")

    @property
    def all_alive(self) -> bool:
        return all(t.is_alive for t in self._tasks.values())

    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    def stats(self) -> List[dict]:
        return [t.to_dict() for t in self._tasks.values()]
