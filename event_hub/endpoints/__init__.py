"""Módulo de endpoints HTTP y WebSocket.

Los routers REST se montan bajo EVENT_HUB_API_PREFIX; health, metrics y
el canal en vivo quedan en la raíz.
"""

from .commands import router as commands_router
from .devices import router as devices_router
from .diagnostics import router as diagnostics_router
from .events import router as events_router
from .health import router as health_router
from .live import router as live_router
from .status import router as status_router

__all__ = [
    "commands_router",
    "devices_router",
    "diagnostics_router",
    "events_router",
    "health_router",
    "live_router",
    "status_router",
]
