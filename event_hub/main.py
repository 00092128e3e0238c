"""Aplicación FastAPI del hub de eventos.

    uvicorn event_hub.main:app --host 0.0.0.0 --port 8000

o bien `event-hub` (ver run()).
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hub_common.config import Settings, get_settings
from hub_common.logging_setup import configure_logging

from .container import EventHub
from .endpoints import (
    commands_router,
    devices_router,
    diagnostics_router,
    events_router,
    health_router,
    live_router,
    status_router,
)
from .errors import HubError, NotFoundError, TransientIOError, ValidationError

logger = logging.getLogger(__name__)

_HTTP_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    TransientIOError: 503,
}


def _status_for(exc: HubError) -> int:
    for cls, code in _HTTP_STATUS.items():
        if isinstance(exc, cls):
            return code
    return 400


async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        logger.warning("[API] %s %s -> %d: %s", request.method, request.url.path, code, exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        details.setdefault(".".join(loc) or "non_field_errors", []).append(err.get("msg", "invalid"))
    error = ValidationError("Invalid request", details=details)
    return JSONResponse(status_code=422, content=error.to_dict())


def create_app(hub: Optional[EventHub] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (hub.settings if hub is not None else get_settings())
    configure_logging(settings.log_level)
    hub = hub or EventHub.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        hub.scheduler.start()
        # MQTT espera la conexión inicial; no bloquear el event loop
        await asyncio.to_thread(hub.start_transports)
        logger.info("[APP] Event hub started (prefix=%s)", settings.api_prefix)

        yield

        # Shutdown
        await hub.scheduler.stop()
        await asyncio.to_thread(hub.stop_transports)
        for subscriber in hub.fanout.subscribers():
            hub.fanout.unsubscribe(subscriber)
        logger.info("[APP] Event hub stopped")

    app = FastAPI(title="Edge Event Hub", version="0.1.0", lifespan=lifespan)
    app.state.hub = hub

    origins = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HubError, hub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health_router)
    app.include_router(live_router)
    for router in (status_router, devices_router, events_router, commands_router, diagnostics_router):
        app.include_router(router, prefix=settings.api_prefix)
    return app


def run() -> None:
    import uvicorn

    uvicorn.run(
        "event_hub.main:app",
        host=os.getenv("EVENT_HUB_HOST", "0.0.0.0"),
        port=int(os.getenv("EVENT_HUB_PORT", "8000")),
        # ping/pong de protocolo: detecta conexiones muertas del canal en vivo
        ws_ping_interval=float(os.getenv("WS_PING_INTERVAL_SEC", "20")),
        ws_ping_timeout=float(os.getenv("WS_PING_TIMEOUT_SEC", "20")),
    )


app = create_app()
