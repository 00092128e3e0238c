"""Health, readiness y métricas Prometheus."""

from fastapi import APIRouter, Depends, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..container import EventHub
from ..metrics import prometheus as prom
from .deps import get_hub

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: ok mientras el proceso esté vivo."""
    return {"status": "ok"}


@router.get("/ready")
def ready(hub: EventHub = Depends(get_hub)):
    """Readiness probe: las tareas periódicas deben estar vivas."""
    if not hub.scheduler.all_alive:
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready"}


@router.get("/metrics")
def metrics(hub: EventHub = Depends(get_hub)):
    # gauges que dependen del estado se refrescan al scrapear
    prom.refresh_device_gauges(hub.registry.list())
    prom.LIVE_SUBSCRIBERS.set(len(hub.fanout))
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
