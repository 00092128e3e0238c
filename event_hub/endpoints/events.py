"""Endpoints de eventos: ingesta HTTP y consultas sobre el historial."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..auth import require_api_key
from ..container import EventHub
from ..queries.service import MAX_HISTORY_HOURS
from ..schemas import IngestAck
from .deps import get_hub

router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


@router.post("/events", response_model=IngestAck, dependencies=[Depends(require_api_key)])
def ingest_event(payload: Any = Body(...), hub: EventHub = Depends(get_hub)):
    """Ingesta de un evento. 422 con detalles si el evento se rechaza."""
    result = hub.pipeline.ingest(payload)
    if not result.ok:
        raise result.error
    return IngestAck(ok=True, id=result.event.id, duplicate=result.duplicate, warnings=result.warnings)


@router.get("/events")
def list_events(
    limit: Optional[int] = Query(None, description="Max events (capped by EVENT_QUERY_MAX_LIMIT)"),
    device_id: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    type_: Optional[str] = Query(None, alias="type"),
    event_type: Optional[str] = Query(None),
    include_frame: bool = Query(True),
    hub: EventHub = Depends(get_hub),
):
    """Eventos más recientes primero. `type` y `event_type` son alias."""
    events = hub.queries.list_events(
        limit=limit,
        device_id=device_id,
        severity=severity,
        event_type=type_ or event_type,
    )
    return [e.to_dict(include_frame=include_frame) for e in events]


@router.get("/events/history")
def events_history(
    hours: float = Query(
        24.0,
        gt=0,
        le=MAX_HISTORY_HOURS,
        allow_inf_nan=False,
        description="Window over the embedded event timestamp",
    ),
    include_frame: bool = Query(False),
    hub: EventHub = Depends(get_hub),
):
    window = hub.queries.events_history(hours)
    return {
        "count": window["count"],
        "hours": window["hours"],
        "events": [e.to_dict(include_frame=include_frame) for e in window["events"]],
    }


@router.get("/events/{event_id}")
def get_event(event_id: str, hub: EventHub = Depends(get_hub)):
    return hub.queries.get_event(event_id).to_dict()
