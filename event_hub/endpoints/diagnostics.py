"""Diagnostics endpoints for ingestion observability.

- Timing per device (lag, out-of-order embedded timestamps)
- Internal state of the hub (pipeline counters, fan-out queues, tasks)

Only aggregated numbers are exposed; no event payloads.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..container import EventHub
from .deps import get_hub

router = APIRouter(tags=["diagnostics"])


@router.get("/ingestion/diagnostics")
def get_ingestion_diagnostics(
    device_id: Optional[str] = Query(None, description="Filter by device ID"),
    hub: EventHub = Depends(get_hub),
):
    """Timing report with health verdict (PASS/WARN/FAIL).

    Example response:
    ```json
    {
        "timestamp": "2026-01-31T08:00:00.000Z",
        "uptime_seconds": 3600.5,
        "summary": {
            "total_events": 3600,
            "total_devices": 4,
            "total_out_of_order": 2,
            "avg_lag_ms": 45.2,
            "max_lag_ms": 156.8
        },
        "health": "PASS",
        "health_reasons": ["All metrics within acceptable thresholds"],
        "devices": { ... }
    }
    ```
    """
    return hub.timing.get_diagnostics(device_id=device_id)


@router.get("/diagnostics/hub")
def get_hub_diagnostics(hub: EventHub = Depends(get_hub)):
    return {
        "pipeline": hub.pipeline.stats,
        "fanout": hub.fanout.stats,
        "aggregation": {"drift_corrections": hub.aggregator.drift_corrections},
        "commands": {"mode": hub.commands.mode},
        "tasks": hub.scheduler.stats(),
        "mqtt": hub.mqtt.stats if hub.mqtt is not None else None,
        "redis_mirror": hub.redis_mirror.stats if hub.redis_mirror is not None else None,
    }
