"""Endpoints de dispositivos."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import require_api_key
from ..container import EventHub
from ..schemas import DeviceRegisterIn
from .deps import get_hub

router = APIRouter(tags=["devices"])
logger = logging.getLogger(__name__)


@router.get("/devices")
def list_devices(hub: EventHub = Depends(get_hub)):
    return [d.to_dict() for d in hub.queries.list_devices()]


@router.post("/devices", status_code=201, dependencies=[Depends(require_api_key)])
def register_device(payload: DeviceRegisterIn, hub: EventHub = Depends(get_hub)):
    """Pre-registro de un dispositivo conocido (queda offline hasta su primer evento)."""
    device = hub.registry.register(
        payload.id.strip(),
        payload.name,
        firmware_version=payload.firmwareVersion,
        capabilities=payload.capabilities,
    )
    return device.to_dict()


@router.get("/devices/{device_id}")
def get_device(device_id: str, hub: EventHub = Depends(get_hub)):
    return hub.queries.get_device(device_id).to_dict()


@router.get("/devices/{device_id}/commands", dependencies=[Depends(require_api_key)])
def drain_commands(
    device_id: str,
    max_items: Optional[int] = Query(None, ge=1, le=1000),
    hub: EventHub = Depends(get_hub),
):
    """Modo pull: el dispositivo recoge sus comandos pendientes (se consumen)."""
    commands = hub.commands.drain(device_id, max_items)
    return {"deviceId": device_id, "count": len(commands), "commands": [c.to_dict() for c in commands]}
