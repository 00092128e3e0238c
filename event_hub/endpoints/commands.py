"""Canal de comandos y relay de modelos."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import require_api_key
from ..container import EventHub
from ..schemas import CommandIn, ModelActionIn
from .deps import get_hub

router = APIRouter(tags=["commands"])


@router.post("/command", dependencies=[Depends(require_api_key)])
def send_command(payload: CommandIn, hub: EventHub = Depends(get_hub)):
    result = hub.commands.dispatch(
        payload.type,
        payload.parameters,
        command_id=str(payload.commandId) if payload.commandId is not None else None,
        device_id=payload.deviceId,
    )
    return result.to_dict()


@router.get("/models")
def list_models(device_id: Optional[str] = Query(None), hub: EventHub = Depends(get_hub)):
    return [m.to_dict() for m in hub.models.list(device_id)]


@router.post("/models/reload", dependencies=[Depends(require_api_key)])
def reload_models(payload: Optional[ModelActionIn] = None, hub: EventHub = Depends(get_hub)):
    """Sin device_id se envía a todos los dispositivos no-offline."""
    device_id = payload.device_id if payload is not None else None
    return hub.models.reload(device_id).to_dict()


@router.post("/models/{model_id}/switch", dependencies=[Depends(require_api_key)])
def switch_model(
    model_id: str,
    payload: Optional[ModelActionIn] = None,
    hub: EventHub = Depends(get_hub),
):
    device_id = payload.device_id if payload is not None else None
    return hub.models.switch(model_id, device_id).to_dict()
