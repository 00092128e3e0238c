from fastapi import APIRouter, Depends

from ..container import EventHub
from .deps import get_hub

router = APIRouter(tags=["status"])


@router.get("/status")
def get_status(hub: EventHub = Depends(get_hub)):
    """SystemStatus: {edge, central, alerts}."""
    return hub.queries.status().to_dict()
