from __future__ import annotations

from fastapi import Request

from ..container import EventHub


def get_hub(request: Request) -> EventHub:
    return request.app.state.hub
