"""Canal en vivo: WebSocket /ws.

Un DetectionEvent JSON por mensaje, en orden de ingesta. Filtros
opcionales: /ws?device_id=edge-1&severity=critical&type=DETECTION_ALERT.

El ping/pong a nivel de protocolo lo hace uvicorn (ws_ping_interval);
los suscriptores que no drenan los expulsa el barrido periódico.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import orjson
from fastapi import APIRouter, Query, WebSocket
from starlette.websockets import WebSocketState

from ..fanout.hub import Subscriber, SubscriptionFilter
from ..metrics import prometheus as prom

router = APIRouter(tags=["live"])
logger = logging.getLogger(__name__)

# 1008 policy violation (filtro inválido), 1013 try again later (expulsado por lento)
CLOSE_INVALID_FILTER = 1008
CLOSE_EVICTED = 1013


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    while not subscriber.closed:
        message = await subscriber.next()
        if message is None:
            continue
        await websocket.send_text(orjson.dumps(message).decode())
    # cerrado por el hub (p. ej. barrido de suscriptores estancados)
    if websocket.application_state == WebSocketState.CONNECTED:
        await websocket.close(code=CLOSE_EVICTED)


async def _drain_client(websocket: WebSocket) -> None:
    # El cliente no envía nada útil; solo esperamos la desconexión.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def live_feed(
    websocket: WebSocket,
    device_id: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None, alias="type"),
):
    try:
        filters = SubscriptionFilter.parse(device_id, severity, event_type)
    except ValueError as e:
        logger.warning("[LIVE] Rejected subscription with invalid filter: %s", e)
        await websocket.close(code=CLOSE_INVALID_FILTER)
        return

    hub = websocket.app.state.hub
    # suscribir antes del handshake: todo evento posterior al accept llega
    subscriber = hub.fanout.subscribe(filters)
    prom.LIVE_SUBSCRIBERS.set(len(hub.fanout))
    try:
        await websocket.accept()
        sender = asyncio.create_task(_pump(websocket, subscriber))
        receiver = asyncio.create_task(_drain_client(websocket))
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*done, *pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.debug("[LIVE] Subscriber %s connection ended: %s", subscriber.id, result)
    finally:
        hub.fanout.unsubscribe(subscriber)
        prom.LIVE_SUBSCRIBERS.set(len(hub.fanout))
