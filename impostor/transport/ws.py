# impostor/transport/ws.py
from __future__ import annotations

import ipaddress
import json
import logging
import uuid
from urllib.parse import urlparse

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from impostor.settings import get_settings
from impostor.transport.dispatcher import dispatch_message
from impostor.transport.protocols import OutError, OutHello

router = APIRouter()
logger = logging.getLogger(__name__)


def _is_private_ip(host: str) -> bool:
    """Return True if host is a private IP (192.168.x.x, 10.x.x.x, 172.16-31.x.x)."""
    try:
        ip = ipaddress.ip_address(host)
        return ip.is_private
    except ValueError:
        return False


def origin_allowed(origin: str | None) -> bool:
    if origin is None:
        # Non-browser clients send no Origin
        return True
    settings = get_settings()
    allowed = {o.strip() for o in settings.WS_ALLOWED_ORIGINS.split(",") if o.strip()}
    if origin in allowed:
        return True
    if settings.WS_ALLOW_LAN_ORIGINS:
        o = urlparse(origin)
        if _is_private_ip(o.hostname or "") and o.port == 5173:
            return True
    return False


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
    if not origin_allowed(websocket.headers.get("origin")):
        await websocket.close(code=1008)
        return

    await websocket.accept()

    pid = uuid.uuid4().hex[:10]
    wsman = websocket.app.state.wsman
    manager = websocket.app.state.manager
    conn = wsman.add(pid, websocket)
    wsman.send(pid, OutHello(player_id=pid).to_wire())
    logger.debug("[ws-connect] pid=%s", pid)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                wsman.send(pid, OutError(code="BAD_MESSAGE", message="Frames must be JSON").to_wire())
                continue

            to_sender, pid = await dispatch_message(app=websocket.app, pid=pid, raw=raw)
            for e in to_sender:
                wsman.send(pid, e)

    except WebSocketDisconnect:
        logger.debug("[ws-disconnect] pid=%s", pid)

    finally:
        # A rejoin from another socket may already own this pid.
        if wsman.remove(pid, conn):
            await manager.disconnect(pid)
