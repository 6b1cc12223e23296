# impostor/transport/admin.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from impostor.domain.common.errors import RoomNotFoundError

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/rooms")
async def list_rooms(request: Request):
    """
    List all live rooms in this process (debug/admin).
    """
    manager = request.app.state.manager
    return {"rooms": manager.list_summaries()}


@router.get("/rooms/{room_code}/snapshot")
async def room_snapshot(room_code: str, request: Request):
    """
    Latest mirrored snapshot from Redis. Works for rooms held by any process.
    """
    repo = request.app.state.repo
    code = room_code.upper()
    if not await repo.room_exists(code):
        raise HTTPException(status_code=404, detail="Room not found")
    snap = await repo.get_snapshot(code)
    if snap is None:
        raise HTTPException(status_code=404, detail="No snapshot for room")
    return {"room": snap}


@router.post("/rooms/{room_code}/close")
async def close_room(room_code: str, request: Request):
    """
    Force close a room (debug/admin). Members are told and the room is destroyed.
    """
    manager = request.app.state.manager
    try:
        await manager.close_room(room_code)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail="Room not found")

    return {"ok": True, "room_code": room_code.upper()}
