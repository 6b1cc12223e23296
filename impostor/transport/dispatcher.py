# impostor/transport/dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from impostor.domain.common.errors import RoomError, RoomPermissionError
from impostor.transport.protocols import (
    parse_incoming,
    OutError,
    UnknownMessageType,
    InCreateRoom,
    InJoinRoom,
    InRejoinRoom,
    InLeaveRoom,
    InSnapshot,
    InKickPlayer,
    InUpdateSettings,
    InStartGame,
    InPauseGame,
    InResumeGame,
    InNextSet,
    InBackToLobby,
    InPlayAgain,
    InSubmitAnswer,
    InSubmitVote,
    InVoteInAdvance,
)

logger = logging.getLogger(__name__)

DispatchResult = Tuple[List[Dict[str, Any]], str]
# (to_sender_events, pid the connection speaks as afterwards)


def _err(code: str, message: str) -> Dict[str, Any]:
    return OutError(code=code, message=message).to_wire()


def _check_actor(pid: str, claimed: Optional[str]) -> None:
    if claimed is not None and claimed != pid:
        raise RoomPermissionError("playerId does not match this connection")


async def dispatch_message(*, app, pid: str, raw: Any) -> DispatchResult:
    """
    Transport layer calls this.
    - Parses + validates raw JSON
    - Routes to the room session manager
    - Returns events for the sender only (errors); everything else is
      delivered by the room session through the publisher

    NOTE: This file contains NO Redis key usage and NO game rules.
    """
    try:
        msg = parse_incoming(raw)
    except UnknownMessageType as e:
        return [_err("BAD_MESSAGE", str(e))], pid
    except ValidationError as e:
        return [_err("VALIDATION_ERROR", _first_error(e))], pid

    manager = app.state.manager
    try:
        return await _route(manager, pid, msg)
    except RoomError as e:
        return [_err(e.code, e.message)], pid
    except Exception:
        logger.exception("[dispatch-failed] pid=%s type=%s", pid, msg.type)
        return [_err("INTERNAL_ERROR", "Something went wrong, please try again")], pid


async def _route(manager, pid: str, msg) -> DispatchResult:
    # ---- Lifecycle ----
    if isinstance(msg, InCreateRoom):
        await manager.create_room(pid, msg.nickname)
        return [], pid

    if isinstance(msg, InJoinRoom):
        await manager.join_room(pid, msg.room_id, msg.nickname)
        return [], pid

    if isinstance(msg, InRejoinRoom):
        new_pid = await manager.rejoin_room(pid, msg.room_id, msg.player_id, msg.nickname)
        return [], new_pid

    if isinstance(msg, InLeaveRoom):
        await manager.leave_room(pid, msg.room_id)
        return [], pid

    if isinstance(msg, InSnapshot):
        await manager.snapshot(pid, msg.room_id)
        return [], pid

    # ---- Host administration ----
    if isinstance(msg, InKickPlayer):
        await manager.kick_player(pid, msg.room_id, msg.player_id)
        return [], pid

    if isinstance(msg, InUpdateSettings):
        await manager.update_settings(pid, msg.room_id, msg.settings)
        return [], pid

    if isinstance(msg, InStartGame):
        await manager.start_game(pid, msg.room_id)
        return [], pid

    if isinstance(msg, InPauseGame):
        await manager.pause_game(pid, msg.room_id, msg.time_left)
        return [], pid

    if isinstance(msg, InResumeGame):
        await manager.resume_game(pid, msg.room_id)
        return [], pid

    if isinstance(msg, InNextSet):
        await manager.next_set(pid, msg.room_id)
        return [], pid

    if isinstance(msg, InBackToLobby):
        await manager.back_to_lobby(pid, msg.room_id)
        return [], pid

    if isinstance(msg, InPlayAgain):
        await manager.play_again(pid, msg.room_id)
        return [], pid

    # ---- Gameplay ----
    if isinstance(msg, InSubmitAnswer):
        _check_actor(pid, msg.player_id)
        await manager.submit_answer(pid, msg.room_id, msg.answer)
        return [], pid

    if isinstance(msg, InSubmitVote):
        _check_actor(pid, msg.player_id)
        await manager.submit_vote(pid, msg.room_id, msg.voted_for_id)
        return [], pid

    if isinstance(msg, InVoteInAdvance):
        _check_actor(pid, msg.player_id)
        await manager.vote_in_advance(pid, msg.room_id)
        return [], pid

    return [_err("BAD_MESSAGE", f"Handler not implemented for type={msg.type}")], pid


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid message"
    first = errors[0]
    loc = ".".join(str(x) for x in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else first.get("msg", "invalid")
