from __future__ import annotations

from typing import Literal, Optional

from impostor.domain.roster import get_player
from impostor.store.models import Message, RoomStore

Advance = Literal["turn", "rotation_complete"]


def begin_rotation_order(room: RoomStore) -> None:
    """Snapshot the roster as the speaking order for this set."""
    room.turn_order = [p.id for p in room.players]
    room.current_rotation = 1
    room.current_turn_index = 0
    for p in room.players:
        p.has_answered = False


def current_turn_player_id(room: RoomStore) -> Optional[str]:
    if room.phase != "playing":
        return None
    if 0 <= room.current_turn_index < len(room.turn_order):
        return room.turn_order[room.current_turn_index]
    return None


def _step(room: RoomStore) -> Advance:
    nxt = room.current_turn_index + 1
    if nxt < len(room.turn_order):
        room.current_turn_index = nxt
        return "turn"
    if room.current_rotation + 1 > room.settings.rotations:
        return "rotation_complete"
    room.current_rotation += 1
    room.current_turn_index = 0
    for p in room.players:
        p.has_answered = False
    return "turn"


def settle_on_present_player(room: RoomStore) -> Advance:
    """
    Skip order slots whose player has since left the room.
    Returns "rotation_complete" if nobody is left to speak this set.
    """
    while get_player(room, room.turn_order[room.current_turn_index]) is None:
        if _step(room) == "rotation_complete":
            return "rotation_complete"
    return "turn"


def advance(room: RoomStore) -> Advance:
    """
    Move past the current turn (answered, timed out, or forfeited).
    The turn index never points past the order: the last slot of the last
    rotation stays put and the caller opens voting.
    """
    if not room.turn_order or _step(room) == "rotation_complete":
        return "rotation_complete"
    return settle_on_present_player(room)


def record_answer(room: RoomStore, pid: str, text: str, ts: int) -> Message:
    p = get_player(room, pid)
    msg = Message(
        player_id=pid,
        player_nickname=p.nickname if p else "",
        text=text,
        timestamp=ts,
        rotation=room.current_rotation,
    )
    room.messages.append(msg)
    if p is not None:
        p.has_answered = True
    return msg
