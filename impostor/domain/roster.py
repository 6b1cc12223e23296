from __future__ import annotations

from typing import List, Optional

from impostor.store.models import PlayerStore, RoomStore


def get_player(room: RoomStore, pid: Optional[str]) -> Optional[PlayerStore]:
    if not pid:
        return None
    for p in room.players:
        if p.id == pid:
            return p
    return None


def connected_ids(room: RoomStore) -> List[str]:
    return [p.id for p in room.players if p.connected]


def nickname_taken(room: RoomStore, nickname: str, *, except_pid: Optional[str] = None) -> bool:
    n = nickname.strip().casefold()
    return any(p.nickname.casefold() == n and p.id != except_pid for p in room.players)


def add_player(room: RoomStore, pid: str, nickname: str, ts: int, *, host: bool = False) -> PlayerStore:
    """Append in join order. Join order is the turn order basis."""
    p = PlayerStore(id=pid, nickname=nickname, is_host=host, joined_at=ts)
    room.players.append(p)
    return p


def remove_player(room: RoomStore, pid: str) -> Optional[PlayerStore]:
    """
    Drop a player. If they held the host flag it moves to the longest-tenured
    connected player, or to the first remaining one when nobody is connected.
    """
    p = get_player(room, pid)
    if p is None:
        return None
    room.players = [x for x in room.players if x.id != pid]
    if p.is_host and room.players:
        heir = next((x for x in room.players if x.connected), room.players[0])
        heir.is_host = True
    return p


def reset_set_flags(room: RoomStore) -> None:
    for p in room.players:
        p.is_impostor = False
        p.has_answered = False
        p.vote = None
