from __future__ import annotations

from impostor.domain.common.errors import RoomNotFoundError, RoomStateError, RoomValidationError
from impostor.domain.common.types import VotingMode
from impostor.domain.roster import connected_ids, get_player
from impostor.store.models import RoomStore, VoteRecord


def open_window(room: RoomStore, mode: VotingMode) -> None:
    room.phase = "voting"
    room.voting_mode = mode
    room.votes = []
    for p in room.players:
        p.vote = None


def check_early_request(room: RoomStore, pid: str) -> bool:
    """
    Returns False when the request is a no-op (one already used this set, or
    the window is already open). Raises when it is not allowed at all.
    """
    if room.phase == "voting":
        return False
    if room.phase != "playing":
        raise RoomStateError("Early voting is only possible during play")
    if get_player(room, pid) is None:
        raise RoomNotFoundError("Player not in room")
    if room.early_vote_used:
        return False
    if room.is_paused:
        raise RoomStateError("Game is paused")
    if not room.messages:
        raise RoomStateError("At least one clue must be given before voting early")
    return True


def check_vote(room: RoomStore, voter_id: str, target_id: str) -> None:
    if room.phase != "voting":
        raise RoomStateError("Voting is not open")
    voter = get_player(room, voter_id)
    if voter is None:
        raise RoomNotFoundError("Player not in room")
    if has_voted(room, voter_id):
        raise RoomStateError("You already voted")
    if target_id == voter_id:
        raise RoomValidationError("You cannot vote for yourself")
    if get_player(room, target_id) is None:
        raise RoomNotFoundError("Vote target is not in this room")


def cast_vote(room: RoomStore, voter_id: str, target_id: str) -> VoteRecord:
    rec = VoteRecord(voter_id=voter_id, voted_for_id=target_id)
    room.votes.append(rec)
    voter = get_player(room, voter_id)
    if voter is not None:
        voter.vote = target_id
    return rec


def has_voted(room: RoomStore, pid: str) -> bool:
    return any(v.voter_id == pid for v in room.votes)


def discard_votes_involving(room: RoomStore, pid: str) -> None:
    """
    A departed player's own vote leaves the tally. Votes cast *for* them are
    dropped too and the voters may vote again.
    """
    room.votes = [v for v in room.votes if v.voter_id != pid and v.voted_for_id != pid]
    for p in room.players:
        if p.vote == pid:
            p.vote = None


def everyone_voted(room: RoomStore) -> bool:
    eligible = connected_ids(room)
    if not eligible:
        # Nobody left to wait for; the clock decides.
        return False
    return all(has_voted(room, pid) for pid in eligible)
