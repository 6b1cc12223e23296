import pytest

from impostor.domain.common.errors import RoomNotFoundError, RoomStateError, RoomValidationError
from impostor.domain.roster import add_player, remove_player
from impostor.domain.turns import advance, begin_rotation_order, current_turn_player_id, record_answer
from impostor.domain.voting import (
    cast_vote,
    check_early_request,
    check_vote,
    discard_votes_involving,
    everyone_voted,
    open_window,
)
from impostor.store.models import GameSettings, RoomStore


def _room(n=3, rotations=2):
    room = RoomStore(id="ABC123", created_at=0, settings=GameSettings(rotations=rotations, sets=1))
    for i in range(1, n + 1):
        add_player(room, f"p{i}", f"P{i}", i, host=i == 1)
    room.phase = "playing"
    begin_rotation_order(room)
    return room


def test_turn_order_is_roster_snapshot():
    room = _room()
    add_player(room, "late", "Late", 99)

    assert room.turn_order == ["p1", "p2", "p3"]
    assert current_turn_player_id(room) == "p1"


def test_rotation_rolls_over_then_completes():
    room = _room(n=3, rotations=2)
    seen = []
    while True:
        seen.append((room.current_rotation, current_turn_player_id(room)))
        if advance(room) == "rotation_complete":
            break

    assert seen == [(1, "p1"), (1, "p2"), (1, "p3"), (2, "p1"), (2, "p2"), (2, "p3")]
    # Index stays on the last slot
    assert room.current_turn_index == 2


def test_has_answered_resets_each_rotation():
    room = _room(n=2, rotations=2)
    record_answer(room, "p1", "stripes", 1)
    advance(room)
    record_answer(room, "p2", "savanna", 2)
    assert all(p.has_answered for p in room.players)

    advance(room)
    assert room.current_rotation == 2
    assert not any(p.has_answered for p in room.players)
    assert [m.rotation for m in room.messages] == [1, 1]


def test_departed_players_are_skipped():
    room = _room(n=4, rotations=1)
    remove_player(room, "p2")

    assert advance(room) == "turn"
    assert current_turn_player_id(room) == "p3"


def test_host_moves_to_longest_tenured_player():
    room = _room(n=3)
    remove_player(room, "p1")
    assert [p.is_host for p in room.players] == [True, False]
    assert room.players[0].id == "p2"


def test_vote_rules():
    room = _room()
    with pytest.raises(RoomStateError):
        check_vote(room, "p1", "p2")

    open_window(room, "standard")
    with pytest.raises(RoomValidationError):
        check_vote(room, "p1", "p1")
    with pytest.raises(RoomNotFoundError):
        check_vote(room, "p1", "nobody")
    with pytest.raises(RoomNotFoundError):
        check_vote(room, "nobody", "p1")

    check_vote(room, "p1", "p2")
    cast_vote(room, "p1", "p2")
    with pytest.raises(RoomStateError):
        check_vote(room, "p1", "p3")


def test_everyone_voted_counts_connected_players_only():
    room = _room()
    open_window(room, "standard")
    cast_vote(room, "p1", "p2")
    cast_vote(room, "p2", "p1")
    assert everyone_voted(room) is False

    room.players[2].connected = False
    assert everyone_voted(room) is True

    for p in room.players:
        p.connected = False
    assert everyone_voted(room) is False


def test_discard_votes_involving_departed_player():
    room = _room()
    open_window(room, "standard")
    cast_vote(room, "p1", "p3")
    cast_vote(room, "p3", "p2")
    cast_vote(room, "p2", "p1")

    discard_votes_involving(room, "p3")
    assert [(v.voter_id, v.voted_for_id) for v in room.votes] == [("p2", "p1")]
    assert room.players[0].vote is None


def test_early_request_rules():
    room = _room()
    with pytest.raises(RoomStateError):
        check_early_request(room, "p2")  # no clue yet

    record_answer(room, "p1", "stripes", 1)
    with pytest.raises(RoomNotFoundError):
        check_early_request(room, "nobody")

    room.is_paused = True
    with pytest.raises(RoomStateError):
        check_early_request(room, "p2")
    room.is_paused = False

    assert check_early_request(room, "p2") is True
    room.early_vote_used = True
    assert check_early_request(room, "p3") is False

    open_window(room, "early")
    assert check_early_request(room, "p3") is False
