import pytest
from pydantic import ValidationError

from impostor.transport.protocols import (
    OutGameStarted,
    OutRoundResults,
    UnknownMessageType,
    parse_incoming,
)


def test_parse_incoming_create_room():
    msg = parse_incoming({"type": "create_room", "nickname": "  Ann  "})
    assert msg.type == "create_room"
    assert msg.nickname == "Ann"


def test_parse_incoming_room_id_is_case_insensitive():
    msg = parse_incoming({"type": "join_room", "roomId": "ab12cd", "nickname": "Ben"})
    assert msg.room_id == "AB12CD"


def test_parse_incoming_camel_case_payload():
    msg = parse_incoming({"type": "submit_vote", "roomId": "ABC123", "playerId": "p1", "votedForId": "p2"})
    assert msg.player_id == "p1"
    assert msg.voted_for_id == "p2"

    msg = parse_incoming({"type": "pause_game", "roomId": "ABC123", "timeLeft": 37})
    assert msg.time_left == 37


def test_parse_incoming_settings_bounds():
    msg = parse_incoming(
        {
            "type": "update_settings",
            "roomId": "ABC123",
            "settings": {"categories": ["Animals"], "rotations": 3, "sets": 2},
        }
    )
    assert msg.settings.rotations == 3

    # Empty category set
    with pytest.raises(ValidationError):
        parse_incoming(
            {"type": "update_settings", "roomId": "ABC123", "settings": {"categories": [], "rotations": 1, "sets": 1}}
        )

    # Non-positive rotations
    with pytest.raises(ValidationError):
        parse_incoming(
            {"type": "update_settings", "roomId": "ABC123", "settings": {"categories": ["Food"], "rotations": 0, "sets": 1}}
        )


def test_parse_incoming_rejects_bad_text():
    with pytest.raises(ValidationError):
        parse_incoming({"type": "create_room", "nickname": "   "})

    with pytest.raises(ValidationError):
        parse_incoming({"type": "create_room", "nickname": "x" * 21})

    with pytest.raises(ValidationError):
        parse_incoming({"type": "submit_answer", "roomId": "ABC123", "answer": "a" * 201})


def test_parse_incoming_unknown_type():
    with pytest.raises(UnknownMessageType):
        parse_incoming({"type": "draw_op"})

    with pytest.raises(UnknownMessageType):
        parse_incoming({"roomId": "ABC123"})

    with pytest.raises(UnknownMessageType):
        parse_incoming(["create_room"])


def test_outgoing_events_serialise_camel_case():
    wire = OutGameStarted(word=None, players=[], current_set=2).to_wire()
    assert wire == {"type": "game_started", "word": None, "players": [], "currentSet": 2}

    wire = OutRoundResults(
        impostor_id="p2",
        impostor_nickname="Ben",
        impostor_won=True,
        correct_voters=[],
        voting_results=[],
        leaderboard=[],
    ).to_wire()
    assert wire["impostorNickname"] == "Ben"
    assert wire["impostorWon"] is True
    assert wire["correctVoters"] == []
