import random

import pytest

from impostor.domain.sessions import RoomSessionManager
from impostor.settings import Settings
from impostor.transport.dispatcher import dispatch_message


class FakePublisher:
    def __init__(self):
        self.sent = []
        self.rebinds = []

    def send(self, pid, event):
        self.sent.append((pid, event))

    def rebind(self, old_pid, new_pid):
        self.rebinds.append((old_pid, new_pid))


class FakeApp:
    def __init__(self, manager):
        self.state = type("State", (), {"manager": manager})()


def make_app():
    publisher = FakePublisher()
    manager = RoomSessionManager(settings=Settings(), publisher=publisher, rng=random.Random(1))
    return FakeApp(manager), manager, publisher


async def _create(app, pid="p1", nickname="Ann"):
    to_sender, _ = await dispatch_message(app=app, pid=pid, raw={"type": "create_room", "nickname": nickname})
    assert to_sender == []
    return app.state.manager.room_of(pid)


@pytest.mark.asyncio
async def test_unknown_type_is_bad_message():
    app, manager, publisher = make_app()
    to_sender, pid = await dispatch_message(app=app, pid="p1", raw={"type": "draw_op"})
    assert pid == "p1"
    assert to_sender[0]["type"] == "error"
    assert to_sender[0]["code"] == "BAD_MESSAGE"


@pytest.mark.asyncio
async def test_invalid_payload_is_validation_error():
    app, manager, publisher = make_app()
    to_sender, _ = await dispatch_message(app=app, pid="p1", raw={"type": "create_room", "nickname": ""})
    assert to_sender[0]["code"] == "VALIDATION_ERROR"
    assert "nickname" in to_sender[0]["message"]


@pytest.mark.asyncio
async def test_create_room_routes_to_manager():
    app, manager, publisher = make_app()
    code = await _create(app)
    assert code is not None
    assert publisher.sent[0][0] == "p1"
    assert publisher.sent[0][1]["type"] == "room_created"


@pytest.mark.asyncio
async def test_room_errors_carry_their_code():
    app, manager, publisher = make_app()
    to_sender, _ = await dispatch_message(
        app=app, pid="p2", raw={"type": "join_room", "roomId": "nope99", "nickname": "Ben"}
    )
    assert to_sender[0]["code"] == "NOT_FOUND"

    code = await _create(app)
    to_sender, _ = await dispatch_message(app=app, pid="p2", raw={"type": "start_game", "roomId": code})
    assert to_sender[0]["code"] == "NOT_FOUND"

    await dispatch_message(app=app, pid="p2", raw={"type": "join_room", "roomId": code, "nickname": "Ben"})
    to_sender, _ = await dispatch_message(app=app, pid="p2", raw={"type": "start_game", "roomId": code})
    assert to_sender[0]["code"] == "PERMISSION_ERROR"

    to_sender, _ = await dispatch_message(app=app, pid="p1", raw={"type": "start_game", "roomId": code})
    assert to_sender[0]["code"] == "STATE_ERROR"


@pytest.mark.asyncio
async def test_player_id_must_match_connection():
    app, manager, publisher = make_app()
    code = await _create(app)
    to_sender, _ = await dispatch_message(
        app=app,
        pid="p1",
        raw={"type": "submit_answer", "roomId": code, "playerId": "someone-else", "answer": "stripes"},
    )
    assert to_sender[0]["code"] == "PERMISSION_ERROR"


@pytest.mark.asyncio
async def test_rejoin_switches_connection_identity():
    app, manager, publisher = make_app()
    code = await _create(app)
    await manager.disconnect("p1")

    to_sender, pid = await dispatch_message(
        app=app, pid="conn2", raw={"type": "rejoin_room", "roomId": code, "playerId": "p1"}
    )
    assert to_sender == []
    assert pid == "p1"
    assert publisher.rebinds == [("conn2", "p1")]


@pytest.mark.asyncio
async def test_unexpected_failure_is_internal_error(monkeypatch):
    app, manager, publisher = make_app()

    async def broken(pid, nickname):
        raise RuntimeError("redis went away")

    monkeypatch.setattr(manager, "create_room", broken)
    to_sender, _ = await dispatch_message(app=app, pid="p1", raw={"type": "create_room", "nickname": "Ann"})
    assert to_sender[0]["code"] == "INTERNAL_ERROR"
