import asyncio
import logging

import pytest

from impostor.transport.ws_manager import SEND_QUEUE_MAX, WSManager


class FakeSocket:
    """send_json waits on `gate`; leave it unset to model a stalled client."""

    def __init__(self, *, stalled=False):
        self.gate = asyncio.Event()
        if not stalled:
            self.gate.set()
        self.delivered = []
        self.closed_with = None

    async def send_json(self, data):
        await self.gate.wait()
        self.delivered.append(data)

    async def close(self, code=1000):
        self.closed_with = code


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_send_never_waits_on_a_stalled_socket(caplog):
    wsman = WSManager()
    ws = FakeSocket(stalled=True)
    conn = wsman.add("p1", ws)

    with caplog.at_level(logging.WARNING):
        for i in range(SEND_QUEUE_MAX + 5):
            wsman.send("p1", {"type": "tick", "n": i})

    assert conn.queue.qsize() == SEND_QUEUE_MAX
    assert "[ws-queue-full]" in caplog.text

    await settle()
    assert ws.delivered == []

    ws.gate.set()
    await settle()
    assert [e["n"] for e in ws.delivered] == list(range(SEND_QUEUE_MAX))

    await wsman.close_all()


@pytest.mark.asyncio
async def test_send_to_unknown_pid_is_ignored():
    wsman = WSManager()
    wsman.send("nobody", {"type": "tick"})
    assert "nobody" not in wsman


@pytest.mark.asyncio
async def test_rebind_moves_pid_and_closes_the_old_socket():
    wsman = WSManager()
    old_ws, new_ws = FakeSocket(), FakeSocket()
    old = wsman.add("p2", old_ws)
    new = wsman.add("conn9", new_ws)

    wsman.rebind("conn9", "p2")

    assert "conn9" not in wsman
    assert "p2" in wsman
    assert new.pid == "p2"
    assert old.writer is None
    await settle()
    assert old_ws.closed_with == 4001

    wsman.send("p2", {"type": "room_updated"})
    await settle()
    assert new_ws.delivered == [{"type": "room_updated"}]
    assert old_ws.delivered == []

    await wsman.close_all()


@pytest.mark.asyncio
async def test_stale_connection_removal_leaves_the_new_one_alone():
    wsman = WSManager()
    old = wsman.add("p2", FakeSocket())
    new = wsman.add("conn9", FakeSocket())
    wsman.rebind("conn9", "p2")

    # The old socket's receive loop ends after the rejoin; the player stays connected.
    assert wsman.remove("p2", old) is False
    assert "p2" in wsman
    assert new.writer is not None

    assert wsman.remove("p2", new) is True
    assert "p2" not in wsman
    assert new.writer is None


@pytest.mark.asyncio
async def test_close_all_closes_every_socket():
    wsman = WSManager()
    sockets = [FakeSocket(), FakeSocket(stalled=True)]
    conns = [wsman.add(f"p{i}", ws) for i, ws in enumerate(sockets)]
    wsman.send("p1", {"type": "tick"})
    await settle()

    await wsman.close_all()

    assert [ws.closed_with for ws in sockets] == [1001, 1001]
    assert all(c.writer is None for c in conns)
    assert "p0" not in wsman and "p1" not in wsman
