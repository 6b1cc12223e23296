import asyncio

import pytest

from impostor.domain.clock import Clock


class Recorder:
    def __init__(self):
        self.fired = []

    async def __call__(self, generation):
        self.fired.append(generation)


@pytest.mark.asyncio
async def test_clock_fires_once_after_countdown():
    rec = Recorder()
    clock = Clock(rec, tick_interval=0.01)
    clock.start(3)
    assert clock.running
    assert clock.remaining == 3

    await asyncio.sleep(0.15)
    assert rec.fired == [clock.generation]
    assert clock.remaining == 0
    assert not clock.running


@pytest.mark.asyncio
async def test_restart_replaces_without_firing_old_countdown():
    rec = Recorder()
    clock = Clock(rec, tick_interval=0.01)
    clock.start(2)
    first = clock.generation
    clock.start(4)

    await asyncio.sleep(0.2)
    assert rec.fired == [clock.generation]
    assert first not in rec.fired


@pytest.mark.asyncio
async def test_cancel_never_fires():
    rec = Recorder()
    clock = Clock(rec, tick_interval=0.01)
    clock.start(2)
    clock.cancel()

    await asyncio.sleep(0.1)
    assert rec.fired == []
    assert clock.remaining == 0


@pytest.mark.asyncio
async def test_pause_captures_remaining_and_resume_restarts_from_it():
    rec = Recorder()
    clock = Clock(rec, tick_interval=0.01)
    clock.start(10)
    await asyncio.sleep(0.035)

    left = clock.pause()
    assert 0 < left < 10
    await asyncio.sleep(0.15)
    assert rec.fired == []
    assert clock.remaining == left

    clock.resume(left)
    await asyncio.sleep(0.2)
    assert rec.fired == [clock.generation]


@pytest.mark.asyncio
async def test_resume_uses_the_supplied_value():
    rec = Recorder()
    clock = Clock(rec, tick_interval=1.0)
    clock.start(60)
    clock.pause()

    clock.resume(37)
    assert clock.remaining == 37
    assert clock.pause() == 37
    assert rec.fired == []


@pytest.mark.asyncio
async def test_callback_failure_is_contained():
    async def boom(generation):
        raise RuntimeError("boom")

    clock = Clock(boom, tick_interval=0.01)
    clock.start(1)
    await asyncio.sleep(0.05)
    assert not clock.running
