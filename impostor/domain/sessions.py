# impostor/domain/sessions.py
from __future__ import annotations

import asyncio
import logging
import random
import string
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

from impostor.domain.clock import Clock
from impostor.domain.common.errors import (
    RoomError,
    RoomInternalError,
    RoomNotFoundError,
    RoomStateError,
)
from impostor.domain.common.events import Outbound
from impostor.domain.engine import ClockFactory, PhaseStateMachine
from impostor.domain.roster import connected_ids
from impostor.settings import Settings
from impostor.store.models import GameSettings, RoomStore
from impostor.util.timeutil import now_ts

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LEN = 6


class Publisher(Protocol):
    """Outgoing side of the transport. send() must never block the caller."""

    def send(self, pid: str, event: Dict[str, Any]) -> None: ...

    def rebind(self, old_pid: str, new_pid: str) -> None: ...


class SnapshotMirror(Protocol):
    async def reserve_room_code(self, room_code: str) -> bool: ...

    async def save_snapshot(self, room_code: str, snapshot: Dict[str, Any]) -> None: ...

    async def delete_room(self, room_code: str) -> None: ...


Action = Callable[[], List[Outbound]]
SettledHook = Callable[["RoomSession"], Awaitable[None]]


class RoomSession:
    """
    The serialisation point for one room: client actions and clock expiries
    queue on the same asyncio.Lock (FIFO) and run one at a time.

    A failed action leaves the room exactly as it was before the action.
    Clocks are not part of that copy; engine methods touch them only after
    every check has passed.
    """

    def __init__(
        self,
        engine: PhaseStateMachine,
        *,
        publisher: Publisher,
        repo: Optional[SnapshotMirror] = None,
        on_settled: Optional[SettledHook] = None,
    ) -> None:
        self.engine = engine
        self.publisher = publisher
        self.repo = repo
        self.lock = asyncio.Lock()
        self._on_settled = on_settled
        self._bg: Set[asyncio.Task] = set()
        engine.expiry_sink = self._on_clock

    @property
    def room_id(self) -> str:
        return self.engine.room.id

    @property
    def closed(self) -> bool:
        return self.engine.closed

    async def run(self, action: Action) -> List[Outbound]:
        async with self.lock:
            if self.engine.closed:
                raise RoomNotFoundError(f"Room {self.room_id} not found")

            backup = self.engine.room.model_copy(deep=True)
            try:
                out = action()
            except Exception as e:
                self.engine.room = backup
                if isinstance(e, RoomError):
                    raise
                logger.exception("[action-failed] room=%s", self.room_id)
                raise RoomInternalError("Something went wrong, please try again") from e

            self._deliver(out)
            if not self.engine.finished:
                self._mirror()

        if self._on_settled is not None:
            await self._on_settled(self)
        return out

    async def query(self, action: Action) -> List[Outbound]:
        """Read-only actions: delivered, not mirrored."""
        async with self.lock:
            if self.engine.closed:
                raise RoomNotFoundError(f"Room {self.room_id} not found")
            out = action()
            self._deliver(out)
        return out

    async def _on_clock(self, purpose: str, generation: int) -> None:
        try:
            await self.run(lambda: self.engine.on_expired(purpose, generation))
        except RoomNotFoundError:
            logger.debug("[clock-dropped] room=%s purpose=%s (room closed)", self.room_id, purpose)
        except RoomError as e:
            logger.warning("[clock-action-failed] room=%s purpose=%s code=%s", self.room_id, purpose, e.code)

    def _deliver(self, out: List[Outbound]) -> None:
        members = connected_ids(self.engine.room)
        for ob in out:
            wire = ob.event.to_wire()
            targets = ob.targets if ob.targets is not None else [pid for pid in members if pid != ob.exclude]
            for pid in targets:
                self.publisher.send(pid, wire)

    def _mirror(self) -> None:
        if self.repo is None:
            return
        snap = self.engine.snapshot_for(None, full=True).model_dump(by_alias=True)
        task = asyncio.get_running_loop().create_task(self._save(snap))
        self._bg.add(task)
        task.add_done_callback(self._bg.discard)

    async def _save(self, snap: Dict[str, Any]) -> None:
        try:
            await self.repo.save_snapshot(self.room_id, snap)
        except Exception:
            logger.warning("[mirror-failed] room=%s", self.room_id, exc_info=True)

    def retire(self) -> None:
        self.engine.close()
        for task in list(self._bg):
            task.cancel()


def gen_room_code(rng: random.Random) -> str:
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LEN))


class RoomSessionManager:
    """
    Registry of live rooms and the entry point for every inbound action.
    Also keeps the player id -> room index (one room per player at a time).
    """

    def __init__(
        self,
        *,
        settings: Settings,
        publisher: Publisher,
        repo: Optional[SnapshotMirror] = None,
        rng: Optional[random.Random] = None,
        clock_factory: Optional[ClockFactory] = None,
    ) -> None:
        self.settings = settings
        self.publisher = publisher
        self.repo = repo
        self.rng = rng or random.Random()
        self.clock_factory = clock_factory or (lambda cb: Clock(cb, tick_interval=settings.TICK_INTERVAL_SEC))
        self._rooms: Dict[str, RoomSession] = {}
        self._player_room: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ----------------------------
    # Registry
    # ----------------------------
    def get(self, room_id: str) -> RoomSession:
        session = self._rooms.get(room_id.upper())
        if session is None:
            raise RoomNotFoundError(f"Room {room_id.upper()} not found")
        return session

    def room_of(self, pid: str) -> Optional[str]:
        return self._player_room.get(pid)

    def __len__(self) -> int:
        return len(self._rooms)

    def _ensure_free(self, pid: str) -> None:
        if pid in self._player_room:
            raise RoomStateError("Leave your current room first")

    async def _new_code(self) -> str:
        for _ in range(100):
            code = gen_room_code(self.rng)
            if code in self._rooms:
                continue
            if self.repo is not None and not await self.repo.reserve_room_code(code):
                continue
            return code
        raise RoomInternalError("Could not allocate a room code")

    async def _open_room(self, settings: Optional[GameSettings] = None) -> RoomSession:
        async with self._lock:
            code = await self._new_code()
            room = RoomStore(id=code, created_at=now_ts(), settings=settings or GameSettings())
            engine = PhaseStateMachine(
                room,
                settings=self.settings,
                rng=self.rng,
                clock_factory=self.clock_factory,
            )
            session = RoomSession(engine, publisher=self.publisher, repo=self.repo, on_settled=self._settled)
            self._rooms[code] = session
            return session

    async def _settled(self, session: RoomSession) -> None:
        code = session.room_id
        members = {p.id for p in session.engine.room.players}
        for pid, rid in list(self._player_room.items()):
            if rid == code and pid not in members:
                del self._player_room[pid]
        if session.engine.finished:
            await self._destroy(session)
            return
        for pid in members:
            self._player_room[pid] = code

    async def _destroy(self, session: RoomSession) -> None:
        code = session.room_id
        if self._rooms.get(code) is session:
            del self._rooms[code]
        for pid, rid in list(self._player_room.items()):
            if rid == code:
                del self._player_room[pid]
        session.retire()
        logger.info("[room-destroyed] room=%s", code)
        if self.repo is not None:
            try:
                await self.repo.delete_room(code)
            except Exception:
                logger.warning("[room-delete-failed] room=%s", code, exc_info=True)

    async def _act(self, room_id: str, call: Callable[[PhaseStateMachine], List[Outbound]]) -> List[Outbound]:
        session = self.get(room_id)
        return await session.run(lambda: call(session.engine))

    # ----------------------------
    # Lifecycle
    # ----------------------------
    async def create_room(self, pid: str, nickname: str) -> str:
        self._ensure_free(pid)
        session = await self._open_room()
        try:
            await session.run(lambda: session.engine.populate([(pid, nickname)], host_id=pid))
        except RoomError:
            await self._destroy(session)
            raise
        return session.room_id

    async def join_room(self, pid: str, room_id: str, nickname: str) -> List[Outbound]:
        current = self._player_room.get(pid)
        if current is not None and current != room_id.upper():
            raise RoomStateError("Leave your current room first")
        return await self._act(room_id, lambda e: e.join(pid, nickname))

    async def rejoin_room(self, conn_pid: str, room_id: str, player_id: str, nickname: Optional[str] = None) -> str:
        """
        Re-associate a fresh connection with a player id issued earlier.
        Returns the id the connection speaks as from now on.
        """
        if conn_pid != player_id:
            self._ensure_free(conn_pid)
        session = self.get(room_id)

        def _rejoin() -> List[Outbound]:
            out = session.engine.rejoin(player_id, nickname)
            if conn_pid != player_id:
                self.publisher.rebind(conn_pid, player_id)
            return out

        await session.run(_rejoin)
        return player_id

    async def leave_room(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.leave(pid))

    async def disconnect(self, pid: str) -> None:
        room_id = self._player_room.get(pid)
        if room_id is None:
            return
        session = self._rooms.get(room_id)
        if session is None:
            self._player_room.pop(pid, None)
            return
        try:
            await session.run(lambda: session.engine.disconnect(pid))
        except RoomNotFoundError:
            self._player_room.pop(pid, None)

    async def play_again(self, pid: str, room_id: str) -> str:
        old = self.get(room_id)
        members: List[Tuple[str, str]] = []
        settings = old.engine.room.settings.model_copy(deep=True)

        def _retire() -> List[Outbound]:
            members.extend(old.engine.play_again_roster(pid))
            return old.engine.close()

        await old.run(_retire)

        session = await self._open_room(settings)
        await session.run(lambda: session.engine.populate(members, host_id=pid))
        logger.info("[play-again] old=%s new=%s players=%s", old.room_id, session.room_id, len(members))
        return session.room_id

    async def close_room(self, room_id: str) -> None:
        await self._act(room_id, lambda e: e.close("The room was closed"))

    async def snapshot(self, pid: str, room_id: str) -> List[Outbound]:
        session = self.get(room_id)
        return await session.query(lambda: session.engine.snapshot(pid))

    # ----------------------------
    # Host administration
    # ----------------------------
    async def kick_player(self, pid: str, room_id: str, target: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.kick(pid, target))

    async def update_settings(self, pid: str, room_id: str, settings: GameSettings) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.update_settings(pid, settings))

    async def start_game(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.start_game(pid))

    async def pause_game(self, pid: str, room_id: str, time_left: Optional[int] = None) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.pause(pid, time_left))

    async def resume_game(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.resume(pid))

    async def next_set(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.next_set(pid))

    async def back_to_lobby(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.back_to_lobby(pid))

    # ----------------------------
    # Gameplay
    # ----------------------------
    async def submit_answer(self, pid: str, room_id: str, answer: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.submit_answer(pid, answer))

    async def submit_vote(self, pid: str, room_id: str, voted_for_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.submit_vote(pid, voted_for_id))

    async def vote_in_advance(self, pid: str, room_id: str) -> List[Outbound]:
        return await self._act(room_id, lambda e: e.vote_in_advance(pid))

    # ----------------------------
    # Admin / shutdown
    # ----------------------------
    def list_summaries(self) -> List[Dict[str, Any]]:
        out = []
        for code, session in sorted(self._rooms.items()):
            room = session.engine.room
            out.append({
                "roomId": code,
                "phase": room.phase,
                "gameState": room.game_state,
                "currentSet": room.current_set,
                "players": len(room.players),
                "connected": len(connected_ids(room)),
                "createdAt": room.created_at,
            })
        return out

    async def shutdown(self) -> None:
        for session in list(self._rooms.values()):
            session.retire()
        self._rooms.clear()
        self._player_room.clear()
