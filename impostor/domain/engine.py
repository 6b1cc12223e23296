# impostor/domain/engine.py
from __future__ import annotations

import logging
import random
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from impostor.domain.clock import Clock, ExpireCallback
from impostor.domain.common.errors import (
    RoomNotFoundError,
    RoomPermissionError,
    RoomStateError,
    RoomValidationError,
)
from impostor.domain.common.events import Outbound, to_player, to_room
from impostor.domain.common.fsm import can_transition_to
from impostor.domain.common.types import ClockPurpose, LeaveReason, Phase, VotingMode
from impostor.domain.roster import (
    add_player,
    connected_ids,
    get_player,
    nickname_taken,
    remove_player,
    reset_set_flags,
)
from impostor.domain.scoring import apply_deltas, is_match_complete, leaderboard, score_round
from impostor.domain.turns import advance, begin_rotation_order, current_turn_player_id, record_answer
from impostor.domain.voting import (
    cast_vote,
    check_early_request,
    check_vote,
    discard_votes_involving,
    everyone_voted,
    has_voted,
    open_window,
)
from impostor.domain.words import pick_word, unknown_categories
from impostor.settings import Settings
from impostor.store.models import GameSettings, PlayerStore, PlayerView, RoomSnapshot, RoomStore
from impostor.transport.protocols import (
    OutAnswerSubmitted,
    OutGameComplete,
    OutGamePaused,
    OutGameResumed,
    OutGameStarted,
    OutPlayerJoined,
    OutPlayerKicked,
    OutPlayerLeft,
    OutPlayerVotedEarly,
    OutRoomCreated,
    OutRoomJoined,
    OutRoomUpdated,
    OutRotationComplete,
    OutRoundResults,
    OutSetComplete,
    OutTurnStarted,
    OutTurnTimeout,
    OutVoteSubmitted,
    OutVotingPhase,
)
from impostor.util.timeutil import now_ms, now_ts

logger = logging.getLogger(__name__)

ClockFactory = Callable[[ExpireCallback], Clock]
ExpirySink = Callable[[str, int], Awaitable[None]]

GRACE_PREFIX = "grace:"


class PhaseStateMachine:
    """
    Owns one room. Every method is synchronous, validates before it mutates,
    and returns the events the action produced (always ending with a per-viewer
    room_updated when the room changed).

    Callers serialise access (see RoomSession); the machine itself holds no lock.
    Clock expiries come back in through `expiry_sink` and must be fed to
    on_expired() under the same serialisation.
    """

    def __init__(
        self,
        room: RoomStore,
        *,
        settings: Settings,
        rng: random.Random,
        clock_factory: ClockFactory,
    ) -> None:
        self.room = room
        self.settings = settings
        self.rng = rng
        self.closed = False
        self.expiry_sink: Optional[ExpirySink] = None
        self._clock_factory = clock_factory
        self.clocks: Dict[ClockPurpose, Clock] = {
            purpose: clock_factory(partial(self._notify_expired, purpose))
            for purpose in ("turn", "voting", "transition")
        }
        self._grace: Dict[str, Clock] = {}

    @property
    def finished(self) -> bool:
        return self.closed or not self.room.players

    # ----------------------------
    # Clock plumbing
    # ----------------------------
    async def _notify_expired(self, purpose: str, generation: int) -> None:
        if self.expiry_sink is not None:
            await self.expiry_sink(purpose, generation)

    def _clock(self, purpose: str) -> Optional[Clock]:
        if purpose.startswith(GRACE_PREFIX):
            return self._grace.get(purpose[len(GRACE_PREFIX):])
        return self.clocks.get(purpose)  # type: ignore[arg-type]

    def _start_grace(self, pid: str) -> None:
        clock = self._grace.get(pid)
        if clock is None:
            clock = self._clock_factory(partial(self._notify_expired, f"{GRACE_PREFIX}{pid}"))
            self._grace[pid] = clock
        clock.start(self.settings.REJOIN_GRACE_SEC)

    def _drop_grace(self, pid: str) -> None:
        clock = self._grace.pop(pid, None)
        if clock is not None:
            clock.cancel()

    def _active_clock(self) -> Optional[Clock]:
        if self.room.phase == "playing":
            return self.clocks["turn"]
        if self.room.phase == "voting":
            return self.clocks["voting"]
        if self.room.phase == "set-transition":
            return self.clocks["transition"]
        return None

    def _goto(self, target: Phase) -> None:
        if not can_transition_to(self.room.phase, target):
            raise RuntimeError(f"illegal phase transition {self.room.phase} -> {target}")
        self.room.phase = target

    # ----------------------------
    # Guards
    # ----------------------------
    def _member(self, pid: str) -> PlayerStore:
        p = get_player(self.room, pid)
        if p is None:
            raise RoomNotFoundError("Player not in room")
        return p

    def _host(self, pid: str) -> PlayerStore:
        p = self._member(pid)
        if not p.is_host:
            raise RoomPermissionError("Only the host can do that")
        return p

    def _clean_nickname(self, nickname: str) -> str:
        nick = (nickname or "").strip()
        if not nick or len(nick) > 20:
            raise RoomValidationError("Nickname must be 1-20 characters")
        return nick

    # ----------------------------
    # Snapshots
    # ----------------------------
    def _view(self, p: PlayerStore, viewer: Optional[str], reveal: bool) -> PlayerView:
        own = p.id == viewer
        return PlayerView(
            id=p.id,
            nickname=p.nickname,
            is_host=p.is_host,
            is_impostor=p.is_impostor if (reveal or own) else False,
            has_answered=p.has_answered,
            has_voted=has_voted(self.room, p.id),
            score=p.score,
            vote=p.vote if (reveal or own) else None,
            connected=p.connected,
        )

    def _views(self, viewer: Optional[str], reveal: bool = False) -> List[PlayerView]:
        return [self._view(p, viewer, reveal) for p in self.room.players]

    def snapshot_for(self, viewer: Optional[str], *, full: bool = False) -> RoomSnapshot:
        """
        Read-only copy of the room as `viewer` may see it.
        full=True is the unredacted copy used for the mirror and admin.
        """
        room = self.room
        reveal = full or room.phase in ("results", "set-transition")
        in_set = room.phase in ("playing", "voting")

        word: Optional[str] = room.current_word or None
        if room.phase == "lobby" or (in_set and not full and viewer == room.impostor_id):
            word = None

        if room.is_paused:
            time_left = room.paused_time_left
        else:
            clock = self._active_clock()
            time_left = clock.remaining if clock is not None and clock.running else None

        return RoomSnapshot(
            id=room.id,
            players=self._views(viewer, reveal),
            settings=room.settings.model_copy(deep=True),
            phase=room.phase,
            game_state=room.game_state,
            current_word=word,
            current_set=room.current_set,
            current_rotation=room.current_rotation,
            current_turn_index=room.current_turn_index,
            current_turn_player_id=current_turn_player_id(room),
            turn_order=list(room.turn_order),
            messages=[m.model_copy() for m in room.messages],
            impostor_id=room.impostor_id if (reveal or viewer == room.impostor_id) else None,
            voting_mode=room.voting_mode,
            voting_results=[r.model_copy() for r in room.voting_results] if room.voting_results is not None else None,
            match_complete=room.match_complete,
            winner_id=room.winner_id,
            is_paused=room.is_paused,
            paused_time_left=room.paused_time_left,
            time_left=time_left,
            snapshot_at=now_ms(),
        )

    def _updated(self) -> List[Outbound]:
        return [
            to_player(p.id, OutRoomUpdated(room=self.snapshot_for(p.id)))
            for p in self.room.players
            if p.connected
        ]

    # ----------------------------
    # Membership
    # ----------------------------
    def populate(self, members: Sequence[Tuple[str, str]], *, host_id: str) -> List[Outbound]:
        """Seat the founding members of a fresh room (create_room, play_again)."""
        if self.room.players:
            raise RoomStateError("Room already has players")
        ts = now_ts()
        seated = [(pid, self._clean_nickname(nick)) for pid, nick in members]
        for pid, nick in seated:
            add_player(self.room, pid, nick, ts, host=pid == host_id)

        logger.info("[room-created] room=%s host=%s players=%s", self.room.id, host_id, len(seated))
        return [
            to_player(pid, OutRoomCreated(room_id=self.room.id, player_id=pid, room=self.snapshot_for(pid)))
            for pid, _ in seated
        ]

    def join(self, pid: str, nickname: str) -> List[Outbound]:
        room = self.room
        nick = self._clean_nickname(nickname)
        if get_player(room, pid) is not None:
            raise RoomStateError("You are already in this room")
        if room.phase != "lobby":
            raise RoomStateError("Game already in progress")
        if len(room.players) >= self.settings.MAX_PLAYERS:
            raise RoomStateError("Room is full")
        if nickname_taken(room, nick):
            raise RoomValidationError("That nickname is already taken in this room")

        p = add_player(room, pid, nick, now_ts())
        out = [
            to_player(pid, OutRoomJoined(room_id=room.id, player_id=pid, room=self.snapshot_for(pid))),
            to_room(OutPlayerJoined(player=self._view(p, None, False)), exclude=pid),
        ]
        return out + self._updated()

    def rejoin(self, pid: str, nickname: Optional[str] = None) -> List[Outbound]:
        """
        Restore a previously issued identity. Role, score and vote survive;
        the nickname is the one the room already knows.
        """
        room = self.room
        p = get_player(room, pid)
        if p is None:
            raise RoomNotFoundError("No such player in this room (the rejoin window may have passed)")

        self._drop_grace(pid)
        p.connected = True
        p.disconnected_at = None
        logger.info("[player-rejoined] room=%s player=%s", room.id, pid)

        out = [to_player(pid, OutRoomJoined(room_id=room.id, player_id=pid, room=self.snapshot_for(pid)))]
        return out + self._updated()

    def leave(self, pid: str) -> List[Outbound]:
        self._member(pid)
        return self._remove(pid, "left") + self._updated()

    def disconnect(self, pid: str) -> List[Outbound]:
        """Transport dropped. The seat is held for the rejoin grace period."""
        room = self.room
        p = get_player(room, pid)
        if p is None or not p.connected:
            return []
        p.connected = False
        p.disconnected_at = now_ts()
        self._start_grace(pid)
        logger.info("[player-disconnected] room=%s player=%s grace=%s", room.id, pid, self.settings.REJOIN_GRACE_SEC)

        out: List[Outbound] = []
        if room.phase == "voting" and everyone_voted(room):
            out += self._finish_voting()
        return out + self._updated()

    def kick(self, actor: str, target: str) -> List[Outbound]:
        self._host(actor)
        if target == actor:
            raise RoomValidationError("The host cannot be kicked")
        if get_player(self.room, target) is None:
            raise RoomNotFoundError("Player not in room")

        out = [to_player(target, OutPlayerKicked(player_id=target, message="You were removed from the room by the host"))]
        return out + self._remove(target, "kicked") + self._updated()

    def _remove(self, pid: str, reason: LeaveReason) -> List[Outbound]:
        room = self.room
        was_turn = current_turn_player_id(room) == pid
        was_impostor = pid == room.impostor_id

        self._drop_grace(pid)
        p = remove_player(room, pid)
        nickname = p.nickname if p is not None else ""
        logger.info("[player-left] room=%s player=%s reason=%s", room.id, pid, reason)

        out = [to_room(OutPlayerLeft(player_id=pid, player_nickname=nickname, reason=reason))]
        if not room.players:
            self.close()
            return out

        if was_impostor and room.phase in ("playing", "voting"):
            # Nobody left to catch: settle the set on the votes already cast.
            room.votes = [v for v in room.votes if v.voter_id != pid]
            out += self._finish_voting()
        elif room.phase == "voting":
            discard_votes_involving(room, pid)
            if everyone_voted(room):
                out += self._finish_voting()
        elif was_turn:
            self.clocks["turn"].cancel()
            out.append(to_room(OutTurnTimeout(player_id=pid)))
            out += self._advance_turn()
        return out

    # ----------------------------
    # Host administration
    # ----------------------------
    def update_settings(self, actor: str, settings: GameSettings) -> List[Outbound]:
        self._host(actor)
        if self.room.phase != "lobby":
            raise RoomStateError("Settings can only be changed in the lobby")

        unknown = unknown_categories(settings.categories)
        if unknown:
            raise RoomValidationError(f"Unknown categories: {', '.join(unknown)}")
        if not settings.categories:
            raise RoomValidationError("At least one category is required")
        if not 1 <= settings.rotations <= self.settings.MAX_ROTATIONS:
            raise RoomValidationError(f"Rotations must be between 1 and {self.settings.MAX_ROTATIONS}")
        if not 1 <= settings.sets <= self.settings.MAX_SETS:
            raise RoomValidationError(f"Sets must be between 1 and {self.settings.MAX_SETS}")

        categories = list(dict.fromkeys(settings.categories))
        self.room.settings = GameSettings(categories=categories, rotations=settings.rotations, sets=settings.sets)
        return self._updated()

    def start_game(self, actor: str) -> List[Outbound]:
        self._host(actor)
        room = self.room
        if room.phase != "lobby":
            raise RoomStateError("Game already started")
        if len(connected_ids(room)) < self.settings.MIN_PLAYERS:
            raise RoomStateError(f"Need at least {self.settings.MIN_PLAYERS} players to start")

        room.game_state = "started"
        room.current_set = 1
        room.match_complete = False
        room.winner_id = None
        return self._begin_set() + self._updated()

    def pause(self, actor: str, time_left: Optional[int] = None) -> List[Outbound]:
        self._host(actor)
        room = self.room
        if room.phase != "playing":
            raise RoomStateError("Only a turn in progress can be paused")
        if room.is_paused:
            raise RoomStateError("Game is already paused")
        if time_left is not None and not 1 <= time_left <= self.settings.TURN_DURATION_SEC:
            raise RoomValidationError(f"timeLeft must be between 1 and {self.settings.TURN_DURATION_SEC}")

        remaining = self.clocks["turn"].pause()
        left = time_left if time_left is not None else remaining
        room.is_paused = True
        room.paused_time_left = left
        logger.info("[game-paused] room=%s time_left=%s", room.id, left)
        return [to_room(OutGamePaused(time_left=left))] + self._updated()

    def resume(self, actor: str) -> List[Outbound]:
        self._host(actor)
        room = self.room
        if not room.is_paused:
            raise RoomStateError("Game is not paused")

        left = room.paused_time_left if room.paused_time_left is not None else self.settings.TURN_DURATION_SEC
        room.is_paused = False
        room.paused_time_left = None
        self.clocks["turn"].resume(left)
        logger.info("[game-resumed] room=%s time_left=%s", room.id, left)
        return [to_room(OutGameResumed(time_left=left))] + self._updated()

    def next_set(self, actor: str) -> List[Outbound]:
        self._host(actor)
        if self.room.match_complete:
            raise RoomStateError("The match is over")
        if self.room.phase != "set-transition":
            raise RoomStateError("There is no set to advance to right now")
        if not self._enough_players():
            raise RoomStateError(f"Need at least {self.settings.MIN_PLAYERS} connected players for another set")
        return self._next_set() + self._updated()

    def back_to_lobby(self, actor: str) -> List[Outbound]:
        self._host(actor)
        room = self.room
        if room.phase not in ("results", "set-transition"):
            raise RoomStateError("Can only return to the lobby after a round")
        self._reset_to_lobby()
        return self._updated()

    def _reset_to_lobby(self) -> None:
        room = self.room
        for clock in self.clocks.values():
            clock.cancel()
        self._goto("lobby")
        reset_set_flags(room)
        room.game_state = "waiting"
        room.current_word = ""
        room.current_set = 1
        room.current_rotation = 1
        room.current_turn_index = 0
        room.turn_order = []
        room.messages = []
        room.impostor_id = None
        room.impostor_nickname = ""
        room.votes = []
        room.voting_mode = None
        room.early_vote_used = False
        room.voting_results = None
        room.correct_voters = []
        room.impostor_won = None
        room.match_complete = False
        room.winner_id = None
        room.is_paused = False
        room.paused_time_left = None

    def play_again_roster(self, actor: str) -> List[Tuple[str, str]]:
        """Connected members, in roster order, to seat in a fresh room."""
        self._host(actor)
        if self.room.phase not in ("results", "set-transition"):
            raise RoomStateError("Play again is only available after a round")
        return [(p.id, p.nickname) for p in self.room.players if p.connected]

    def close(self, message: Optional[str] = None) -> List[Outbound]:
        """Stop every clock. With a message, tell connected members why."""
        for clock in self.clocks.values():
            clock.cancel()
        for pid in list(self._grace):
            self._drop_grace(pid)
        self.closed = True
        if message is None:
            return []
        return [to_player(pid, OutPlayerKicked(player_id=pid, message=message)) for pid in connected_ids(self.room)]

    # ----------------------------
    # Gameplay
    # ----------------------------
    def submit_answer(self, pid: str, answer: str) -> List[Outbound]:
        room = self.room
        self._member(pid)
        if room.phase != "playing":
            raise RoomStateError("Answers are only accepted during play")
        if room.is_paused:
            raise RoomStateError("Game is paused")
        if current_turn_player_id(room) != pid:
            raise RoomStateError("It is not your turn")
        text = (answer or "").strip()
        if not text or len(text) > 200:
            raise RoomValidationError("Answer must be 1-200 characters")

        self.clocks["turn"].cancel()
        msg = record_answer(room, pid, text, now_ts())
        out = [to_room(OutAnswerSubmitted(message=msg))]
        return out + self._advance_turn() + self._updated()

    def submit_vote(self, pid: str, voted_for_id: str) -> List[Outbound]:
        room = self.room
        check_vote(room, pid, voted_for_id)

        cast_vote(room, pid, voted_for_id)
        voter = self._member(pid)
        out = [to_room(OutVoteSubmitted(player_id=pid, player_nickname=voter.nickname))]
        if everyone_voted(room):
            out += self._finish_voting()
        return out + self._updated()

    def vote_in_advance(self, pid: str) -> List[Outbound]:
        room = self.room
        if not check_early_request(room, pid):
            return []

        p = self._member(pid)
        self.clocks["turn"].cancel()
        out = [to_room(OutPlayerVotedEarly(player_nickname=p.nickname), exclude=pid)]
        return out + self._open_voting("early") + self._updated()

    def snapshot(self, pid: str) -> List[Outbound]:
        self._member(pid)
        return [to_player(pid, OutRoomUpdated(room=self.snapshot_for(pid)))]

    # ----------------------------
    # Clock expiries
    # ----------------------------
    def on_expired(self, purpose: str, generation: int) -> List[Outbound]:
        clock = self._clock(purpose)
        if clock is None or clock.generation != generation:
            # Restarted or cancelled while this expiry waited for the room.
            return []

        room = self.room
        out: List[Outbound] = []
        if purpose == "turn":
            pid = current_turn_player_id(room)
            if pid is None or room.is_paused:
                return []
            logger.info("[turn-timeout] room=%s player=%s rotation=%s", room.id, pid, room.current_rotation)
            out.append(to_room(OutTurnTimeout(player_id=pid)))
            out += self._advance_turn()
        elif purpose == "voting":
            if room.phase != "voting":
                return []
            logger.info("[voting-timeout] room=%s votes=%s", room.id, len(room.votes))
            out += self._finish_voting()
        elif purpose == "transition":
            if room.phase != "set-transition":
                return []
            if not self._enough_players():
                logger.info("[auto-next-set] room=%s too few players, back to lobby", room.id)
                self._reset_to_lobby()
                return self._updated()
            logger.info("[auto-next-set] room=%s set=%s", room.id, room.current_set + 1)
            out += self._next_set()
        elif purpose.startswith(GRACE_PREFIX):
            pid = purpose[len(GRACE_PREFIX):]
            p = get_player(room, pid)
            if p is None or p.connected:
                return []
            logger.info("[grace-expired] room=%s player=%s", room.id, pid)
            out += self._remove(pid, "timeout")
        else:
            return []
        return out + self._updated()

    # ----------------------------
    # Set / turn / voting flow
    # ----------------------------
    def _begin_set(self) -> List[Outbound]:
        room = self.room
        reset_set_flags(room)
        room.messages = []
        room.votes = []
        room.voting_mode = None
        room.voting_results = None
        room.correct_voters = []
        room.impostor_won = None
        room.early_vote_used = False
        room.is_paused = False
        room.paused_time_left = None

        candidates = [p for p in room.players if p.connected] or room.players
        impostor = self.rng.choice(candidates)
        impostor.is_impostor = True
        room.impostor_id = impostor.id
        room.impostor_nickname = impostor.nickname
        room.current_word = pick_word(room.settings.categories, self.rng)

        self._goto("playing")
        begin_rotation_order(room)
        logger.info("[set-start] room=%s set=%s players=%s", room.id, room.current_set, len(room.turn_order))

        out = [
            to_player(
                pid,
                OutGameStarted(
                    word=None if pid == room.impostor_id else room.current_word,
                    players=self._views(pid),
                    current_set=room.current_set,
                ),
            )
            for pid in connected_ids(room)
        ]
        return out + self._start_turn()

    def _start_turn(self) -> List[Outbound]:
        room = self.room
        pid = current_turn_player_id(room)
        p = get_player(room, pid)
        duration = self.settings.TURN_DURATION_SEC
        if room.is_paused:
            room.paused_time_left = duration
        else:
            self.clocks["turn"].start(duration)

        return [
            to_room(
                OutTurnStarted(
                    player_id=pid or "",
                    player_nickname=p.nickname if p is not None else "",
                    turn_index=room.current_turn_index,
                    total_players=len(room.turn_order),
                    rotation=room.current_rotation,
                    total_rotations=room.settings.rotations,
                    time_left=duration,
                )
            )
        ]

    def _advance_turn(self) -> List[Outbound]:
        if advance(self.room) == "rotation_complete":
            self.clocks["turn"].cancel()
            return [to_room(OutRotationComplete())] + self._open_voting("standard")
        return self._start_turn()

    def _open_voting(self, mode: VotingMode) -> List[Outbound]:
        room = self.room
        self._goto("voting")
        open_window(room, mode)
        if mode == "early":
            room.early_vote_used = True
        room.is_paused = False
        room.paused_time_left = None

        duration = self.settings.VOTING_DURATION_SEC
        self.clocks["voting"].start(duration)
        logger.info("[voting-open] room=%s mode=%s", room.id, mode)
        return [to_room(OutVotingPhase(mode=mode, time_left=duration))]

    def _finish_voting(self) -> List[Outbound]:
        room = self.room
        self.clocks["turn"].cancel()
        self.clocks["voting"].cancel()

        outcome = score_round(
            impostor_id=room.impostor_id,
            impostor_nickname=room.impostor_nickname,
            votes=room.votes,
            players=room.players,
        )
        apply_deltas(room.players, outcome.deltas)

        self._goto("results")
        room.is_paused = False
        room.paused_time_left = None
        room.voting_results = outcome.voting_results
        room.correct_voters = outcome.correct_voters
        room.impostor_won = outcome.impostor_won
        board = leaderboard(room.players)
        logger.info(
            "[voting-closed] room=%s set=%s impostor_won=%s correct=%s",
            room.id, room.current_set, outcome.impostor_won, len(outcome.correct_voters),
        )

        out = [
            to_room(
                OutRoundResults(
                    impostor_id=outcome.impostor_id,
                    impostor_nickname=outcome.impostor_nickname,
                    impostor_won=outcome.impostor_won,
                    correct_voters=outcome.correct_voters,
                    voting_results=outcome.voting_results,
                    leaderboard=board,
                    scores={p.id: p.score for p in room.players},
                )
            )
        ]

        if is_match_complete(room.current_set, room.settings.sets):
            winner = board[0] if board else None
            room.match_complete = True
            room.game_state = "finished"
            room.winner_id = winner.id if winner is not None else None
            logger.info("[game-complete] room=%s winner=%s", room.id, room.winner_id)
            out.append(to_room(OutGameComplete(winner=winner, leaderboard=board)))
            return out

        self._goto("set-transition")
        auto_next = self.settings.AUTO_NEXT_SET_SEC
        self.clocks["transition"].start(auto_next)
        out.append(to_room(OutSetComplete(auto_next_in=auto_next)))
        return out

    def _enough_players(self) -> bool:
        return len(connected_ids(self.room)) >= self.settings.MIN_PLAYERS

    def _next_set(self) -> List[Outbound]:
        self.clocks["transition"].cancel()
        self.room.current_set += 1
        return self._begin_set()
