# impostor/transport/protocols.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from impostor.domain.common.types import LeaveReason, VotingMode
from impostor.store.models import (
    GameSettings,
    LeaderboardEntry,
    Message,
    PlayerView,
    RoomSnapshot,
    VotingResult,
)


# =========================
# Incoming (Client -> Server)
# =========================

class InBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)
    type: str


class InRoomBase(InBase):
    room_id: str = Field(min_length=1, max_length=16)

    @field_validator("room_id")
    @classmethod
    def _upper_room_id(cls, v: str) -> str:
        # Room codes are case-insensitive
        return v.upper()


# ---- Lifecycle ----

class InCreateRoom(InBase):
    type: Literal["create_room"] = "create_room"
    nickname: str = Field(min_length=1, max_length=20)


class InJoinRoom(InRoomBase):
    type: Literal["join_room"] = "join_room"
    nickname: str = Field(min_length=1, max_length=20)


class InRejoinRoom(InRoomBase):
    type: Literal["rejoin_room"] = "rejoin_room"
    player_id: str = Field(min_length=1)
    nickname: Optional[str] = Field(default=None, max_length=20)


class InLeaveRoom(InRoomBase):
    type: Literal["leave_room"] = "leave_room"


class InSnapshot(InRoomBase):
    type: Literal["snapshot"] = "snapshot"


# ---- Host administration ----

class InKickPlayer(InRoomBase):
    type: Literal["kick_player"] = "kick_player"
    player_id: str = Field(min_length=1)


class InUpdateSettings(InRoomBase):
    type: Literal["update_settings"] = "update_settings"
    settings: GameSettings


class InStartGame(InRoomBase):
    type: Literal["start_game"] = "start_game"


class InPauseGame(InRoomBase):
    type: Literal["pause_game"] = "pause_game"
    # Countdown value the host saw when pausing; falls back to the server clock.
    time_left: Optional[int] = None


class InResumeGame(InRoomBase):
    type: Literal["resume_game"] = "resume_game"


class InNextSet(InRoomBase):
    type: Literal["next_set"] = "next_set"


class InBackToLobby(InRoomBase):
    type: Literal["back_to_lobby"] = "back_to_lobby"


class InPlayAgain(InRoomBase):
    type: Literal["play_again"] = "play_again"


# ---- Gameplay ----

class InSubmitAnswer(InRoomBase):
    type: Literal["submit_answer"] = "submit_answer"
    player_id: Optional[str] = None
    answer: str = Field(min_length=1, max_length=200)


class InSubmitVote(InRoomBase):
    type: Literal["submit_vote"] = "submit_vote"
    player_id: Optional[str] = None
    voted_for_id: str = Field(min_length=1)


class InVoteInAdvance(InRoomBase):
    type: Literal["vote_in_advance"] = "vote_in_advance"
    player_id: Optional[str] = None


IncomingMessage = Union[
    InCreateRoom,
    InJoinRoom,
    InRejoinRoom,
    InLeaveRoom,
    InSnapshot,
    InKickPlayer,
    InUpdateSettings,
    InStartGame,
    InPauseGame,
    InResumeGame,
    InNextSet,
    InBackToLobby,
    InPlayAgain,
    InSubmitAnswer,
    InSubmitVote,
    InVoteInAdvance,
]


# =========================
# Outgoing (Server -> Client)
# =========================

class OutBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    type: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class OutHello(OutBase):
    type: Literal["hello"] = "hello"
    player_id: str


class OutError(OutBase):
    type: Literal["error"] = "error"
    code: str
    message: str


class OutRoomCreated(OutBase):
    type: Literal["room_created"] = "room_created"
    room_id: str
    player_id: str
    room: RoomSnapshot


class OutRoomJoined(OutBase):
    type: Literal["room_joined"] = "room_joined"
    room_id: str
    player_id: str
    room: RoomSnapshot


class OutRoomUpdated(OutBase):
    type: Literal["room_updated"] = "room_updated"
    room: RoomSnapshot


class OutPlayerJoined(OutBase):
    type: Literal["player_joined"] = "player_joined"
    player: PlayerView


class OutPlayerLeft(OutBase):
    type: Literal["player_left"] = "player_left"
    player_id: str
    player_nickname: str
    reason: LeaveReason


class OutPlayerKicked(OutBase):
    type: Literal["player_kicked"] = "player_kicked"
    player_id: str
    message: str


class OutPlayerVotedEarly(OutBase):
    type: Literal["player_voted_early"] = "player_voted_early"
    player_nickname: str


class OutGameStarted(OutBase):
    type: Literal["game_started"] = "game_started"
    # None for the impostor
    word: Optional[str] = None
    players: List[PlayerView]
    current_set: int


class OutTurnStarted(OutBase):
    type: Literal["turn_started"] = "turn_started"
    player_id: str
    player_nickname: str
    turn_index: int
    total_players: int
    rotation: int
    total_rotations: int
    time_left: int


class OutAnswerSubmitted(OutBase):
    type: Literal["answer_submitted"] = "answer_submitted"
    message: Message


class OutTurnTimeout(OutBase):
    type: Literal["turn_timeout"] = "turn_timeout"
    player_id: str


class OutRotationComplete(OutBase):
    type: Literal["rotation_complete"] = "rotation_complete"


class OutVotingPhase(OutBase):
    type: Literal["voting_phase"] = "voting_phase"
    mode: VotingMode
    time_left: int


class OutVoteSubmitted(OutBase):
    type: Literal["vote_submitted"] = "vote_submitted"
    player_id: str
    player_nickname: str


class OutRoundResults(OutBase):
    type: Literal["round_results"] = "round_results"
    impostor_id: Optional[str] = None
    impostor_nickname: str
    impostor_won: bool
    correct_voters: List[str]
    voting_results: List[VotingResult]
    leaderboard: List[LeaderboardEntry]
    scores: Dict[str, int] = Field(default_factory=dict)


class OutSetComplete(OutBase):
    type: Literal["set_complete"] = "set_complete"
    auto_next_in: int


class OutGameComplete(OutBase):
    type: Literal["game_complete"] = "game_complete"
    winner: Optional[LeaderboardEntry] = None
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)


class OutGamePaused(OutBase):
    type: Literal["game_paused"] = "game_paused"
    time_left: int


class OutGameResumed(OutBase):
    type: Literal["game_resumed"] = "game_resumed"
    time_left: int


OutgoingEvent = Union[
    OutHello,
    OutError,
    OutRoomCreated,
    OutRoomJoined,
    OutRoomUpdated,
    OutPlayerJoined,
    OutPlayerLeft,
    OutPlayerKicked,
    OutPlayerVotedEarly,
    OutGameStarted,
    OutTurnStarted,
    OutAnswerSubmitted,
    OutTurnTimeout,
    OutRotationComplete,
    OutVotingPhase,
    OutVoteSubmitted,
    OutRoundResults,
    OutSetComplete,
    OutGameComplete,
    OutGamePaused,
    OutGameResumed,
]


# =========================
# Parser helpers
# =========================

_INCOMING_BY_TYPE = {
    "create_room": InCreateRoom,
    "join_room": InJoinRoom,
    "rejoin_room": InRejoinRoom,
    "leave_room": InLeaveRoom,
    "snapshot": InSnapshot,
    "kick_player": InKickPlayer,
    "update_settings": InUpdateSettings,
    "start_game": InStartGame,
    "pause_game": InPauseGame,
    "resume_game": InResumeGame,
    "next_set": InNextSet,
    "back_to_lobby": InBackToLobby,
    "play_again": InPlayAgain,
    "submit_answer": InSubmitAnswer,
    "submit_vote": InSubmitVote,
    "vote_in_advance": InVoteInAdvance,
}


class UnknownMessageType(ValueError):
    pass


def parse_incoming(payload: Dict[str, Any]) -> IncomingMessage:
    """
    Convert raw dict -> validated message model.
    Raises UnknownMessageType for a missing/unknown type and
    pydantic.ValidationError for a bad payload.
    """
    if not isinstance(payload, dict):
        raise UnknownMessageType("Message must be a JSON object")

    t = payload.get("type")
    if not isinstance(t, str):
        raise UnknownMessageType("Missing/invalid type")

    cls = _INCOMING_BY_TYPE.get(t)
    if cls is None:
        raise UnknownMessageType(f"Unknown message type: {t}")

    return cls.model_validate(payload)


