# impostor/store/models.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from impostor.domain.common.types import GameState, Phase, VotingMode
from impostor.domain.words import DEFAULT_CATEGORIES


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GameSettings(CamelModel):
    categories: List[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES), min_length=1)
    rotations: int = Field(default=2, ge=1)
    sets: int = Field(default=1, ge=1)


class PlayerStore(CamelModel):
    id: str
    nickname: str = Field(min_length=1, max_length=20)
    is_host: bool = False
    is_impostor: bool = False
    has_answered: bool = False
    score: int = 0
    vote: Optional[str] = None
    connected: bool = True
    joined_at: int
    disconnected_at: Optional[int] = None


class Message(CamelModel):
    player_id: str
    player_nickname: str
    text: str = Field(max_length=200)
    timestamp: int
    rotation: int


class VoteRecord(CamelModel):
    """A cast vote, in submission order."""
    voter_id: str
    voted_for_id: str


class VotingResult(CamelModel):
    voter_id: str
    voter_nickname: str
    voted_for_id: str
    voted_for_nickname: str
    correct: bool


class LeaderboardEntry(CamelModel):
    id: str
    nickname: str
    score: int
    is_impostor: bool = False


class RoomStore(CamelModel):
    """
    Authoritative room state. Owned by exactly one PhaseStateMachine.
    Everything that must roll back on a failed action lives here.
    """
    id: str
    created_at: int
    players: List[PlayerStore] = Field(default_factory=list)
    settings: GameSettings = Field(default_factory=GameSettings)
    phase: Phase = "lobby"
    game_state: GameState = "waiting"
    current_word: str = ""
    current_set: int = 1
    current_rotation: int = 1
    current_turn_index: int = 0
    turn_order: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    impostor_id: Optional[str] = None
    impostor_nickname: str = ""
    votes: List[VoteRecord] = Field(default_factory=list)
    voting_mode: Optional[VotingMode] = None
    early_vote_used: bool = False
    voting_results: Optional[List[VotingResult]] = None
    correct_voters: List[str] = Field(default_factory=list)
    impostor_won: Optional[bool] = None
    match_complete: bool = False
    winner_id: Optional[str] = None
    is_paused: bool = False
    paused_time_left: Optional[int] = None


class PlayerView(CamelModel):
    id: str
    nickname: str
    is_host: bool
    is_impostor: bool
    has_answered: bool
    has_voted: bool
    score: int
    vote: Optional[str] = None
    connected: bool


class RoomSnapshot(CamelModel):
    """Per-viewer, read-only copy of a room. Sent as room_updated.room."""
    id: str
    players: List[PlayerView]
    settings: GameSettings
    phase: Phase
    game_state: GameState
    current_word: Optional[str] = None
    current_set: int
    current_rotation: int
    current_turn_index: int
    current_turn_player_id: Optional[str] = None
    turn_order: List[str]
    messages: List[Message]
    impostor_id: Optional[str] = None
    voting_mode: Optional[VotingMode] = None
    voting_results: Optional[List[VotingResult]] = None
    match_complete: bool
    winner_id: Optional[str] = None
    is_paused: bool
    paused_time_left: Optional[int] = None
    time_left: Optional[int] = None
    snapshot_at: int


