from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from impostor.store.models import LeaderboardEntry, PlayerStore, VoteRecord, VotingResult

IMPOSTOR_WIN_POINTS = 2000
CORRECT_VOTE_POINTS = 1000


@dataclass
class RoundOutcome:
    impostor_id: Optional[str]
    impostor_nickname: str
    impostor_won: bool
    correct_voters: List[str]
    deltas: Dict[str, int]
    voting_results: List[VotingResult] = field(default_factory=list)


def score_round(
    *,
    impostor_id: Optional[str],
    impostor_nickname: str,
    votes: Sequence[VoteRecord],
    players: Sequence[PlayerStore],
) -> RoundOutcome:
    """
    Pure: derives the outcome of one voting round, does not touch scores.

    impostor_won is defined as "nobody voted for the impostor", which also
    holds when nobody voted at all. Voters who never voted are simply absent
    from `votes`.
    """
    names = {p.id: p.nickname for p in players}
    if impostor_id and impostor_id not in names:
        names[impostor_id] = impostor_nickname

    correct = [v.voter_id for v in votes if impostor_id is not None and v.voted_for_id == impostor_id]
    impostor_won = len(correct) == 0

    deltas: Dict[str, int] = {p.id: 0 for p in players}
    if impostor_won and impostor_id in deltas:
        deltas[impostor_id] += IMPOSTOR_WIN_POINTS
    for pid in correct:
        if pid in deltas:
            deltas[pid] += CORRECT_VOTE_POINTS

    results = [
        VotingResult(
            voter_id=v.voter_id,
            voter_nickname=names.get(v.voter_id, ""),
            voted_for_id=v.voted_for_id,
            voted_for_nickname=names.get(v.voted_for_id, ""),
            correct=v.voted_for_id == impostor_id,
        )
        for v in votes
    ]

    return RoundOutcome(
        impostor_id=impostor_id,
        impostor_nickname=impostor_nickname,
        impostor_won=impostor_won,
        correct_voters=correct,
        deltas=deltas,
        voting_results=results,
    )


def apply_deltas(players: Sequence[PlayerStore], deltas: Dict[str, int]) -> None:
    for p in players:
        p.score += max(0, deltas.get(p.id, 0))


def leaderboard(players: Sequence[PlayerStore], *, reveal_impostor: bool = True) -> List[LeaderboardEntry]:
    """
    Score descending. Ties keep roster (join) order: sorted() is stable and
    the roster is already in join order.
    """
    ranked = sorted(players, key=lambda p: -p.score)
    return [
        LeaderboardEntry(
            id=p.id,
            nickname=p.nickname,
            score=p.score,
            is_impostor=p.is_impostor if reveal_impostor else False,
        )
        for p in ranked
    ]


def is_match_complete(current_set: int, total_sets: int) -> bool:
    return current_set + 1 > total_sets
