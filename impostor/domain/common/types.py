# impostor/domain/common/types.py
from __future__ import annotations

from typing import Literal

Phase = Literal["lobby", "playing", "voting", "results", "set-transition"]
GameState = Literal["waiting", "started", "finished"]
VotingMode = Literal["standard", "early"]

# Clock purposes owned by one room engine
ClockPurpose = Literal["turn", "voting", "transition"]

LeaveReason = Literal["left", "kicked", "timeout"]
