# impostor/domain/common/fsm.py
from __future__ import annotations

from impostor.domain.common.types import Phase


def can_transition_to(current: Phase, target: Phase) -> bool:
    """
    Validate phase transitions.
    "results" -> "results" is not listed; a complete match simply stays put.
    """
    transitions: dict[Phase, list[Phase]] = {
        "lobby": ["playing"],
        "playing": ["voting", "results"],
        "voting": ["results"],
        "results": ["set-transition", "playing", "lobby"],
        "set-transition": ["playing", "lobby"],
    }
    return target in transitions.get(current, [])
