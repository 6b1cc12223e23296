# impostor/store/redis_keys.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RK:
    """
    Redis Key builder for room-scoped keys.
    Live rooms are held in process memory; Redis only carries the code
    reservation and a read-only mirror of the latest snapshot.
    """
    room_code: str

    def room(self) -> str:
        return f"room:{self.room_code}"  # STRING reservation marker

    def snapshot(self) -> str:
        return f"room:{self.room_code}:snapshot"  # STRING snapshot JSON

    def all_room_keys(self) -> list[str]:
        return [self.room(), self.snapshot()]
