# impostor/store/redis_repo.py
from __future__ import annotations

import json
from typing import Any, Optional

from redis.asyncio import Redis

from impostor.store.redis_keys import RK


class RedisRepo:
    def __init__(self, r: Redis, room_ttl_sec: int = 1800):
        self.r = r
        self.room_ttl_sec = room_ttl_sec

    def _dec(self, x):
        """Decode redis bytes -> str; pass through str/None safely."""
        if x is None:
            return None
        if isinstance(x, bytes):
            return x.decode("utf-8")
        return x

    # ----------------------------
    # Helpers
    # ----------------------------
    async def room_exists(self, room_code: str) -> bool:
        return bool(await self.r.exists(RK(room_code).room()))

    # ----------------------------
    # Room codes
    # ----------------------------
    async def reserve_room_code(self, room_code: str) -> bool:
        """
        Claim a code across server processes.
        False if another process (or a not yet expired room) holds it.
        """
        ok = await self.r.set(RK(room_code).room(), "1", nx=True, ex=self.room_ttl_sec)
        return bool(ok)

    async def delete_room(self, room_code: str) -> None:
        await self.r.delete(*RK(room_code).all_room_keys())

    # ----------------------------
    # Snapshot mirror
    # ----------------------------
    async def save_snapshot(self, room_code: str, snapshot: dict[str, Any]) -> None:
        rk = RK(room_code)
        pipe = self.r.pipeline()
        pipe.set(rk.snapshot(), json.dumps(snapshot), ex=self.room_ttl_sec)
        pipe.expire(rk.room(), self.room_ttl_sec)
        await pipe.execute()

    async def get_snapshot(self, room_code: str) -> Optional[dict[str, Any]]:
        raw = self._dec(await self.r.get(RK(room_code).snapshot()))
        if raw is None:
            return None
        return json.loads(raw)
