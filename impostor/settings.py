# impostor/settings.py
from __future__ import annotations

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "impostor-server"

    # Redis (room code reservations + snapshot mirror)
    REDIS_URL: str = "redis://localhost:6379/0"
    ROOM_TTL_SEC: int = 1800

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"

    # WebSocket origin policy (comma-separated)
    WS_ALLOWED_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173,null"
    # Dev helper: allow any private LAN IP on port 5173
    WS_ALLOW_LAN_ORIGINS: bool = True

    # Game timing (seconds)
    TURN_DURATION_SEC: int = 60
    VOTING_DURATION_SEC: int = 60
    AUTO_NEXT_SET_SEC: int = 60
    REJOIN_GRACE_SEC: int = 30
    TICK_INTERVAL_SEC: float = 1.0

    # Room limits
    MIN_PLAYERS: int = 3
    MAX_PLAYERS: int = 10
    MAX_ROTATIONS: int = 10
    MAX_SETS: int = 10


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y", "on")


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "impostor-server"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        ROOM_TTL_SEC=int(os.getenv("ROOM_TTL_SEC", "1800")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),

        WS_ALLOWED_ORIGINS=os.getenv(
            "WS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,null",
        ),
        WS_ALLOW_LAN_ORIGINS=_env_bool("WS_ALLOW_LAN_ORIGINS", "true"),

        TURN_DURATION_SEC=int(os.getenv("TURN_DURATION_SEC", "60")),
        VOTING_DURATION_SEC=int(os.getenv("VOTING_DURATION_SEC", "60")),
        AUTO_NEXT_SET_SEC=int(os.getenv("AUTO_NEXT_SET_SEC", "60")),
        REJOIN_GRACE_SEC=int(os.getenv("REJOIN_GRACE_SEC", "30")),
        TICK_INTERVAL_SEC=float(os.getenv("TICK_INTERVAL_SEC", "1.0")),

        MIN_PLAYERS=int(os.getenv("MIN_PLAYERS", "3")),
        MAX_PLAYERS=int(os.getenv("MAX_PLAYERS", "10")),
        MAX_ROTATIONS=int(os.getenv("MAX_ROTATIONS", "10")),
        MAX_SETS=int(os.getenv("MAX_SETS", "10")),
    )
