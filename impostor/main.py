# impostor/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from impostor.domain.sessions import RoomSessionManager
from impostor.settings import get_settings
from impostor.store.redis_repo import RedisRepo
from impostor.transport.admin import router as admin_router
from impostor.transport.ws import router as ws_router
from impostor.transport.ws_manager import WSManager


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(title=settings.APP_NAME)
    allowed_origins = [o.strip() for o in settings.WS_ALLOWED_ORIGINS.split(",") if o.strip()]
    if "null" not in allowed_origins:
        allowed_origins.append("null")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:
        r = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        app.state.redis = r
        app.state.repo = RedisRepo(r, room_ttl_sec=settings.ROOM_TTL_SEC)
        app.state.wsman = WSManager()
        app.state.manager = RoomSessionManager(
            settings=settings,
            publisher=app.state.wsman,
            repo=app.state.repo,
        )
        await r.ping()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.manager.shutdown()
        await app.state.wsman.close_all()
        r: Redis = app.state.redis
        await r.close()

    @app.get("/health")
    async def health():
        r: Redis = app.state.redis
        pong = await r.ping()
        return {"ok": True, "redis": str(pong), "rooms": len(app.state.manager)}

    app.include_router(ws_router)
    app.include_router(admin_router)
    return app


app = create_app()
