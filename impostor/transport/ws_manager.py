# impostor/transport/ws_manager.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SEND_QUEUE_MAX = 256


@dataclass
class Conn:
    pid: str
    ws: WebSocket
    queue: "asyncio.Queue[Dict[str, Any]]" = field(default_factory=lambda: asyncio.Queue(maxsize=SEND_QUEUE_MAX))
    writer: Optional[asyncio.Task] = None


class WSManager:
    """
    In-memory connection registry.
    - pid -> connection, each with its own outgoing queue and writer task
    Transport-only: no Redis, no domain rules. send() never awaits the socket,
    so a slow client cannot hold up a room.
    """
    def __init__(self) -> None:
        self._conns: Dict[str, Conn] = {}
        self._closing: Set[asyncio.Task] = set()

    def add(self, pid: str, ws: WebSocket) -> Conn:
        conn = Conn(pid=pid, ws=ws)
        conn.writer = asyncio.get_running_loop().create_task(self._write_loop(conn))
        self._conns[pid] = conn
        return conn

    def rebind(self, old_pid: str, new_pid: str) -> None:
        """A connection now speaks as new_pid; any older socket for new_pid is dropped."""
        conn = self._conns.pop(old_pid, None)
        if conn is None:
            return
        stale = self._conns.get(new_pid)
        if stale is not None and stale is not conn:
            self._stop(stale)
            task = asyncio.get_running_loop().create_task(self._close(stale, code=4001))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        conn.pid = new_pid
        self._conns[new_pid] = conn

    def remove(self, pid: str, conn: Conn) -> bool:
        """
        Unregister `conn`. Returns False when pid already belongs to a newer
        connection (rejoined elsewhere), in which case nothing is touched.
        """
        self._stop(conn)
        if self._conns.get(pid) is not conn:
            return False
        del self._conns[pid]
        return True

    def send(self, pid: str, event: Dict[str, Any]) -> None:
        conn = self._conns.get(pid)
        if conn is None:
            return
        try:
            conn.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("[ws-queue-full] pid=%s dropped=%s", pid, event.get("type"))

    def __contains__(self, pid: str) -> bool:
        return pid in self._conns

    async def close_all(self) -> None:
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        for conn in list(self._conns.values()):
            self._stop(conn)
            await self._close(conn, code=1001)
        self._conns.clear()

    def _stop(self, conn: Conn) -> None:
        if conn.writer is not None:
            conn.writer.cancel()
            conn.writer = None

    async def _close(self, conn: Conn, code: int) -> None:
        try:
            await conn.ws.close(code=code)
        except RuntimeError:
            # already closed
            pass

    async def _write_loop(self, conn: Conn) -> None:
        while True:
            event = await conn.queue.get()
            try:
                await conn.ws.send_json(event)
            except Exception:
                # Dead socket; ws.py cleans up when the receive side notices.
                logger.debug("[ws-send-failed] pid=%s", conn.pid, exc_info=True)
                return
