"""In-process WebSocket connection manager.

Keeps track of live connections and their room subscriptions (the
delivery sets), and provides broadcast helpers for this process. Each
connection owns a bounded send queue drained by a dedicated sender task,
so a slow client never blocks a broadcast and frames reach a given
client in the order they were enqueued.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from application.ports.realtime import ConnectionHandle, Envelope
from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

_OVERFLOW_POLICIES = {"drop_oldest", "drop_new", "disconnect"}


class ConnectionManager:
    """Manage per-process connections and room subscriptions."""

    def __init__(self, *, queue_max: Optional[int] = None, overflow_policy: Optional[str] = None) -> None:
        # ws -> user_id
        self._owners: Dict[ConnectionHandle, str] = {}
        # room -> set[(user_id, ws)]
        self._by_room: Dict[str, Set[Tuple[str, ConnectionHandle]]] = {}
        self._lock = asyncio.Lock()
        # per-connection send queues and sender tasks
        self._send_queues: Dict[ConnectionHandle, asyncio.Queue] = {}
        self._sender_tasks: Dict[ConnectionHandle, asyncio.Task] = {}
        self._queue_max = max(1, int(queue_max or settings.REALTIME_WS_SEND_QUEUE_MAX))
        policy = (overflow_policy or settings.REALTIME_WS_SEND_OVERFLOW_POLICY or "drop_oldest").lower()
        if policy not in _OVERFLOW_POLICIES:
            logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
            policy = "drop_oldest"
        self._overflow_policy = policy

    async def add(self, user_id: str, ws: ConnectionHandle) -> None:
        async with self._lock:
            self._owners[ws] = user_id
            if ws not in self._send_queues:
                q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_max)
                self._send_queues[ws] = q
                self._sender_tasks[ws] = asyncio.create_task(self._sender_loop(ws, q))
        logger.info("ws_connected", user_id=user_id)

    async def remove(self, ws: ConnectionHandle) -> List[str]:
        """Forget a connection; returns the rooms it was subscribed to."""
        async with self._lock:
            user_id = self._owners.pop(ws, None)
            left: List[str] = []
            for room, members in list(self._by_room.items()):
                if (user_id, ws) in members:
                    members.discard((user_id, ws))
                    left.append(room)
                if not members:
                    del self._by_room[room]
            task = self._sender_tasks.pop(ws, None)
            if task is not None:
                task.cancel()
            self._send_queues.pop(ws, None)
        logger.info("ws_disconnected", user_id=user_id, rooms_left=len(left))
        return left

    async def join(self, room: str, user_id: str, ws: ConnectionHandle) -> None:
        async with self._lock:
            self._by_room.setdefault(room, set()).add((user_id, ws))
        logger.info("ws_join_room", room=room, user_id=user_id)

    async def leave(self, room: str, user_id: str, ws: ConnectionHandle) -> bool:
        async with self._lock:
            members = self._by_room.get(room)
            if not members or (user_id, ws) not in members:
                return False
            members.discard((user_id, ws))
            if not members:
                del self._by_room[room]
        logger.info("ws_leave_room", room=room, user_id=user_id)
        return True

    async def is_subscribed(self, room: str, ws: ConnectionHandle) -> bool:
        async with self._lock:
            return any(conn is ws for _uid, conn in self._by_room.get(room, set()))

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._owners)

    async def broadcast_room(
        self,
        room: str,
        envelope: Envelope,
        *,
        exclude: Optional[ConnectionHandle] = None,
    ) -> int:
        """Enqueue ``envelope`` for every subscriber of ``room``; returns the fan-out size."""
        async with self._lock:
            targets = [ws for _uid, ws in self._by_room.get(room, set()) if ws is not exclude]
        if not targets:
            return 0
        payload = envelope.model_dump(mode="json")
        for ws in targets:
            await self._enqueue(ws, payload, context={"room": room})
        return len(targets)

    async def broadcast_all(self, envelope: Envelope) -> int:
        async with self._lock:
            targets = list(self._owners.keys())
        payload = envelope.model_dump(mode="json")
        for ws in targets:
            await self._enqueue(ws, payload, context={"scope": "all"})
        return len(targets)

    async def send(self, ws: ConnectionHandle, envelope: Envelope) -> None:
        """Send to one connection, through its queue when it is registered."""
        payload = envelope.model_dump(mode="json")
        if ws in self._send_queues:
            await self._enqueue(ws, payload, context={"scope": "direct"})
            return
        await ws.send_json(payload)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until every queued frame has been handed to its transport."""
        async with self._lock:
            queues = list(self._send_queues.values())
        if queues:
            await asyncio.wait_for(asyncio.gather(*(q.join() for q in queues)), timeout=timeout)

    async def aclose(self) -> None:
        async with self._lock:
            tasks = list(self._sender_tasks.values())
            self._sender_tasks.clear()
            self._send_queues.clear()
            self._owners.clear()
            self._by_room.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _enqueue(self, ws: ConnectionHandle, payload: dict, context: dict) -> None:
        q = self._send_queues.get(ws)
        if q is None:
            return
        try:
            q.put_nowait(payload)
            return
        except asyncio.QueueFull:
            pass
        policy = self._overflow_policy
        if policy == "drop_new":
            logger.warning("ws_send_queue_drop_new", **context)
            return
        if policy == "disconnect":
            logger.warning("ws_send_queue_disconnect", **context)
            try:
                await ws.close(code=1013)
            except Exception as exc:  # pragma: no cover
                logger.warning("ws_close_failed", error=str(exc))
            return
        # default: drop_oldest
        try:
            q.get_nowait()
            q.task_done()
        except asyncio.QueueEmpty:
            pass
        try:
            q.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("ws_send_queue_drop_after_trim", **context)

    async def _sender_loop(self, ws: ConnectionHandle, q: asyncio.Queue) -> None:
        try:
            while True:
                payload = await q.get()
                try:
                    await ws.send_json(payload)
                except Exception as exc:
                    logger.warning("ws_send_failed", error=str(exc), type=payload.get("type"))
                finally:
                    q.task_done()
        except asyncio.CancelledError:  # graceful exit
            return
