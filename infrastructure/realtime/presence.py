"""Process-local presence registry.

Maps online user ids to their live connection handles. A user stays
online while at least one of their connections is registered. Every
mutation returns the post-mutation snapshot taken under the same lock,
so callers never observe a torn view of the id set.

Not shared across processes; running several workers gives each its own
view of who is online.
"""
from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set, Tuple

from application.ports.realtime import ConnectionHandle
from domain.chat import Principal


OnlineSnapshot = Tuple[str, ...]


class PresenceRegistry:
    def __init__(self) -> None:
        # user_id -> live handles, in first-seen order
        self._by_user: Dict[str, Set[ConnectionHandle]] = {}
        self._lock = asyncio.Lock()

    async def register(self, principal: Principal, handle: ConnectionHandle) -> OnlineSnapshot:
        async with self._lock:
            self._by_user.setdefault(principal.user_id, set()).add(handle)
            return tuple(self._by_user)

    async def unregister(self, user_id: str, handle: Optional[ConnectionHandle] = None) -> OnlineSnapshot:
        """Drop one handle (or all of them when ``handle`` is None)."""
        async with self._lock:
            handles = self._by_user.get(user_id)
            if handles is not None:
                if handle is None:
                    handles.clear()
                else:
                    handles.discard(handle)
                if not handles:
                    del self._by_user[user_id]
            return tuple(self._by_user)

    async def snapshot(self) -> OnlineSnapshot:
        async with self._lock:
            return tuple(self._by_user)

    async def is_online(self, user_id: str) -> bool:
        async with self._lock:
            return user_id in self._by_user
