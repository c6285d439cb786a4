"""
Realtime port and message DTOs (contracts-first).

This module defines the boundary envelope and the connection handle
protocol so the application layer can remain decoupled from the
concrete transport (Starlette WebSocket in production, fakes in tests).
"""
from __future__ import annotations

from typing import Any, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified WS frame passed around the system.

    Fields:
      - type: event name (new_message/message_read/user_typing/error/...)
      - data: payload (JSON-serializable)
      - room: room the event belongs to, when room-scoped
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    room: str | None = None
    ts: str = Field(default_factory=_utc_now_z)


class ConnectionHandle(Protocol):
    """What the core needs from a transport-level connection."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


__all__ = ["Envelope", "ConnectionHandle"]
