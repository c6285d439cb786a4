"""Application service for the realtime chat channel.

Drives the per-connection lifecycle (connect, event dispatch, disconnect)
and keeps application logic (authorization, orchestration) separate from
the concrete connection management and transport.

Every failure inside a handler is converted into an ``error`` event sent
to the triggering connection only; the connection stays usable.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from pydantic import ValidationError

from application.dtos.chat import (
    DeleteMessagePayload,
    ErrorDTO,
    GetMessagesPayload,
    InboundPayload,
    JoinRoomPayload,
    LeaveRoomPayload,
    MarkAsReadPayload,
    PresenceDTO,
    RoomMemberEventDTO,
    SendMessagePayload,
    TypingPayload,
    UserTypingDTO,
)
from application.ports.realtime import ConnectionHandle, Envelope
from application.services.message_service import MessageBroadcastEngine
from application.services.read_receipt_service import ReadReceiptTracker
from application.services.room_gate import RoomAction, RoomMembershipGate
from core.logging_config import get_logger
from domain.chat import Principal
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.presence import PresenceRegistry


logger = get_logger(__name__)

Handler = Callable[[Principal, ConnectionHandle, Any], Awaitable[None]]


class ChatRealtimeService:
    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        connections: ConnectionManager,
        presence: PresenceRegistry,
        engine: Optional[MessageBroadcastEngine] = None,
        receipts: Optional[ReadReceiptTracker] = None,
        gate: Optional[RoomMembershipGate] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._conn = connections
        self._presence = presence
        self._gate = gate or RoomMembershipGate()
        self._engine = engine or MessageBroadcastEngine(
            uow_factory=uow_factory, connections=connections, gate=self._gate
        )
        self._receipts = receipts or ReadReceiptTracker(uow_factory=uow_factory, connections=connections)
        # keeps presence broadcasts in the same order as registry mutations
        self._presence_lock = asyncio.Lock()
        self._handlers: Dict[str, Tuple[Type[InboundPayload], Handler]] = {
            "join_room": (JoinRoomPayload, self._on_join_room),
            "leave_room": (LeaveRoomPayload, self._on_leave_room),
            "send_message": (SendMessagePayload, self._on_send_message),
            "typing": (TypingPayload, self._on_typing),
            "mark_as_read": (MarkAsReadPayload, self._on_mark_as_read),
            "delete_message": (DeleteMessagePayload, self._on_delete_message),
            "get_messages": (GetMessagesPayload, self._on_get_messages),
        }

    # Expose for API convenience
    @property
    def connections(self) -> ConnectionManager:
        return self._conn

    @property
    def presence(self) -> PresenceRegistry:
        return self._presence

    @property
    def engine(self) -> MessageBroadcastEngine:
        return self._engine

    @property
    def events(self) -> Tuple[str, ...]:
        return tuple(self._handlers)

    # Connection lifecycle management
    async def connect(self, principal: Principal, ws: ConnectionHandle) -> None:
        """Authenticated -> Active: register, greet, announce presence to everyone."""
        await self._conn.add(principal.user_id, ws)
        await self._conn.send(
            ws,
            Envelope(
                type="welcome",
                data={
                    "userId": principal.user_id,
                    "serverTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                    "events": list(self.events),
                },
            ),
        )
        await self._publish_presence(lambda: self._presence.register(principal, ws))
        logger.info("user_connected", user_id=principal.user_id)

    async def disconnect(self, principal: Principal, ws: ConnectionHandle) -> None:
        """Disconnected: forget subscriptions and presence, announce the new online set."""
        rooms = await self._conn.remove(ws)
        await self._publish_presence(lambda: self._presence.unregister(principal.user_id, ws))
        logger.info("user_disconnected", user_id=principal.user_id, rooms_left=len(rooms))

    async def _publish_presence(self, mutate: Callable[[], Awaitable[Tuple[str, ...]]]) -> None:
        async with self._presence_lock:
            online = await mutate()
            await self._conn.broadcast_all(
                Envelope(type="user_status_update", data=PresenceDTO(online_users=list(online)).to_wire())
            )
        logger.info("presence_updated", online=len(online))

    # Event dispatch
    async def dispatch(self, principal: Principal, ws: ConnectionHandle, event: str, data: Any) -> None:
        """Run one inbound event to completion; never raises."""
        entry = self._handlers.get(event)
        if entry is None:
            await self._send_error(ws, "Unknown event type", event=event)
            return
        payload_cls, handler = entry
        try:
            payload = payload_cls.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            logger.info("ws_payload_invalid", ws_event=event, user_id=principal.user_id, errors=exc.error_count())
            await self._send_error(ws, payload_cls.missing_message, event=event)
            return
        try:
            await handler(principal, ws, payload)
        except BusinessException as exc:
            logger.info(
                "ws_event_rejected",
                ws_event=event,
                user_id=principal.user_id,
                error_type=exc.error_type,
                error=exc.message,
            )
            await self._send_error(ws, exc.message, code=int(exc.code), event=event)
        except Exception as exc:
            logger.error("ws_event_failed", ws_event=event, user_id=principal.user_id, error=str(exc), exc_info=True)
            await self._send_error(ws, "Internal server error", event=event)

    async def _send_error(self, ws: ConnectionHandle, message: str, *, code: Optional[int] = None,
                          event: Optional[str] = None) -> None:
        data = ErrorDTO(message=message, code=code).to_wire()
        if event:
            data["event"] = event
        await self._conn.send(ws, Envelope(type="error", data=data))

    # -------------------- handlers --------------------
    async def _on_join_room(self, principal: Principal, ws: ConnectionHandle, p: JoinRoomPayload) -> None:
        async with self._uow_factory(readonly=True) as uow:
            await self._gate.authorize(uow.chat_repository, principal, p.room_id, p.chat_type, RoomAction.JOIN)
        if await self._conn.is_subscribed(p.room_id, ws):
            return
        await self._conn.join(p.room_id, principal.user_id, ws)
        await self._conn.broadcast_room(
            p.room_id,
            Envelope(
                type="user_joined",
                room=p.room_id,
                data=RoomMemberEventDTO(user_id=principal.user_id, user_name=principal.name).to_wire(),
            ),
            exclude=ws,
        )

    async def _on_leave_room(self, principal: Principal, ws: ConnectionHandle, p: LeaveRoomPayload) -> None:
        if not await self._conn.leave(p.room_id, principal.user_id, ws):
            return
        await self._conn.broadcast_room(
            p.room_id,
            Envelope(
                type="user_left",
                room=p.room_id,
                data=RoomMemberEventDTO(user_id=principal.user_id, user_name=principal.name).to_wire(),
            ),
        )

    async def _on_send_message(self, principal: Principal, ws: ConnectionHandle, p: SendMessagePayload) -> None:
        await self._engine.send_message(principal, p)

    async def _on_typing(self, principal: Principal, ws: ConnectionHandle, p: TypingPayload) -> None:
        # best-effort relay: no persistence, no membership lookup
        await self._conn.broadcast_room(
            p.room_id,
            Envelope(
                type="user_typing",
                room=p.room_id,
                data=UserTypingDTO(
                    user_id=principal.user_id, user_name=principal.name, is_typing=p.is_typing
                ).to_wire(),
            ),
            exclude=ws,
        )

    async def _on_mark_as_read(self, principal: Principal, ws: ConnectionHandle, p: MarkAsReadPayload) -> None:
        await self._receipts.mark_as_read(principal, p.message_id)

    async def _on_delete_message(self, principal: Principal, ws: ConnectionHandle, p: DeleteMessagePayload) -> None:
        await self._engine.delete_message(principal, p.message_id)

    async def _on_get_messages(self, principal: Principal, ws: ConnectionHandle, p: GetMessagesPayload) -> None:
        page = await self._engine.history(principal, p)
        await self._conn.send(ws, Envelope(type="messages", room=p.room_id, data=page.to_wire()))
