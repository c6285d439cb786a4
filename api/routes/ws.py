"""WebSocket route for the realtime chat channel.

Frames are JSON text objects ``{"type": <event>, "data": {...}}``; binary frames
get an ``Invalid message format`` error.

- Authentication happens once, at connection establishment: a bearer token in
  the ``token`` query param, the ``Authorization`` header, or a first
  ``authenticate`` frame. Unauthenticated connections are closed with 1008.
- Heartbeat: server sends JSON ping on idle; closes after configurable missed pongs.
"""
from __future__ import annotations

from typing import Any, Optional
import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, status

from application.ports.realtime import Envelope
from application.services.realtime_service import ChatRealtimeService
from application.services.token_service import TokenService
from api.dependencies import get_chat_service, get_token_service
from core.config import settings
from core.logging_config import bind_log_context, get_logger
from domain.chat import Principal
from domain.common.exceptions import BusinessException


logger = get_logger(__name__)


router = APIRouter(prefix="/ws", tags=["WebSocket"])


def _extract_token(ws: WebSocket) -> str | None:
    # Prefer query param, fallback to header `Authorization: Bearer x`
    token = ws.query_params.get("token")
    if token:
        return token
    auth = ws.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return None


async def _receive_raw(ws: WebSocket) -> Optional[str]:
    """Next text frame; None for a binary frame. Raises WebSocketDisconnect on close."""
    message = await ws.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE), message.get("reason"))
    return message.get("text")


def _parse_frame(raw: Optional[str]) -> Optional[tuple[str, Any]]:
    """Split a text frame into (event, data); None if it is not a JSON object with a type."""
    if raw is None:
        return None
    try:
        msg = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(msg, dict):
        return None
    event = str(msg.get("type") or msg.get("event") or "").strip()
    if not event:
        return None
    data = msg.get("data")
    if data is None:
        data = {k: v for k, v in msg.items() if k not in ("type", "event")}
    return event, data


async def _handshake(ws: WebSocket, token_service: TokenService) -> Principal:
    token = _extract_token(ws)
    if not token:
        # Browsers cannot set headers on a websocket; accept an authenticate frame instead
        frame = _parse_frame(await _receive_raw(ws))
        if frame is not None and frame[0] == "authenticate" and isinstance(frame[1], dict):
            token = frame[1].get("token")
    return await token_service.authenticate(token)


@router.websocket("/chat")
async def chat_websocket(
    ws: WebSocket,
    token_service: TokenService = Depends(get_token_service),
    rt: ChatRealtimeService = Depends(get_chat_service),
) -> None:
    await ws.accept()
    try:
        principal = await asyncio.wait_for(
            _handshake(ws, token_service),
            timeout=settings.REALTIME_WS_HANDSHAKE_TIMEOUT_S,
        )
    except WebSocketDisconnect:
        return
    except asyncio.TimeoutError:
        logger.info("ws_handshake_timeout")
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except BusinessException as exc:
        logger.info("ws_auth_rejected", error=exc.message)
        await ws.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    bind_log_context(user_id=principal.user_id)
    await rt.connect(principal, ws)
    try:
        idle_ping_interval = float(settings.REALTIME_WS_IDLE_PING_INTERVAL_S)
        pong_grace = float(settings.REALTIME_WS_PONG_GRACE_S)
        missed_limit = int(settings.REALTIME_WS_MISSED_PING_LIMIT)

        missed = 0
        while True:
            if idle_ping_interval > 0:
                try:
                    raw = await asyncio.wait_for(_receive_raw(ws), timeout=idle_ping_interval)
                except asyncio.TimeoutError:
                    # Idle: send ping and wait a short grace for response
                    missed += 1
                    try:
                        await rt.connections.send(ws, Envelope(type="ping"))
                    except Exception:
                        await ws.close(code=status.WS_1001_GOING_AWAY)
                        break
                    try:
                        raw = await asyncio.wait_for(_receive_raw(ws), timeout=pong_grace)
                        missed = 0
                    except asyncio.TimeoutError:
                        if missed > missed_limit:
                            logger.info("ws_heartbeat_timeout", user_id=principal.user_id, missed=missed)
                            await ws.close(code=status.WS_1001_GOING_AWAY)
                            break
                        continue
            else:
                raw = await _receive_raw(ws)

            frame = _parse_frame(raw)
            if frame is None:
                await rt.connections.send(
                    ws, Envelope(type="error", data={"message": "Invalid message format"})
                )
                continue
            event, data = frame
            if event == "ping":
                await rt.connections.send(ws, Envelope(type="pong"))
            elif event == "pong":
                continue
            else:
                await rt.dispatch(principal, ws, event, data)
    except WebSocketDisconnect:
        logger.info("ws_disconnected", user_id=principal.user_id)
    except Exception as exc:
        logger.error("ws_error", user_id=principal.user_id, error=str(exc), exc_info=True)
    finally:
        await rt.disconnect(principal, ws)
