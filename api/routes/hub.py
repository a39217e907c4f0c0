"""Push hub: the persistent WebSocket transport.

Handshake: token from `Authorization: Bearer` or, on this path only, from the
`access_token` query parameter. A rejected handshake is closed with 1008
before accept and nothing is registered.

Client commands (JSON frames `{type, room, data, id}`):
  JoinChat / LeaveChat / SendMessage, answered with `ack` or `error`
  correlated by `id`; `ping` is answered with `pong`.
Server events: welcome, ReceiveMessage, MessageEdited, MessageDeleted, ping.

Heartbeat: the server pings after an idle interval and closes after a
configurable number of unanswered pings.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.middleware.request_id import HEADER_NAME, bind_request_context, client_ip_from
from api.security import DualTransportAuthenticator
from application.ports.realtime import Envelope
from application.services.fanout_service import FanoutService
from application.services.realtime_service import RealtimeService
from core.config import settings
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from core.response import error_frame_data
from domain.chat import Identity, Transport
from domain.common.exceptions import BusinessException, InvalidArgumentException


logger = get_logger(__name__)

router = APIRouter(tags=["Hub"])

WS_POLICY_VIOLATION = 1008
WS_GOING_AWAY = 1001


def _app_state(ws: WebSocket, name: str) -> Any:
    value = getattr(ws.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialized. Ensure lifespan sets app.state.{name}.")
    return value


def _room_id(frame: dict) -> int:
    raw = frame.get("room")
    if raw is None and isinstance(frame.get("data"), dict):
        raw = frame["data"].get("roomId")
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        raise InvalidArgumentException("room must be a chat room id", field="room")


def error_frame(invocation_id: Optional[str], exc: BusinessException) -> Envelope:
    return Envelope(type="error", id=invocation_id, data=error_frame_data(exc))


class HubSession:
    """One authenticated hub connection: command dispatch for its lifetime."""

    def __init__(
        self,
        ws: WebSocket,
        identity: Identity,
        realtime: RealtimeService,
        fanout: FanoutService,
        connection_id: str,
    ) -> None:
        self.ws = ws
        self.identity = identity
        self.realtime = realtime
        self.fanout = fanout
        self.connection_id = connection_id

    async def reply(self, envelope: Envelope) -> None:
        await self.realtime.send_to(self.connection_id, envelope)

    async def handle(self, frame: dict) -> None:
        mtype = str(frame.get("type") or "")
        invocation_id = frame.get("id")
        if invocation_id is not None:
            invocation_id = str(invocation_id)

        if mtype == "ping":
            await self.reply(Envelope(type="pong", id=invocation_id))
            return
        if mtype == "pong":
            return

        try:
            data = await self._dispatch(mtype, frame)
        except BusinessException as exc:
            logger.info("hub_command_failed", command=mtype, code=exc.code, error_type=exc.error_type)
            await self.reply(error_frame(invocation_id, exc))
            return
        await self.reply(Envelope(type="ack", id=invocation_id, data=data or {}))

    async def _dispatch(self, mtype: str, frame: dict) -> Optional[dict]:
        if mtype == "JoinChat":
            room = str(_room_id(frame))
            await self.realtime.join_room(self.connection_id, room)
            return {"room": room}
        if mtype == "LeaveChat":
            room = str(_room_id(frame))
            await self.realtime.leave_room(self.connection_id, room)
            return {"room": room}
        if mtype == "SendMessage":
            room_id = _room_id(frame)
            payload = frame.get("data") if isinstance(frame.get("data"), dict) else {}
            text = payload.get("text")
            if not isinstance(text, str):
                raise InvalidArgumentException("data.text is required", field="text")
            outcome = await self.fanout.send_message(self.identity, room_id, text, origin=Transport.HUB)
            return {"room": outcome.room_id, "messageId": outcome.message.id}
        raise InvalidArgumentException(f"Unknown command: {mtype or '<empty>'}", field="type")

    async def receive_frame(self) -> Optional[str]:
        """Next text frame; None for a binary frame."""
        message = await self.ws.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        return message.get("text")

    async def run(self) -> None:
        cfg = settings.realtime
        idle_ping_interval = float(cfg.idle_ping_interval_s)
        pong_grace = float(cfg.pong_grace_s)
        missed_limit = int(cfg.missed_ping_limit)

        missed = 0
        while True:
            if idle_ping_interval > 0:
                try:
                    text = await asyncio.wait_for(self.receive_frame(), timeout=idle_ping_interval)
                except asyncio.TimeoutError:
                    # Idle: ping and wait a short grace for any frame
                    missed += 1
                    await self.reply(Envelope(type="ping"))
                    try:
                        text = await asyncio.wait_for(self.receive_frame(), timeout=pong_grace)
                        missed = 0
                    except asyncio.TimeoutError:
                        if missed >= missed_limit:
                            logger.info("ws_heartbeat_timeout", missed=missed)
                            await self.ws.close(code=WS_GOING_AWAY)
                            return
                        continue
            else:
                text = await self.receive_frame()

            if text is None:
                await self.reply(error_frame(None, InvalidArgumentException("Binary frames are not supported")))
                continue
            try:
                frame = json.loads(text)
            except ValueError:
                frame = None
            if not isinstance(frame, dict):
                await self.reply(error_frame(None, InvalidArgumentException("Frame must be a JSON object")))
                continue
            await self.handle(frame)


@router.websocket(settings.realtime.hub_path)
async def hub_endpoint(ws: WebSocket) -> None:
    bind_request_context(
        ws.headers.get(HEADER_NAME),
        client_ip_from(ws.headers, ws.client.host if ws.client else None),
        path=ws.url.path,
        transport="hub",
    )
    authenticator: DualTransportAuthenticator = _app_state(ws, "authenticator")
    try:
        identity = authenticator.authenticate_websocket(ws)
    except UnauthorizedException as exc:
        logger.info("ws_handshake_rejected", error_type=exc.error_type)
        await ws.close(code=WS_POLICY_VIOLATION)
        return

    realtime: RealtimeService = _app_state(ws, "realtime_service")
    fanout: FanoutService = _app_state(ws, "fanout_service")

    await ws.accept()
    connection_id = await realtime.connect(identity, ws)
    session = HubSession(ws, identity, realtime, fanout, connection_id)
    try:
        await session.run()
    except WebSocketDisconnect as exc:
        logger.info("ws_client_closed", connection_id=connection_id, code=exc.code)
    except Exception as exc:
        logger.error("ws_error", connection_id=connection_id, error=str(exc), exc_info=True)
    finally:
        await realtime.disconnect(connection_id)


__all__ = ["router", "HubSession", "error_frame"]
