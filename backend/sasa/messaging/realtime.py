"""Live channel protocol.

JSON text frames, client to server:

- ``{"type": "auth", "userId": ..., "token": ...}`` registers the socket for
  the user and answers with the user's unread message count;
- ``{"type": "message", "payload": {...}}`` stores and delivers a message,
  answering ``message_sent``;
- ``{"type": "mark_read", "payload": {"messageId": ...}}`` marks one received
  message read and answers with the new unread count.

Server to client: ``message``, ``message_sent``, ``unread_count``,
``notification`` and ``error``. A bad frame only earns an ``error`` frame;
the connection stays open.
"""

import json

from fastapi import HTTPException, WebSocket
from pydantic import ValidationError

from supabase import Client

from ..auth import context_from_payload, decode_token
from ..config import Settings
from ..connections import ConnectionManager
from ..errors import MarketplaceError
from ..logging_config import get_logger
from ..notifications.service import NotificationWriter
from .models import MarkReadPayload, MessageCreate, to_message_response
from .service import count_unread_messages, mark_message_read, send_message

logger = get_logger("sasa.realtime")


class RealtimeSession:
    """State and frame handling for one WebSocket connection."""

    def __init__(
        self,
        websocket: WebSocket,
        db: Client,
        connections: ConnectionManager,
        settings: Settings,
    ):
        self.websocket = websocket
        self.db = db
        self.connections = connections
        self.settings = settings
        self.user_id: str | None = None

    async def send(self, frame: dict) -> None:
        try:
            await self.websocket.send_json(frame)
        except Exception as e:
            logger.warning(f"Send failed | user={self.user_id} | type={frame.get('type')} | {e}")

    async def send_error(self, message: str) -> None:
        await self.send({"type": "error", "payload": {"message": message}})

    async def send_unread_count(self) -> None:
        count = await count_unread_messages(self.db, self.user_id)
        await self.send({"type": "unread_count", "payload": {"count": count}})

    async def handle_text(self, text: str) -> None:
        """Dispatch one incoming frame. Never raises."""
        try:
            frame = json.loads(text)
        except ValueError:
            logger.warning(f"Invalid JSON frame | user={self.user_id}")
            await self.send_error("Invalid JSON")
            return
        if not isinstance(frame, dict):
            await self.send_error("Frame must be a JSON object")
            return

        kind = frame.get("type")
        try:
            if kind == "auth":
                await self.handle_auth(frame)
            elif self.user_id is None:
                await self.send_error("Not authenticated")
            elif kind == "message":
                await self.handle_message(frame.get("payload"))
            elif kind == "mark_read":
                await self.handle_mark_read(frame.get("payload"))
            else:
                logger.warning(f"Unknown frame type | user={self.user_id} | type={kind}")
                await self.send_error(f"Unknown frame type: {kind}")
        except ValidationError as e:
            logger.info(f"Invalid {kind} payload | user={self.user_id} | {e.error_count()} errors")
            await self.send_error(f"Invalid {kind} payload")
        except MarketplaceError as e:
            await self.send_error(e.message)
        except Exception as e:
            logger.error(f"Frame handling failed | user={self.user_id} | type={kind} | {e}")
            await self.send_error("Internal error")

    async def handle_binary(self) -> None:
        logger.warning(f"Binary frame refused | user={self.user_id}")
        await self.send_error("Binary frames are not supported")

    async def handle_auth(self, frame: dict) -> None:
        user_id = frame.get("userId")
        if not user_id or not isinstance(user_id, str):
            await self.send_error("userId is required")
            return

        if self.settings.realtime_require_token:
            token = frame.get("token")
            if not token:
                await self.send_error("token is required")
                return
            try:
                auth = context_from_payload(decode_token(token, self.settings))
            except HTTPException:
                await self.send_error("Invalid or expired token")
                return
            if auth.user_id != user_id:
                logger.warning(f"Token subject mismatch on live channel | claimed={user_id}")
                await self.send_error("Token does not match userId")
                return
            if not auth.is_active:
                await self.send_error(f"Account is {auth.status}")
                return

        if self.user_id and self.user_id != user_id:
            self.connections.unregister(self.user_id, self.websocket)

        self.user_id = user_id
        self.connections.register(user_id, self.websocket)
        await self.send_unread_count()

    async def handle_message(self, payload) -> None:
        message = MessageCreate.model_validate(payload or {})
        notifier = NotificationWriter(self.db, self.connections)
        created = await send_message(self.db, notifier, self.connections, self.user_id, message)
        await self.send({"type": "message_sent", "payload": to_message_response(created).to_wire()})

    async def handle_mark_read(self, payload) -> None:
        data = MarkReadPayload.model_validate(payload or {})
        if not await mark_message_read(self.db, data.message_id, self.user_id):
            logger.info(f"mark_read ignored | user={self.user_id} | message={data.message_id}")
        await self.send_unread_count()

    def close(self) -> None:
        if self.user_id:
            self.connections.unregister(self.user_id, self.websocket)
