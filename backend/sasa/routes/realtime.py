"""WebSocket endpoint for the live channel."""

from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..config import Settings, get_settings
from ..connections import Connections
from ..database import Database
from ..logging_config import get_logger
from ..messaging.realtime import RealtimeSession

logger = get_logger("sasa.routes.realtime")
router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    db: Database,
    connections: Connections,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Accept a live connection and process its frames until it closes."""
    await websocket.accept()
    session = RealtimeSession(websocket, db, connections, settings)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            if message.get("text") is not None:
                await session.handle_text(message["text"])
            else:
                await session.handle_binary()
    except WebSocketDisconnect as e:
        logger.debug(f"Live connection closed | user={session.user_id} | code={e.code}")
    finally:
        session.close()
