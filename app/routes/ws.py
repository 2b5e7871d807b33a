"""
Real-time notification channel.
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.dependencies import get_broadcaster
from app.services.notification_service import NotificationBroadcaster

router = APIRouter()
logger = logging.getLogger("app.notifications")


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, broadcaster: NotificationBroadcaster = Depends(get_broadcaster)):
    """
    Push import events to the client as ``{type, data}`` envelopes.

    Incoming messages are only logged; the channel is server-to-client.
    """
    await websocket.accept()
    if not await broadcaster.connect(websocket):
        await websocket.close(code=1001)
        return

    try:
        while True:
            message = await websocket.receive_text()
            try:
                logger.debug(f"Received client message: {json.loads(message)}")
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON client message: {message[:100]!r}")
    except WebSocketDisconnect as e:
        logger.info(f"WebSocket client disconnected (code: {e.code})")
    finally:
        await broadcaster.disconnect(websocket)
