"""
FastAPI dependencies for services created in the application lifespan.
"""
from fastapi import Request, WebSocket

from app.services.import_orchestrator import ImportOrchestrator
from app.services.notification_service import NotificationBroadcaster


def get_orchestrator(request: Request) -> ImportOrchestrator:
    return request.app.state.orchestrator


def get_broadcaster(websocket: WebSocket) -> NotificationBroadcaster:
    return websocket.app.state.broadcaster
