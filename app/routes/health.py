"""
Health check endpoints.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database.session import get_session

router = APIRouter()
logger = logging.getLogger("app.health")

SERVICE_NAME = "JobFeeds"
SERVICE_VERSION = "0.1.0"


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint for Kubernetes/Docker health probes.

    Returns:
        Dict with status information
    """
    logger.info("Health check requested")

    return {"status": "ok", "service": SERVICE_NAME, "version": SERVICE_VERSION}


@router.get("/health")
async def detailed_health(request: Request, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Detailed health check with component status.

    Returns:
        Dict with detailed health information
    """
    logger.info("Detailed health check requested")

    try:
        db.execute(text("SELECT 1"))
        database_status = "ok"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_status = "unavailable"

    broadcaster = getattr(request.app.state, "broadcaster", None)
    orchestrator = getattr(request.app.state, "orchestrator", None)

    return {
        "status": "ok" if database_status == "ok" else "degraded",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "database": database_status,
            "realtime_subscribers": broadcaster.subscriber_count if broadcaster else 0,
            "imports_in_progress": len(orchestrator.supervisor.active_session_ids) if orchestrator else 0,
        },
    }
