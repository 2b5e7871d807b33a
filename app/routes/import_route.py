"""
Import session routes: start, status, and import log history.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.dependencies import get_orchestrator
from app.services.errors import NotFoundError, ValidationError
from app.services.import_orchestrator import ImportOrchestrator
from app.services.session_store import session_store

router = APIRouter(prefix="/api", tags=["import"])
logger = logging.getLogger("app.import")

NOT_FOUND_STATUS = "not-found"


@router.post("/import/start", status_code=202)
async def start_import(
    feedId: Optional[str] = None, orchestrator: ImportOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """
    Start an import session for a feed.

    The response is sent as soon as the session exists; the outcome is
    published on the real-time channel and through the status endpoint.

    Args:
        feedId: Feed to import

    Returns:
        Session id and acknowledgement message
    """
    logger.info(f"Import start requested for feed: {feedId}")

    try:
        started = await orchestrator.start_import(feedId)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Feed not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "data": {
            "sessionId": started.session_id,
            "importId": started.session_id,
            "message": started.message,
        }
    }


@router.get("/import/status/{session_id}")
async def get_import_status(
    session_id: str, orchestrator: ImportOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """
    Coarse status of an import session.

    Unknown ids are reported as the ``not-found`` status value rather than
    an HTTP error.
    """
    try:
        status = await orchestrator.get_status(session_id)
    except NotFoundError:
        logger.info(f"Status requested for unknown import session: {session_id}")
        status = {"status": NOT_FOUND_STATUS, "progress": 0}

    return {"data": status}


@router.get("/import-logs")
async def list_import_logs(
    search: Optional[str] = None,
    date: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Paginated import history, newest first.

    Args:
        search: Substring of the feed url or name
        date: Day the import started, YYYY-MM-DD
        page: 1-based page number
        limit: Page size, capped at 50
    """
    logger.info(f"Import logs requested search={search!r} date={date} page={page} limit={limit}")

    try:
        sessions, total = session_store.list_sessions(db, search=search, date=date, page=page, limit=limit)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    page_size = min(max(1, limit), 50)
    return {
        "data": {
            "data": [session.to_dict() for session in sessions],
            "total": total,
            "page": max(1, page),
            "totalPages": max(1, -(-total // page_size)),
        }
    }


@router.get("/import-logs/{session_id}")
async def get_import_log(
    session_id: str, orchestrator: ImportOrchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """
    Session details with one entry per processed posting.
    """
    try:
        details = await orchestrator.get_session_details(session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Import log not found")

    return {"data": details}


@router.delete("/import-logs/{session_id}", status_code=204)
async def delete_import_log(session_id: str, db: Session = Depends(get_session)) -> Response:
    try:
        session_store.delete_session(db, session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Import log not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)
