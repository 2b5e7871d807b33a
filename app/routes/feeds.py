"""
Feed registry routes.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.models.job import JobPosting
from app.services.errors import NotFoundError, ValidationError
from app.services.feed_service import FEED_ID_PATTERN, feed_service

router = APIRouter(prefix="/api", tags=["feeds"])
logger = logging.getLogger("app.feeds")


class FeedPayload(BaseModel):
    """Feed fields as sent by the dashboard (camelCase or snake_case)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None
    job_types: Optional[str] = Field(default=None, alias="jobTypes")
    region: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


@router.get("/feeds")
async def list_feeds(search: Optional[str] = None, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    List feeds, optionally filtered by a substring of name, url, category or region.
    """
    logger.info(f"Feed list requested search={search!r}")

    feeds = feed_service.list_feeds(db, search)
    return {"data": [feed.to_dict() for feed in feeds]}


@router.get("/feeds/{feed_id}")
async def get_feed(feed_id: str, db: Session = Depends(get_session)) -> Dict[str, Any]:
    try:
        feed = feed_service.get_feed(db, feed_id)
    except (NotFoundError, ValidationError):
        raise HTTPException(status_code=404, detail="Feed not found")
    return {"data": feed.to_dict()}


@router.post("/feeds", status_code=201)
async def create_feed(payload: FeedPayload, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Register a new feed.

    Returns:
        Created feed
    """
    data = payload.model_dump(exclude_unset=True)
    if data.get("is_active") is None:
        data.pop("is_active", None)

    try:
        feed = feed_service.create_feed(db, data)
    except ValidationError as e:
        logger.warning(f"Feed creation rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {"data": feed.to_dict()}


@router.patch("/feeds/{feed_id}")
async def update_feed(feed_id: str, payload: FeedPayload, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Edit feed configuration; import statistics are not editable.
    """
    if not FEED_ID_PATTERN.match(feed_id):
        raise HTTPException(status_code=404, detail="Feed not found")

    try:
        feed = feed_service.update_feed(db, feed_id, payload.model_dump(exclude_unset=True))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Feed not found")
    except ValidationError as e:
        logger.warning(f"Feed update rejected: {feed_id} - {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return {"data": feed.to_dict()}


@router.delete("/feeds/{feed_id}", status_code=204)
async def delete_feed(feed_id: str, db: Session = Depends(get_session)) -> Response:
    try:
        feed_service.delete_feed(db, feed_id)
    except (NotFoundError, ValidationError):
        raise HTTPException(status_code=404, detail="Feed not found")
    return Response(status_code=204)


@router.get("/jobs")
async def list_jobs(db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Newest job postings across all feeds.
    """
    jobs = db.query(JobPosting).order_by(JobPosting.created_at.desc()).limit(100).all()
    return {"data": [job.to_dict() for job in jobs]}

