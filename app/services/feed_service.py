"""
Feed registry service.
"""
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.feed import Feed
from app.models.timestamps import utcnow
from app.services.errors import NotFoundError, ValidationError

logger = logging.getLogger("app.feeds")

FEED_ID_PATTERN = re.compile(r"^feed_[0-9a-f]{12}$")

# Fields a user may edit; import statistics belong to the orchestrator
EDITABLE_FIELDS = ("name", "url", "category", "job_types", "region", "is_active")


def new_feed_id() -> str:
    return f"feed_{uuid.uuid4().hex[:12]}"


def validate_feed_id(feed_id: Optional[str]) -> str:
    """
    Check the shape of a feed identifier.

    Raises:
        ValidationError: If the identifier is missing or malformed
    """
    if not feed_id or not isinstance(feed_id, str):
        raise ValidationError("feedId is required")
    feed_id = feed_id.strip()
    if not FEED_ID_PATTERN.match(feed_id):
        raise ValidationError(f"Malformed feedId: {feed_id}")
    return feed_id


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _validate_url(url: Optional[str]) -> str:
    if not url:
        raise ValidationError("Feed url is required")
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ValidationError(f"Feed url is not a valid URL: {url}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Feed url must be an absolute http(s) URL: {url}")
    return url


class FeedService:
    """CRUD operations over the feed registry."""

    def list_feeds(self, db: Session, search: Optional[str] = None) -> List[Feed]:
        """
        List feeds ordered by name.

        Args:
            db: Database session
            search: Case-insensitive substring matched against name, url, category and region

        Returns:
            Matching feeds
        """
        query = db.query(Feed)
        search = _clean_text(search)
        if search:
            query = query.filter(
                or_(
                    Feed.name.icontains(search, autoescape=True),
                    Feed.url.icontains(search, autoescape=True),
                    Feed.category.icontains(search, autoescape=True),
                    Feed.region.icontains(search, autoescape=True),
                )
            )
        return query.order_by(Feed.name.asc()).all()

    def list_active_feeds(self, db: Session) -> List[Feed]:
        return db.query(Feed).filter(Feed.is_active.is_(True)).order_by(Feed.name.asc()).all()

    def get_feed(self, db: Session, feed_id: str) -> Feed:
        feed_id = validate_feed_id(feed_id)
        feed = db.get(Feed, feed_id)
        if not feed:
            raise NotFoundError("Feed", feed_id)
        return feed

    def create_feed(self, db: Session, data: Dict[str, Any]) -> Feed:
        """
        Create a feed.

        Raises:
            ValidationError: Missing name/url, bad url or duplicate url
        """
        name = _clean_text(data.get("name"))
        if not name:
            raise ValidationError("Feed name is required")
        url = _validate_url(_clean_text(data.get("url")))
        self._ensure_url_available(db, url)

        feed = Feed(
            id=new_feed_id(),
            name=name,
            url=url,
            category=_clean_text(data.get("category")),
            job_types=_clean_text(data.get("job_types")),
            region=_clean_text(data.get("region")),
            is_active=bool(data.get("is_active", True)),
        )
        db.add(feed)
        self._commit(db)
        db.refresh(feed)

        logger.info(f"Feed created: {feed.id} name={feed.name} url={feed.url}")
        return feed

    def update_feed(self, db: Session, feed_id: str, data: Dict[str, Any]) -> Feed:
        feed = self.get_feed(db, feed_id)

        for field in EDITABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field == "name":
                value = _clean_text(value)
                if not value:
                    raise ValidationError("Feed name is required")
            elif field == "url":
                value = _validate_url(_clean_text(value))
                if value != feed.url:
                    self._ensure_url_available(db, value)
            elif field == "is_active":
                if value is None:
                    raise ValidationError("isActive must be a boolean")
                value = bool(value)
            else:
                value = _clean_text(value)
            setattr(feed, field, value)

        feed.updated_at = utcnow()
        self._commit(db)
        db.refresh(feed)

        logger.info(f"Feed updated: {feed.id} fields={sorted(k for k in data if k in EDITABLE_FIELDS)}")
        return feed

    def delete_feed(self, db: Session, feed_id: str) -> None:
        """Delete a feed. Its import sessions are kept as history."""
        feed = self.get_feed(db, feed_id)
        db.delete(feed)
        db.commit()
        logger.info(f"Feed deleted: {feed_id}")

    def record_import(
        self, db: Session, feed_id: str, new_count: int, completed_at: datetime, commit: bool = True
    ) -> bool:
        """
        Apply a completed session to the feed aggregates.

        The counter is incremented in SQL so overlapping sessions of the same
        feed never lose updates; updated postings do not count.

        Returns:
            False if the feed no longer exists
        """
        rows = (
            db.query(Feed)
            .filter(Feed.id == feed_id)
            .update(
                {
                    Feed.total_jobs_imported: Feed.total_jobs_imported + new_count,
                    Feed.last_import_at: completed_at,
                },
                synchronize_session=False,
            )
        )
        if commit:
            db.commit()

        if not rows:
            logger.warning(f"Feed {feed_id} disappeared before its statistics could be updated")
            return False
        logger.info(f"Updated feed statistics for {feed_id}: +{new_count} jobs")
        return True

    def _ensure_url_available(self, db: Session, url: str) -> None:
        if db.query(Feed).filter(Feed.url == url).first():
            raise ValidationError(f"A feed with url {url} already exists")

    def _commit(self, db: Session) -> None:
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Feed write rejected: {e.orig}")
            raise ValidationError("A feed with this url already exists") from e


feed_service = FeedService()
