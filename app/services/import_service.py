"""
Import service for fetching job feeds and upserting their postings.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import feedparser
import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.import_models import ITEM_FAILED, ITEM_NEW, ITEM_UPDATED
from app.models.job import JobPosting
from app.models.timestamps import utcnow
from app.services.config_service import config_service
from app.services.errors import InfrastructureFailure, PartialProcessingFailure, TransientNetworkError

logger = logging.getLogger("app.import")

ProgressCallback = Callable[[int, int], None]


@dataclass
class FeedPosting:
    """A single job listing parsed out of a feed."""

    source_job_id: Optional[str]
    title: str
    url: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PostingOutcome:
    source_job_id: Optional[str]
    title: str
    url: Optional[str]
    status: str
    failure_reason: Optional[str] = None


@dataclass
class ImportResult:
    """Aggregated outcome of processing every posting of one fetch."""

    outcomes: List[PostingOutcome] = field(default_factory=list)

    @property
    def total_fetched(self) -> int:
        return len(self.outcomes)

    @property
    def new_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ITEM_NEW)

    @property
    def updated_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ITEM_UPDATED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ITEM_FAILED)

    @property
    def total_imported(self) -> int:
        return self.new_count + self.updated_count


class FeedFetcher:
    """Downloads a feed over HTTP and parses it into postings."""

    def __init__(self, timeout: float = None, user_agent: str = None, max_redirects: int = None):
        self.timeout = timeout or config_service.get_float("FEED_FETCH_TIMEOUT", 30.0)
        self.user_agent = user_agent or config_service.get_setting("FEED_USER_AGENT")
        self.max_redirects = max_redirects or config_service.get_int("FEED_MAX_REDIRECTS", 5)

    def fetch(self, url: str) -> List[FeedPosting]:
        """
        Fetch and parse a feed.

        Args:
            url: Feed URL

        Returns:
            Parsed postings in document order

        Raises:
            TransientNetworkError: Timeout, connection error or 5xx; worth retrying
            InfrastructureFailure: 4xx, empty or unparseable document
        """
        logger.info(f"Fetching feed: {url}")

        try:
            with requests.Session() as http:
                http.max_redirects = self.max_redirects
                response = http.get(
                    url,
                    timeout=self.timeout,
                    headers={
                        "User-Agent": self.user_agent,
                        "Accept": "application/rss+xml, application/xml, text/xml",
                    },
                )
                response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise TransientNetworkError(f"Timed out fetching feed after {self.timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise TransientNetworkError(f"Could not connect to feed host: {e}") from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else 0
            if status_code >= 500:
                raise TransientNetworkError(f"Feed host error: HTTP {status_code}") from e
            raise InfrastructureFailure(f"Failed to fetch feed: HTTP {status_code}") from e
        except requests.exceptions.RequestException as e:
            raise InfrastructureFailure(f"Failed to fetch feed: {e}") from e

        if not response.content:
            raise InfrastructureFailure("Empty response from feed URL")

        return self.parse(response.content)

    def parse(self, content: bytes) -> List[FeedPosting]:
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise InfrastructureFailure(f"Failed to parse feed: {parsed.get('bozo_exception')}")

        postings = [self._to_posting(entry) for entry in parsed.entries]
        logger.info(f"Parsed {len(postings)} postings from feed")
        return postings

    @staticmethod
    def _to_posting(entry: Dict[str, Any]) -> FeedPosting:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip() or None
        # Stable identifier: guid, then link, then title
        source_job_id = (entry.get("id") or "").strip() or link or title or None
        return FeedPosting(
            source_job_id=source_job_id,
            title=title or "No title",
            url=link,
            company=entry.get("company") or entry.get("author"),
            location=entry.get("location") or entry.get("jobicy_location"),
            raw=dict(entry),
        )


class FeedImportService:
    """Upserts postings and classifies each one as new, updated or failed."""

    def import_postings(
        self,
        db: Session,
        feed_id: str,
        feed_name: Optional[str],
        postings: List[FeedPosting],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """
        Upsert every posting; a failing posting is recorded and skipped.

        Args:
            db: Database session
            feed_id: Owning feed
            feed_name: Used as company when the posting names none
            postings: Parsed postings
            on_progress: Called with (processed, total) after each posting

        Returns:
            Per-posting outcomes
        """
        result = ImportResult()
        total = len(postings)

        for index, posting in enumerate(postings, start=1):
            try:
                status = self._upsert(db, feed_id, feed_name, posting)
                result.outcomes.append(PostingOutcome(posting.source_job_id, posting.title, posting.url, status))
            except (PartialProcessingFailure, SQLAlchemyError, ValueError, TypeError) as e:
                db.rollback()
                reason = str(e) or e.__class__.__name__
                logger.warning(f"Failed to process posting '{posting.source_job_id}': {reason}")
                result.outcomes.append(
                    PostingOutcome(posting.source_job_id, posting.title, posting.url or "No URL", ITEM_FAILED, reason)
                )

            if on_progress:
                on_progress(index, total)

        logger.info(
            f"Postings processed for feed {feed_id}: total={result.total_fetched} new={result.new_count} "
            f"updated={result.updated_count} failed={result.failed_count}"
        )
        return result

    def _upsert(self, db: Session, feed_id: str, feed_name: Optional[str], posting: FeedPosting) -> str:
        if not posting.source_job_id:
            raise PartialProcessingFailure("No valid job identifier found (guid, link, or title)")

        now = utcnow()
        values = {
            "title": posting.title,
            "company": posting.company or feed_name or "Unknown",
            "location": posting.location or "",
            "url": posting.url or "",
            "feed_id": feed_id,
            "raw_json": json.dumps(posting.raw, default=str),
            "updated_at": now,
        }

        existing = db.query(JobPosting).filter(JobPosting.source_job_id == posting.source_job_id).first()
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            status = ITEM_UPDATED
        else:
            db.add(JobPosting(source_job_id=posting.source_job_id, created_at=now, **values))
            status = ITEM_NEW

        db.commit()
        return status
