"""
Import session store.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.feed import Feed
from app.models.import_models import (
    ITEM_FAILED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    ImportSession,
    ImportSessionItem,
)
from app.models.timestamps import as_utc, utcnow
from app.services.errors import NotFoundError, ValidationError
from app.services.import_service import ImportResult

logger = logging.getLogger("app.import")

MAX_PAGE_SIZE = 50


def new_session_id() -> str:
    return f"import_{uuid.uuid4().hex[:12]}"


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return max(0, int((as_utc(completed_at) - as_utc(started_at)).total_seconds() * 1000))


class ImportSessionStore:
    """Persistence of import sessions and their terminal transitions."""

    def create_session(self, db: Session, feed: Feed) -> ImportSession:
        session = ImportSession(
            id=new_session_id(),
            feed_id=feed.id,
            feed_url=feed.url,
            feed_name=feed.name,
            status=STATUS_IN_PROGRESS,
            started_at=utcnow(),
        )
        db.add(session)
        db.commit()
        db.refresh(session)

        logger.info(f"Import session created: {session.id} feed={feed.id}")
        return session

    def get_session(self, db: Session, session_id: str) -> ImportSession:
        session = db.get(ImportSession, session_id) if session_id else None
        if not session:
            raise NotFoundError("Import session", session_id)
        return session

    def complete_session(
        self, db: Session, session_id: str, result: ImportResult, completed_at: datetime, commit: bool = True
    ) -> bool:
        """
        Move an in-progress session to completed and store its postings.

        With ``commit=False`` the changes are only flushed so the caller can
        commit them together with its own writes.

        Returns:
            False if the session was already terminal (nothing is written)
        """
        session = self.get_session(db, session_id)
        values = {
            ImportSession.status: STATUS_COMPLETED,
            ImportSession.total_fetched: result.total_fetched,
            ImportSession.new_count: result.new_count,
            ImportSession.updated_count: result.updated_count,
            ImportSession.failed_count: result.failed_count,
            ImportSession.total_imported: result.total_imported,
            ImportSession.completed_at: completed_at,
            ImportSession.duration_ms: _duration_ms(session.started_at, completed_at),
        }
        items = [
            ImportSessionItem(
                session_id=session_id,
                position=position,
                source_job_id=outcome.source_job_id,
                title=outcome.title,
                url=outcome.url,
                status=outcome.status,
                failure_reason=outcome.failure_reason,
            )
            for position, outcome in enumerate(result.outcomes)
        ]
        return self._finish(db, session_id, values, items, commit)

    def fail_session(self, db: Session, session_id: str, reason: str, completed_at: datetime) -> bool:
        """
        Move an in-progress session to failed with one synthetic failure detail.

        Returns:
            False if the session was already terminal
        """
        session = self.get_session(db, session_id)
        values = {
            ImportSession.status: STATUS_FAILED,
            ImportSession.total_fetched: 0,
            ImportSession.new_count: 0,
            ImportSession.updated_count: 0,
            ImportSession.failed_count: 1,
            ImportSession.total_imported: 0,
            ImportSession.error_message: reason[:1000],
            ImportSession.completed_at: completed_at,
            ImportSession.duration_ms: _duration_ms(session.started_at, completed_at),
        }
        items = [
            ImportSessionItem(
                session_id=session_id,
                position=0,
                source_job_id=None,
                title="Import process failed",
                url=session.feed_url,
                status=ITEM_FAILED,
                failure_reason=reason[:1000],
            )
        ]
        return self._finish(db, session_id, values, items)

    def _finish(
        self, db: Session, session_id: str, values: dict, items: List[ImportSessionItem], commit: bool = True
    ) -> bool:
        rows = (
            db.query(ImportSession)
            .filter(ImportSession.id == session_id, ImportSession.status == STATUS_IN_PROGRESS)
            .update(values, synchronize_session=False)
        )
        if not rows:
            db.rollback()
            logger.warning(f"Import session {session_id} is already terminal, ignoring transition")
            return False

        db.add_all(items)
        if commit:
            db.commit()
        else:
            db.flush()
        db.expire_all()
        return True

    def list_sessions(
        self,
        db: Session,
        search: Optional[str] = None,
        date: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[ImportSession], int]:
        """
        Page through sessions, newest first.

        Args:
            search: Case-insensitive substring of the feed url or name
            date: Start day as YYYY-MM-DD

        Returns:
            (sessions on the page, total matching)
        """
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)

        query = db.query(ImportSession)
        if search and search.strip():
            term = search.strip()
            query = query.filter(
                or_(
                    ImportSession.feed_url.icontains(term, autoescape=True),
                    ImportSession.feed_name.icontains(term, autoescape=True),
                )
            )
        if date:
            try:
                start = datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError as e:
                raise ValidationError(f"Invalid date, expected YYYY-MM-DD: {date}") from e
            query = query.filter(ImportSession.started_at >= start, ImportSession.started_at < start + timedelta(days=1))

        total = query.count()
        sessions = query.order_by(ImportSession.started_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return sessions, total

    def delete_session(self, db: Session, session_id: str) -> None:
        session = self.get_session(db, session_id)
        if session.status == STATUS_IN_PROGRESS:
            raise ValidationError("An import in progress cannot be deleted")
        db.delete(session)
        db.commit()
        logger.info(f"Import session deleted: {session_id}")


session_store = ImportSessionStore()
