"""
Import session models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from app.models.timestamps import as_utc, utcnow

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

ITEM_NEW = "new"
ITEM_UPDATED = "updated"
ITEM_FAILED = "failed"


class ImportSession(SQLModel, table=True):
    """One import attempt for one feed.

    Feed identity is snapshotted at start so later edits of the feed do not
    rewrite history. Once the status is terminal the row is never mutated.
    """

    __tablename__ = "import_sessions"

    id: str = Field(primary_key=True, max_length=50)
    feed_id: str = Field(max_length=50, index=True)
    feed_url: str = Field(max_length=2048, index=True)
    feed_name: Optional[str] = Field(default=None, max_length=255)
    status: str = Field(max_length=20, default=STATUS_IN_PROGRESS, index=True)  # in_progress, completed, failed
    total_fetched: int = Field(default=0)
    new_count: int = Field(default=0)
    updated_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    total_imported: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    started_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)

    # Relationships
    items: List["ImportSessionItem"] = Relationship(
        back_populates="session",
        sa_relationship_kwargs={"order_by": "ImportSessionItem.position", "cascade": "all, delete-orphan"},
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def failure_details(self) -> List[Dict[str, Any]]:
        return [item.to_failure_detail() for item in self.items if item.status == ITEM_FAILED]

    def to_dict(self, include_failures: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "importId": self.id,
            "feedId": self.feed_id,
            "feedUrl": self.feed_url,
            "feedName": self.feed_name,
            "status": self.status,
            "totalFetched": self.total_fetched,
            "totalJobs": self.total_fetched,
            "totalImported": self.total_imported,
            "newJobs": self.new_count,
            "updatedJobs": self.updated_count,
            "failedJobs": self.failed_count,
            "failedJobsCount": self.failed_count,
            "error": self.error_message,
            "timestamp": as_utc(self.started_at).isoformat() if self.started_at else None,
            "startedAt": as_utc(self.started_at).isoformat() if self.started_at else None,
            "completedAt": as_utc(self.completed_at).isoformat() if self.completed_at else None,
            "duration": self.duration_ms,
        }
        if include_failures:
            data["failedJobDetails"] = self.failure_details
        return data


class ImportSessionItem(SQLModel, table=True):
    """Outcome of a single posting within an import session."""

    __tablename__ = "import_session_items"

    item_id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="import_sessions.id", index=True)
    position: int = Field()
    source_job_id: Optional[str] = Field(default=None, max_length=2048)
    title: str = Field(max_length=500)
    url: Optional[str] = Field(default=None, max_length=2048)
    status: str = Field(max_length=20)  # new, updated, failed
    failure_reason: Optional[str] = Field(default=None, max_length=1000)

    # Relationships
    session: Optional[ImportSession] = Relationship(back_populates="items")

    def to_failure_detail(self) -> Dict[str, Any]:
        return {
            "sourceJobId": self.source_job_id,
            "jobId": self.source_job_id,
            "title": self.title,
            "url": self.url,
            "reason": self.failure_reason,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": f"{self.session_id}_{self.position}",
            "jobId": self.source_job_id,
            "title": self.title,
            "url": self.url,
            "status": self.status,
            "failureReason": self.failure_reason,
            "importLogId": self.session_id,
        }
