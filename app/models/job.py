"""
Job posting model.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel

from app.models.timestamps import as_utc, utcnow


class JobPosting(SQLModel, table=True):
    """Job posting upserted by its stable source identifier."""

    __tablename__ = "job_postings"

    id: Optional[int] = Field(default=None, primary_key=True)
    source_job_id: str = Field(max_length=2048, unique=True)
    title: str = Field(max_length=500)
    company: Optional[str] = Field(default=None, max_length=255)
    location: Optional[str] = Field(default=None, max_length=255)
    url: Optional[str] = Field(default=None, max_length=2048)
    feed_id: Optional[str] = Field(default=None, max_length=50, index=True)
    raw_json: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "jobId": self.source_job_id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "url": self.url,
            "feedId": self.feed_id,
            "createdAt": as_utc(self.created_at).isoformat() if self.created_at else None,
            "updatedAt": as_utc(self.updated_at).isoformat() if self.updated_at else None,
        }
