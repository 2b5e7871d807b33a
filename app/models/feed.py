"""
Feed registry model.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel

from app.models.timestamps import as_utc, utcnow


class Feed(SQLModel, table=True):
    """Configured job feed.

    ``last_import_at`` and ``total_jobs_imported`` are owned by the import
    orchestrator; user edits never touch them.
    """

    __tablename__ = "feeds"

    id: str = Field(primary_key=True, max_length=50)
    name: str = Field(max_length=255, index=True)
    url: str = Field(max_length=2048, unique=True)
    category: Optional[str] = Field(default=None, max_length=100)
    job_types: Optional[str] = Field(default=None, max_length=255)
    region: Optional[str] = Field(default=None, max_length=100)
    is_active: bool = Field(default=True)
    last_import_at: Optional[datetime] = Field(default=None, index=True)
    total_jobs_imported: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        last_import = as_utc(self.last_import_at).isoformat() if self.last_import_at else None
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "category": self.category,
            "jobTypes": self.job_types,
            "region": self.region,
            "isActive": self.is_active,
            "lastImport": last_import,
            "lastImportAt": last_import,
            "totalJobsImported": self.total_jobs_imported,
            "createdAt": as_utc(self.created_at).isoformat() if self.created_at else None,
            "updatedAt": as_utc(self.updated_at).isoformat() if self.updated_at else None,
        }
