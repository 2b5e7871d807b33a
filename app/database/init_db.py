"""
Database initialization script.
"""
import logging

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from app.database.engine import engine as default_engine

logger = logging.getLogger("app.database")


def init_database(engine: Engine = None) -> None:
    """
    Create all tables for feeds, job postings and import sessions.

    Args:
        engine: Engine to create tables on, defaults to the global engine
    """
    logger.info("Initializing database...")

    # Register table metadata
    from app.models.feed import Feed  # noqa: F401
    from app.models.import_models import ImportSession, ImportSessionItem  # noqa: F401
    from app.models.job import JobPosting  # noqa: F401

    SQLModel.metadata.create_all(engine or default_engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    init_database()
