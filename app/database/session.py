"""
Database session management.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy.orm import Session, sessionmaker

from app.database.engine import engine

logger = logging.getLogger("app.database")

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Yields:
        Database session
    """
    session = SessionLocal()
    try:
        logger.debug("Database session created")
        yield session
    except Exception as e:
        logger.error(f"Database session error: {e}")
        session.rollback()
        raise
    finally:
        logger.debug("Database session closed")
        session.close()


@contextmanager
def get_db_session(factory: Callable[[], Session] = None):
    """
    Context manager for database session.

    Args:
        factory: Session factory to use instead of the global SessionLocal
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
