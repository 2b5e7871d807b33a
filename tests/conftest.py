"""
Pytest configuration and fixtures for JobFeeds tests.
"""

import os

# Tests never touch the configured database
os.environ["DB_URL"] = "sqlite:///./test.db"

import tempfile
import threading
from typing import Dict, List, Union

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.database.init_db import init_database
from app.database.session import get_session
from app.main import create_app
from app.models.job import JobPosting
from app.services.feed_service import feed_service
from app.services.import_service import FeedPosting
from app.services.notification_service import NotificationBroadcaster

FetchResult = Union[List[FeedPosting], Exception]


class FakeFetcher:
    """Stands in for the HTTP feed fetcher.

    Each URL maps to a list of results consumed one per fetch; the last one
    repeats. A result is either a posting list or an exception to raise.
    """

    def __init__(self, results: Dict[str, List[FetchResult]] = None):
        self.results = results or {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def set(self, url: str, *results: FetchResult) -> None:
        self.results[url] = list(results)

    def fetch(self, url: str) -> List[FeedPosting]:
        with self._lock:
            self.calls.append(url)
            queue = self.results.get(url) or [[]]
            result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return list(result)


class RecordingSubscriber:
    """Broadcaster subscriber that keeps every envelope it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("subscriber went away")
        self.messages.append(data)

    def types(self) -> List[str]:
        return [message["type"] for message in self.messages]


def make_postings(prefix: str, count: int) -> List[FeedPosting]:
    return [
        FeedPosting(
            source_job_id=f"{prefix}-{i}",
            title=f"{prefix} job {i}",
            url=f"https://jobs.example.com/{prefix}/{i}",
            company="Example Corp",
            location="Remote",
        )
        for i in range(count)
    ]


@pytest.fixture(scope="function")
def session_factory():
    """Session factory bound to a fresh temporary SQLite database."""
    fd, temp_db = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(f"sqlite:///{temp_db}", connect_args={"check_same_thread": False})
    init_database(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

    try:
        yield factory
    finally:
        SQLModel.metadata.drop_all(engine)
        engine.dispose()
        try:
            os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def broadcaster():
    return NotificationBroadcaster(send_timeout=1.0)


@pytest.fixture
def app(session_factory, fetcher):
    """Application wired to the temporary database and the fake fetcher."""
    application = create_app(session_factory=session_factory, fetcher=fetcher, fetch_backoff=0)

    def override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_session] = override_get_session
    return application


@pytest.fixture
def client(app):
    """Create a test client with database dependency override."""
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_feed(db_session):
    """Create an active feed for testing."""
    return feed_service.create_feed(
        db_session,
        {
            "name": "Remote Python Jobs",
            "url": "https://feeds.example.com/python.rss",
            "category": "Engineering",
            "region": "Remote",
        },
    )


@pytest.fixture
def other_feed(db_session):
    return feed_service.create_feed(
        db_session,
        {"name": "Data Science Jobs", "url": "https://feeds.example.com/data.rss", "category": "Data Science"},
    )


@pytest.fixture
def existing_postings(db_session):
    """Two postings already stored, so a re-import classifies them as updated."""
    postings = [
        JobPosting(source_job_id=f"known-{i}", title=f"Old title {i}", url=f"https://jobs.example.com/known/{i}")
        for i in range(2)
    ]
    db_session.add_all(postings)
    db_session.commit()
    return postings


@pytest.fixture
def mixed_postings():
    """Five new postings, two already stored and one without any identifier."""
    postings = make_postings("fresh", 5)
    postings += [FeedPosting(source_job_id=f"known-{i}", title=f"New title {i}") for i in range(2)]
    postings.append(FeedPosting(source_job_id=None, title="No title"))
    return postings
