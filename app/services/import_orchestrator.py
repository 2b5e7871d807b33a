"""
Import session orchestrator.

Creates import sessions, runs the fetch/upsert step out of band and
publishes session transitions. A session is processed at most once: the
supervisor refuses a second claim on the same id and the store only moves
a session out of ``in_progress`` once. Within a session the writes happen in
a fixed order: session row, feed statistics, then the broadcast.
"""
import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.database.session import get_db_session
from app.models.import_models import STATUS_COMPLETED, ImportSession
from app.models.timestamps import utcnow
from app.services.config_service import config_service
from app.services.errors import InfrastructureFailure, TransientNetworkError, ValidationError
from app.services.feed_service import FeedService, feed_service as default_feed_service, validate_feed_id
from app.services.import_service import FeedFetcher, FeedImportService, FeedPosting
from app.services.notification_service import (
    IMPORT_COMPLETED,
    IMPORT_FAILED,
    IMPORT_PROGRESS,
    IMPORT_STARTED,
    NotificationBroadcaster,
)
from app.services.session_store import ImportSessionStore, session_store as default_session_store

logger = logging.getLogger("app.import")

SessionFactory = Callable[[], Session]


@dataclass
class StartedImport:
    """Acknowledgement returned before the outcome is known."""

    session_id: str
    feed_id: str
    feed_name: str
    feed_url: str
    message: str


@dataclass
class _Outcome:
    event_type: str
    payload: Dict[str, Any]


class ImportTaskSupervisor:
    """Owns the background tasks that process import sessions."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_session_ids(self) -> List[str]:
        return list(self._tasks)

    def submit(self, session_id: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """
        Spawn the processing task for a session.

        Raises:
            RuntimeError: If the session is already being processed
        """
        if session_id in self._tasks:
            raise RuntimeError(f"Import session {session_id} is already being processed")

        task = asyncio.create_task(job(), name=f"import:{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(functools.partial(self._on_done, session_id))
        return task

    def _on_done(self, session_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(session_id, None)
        if task.cancelled():
            logger.warning(f"Import task cancelled: {session_id}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Import task crashed: {session_id} - {exc!r}", exc_info=exc)

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every in-flight task, including ones spawned meanwhile."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, pending = await asyncio.wait(list(self._tasks.values()), timeout=remaining)
            if pending and deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"{len(pending)} import tasks still running at shutdown")
                return


class ImportOrchestrator:
    """Starts import sessions and drives them to a terminal status."""

    def __init__(
        self,
        session_factory: SessionFactory,
        broadcaster: NotificationBroadcaster,
        fetcher: Optional[FeedFetcher] = None,
        import_service: Optional[FeedImportService] = None,
        store: Optional[ImportSessionStore] = None,
        feeds: Optional[FeedService] = None,
        supervisor: Optional[ImportTaskSupervisor] = None,
        fetch_attempts: int = 3,
        fetch_backoff: float = 2.0,
        progress_step: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.fetcher = fetcher or FeedFetcher()
        self.import_service = import_service or FeedImportService()
        self.store = store or default_session_store
        self.feeds = feeds or default_feed_service
        self.supervisor = supervisor or ImportTaskSupervisor()
        self.fetch_attempts = max(1, fetch_attempts)
        self.fetch_backoff = fetch_backoff
        self.progress_step = progress_step or config_service.get_int("IMPORT_PROGRESS_STEP", 25)

    async def start_import(self, feed_id: str) -> StartedImport:
        """
        Create an in-progress session and schedule its processing.

        Args:
            feed_id: Feed to import

        Returns:
            Acknowledgement carrying the new session id

        Raises:
            ValidationError: Missing/malformed id or inactive feed
            NotFoundError: Unknown feed
        """
        feed_id = validate_feed_id(feed_id)
        started = await asyncio.to_thread(self._create_session, feed_id)

        await self.broadcaster.broadcast(
            IMPORT_STARTED,
            {
                "feedId": started.feed_id,
                "feedName": started.feed_name,
                "sessionId": started.session_id,
                "importId": started.session_id,
            },
        )
        self.supervisor.submit(started.session_id, functools.partial(self._process, started))

        logger.info(f"Import started: session={started.session_id} feed={started.feed_id}")
        return started

    async def get_status(self, session_id: str) -> Dict[str, Any]:
        """
        Read the coarse status of a session.

        Raises:
            NotFoundError: Unknown session id
        """
        return await asyncio.to_thread(self._read_status, session_id)

    async def get_session_details(self, session_id: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._session_details, session_id)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.supervisor.join(timeout=timeout)

    # Blocking helpers, run in worker threads

    def _create_session(self, feed_id: str) -> StartedImport:
        with get_db_session(self.session_factory) as db:
            feed = self.feeds.get_feed(db, feed_id)
            if not feed.is_active:
                raise ValidationError(f"Feed {feed.name} is inactive")
            session = self.store.create_session(db, feed)
            return StartedImport(
                session_id=session.id,
                feed_id=feed.id,
                feed_name=feed.name,
                feed_url=feed.url,
                message=f"Import for feed {feed.name} started.",
            )

    def _read_status(self, session_id: str) -> Dict[str, Any]:
        with get_db_session(self.session_factory) as db:
            session = self.store.get_session(db, session_id)
            return {"status": session.status, "progress": 100 if session.is_terminal else 0}

    def _session_details(self, session_id: str) -> Dict[str, Any]:
        with get_db_session(self.session_factory) as db:
            session = self.store.get_session(db, session_id)
            details = session.to_dict()
            details["jobs"] = [item.to_dict() for item in session.items]
            return details

    def _fetch_with_retry(self, url: str) -> List[FeedPosting]:
        for attempt in range(1, self.fetch_attempts + 1):
            try:
                return self.fetcher.fetch(url)
            except TransientNetworkError as e:
                if attempt == self.fetch_attempts:
                    raise InfrastructureFailure(str(e)) from e
                delay = self.fetch_backoff * (2 ** (attempt - 1))
                logger.warning(f"Fetch attempt {attempt}/{self.fetch_attempts} failed for {url}: {e}, retrying in {delay}s")
                time.sleep(delay)
        raise InfrastructureFailure(f"Could not fetch {url}")

    def _run_import(self, started: StartedImport, on_progress: Callable[[int, int], None]) -> Optional[_Outcome]:
        session_id = started.session_id

        with get_db_session(self.session_factory) as db:
            if self.store.get_session(db, session_id).is_terminal:
                logger.warning(f"Import session {session_id} already finished, skipping")
                return None

        try:
            postings = self._fetch_with_retry(started.feed_url)
        except InfrastructureFailure as e:
            logger.error(f"Import failed for feed {started.feed_name}: {e}")
            return self._fail(started, str(e))
        except Exception as e:
            logger.exception(f"Fetching feed {started.feed_url} crashed for session {session_id}")
            return self._fail(started, f"Import processing error: {e}")

        try:
            with get_db_session(self.session_factory) as db:
                result = self.import_service.import_postings(
                    db, started.feed_id, started.feed_name, postings, on_progress=on_progress
                )
                completed_at = utcnow()
                # Session transition and feed statistics commit together
                if not self.store.complete_session(db, session_id, result, completed_at, commit=False):
                    return None
                self.feeds.record_import(db, started.feed_id, result.new_count, completed_at, commit=False)
                db.commit()
                session = self.store.get_session(db, session_id)
                payload = self._payload(started, session)
        except Exception as e:
            logger.exception(f"Import processing crashed for session {session_id}")
            return self._fail(started, f"Import processing error: {e}")

        logger.info(
            f"Import completed for {started.feed_name}: {payload['newJobs']} new, "
            f"{payload['updatedJobs']} updated, {payload['failedJobs']} failed, {payload['duration']}ms"
        )
        return _Outcome(IMPORT_COMPLETED, payload)

    def _fail(self, started: StartedImport, reason: str) -> Optional[_Outcome]:
        with get_db_session(self.session_factory) as db:
            if not self.store.fail_session(db, started.session_id, reason, utcnow()):
                return None
            payload = self._payload(started, self.store.get_session(db, started.session_id))
        payload["error"] = reason
        return _Outcome(IMPORT_FAILED, payload)

    @staticmethod
    def _payload(started: StartedImport, session: ImportSession) -> Dict[str, Any]:
        return {
            "feedId": started.feed_id,
            "feedName": started.feed_name,
            "sessionId": session.id,
            "importId": session.id,
            "status": session.status,
            "totalFetched": session.total_fetched,
            "totalImported": session.total_imported,
            "newJobs": session.new_count,
            "updatedJobs": session.updated_count,
            "failedJobs": session.failed_count,
            "jobCount": session.total_imported if session.status == STATUS_COMPLETED else 0,
            "duration": session.duration_ms,
        }

    # Async side

    async def _process(self, started: StartedImport) -> None:
        loop = asyncio.get_running_loop()
        outcome = await asyncio.to_thread(self._run_import, started, self._progress_reporter(loop, started))
        if outcome is None:
            return
        await self.broadcaster.broadcast(outcome.event_type, outcome.payload)

    def _progress_reporter(self, loop: asyncio.AbstractEventLoop, started: StartedImport) -> Callable[[int, int], None]:
        last_reported = [0]

        def report(processed: int, total: int) -> None:
            if not total or self.progress_step <= 0:
                return
            percent = processed * 100 // total
            boundary = percent - percent % self.progress_step
            # 100% is announced by the completion event
            if boundary <= last_reported[0] or boundary >= 100:
                return
            last_reported[0] = boundary

            future = asyncio.run_coroutine_threadsafe(
                self.broadcaster.broadcast(
                    IMPORT_PROGRESS,
                    {
                        "feedId": started.feed_id,
                        "feedName": started.feed_name,
                        "sessionId": started.session_id,
                        "importId": started.session_id,
                        "progress": boundary,
                        "processed": processed,
                        "total": total,
                    },
                ),
                loop,
            )
            try:
                future.result(timeout=self.broadcaster.send_timeout + 1)
            except Exception as e:
                logger.warning(f"Progress event for {started.session_id} not delivered: {e!r}")

        return report
