"""
Client-side reconciliation of import sessions.

Two channels race to report the outcome of an import this client started:
the push channel (WebSocket events) and a fallback poll of the status
endpoint. The first one to observe a terminal status resolves the session;
the session id then enters ``resolved_session_ids`` and every later
observation of it is ignored, so a user sees exactly one notification and
one refresh per session.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from client.api_client import ApiClient
from client.errors import JobFeedsError, NotFoundError
from client.notifier import Notifier

logger = logging.getLogger("client.reconciler")

IDLE = "idle"
IMPORTING = "importing"
RESOLVING = "resolving"

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_NOT_FOUND = "not-found"
STATUS_UNKNOWN = "unknown"


@dataclass
class PollPolicy:
    """Timing of the fallback status poll, in seconds."""

    initial_delay: float = 2.0
    base_interval: float = 5.0
    interval_step: float = 1.0
    max_interval: float = 15.0
    max_attempts: int = 60
    error_base_delay: float = 10.0
    max_error_delay: float = 30.0
    max_consecutive_errors: int = 3
    settle_delay: float = 1.0
    # Progress notifications are shown at multiples of this percentage
    progress_step: int = 25

    def next_interval(self, attempts: int) -> float:
        return min(self.base_interval + attempts * self.interval_step, self.max_interval)

    def error_delay(self, consecutive_errors: int) -> float:
        return min(self.error_base_delay * (2 ** (consecutive_errors - 1)), self.max_error_delay)


@dataclass
class TrackedImport:
    session_id: str
    feed_id: str
    feed_name: str


class ImportReconciler:
    """Per-feed import state driven by push events and status polling."""

    def __init__(
        self,
        api: ApiClient,
        notifier: Optional[Notifier] = None,
        on_refresh: Optional[Callable[[], Awaitable[Any]]] = None,
        policy: Optional[PollPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.notifier = notifier or Notifier()
        self.on_refresh = on_refresh
        self.policy = policy or PollPolicy()
        self._sleep = sleep

        self.importing_feed_ids: Set[str] = set()
        self.resolved_session_ids: Set[str] = set()
        self.lost_session_ids: Set[str] = set()
        self.updating_feed_ids: Set[str] = set()
        self.outcomes: Dict[str, str] = {}
        self.feeds: Dict[str, Dict[str, Any]] = {}
        self.refresh_count = 0

        self._feed_states: Dict[str, str] = {}
        self._tracked: Dict[str, TrackedImport] = {}
        self._poll_tasks: Dict[str, asyncio.Task] = {}
        self._settled: Dict[str, asyncio.Event] = {}

    def feed_state(self, feed_id: str) -> str:
        return self._feed_states.get(feed_id, IDLE)

    # Feed listing

    async def load_feeds(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            feeds = await asyncio.to_thread(self.api.get_feeds, search)
        except JobFeedsError as e:
            logger.warning(f"Loading feeds failed: {e}")
            self.notifier.error("Failed to load feeds", "Please try again later")
            return list(self.feeds.values())
        self.feeds = {feed["id"]: feed for feed in feeds}
        return feeds

    async def toggle_feed(self, feed_id: str) -> bool:
        """
        Flip ``isActive`` optimistically and roll back if the server refuses.

        Returns:
            True if the server accepted the change
        """
        feed = self.feeds.get(feed_id)
        if feed is None:
            return False

        current = bool(feed.get("isActive"))
        feed["isActive"] = not current
        self.updating_feed_ids.add(feed_id)
        try:
            await asyncio.to_thread(self.api.update_feed, feed_id, {"isActive": not current})
        except JobFeedsError as e:
            feed["isActive"] = current
            logger.warning(f"Toggling feed {feed_id} failed: {e}")
            self.notifier.error("Failed to update feed", "Please try again")
            return False
        finally:
            self.updating_feed_ids.discard(feed_id)

        state = "active" if not current else "inactive"
        self.notifier.success("Feed Activated" if not current else "Feed Deactivated", f"{feed.get('name')} is now {state}")
        return True

    # Import lifecycle

    async def start_import(self, feed_id: str, feed_name: Optional[str] = None) -> Optional[str]:
        """
        Ask the server to start an import and begin tracking it.

        Returns:
            The session id, or None if the server refused
        """
        feed_name = feed_name or self.feeds.get(feed_id, {}).get("name") or feed_id
        self.importing_feed_ids.add(feed_id)
        self._feed_states[feed_id] = IMPORTING

        try:
            result = await asyncio.to_thread(self.api.start_import, feed_id)
        except JobFeedsError as e:
            self._clear_importing(feed_id)
            logger.warning(f"Starting import for {feed_id} failed: {e}")
            if isinstance(e, NotFoundError):
                self.notifier.error("Feed Not Found", f"{feed_name} no longer exists")
            else:
                self.notifier.error("Failed to start import", "Please try again")
            return None

        session_id = result.get("sessionId") or result.get("importId")
        if session_id in self.resolved_session_ids:
            # The push channel delivered the outcome before the acknowledgement
            if not any(t.feed_id == feed_id for t in self._tracked.values()):
                self._clear_importing(feed_id)
            return session_id

        announced = session_id in self._tracked
        tracked = TrackedImport(session_id, feed_id, feed_name)
        self._tracked[session_id] = tracked
        self._settled.setdefault(session_id, asyncio.Event())
        if not announced:
            self.notifier.info("Import Started", result.get("message") or f"Import started for {feed_name}")

        self._start_polling(tracked)
        return session_id

    async def handle_push_event(self, message: Dict[str, Any]) -> None:
        """Apply one envelope received on the push channel."""
        event_type = message.get("type")
        data = message.get("data") or {}
        session_id = data.get("sessionId") or data.get("importId")
        feed_id = data.get("feedId")
        feed_name = data.get("feedName")

        if event_type == "import_started":
            if session_id in self._tracked or session_id in self.resolved_session_ids:
                return
            # Started elsewhere (scheduled import or another dashboard)
            if session_id and feed_id:
                tracked = TrackedImport(session_id, feed_id, feed_name or feed_id)
                self._tracked[session_id] = tracked
                self._settled.setdefault(session_id, asyncio.Event())
                self.importing_feed_ids.add(feed_id)
                self._feed_states[feed_id] = IMPORTING
                self.notifier.info("Import Started", f"Import started for {tracked.feed_name}")
                self._start_polling(tracked)

        elif event_type == "import_completed":
            await self._resolve(session_id, STATUS_COMPLETED, feed_id, feed_name, data, channel="push")

        elif event_type == "import_failed":
            await self._resolve(session_id, STATUS_FAILED, feed_id, feed_name, data, channel="push")

        elif event_type == "import_progress":
            progress = data.get("progress")
            step = self.policy.progress_step
            if progress and step and progress % step == 0 and session_id not in self.resolved_session_ids:
                self.notifier.info("Import Progress", f"Processing {feed_name or feed_id}: {progress}%")

        elif event_type == "connection_established":
            logger.debug("Push channel established")

        else:
            logger.debug(f"Ignoring unknown event type: {event_type}")

    async def wait_for(self, session_id: str, timeout: Optional[float] = None) -> str:
        """
        Wait until a session is resolved or declared lost.

        Returns:
            completed, failed, not-found or unknown
        """
        event = self._settled.setdefault(session_id, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return self.outcomes.get(session_id, STATUS_UNKNOWN)
        return self.outcomes.get(session_id, STATUS_UNKNOWN)

    async def close(self) -> None:
        tasks = list(self._poll_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # Poll channel

    def _start_polling(self, tracked: TrackedImport) -> None:
        """Poll regardless of push availability; push events only shorten the wait."""
        session_id = tracked.session_id
        if session_id in self._poll_tasks:
            return
        task = asyncio.create_task(self._poll(tracked), name=f"poll:{session_id}")
        self._poll_tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._on_poll_done(sid, t))

    async def _poll(self, tracked: TrackedImport) -> None:
        session_id = tracked.session_id
        attempts = 0
        consecutive_errors = 0

        await self._sleep(self.policy.initial_delay)

        while session_id not in self.resolved_session_ids:
            attempts += 1
            try:
                status = await asyncio.to_thread(self.api.get_import_status, session_id)
            except NotFoundError:
                await self._resolve(session_id, STATUS_NOT_FOUND, channel="poll")
                return
            except JobFeedsError as e:
                consecutive_errors += 1
                logger.warning(f"Status poll {attempts} for {session_id} failed ({consecutive_errors} in a row): {e}")
                if consecutive_errors >= self.policy.max_consecutive_errors:
                    self._lose(tracked, f"Could not get status for {tracked.feed_name}. Please refresh manually.")
                    return
                if attempts >= self.policy.max_attempts:
                    self._lose(tracked, f"Could not get status for {tracked.feed_name} after multiple attempts")
                    return
                await self._sleep(self.policy.error_delay(consecutive_errors))
                continue

            consecutive_errors = 0
            value = (status or {}).get("status")

            if value in (STATUS_COMPLETED, STATUS_FAILED, STATUS_NOT_FOUND):
                await self._resolve(session_id, value, channel="poll")
                return

            if attempts >= self.policy.max_attempts:
                self._lose(tracked, f"Import for {tracked.feed_name} is taking too long. Please check manually.")
                await self._refresh()
                return

            await self._sleep(self.policy.next_interval(attempts))

    def _on_poll_done(self, session_id: str, task: asyncio.Task) -> None:
        self._poll_tasks.pop(session_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Status poll for {session_id} crashed", exc_info=task.exception())

    # Resolution

    async def _resolve(
        self,
        session_id: Optional[str],
        outcome: str,
        feed_id: Optional[str] = None,
        feed_name: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        channel: str = "push",
    ) -> bool:
        if not session_id:
            logger.debug(f"Ignoring {outcome} event without a session id")
            return False
        # Check-and-mark happens before the first await
        if session_id in self.resolved_session_ids:
            logger.debug(f"Session {session_id} already resolved, {channel} observation ignored")
            return False
        self.resolved_session_ids.add(session_id)
        self.lost_session_ids.discard(session_id)
        self.outcomes[session_id] = outcome

        tracked = self._tracked.pop(session_id, None)
        if tracked:
            feed_id = feed_id or tracked.feed_id
            feed_name = feed_name or tracked.feed_name
        feed_name = feed_name or feed_id or session_id
        data = data or {}

        if feed_id:
            self._feed_states[feed_id] = RESOLVING
            if not any(t.feed_id == feed_id for t in self._tracked.values()):
                self.importing_feed_ids.discard(feed_id)

        logger.info(f"Session {session_id} resolved as {outcome} via {channel}")
        if outcome == STATUS_COMPLETED:
            if "jobCount" in data:
                self.notifier.success("Import Completed", f"Successfully imported {data['jobCount']} jobs for {feed_name}")
            else:
                self.notifier.success("Import Completed", f"Successfully completed import for {feed_name}")
        elif outcome == STATUS_FAILED:
            reason = data.get("error")
            self.notifier.error("Import Failed", f"Import failed for {feed_name}" + (f": {reason}" if reason else ""))
        else:
            self.notifier.error("Import Not Found", f"The import for {feed_name} no longer exists")

        poll_task = self._poll_tasks.get(session_id)
        if poll_task is not None and poll_task is not asyncio.current_task():
            poll_task.cancel()

        if outcome != STATUS_NOT_FOUND:
            await self._sleep(self.policy.settle_delay)
            await self._refresh()

        if feed_id and feed_id not in self.importing_feed_ids:
            self._feed_states[feed_id] = IDLE
        elif feed_id:
            self._feed_states[feed_id] = IMPORTING

        self._settled.setdefault(session_id, asyncio.Event()).set()
        return True

    def _lose(self, tracked: TrackedImport, message: str) -> None:
        """Give up polling without pretending the import finished."""
        if tracked.session_id in self.resolved_session_ids:
            return
        self.lost_session_ids.add(tracked.session_id)
        self.outcomes[tracked.session_id] = STATUS_UNKNOWN
        self.notifier.warning("Import Status Unknown", message)
        self._settled.setdefault(tracked.session_id, asyncio.Event()).set()

    def _clear_importing(self, feed_id: str) -> None:
        self.importing_feed_ids.discard(feed_id)
        self._feed_states[feed_id] = IDLE

    async def _refresh(self) -> None:
        self.refresh_count += 1
        try:
            if self.on_refresh is not None:
                await self.on_refresh()
            else:
                await self.load_feeds()
        except Exception:
            logger.exception("Refresh after import failed")
