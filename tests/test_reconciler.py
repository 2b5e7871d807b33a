"""
Tests for client-side import reconciliation.
"""
import asyncio
from unittest.mock import MagicMock

import requests

from client.api_client import ApiClient
from client.errors import NotFoundError, TransientNetworkError, ValidationError
from client.notifier import Notifier
from client.reconciler import IDLE, IMPORTING, ImportReconciler, PollPolicy

FEED_ID = "feed_0123456789ab"
SESSION_ID = "import_0123456789ab"


class FakeApi:
    """Scripted stand-in for ApiClient."""

    def __init__(self, statuses=None, start_error=None, update_error=None):
        self.statuses = list(statuses or [{"status": "in_progress", "progress": 0}])
        self.start_error = start_error
        self.update_error = update_error
        self.status_calls = 0
        self.feed_calls = 0

    def get_feeds(self, search=None):
        self.feed_calls += 1
        return [{"id": FEED_ID, "name": "Remote Python Jobs", "isActive": True}]

    def update_feed(self, feed_id, updates):
        if self.update_error:
            raise self.update_error
        return {"id": feed_id, **updates}

    def start_import(self, feed_id):
        if self.start_error:
            raise self.start_error
        return {"sessionId": SESSION_ID, "importId": SESSION_ID, "message": "Import for feed Remote Python Jobs started."}

    def get_import_status(self, session_id):
        self.status_calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


async def no_sleep(_delay):
    await asyncio.sleep(0)


def completed_event(session_id=SESSION_ID, job_count=4):
    return {
        "type": "import_completed",
        "data": {"sessionId": session_id, "importId": session_id, "feedId": FEED_ID, "feedName": "Remote Python Jobs", "jobCount": job_count},
    }


def make_reconciler(api, **policy):
    notifier = Notifier()
    reconciler = ImportReconciler(api, notifier=notifier, policy=PollPolicy(**policy), sleep=no_sleep)
    return reconciler, notifier


class TestPollPolicy:
    def test_intervals(self):
        policy = PollPolicy()
        assert [policy.next_interval(n) for n in (1, 5, 10, 20)] == [6, 10, 15, 15]
        assert [policy.error_delay(n) for n in (1, 2, 3)] == [10, 20, 30]


class TestResolution:
    """Exactly one notification and one refresh per session."""

    def test_push_then_poll_resolves_once(self):
        api = FakeApi(statuses=[{"status": "completed", "progress": 100}])
        reconciler, notifier = make_reconciler(api, initial_delay=0)

        async def scenario():
            await reconciler.load_feeds()
            session_id = await reconciler.start_import(FEED_ID)
            assert reconciler.feed_state(FEED_ID) == IMPORTING
            await reconciler.handle_push_event(completed_event())
            outcome = await reconciler.wait_for(session_id, timeout=1)
            # A poll result or a duplicate push arriving later changes nothing
            await reconciler.handle_push_event(completed_event())
            await reconciler.close()
            return outcome

        outcome = asyncio.run(scenario())

        assert outcome == "completed"
        assert notifier.titles().count("Import Completed") == 1
        assert "Successfully imported 4 jobs for Remote Python Jobs" in [n.message for n in notifier.history]
        assert reconciler.refresh_count == 1
        assert SESSION_ID in reconciler.resolved_session_ids
        assert FEED_ID not in reconciler.importing_feed_ids
        assert reconciler.feed_state(FEED_ID) == IDLE

    def test_poll_resolves_when_push_never_arrives(self):
        api = FakeApi(statuses=[{"status": "in_progress", "progress": 0}, {"status": "completed", "progress": 100}])
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            outcome = await reconciler.wait_for(session_id, timeout=2)
            await reconciler.handle_push_event(completed_event())
            return outcome

        assert asyncio.run(scenario()) == "completed"
        assert api.status_calls == 2
        assert notifier.titles().count("Import Completed") == 1
        assert "Successfully completed import for Remote Python Jobs" in [n.message for n in notifier.history]
        assert reconciler.refresh_count == 1
        assert reconciler.importing_feed_ids == set()

    def test_failed_import(self):
        api = FakeApi()
        reconciler, notifier = make_reconciler(api)
        event = {"type": "import_failed", "data": {"sessionId": SESSION_ID, "feedId": FEED_ID, "error": "Empty response from feed URL"}}

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            await reconciler.handle_push_event(event)
            return await reconciler.wait_for(session_id, timeout=1)

        assert asyncio.run(scenario()) == "failed"
        (failure,) = [n for n in notifier.history if n.title == "Import Failed"]
        assert failure.level == "error"
        assert failure.message.endswith("Empty response from feed URL")

    def test_not_found_is_distinct(self):
        api = FakeApi(statuses=[{"status": "not-found", "progress": 0}])
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            return await reconciler.wait_for(session_id, timeout=1)

        assert asyncio.run(scenario()) == "not-found"
        assert "Import Not Found" in notifier.titles()
        assert "Import Completed" not in notifier.titles()
        assert reconciler.refresh_count == 0
        assert reconciler.feed_state(FEED_ID) == IDLE

    def test_push_before_acknowledgement(self):
        api = FakeApi()
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            await reconciler.handle_push_event(
                {"type": "import_started", "data": {"sessionId": SESSION_ID, "feedId": FEED_ID, "feedName": "Remote Python Jobs"}}
            )
            await reconciler.handle_push_event(completed_event())
            return await reconciler.start_import(FEED_ID, "Remote Python Jobs")

        assert asyncio.run(scenario()) == SESSION_ID
        assert notifier.titles().count("Import Started") == 1
        assert notifier.titles().count("Import Completed") == 1
        assert api.status_calls == 0
        assert reconciler.importing_feed_ids == set()


    def test_announced_import_is_polled(self):
        api = FakeApi(statuses=[{"status": "in_progress", "progress": 0}, {"status": "completed", "progress": 100}])
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            await reconciler.handle_push_event(
                {"type": "import_started", "data": {"sessionId": SESSION_ID, "feedId": FEED_ID, "feedName": "Remote Python Jobs"}}
            )
            assert reconciler.feed_state(FEED_ID) == IMPORTING
            return await reconciler.wait_for(SESSION_ID, timeout=2)

        assert asyncio.run(scenario()) == "completed"
        assert api.status_calls == 2
        assert notifier.titles().count("Import Completed") == 1
        assert reconciler.importing_feed_ids == set()
        assert reconciler.feed_state(FEED_ID) == IDLE

    def test_progress_notifications_follow_step(self):
        api = FakeApi()
        reconciler, notifier = make_reconciler(api, progress_step=50)

        def progress(value):
            return {"type": "import_progress", "data": {"sessionId": SESSION_ID, "feedId": FEED_ID, "feedName": "Remote Python Jobs", "progress": value}}

        async def scenario():
            await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            await reconciler.handle_push_event(progress(25))
            await reconciler.handle_push_event(progress(50))
            await reconciler.close()

        asyncio.run(scenario())

        assert notifier.titles().count("Import Progress") == 1
        assert "Processing Remote Python Jobs: 50%" in [n.message for n in notifier.history]

class TestLostSessions:
    """Polling gives up without inventing an outcome."""

    def test_consecutive_errors_mark_status_unknown(self):
        api = FakeApi(statuses=[TransientNetworkError("HTTP 502")])
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            return await reconciler.wait_for(session_id, timeout=1)

        assert asyncio.run(scenario()) == "unknown"
        assert api.status_calls == 3
        assert "Import Status Unknown" in notifier.titles()
        assert FEED_ID in reconciler.importing_feed_ids
        assert SESSION_ID in reconciler.lost_session_ids
        assert SESSION_ID not in reconciler.resolved_session_ids

    def test_attempt_limit(self):
        api = FakeApi()
        reconciler, notifier = make_reconciler(api, max_attempts=4)

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            return await reconciler.wait_for(session_id, timeout=1)

        assert asyncio.run(scenario()) == "unknown"
        assert api.status_calls == 4
        assert notifier.titles()[-1] == "Import Status Unknown"
        assert reconciler.refresh_count == 1
        assert FEED_ID in reconciler.importing_feed_ids

    def test_late_push_still_resolves_lost_session(self):
        api = FakeApi(statuses=[TransientNetworkError("HTTP 502")])
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            session_id = await reconciler.start_import(FEED_ID, "Remote Python Jobs")
            await reconciler.wait_for(session_id, timeout=1)
            await reconciler.handle_push_event(completed_event())
            return reconciler.outcomes[session_id]

        assert asyncio.run(scenario()) == "completed"
        assert reconciler.lost_session_ids == set()
        assert reconciler.importing_feed_ids == set()
        assert notifier.titles().count("Import Completed") == 1


    def test_unreadable_status_response_marks_status_unknown(self):
        http = MagicMock()
        http.headers = {}
        response = requests.Response()
        response.status_code = 200
        response._content = b"<html>proxy</html>"
        http.request.return_value = response
        api = ApiClient("http://api.test", session=http)
        reconciler, notifier = make_reconciler(api)

        async def scenario():
            await reconciler.handle_push_event(
                {"type": "import_started", "data": {"sessionId": SESSION_ID, "feedId": FEED_ID, "feedName": "Remote Python Jobs"}}
            )
            return await reconciler.wait_for(SESSION_ID, timeout=2)

        assert asyncio.run(scenario()) == "unknown"
        assert http.request.call_count == 3
        assert "Import Status Unknown" in notifier.titles()
        assert SESSION_ID in reconciler.lost_session_ids

class TestOptimisticUpdates:
    """Optimistic flags are rolled back when the server refuses."""

    def test_start_failure_rolls_back_importing_flag(self):
        reconciler, notifier = make_reconciler(FakeApi(start_error=TransientNetworkError("down")))

        assert asyncio.run(reconciler.start_import(FEED_ID)) is None
        assert reconciler.importing_feed_ids == set()
        assert reconciler.feed_state(FEED_ID) == IDLE
        assert notifier.titles() == ["Failed to start import"]

    def test_start_for_deleted_feed(self):
        reconciler, notifier = make_reconciler(FakeApi(start_error=NotFoundError("Feed not found")))

        assert asyncio.run(reconciler.start_import(FEED_ID, "Gone")) is None
        assert notifier.titles() == ["Feed Not Found"]

    def test_toggle_feed(self):
        reconciler, notifier = make_reconciler(FakeApi())

        async def scenario():
            await reconciler.load_feeds()
            return await reconciler.toggle_feed(FEED_ID)

        assert asyncio.run(scenario()) is True
        assert reconciler.feeds[FEED_ID]["isActive"] is False
        assert notifier.titles() == ["Feed Deactivated"]

    def test_toggle_feed_rolls_back(self):
        reconciler, notifier = make_reconciler(FakeApi(update_error=ValidationError("nope")))

        async def scenario():
            await reconciler.load_feeds()
            return await reconciler.toggle_feed(FEED_ID)

        assert asyncio.run(scenario()) is False
        assert reconciler.feeds[FEED_ID]["isActive"] is True
        assert reconciler.updating_feed_ids == set()
        assert notifier.titles() == ["Failed to update feed"]
