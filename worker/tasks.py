"""
Celery tasks for scheduled feed imports.

The worker only asks the web service to start imports; processing and
real-time notification stay in the web process, which owns the
subscriber connections.
"""
import logging
from typing import Any, Dict

from app.database.session import get_db_session
from app.services.config_service import config_service
from app.services.feed_service import feed_service
from client.api_client import ApiClient
from client.errors import NotFoundError, TransientNetworkError, ValidationError
from worker.celery_app import celery_app

logger = logging.getLogger("worker.tasks")


def _api_client() -> ApiClient:
    return ApiClient(base_url=config_service.get_setting("APP_BASE_URL"), timeout=30.0)


@celery_app.task
def import_active_feeds() -> Dict[str, Any]:
    """
    Queue an import for every active feed.
    """
    logger.info("Starting scheduled import of active feeds")

    with get_db_session() as db:
        feed_ids = [feed.id for feed in feed_service.list_active_feeds(db)]

    if not feed_ids:
        logger.info("No active feeds found. Add feeds through the dashboard.")
        return {"status": "success", "queued": 0}

    for feed_id in feed_ids:
        start_feed_import.delay(feed_id)

    logger.info(f"Queued imports for {len(feed_ids)} active feed(s)")
    return {"status": "success", "queued": len(feed_ids)}


@celery_app.task(bind=True, max_retries=3)
def start_feed_import(self, feed_id: str) -> Dict[str, Any]:
    """
    Start an import for one feed through the web service.

    Args:
        feed_id: Feed to import
    """
    logger.info(f"Requesting import for feed: {feed_id}")

    try:
        result = _api_client().start_import(feed_id)
    except (NotFoundError, ValidationError) as e:
        # Deleted or deactivated since it was queued; retrying cannot help
        logger.warning(f"Import not started for feed {feed_id}: {e}")
        return {"status": "skipped", "feed_id": feed_id, "reason": str(e)}
    except TransientNetworkError as e:
        logger.error(f"Import request failed for feed {feed_id}: {e}")
        raise self.retry(exc=e, countdown=60)

    logger.info(f"Import started for feed {feed_id}: session {result.get('sessionId')}")
    return {"status": "success", "feed_id": feed_id, "session_id": result.get("sessionId")}
