#!/usr/bin/env python3
"""
Start an import for one feed and follow it until it resolves.

Subscribes to the WebSocket channel and polls the status endpoint at the same
time; whichever reports the outcome first wins.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Make the project root importable
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.services.config_service import config_service
from client.api_client import ApiClient
from client.notifier import Notification, Notifier
from client.push_channel import PushChannel
from client.reconciler import STATUS_COMPLETED, ImportReconciler

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def print_notification(notification: Notification) -> None:
    print(f"[{notification.level.upper()}] {notification.title}: {notification.message}")


async def watch(feed_id: str, base_url: str, ws_url: str, timeout: float) -> str:
    api = ApiClient(base_url)
    reconciler = ImportReconciler(api, notifier=Notifier(sink=print_notification))
    push = PushChannel(ws_url, reconciler.handle_push_event)
    push_task = asyncio.create_task(push.run(), name="push-channel")

    try:
        if not await push.wait_connected(timeout=5):
            logger.warning("Push channel not connected, relying on status polling")

        await reconciler.load_feeds()
        session_id = await reconciler.start_import(feed_id)
        if session_id is None:
            return "rejected"

        logger.info(f"Watching import session {session_id}")
        return await reconciler.wait_for(session_id, timeout=timeout)
    finally:
        await reconciler.close()
        await push.close()
        push_task.cancel()
        await asyncio.gather(push_task, return_exceptions=True)


def main():
    parser = argparse.ArgumentParser(description="Start a feed import and wait for its outcome")
    parser.add_argument("feed_id", help="feed identifier, e.g. feed_0123456789ab")
    parser.add_argument("--base-url", default=config_service.get_setting("APP_BASE_URL"))
    parser.add_argument("--ws-url", default=config_service.get_setting("WS_URL"))
    parser.add_argument("--timeout", type=float, default=600.0, help="seconds to wait for the outcome")
    args = parser.parse_args()

    outcome = asyncio.run(watch(args.feed_id, args.base_url, args.ws_url, args.timeout))
    logger.info(f"Import outcome: {outcome}")
    sys.exit(0 if outcome == STATUS_COMPLETED else 1)


if __name__ == "__main__":
    main()
