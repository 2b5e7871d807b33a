#!/usr/bin/env python3
"""
Readiness check for the JobFeeds deployment.
Verifies the database, the message broker, the web service and its WebSocket endpoint.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

import requests
import websockets
from sqlalchemy import text

# Make the project root importable
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def check_database():
    """Check that the database answers."""
    try:
        from app.database.engine import engine

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

        logger.info("✅ Database reachable")
        return True
    except Exception as e:
        logger.error(f"❌ Database unreachable: {e}")
        return False


def check_broker():
    """Check that the Celery broker accepts connections."""
    try:
        from worker.celery_app import celery_app

        with celery_app.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1)

        logger.info("✅ Message broker reachable")
        return True
    except Exception as e:
        logger.error(f"❌ Message broker unreachable: {e}")
        return False


def check_web_app():
    """Check the web service health endpoint."""
    try:
        base_url = os.getenv("APP_BASE_URL", "http://localhost:8000")
        response = requests.get(f"{base_url}/healthz", timeout=10)
        if response.status_code == 200:
            logger.info("✅ Web service reachable")
            return True
        logger.error(f"❌ Web service unhealthy: HTTP {response.status_code}")
        return False
    except requests.exceptions.RequestException as e:
        logger.error(f"❌ Web service unreachable: {e}")
        return False


async def _probe_websocket(url: str) -> str:
    async with websockets.connect(url, open_timeout=5) as socket:
        return await asyncio.wait_for(socket.recv(), timeout=5)


def check_websocket():
    """Check that the real-time channel greets new subscribers."""
    url = os.getenv("WS_URL", "ws://localhost:8000/ws")
    try:
        greeting = asyncio.run(_probe_websocket(url))
    except Exception as e:
        logger.warning(f"⚠️ WebSocket channel unavailable, clients will rely on polling: {e}")
        return False

    if "connection_established" in greeting:
        logger.info("✅ WebSocket channel reachable")
        return True
    logger.warning(f"⚠️ Unexpected WebSocket greeting: {greeting[:100]}")
    return False


def main():
    logger.info("🔍 Checking JobFeeds readiness")

    checks = [
        ("Database", check_database, True),
        ("Message broker", check_broker, True),
        ("Web service", check_web_app, True),
        ("WebSocket channel", check_websocket, False),
    ]

    results = []
    for name, check_func, critical in checks:
        logger.info(f"Checking {name}...")
        result = check_func()
        results.append((name, result))

        if not result and critical:
            logger.error(f"❌ Critical component {name} unavailable")
            sys.exit(1)

    logger.info("📊 Results:")
    for name, result in results:
        logger.info(f"  {name}: {'✅ OK' if result else '❌ FAIL'}")

    failed_checks = [name for name, result in results if not result]
    if failed_checks:
        logger.warning(f"⚠️ Unavailable components: {', '.join(failed_checks)}")
    else:
        logger.info("🎉 All components ready")


if __name__ == "__main__":
    main()
