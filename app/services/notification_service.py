"""
Notification broadcaster for real-time import events.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from app.models.timestamps import utcnow

logger = logging.getLogger("app.notifications")

CONNECTION_ESTABLISHED = "connection_established"
IMPORT_STARTED = "import_started"
IMPORT_PROGRESS = "import_progress"
IMPORT_COMPLETED = "import_completed"
IMPORT_FAILED = "import_failed"

EVENT_TYPES = (CONNECTION_ESTABLISHED, IMPORT_STARTED, IMPORT_PROGRESS, IMPORT_COMPLETED, IMPORT_FAILED)


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


class NotificationBroadcaster:
    """
    Fan-out of import events to every connected subscriber.

    Delivery is best-effort and at-most-once: nothing is persisted or
    retried, and a subscriber whose send fails is dropped. Consumers must
    poll for correctness.
    """

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._subscribers: Set[Subscriber] = set()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @staticmethod
    def envelope(event_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {"type": event_type, "data": data or {}}

    async def connect(self, subscriber: Subscriber) -> bool:
        """
        Register a subscriber and greet it with a liveness event.

        Returns:
            False if the broadcaster is shut down or the greeting failed
        """
        async with self._lock:
            if self._closed:
                return False
            self._subscribers.add(subscriber)

        greeting = self.envelope(
            CONNECTION_ESTABLISHED,
            {"message": "Connected to job import server", "timestamp": utcnow().isoformat()},
        )
        if not await self._send(subscriber, greeting):
            await self.disconnect(subscriber)
            return False

        logger.info(f"Subscriber connected, total={self.subscriber_count}")
        return True

    async def disconnect(self, subscriber: Subscriber) -> None:
        async with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.discard(subscriber)
                logger.info(f"Subscriber disconnected, total={len(self._subscribers)}")

    async def broadcast(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Deliver an event to every currently connected subscriber.

        Args:
            event_type: One of EVENT_TYPES
            payload: Event data

        Returns:
            Number of subscribers the event reached
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        async with self._lock:
            targets = list(self._subscribers)

        message = self.envelope(event_type, payload)
        results = await asyncio.gather(*(self._send(subscriber, message) for subscriber in targets))

        dead = [subscriber for subscriber, ok in zip(targets, results) if not ok]
        if dead:
            async with self._lock:
                self._subscribers.difference_update(dead)
            logger.info(f"Dropped {len(dead)} unreachable subscribers")

        delivered = len(targets) - len(dead)
        logger.debug(f"Broadcast {event_type} to {delivered} subscribers")
        return delivered

    async def close_all(self) -> None:
        """Forget every subscriber; called at application shutdown."""
        async with self._lock:
            self._closed = True
            count = len(self._subscribers)
            self._subscribers.clear()
        logger.info(f"Broadcaster shut down, released {count} subscribers")

    async def _send(self, subscriber: Subscriber, message: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(subscriber.send_json(message), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.debug(f"Delivery of {message['type']} failed: {e!r}")
            return False
