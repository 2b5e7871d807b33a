"""
User-visible notifications (toasts) raised by the reconciliation layer.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger("client.notifications")

INFO = "info"
SUCCESS = "success"
ERROR = "error"
WARNING = "warning"

_LOG_LEVELS = {INFO: logging.INFO, SUCCESS: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}


@dataclass
class Notification:
    level: str
    title: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Collects notifications, logs them and forwards them to an optional sink."""

    def __init__(self, sink: Optional[Callable[[Notification], None]] = None, limit: int = 100):
        self.sink = sink
        self.limit = limit
        self.history: List[Notification] = []

    def notify(self, level: str, title: str, message: str) -> Notification:
        notification = Notification(level, title, message)
        self.history.append(notification)
        del self.history[: -self.limit]

        logger.log(_LOG_LEVELS.get(level, logging.INFO), f"[{level}] {title}: {message}")
        if self.sink:
            self.sink(notification)
        return notification

    def info(self, title: str, message: str) -> Notification:
        return self.notify(INFO, title, message)

    def success(self, title: str, message: str) -> Notification:
        return self.notify(SUCCESS, title, message)

    def warning(self, title: str, message: str) -> Notification:
        return self.notify(WARNING, title, message)

    def error(self, title: str, message: str) -> Notification:
        return self.notify(ERROR, title, message)

    def titles(self) -> List[str]:
        return [n.title for n in self.history]
