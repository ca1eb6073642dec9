"""User notifications (toast equivalents) raised by the view model."""

from __future__ import annotations

from collections import deque
from typing import Protocol

import structlog

logger = structlog.get_logger()


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class LogNotifier:
    """Notifier for headless runs: every message becomes a log line."""

    def notify(self, message: str) -> None:
        logger.info("user_notification", message=message)


class RecentNotifications:
    """Keeps the most recent messages so a client can poll and display them."""

    def __init__(self, maxlen: int = 20) -> None:
        self._messages: deque[str] = deque(maxlen=maxlen)

    def notify(self, message: str) -> None:
        logger.debug("user_notification", message=message)
        self._messages.append(message)

    @property
    def messages(self) -> list[str]:
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()
