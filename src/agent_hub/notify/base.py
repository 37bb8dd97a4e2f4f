"""Notification sink interface."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Outbound message boundary.

    ``notify`` returns ``False`` when delivery failed; the sink logs the
    failure and callers never retry.
    """

    def notify(self, destination: str, message: str) -> bool:
        """Deliver ``message`` to ``destination``."""


class LogNotificationSink:
    """Writes notifications to the log and keeps them in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(self, destination: str, message: str) -> bool:
        self.sent.append((destination, message))
        logger.info("Notification to %s: %s", destination, message)
        return True
