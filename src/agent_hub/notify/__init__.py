"""Notification sinks."""

from agent_hub.notify.base import LogNotificationSink, NotificationSink
from agent_hub.notify.telegram import TelegramNotificationSink

__all__ = ["LogNotificationSink", "NotificationSink", "TelegramNotificationSink"]
