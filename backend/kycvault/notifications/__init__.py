"""Outbound notification adapters."""

from .ports import NotificationDispatcher, NotificationError
from .smtp import SmtpNotificationDispatcher
from .memory import InMemoryNotificationDispatcher, SentNotification

__all__ = [
    "NotificationDispatcher",
    "NotificationError",
    "SmtpNotificationDispatcher",
    "InMemoryNotificationDispatcher",
    "SentNotification",
]
