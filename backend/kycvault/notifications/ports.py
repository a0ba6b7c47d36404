"""Notification dispatcher port."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class NotificationError(Exception):
    """Raised when a notification could not be handed to the transport."""

    def __init__(self, message: str, recipient: Optional[str] = None):
        super().__init__(message)
        self.recipient = recipient


class NotificationDispatcher(ABC):
    """Sends one HTML message to one recipient.

    Implementations raise NotificationError on failure; callers decide
    whether a failure matters.
    """

    @abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...
