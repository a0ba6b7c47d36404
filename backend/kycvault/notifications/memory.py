"""In-memory notification dispatcher for tests and local development."""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .ports import NotificationDispatcher, NotificationError


@dataclass
class SentNotification:
    to: str
    subject: str
    html_body: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Records messages instead of sending them.

    Addresses listed in ``fail_for`` raise NotificationError, to exercise
    failure handling.
    """

    def __init__(self, fail_for: Optional[Set[str]] = None):
        self.sent: List[SentNotification] = []
        self.fail_for = set(fail_for or ())
        self._lock = threading.Lock()

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if to in self.fail_for:
            raise NotificationError(f"Simulated delivery failure for {to}", recipient=to)
        with self._lock:
            self.sent.append(SentNotification(to, subject, html_body, dict(metadata or {})))

    def sent_to(self, address: str) -> List[SentNotification]:
        return [n for n in self.sent if n.to == address]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()
