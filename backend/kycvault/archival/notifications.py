"""Retention notices sent in response to archival events.

Builds the HTML messages for each event type and hands them to a
NotificationDispatcher. Every recipient is tried independently; failures
are collected in the DeliveryResult instead of raised.
"""

import logging
import math
from datetime import datetime, timezone
from html import escape
from typing import Callable, List, Optional, Tuple

from ..config import get_settings
from ..notifications.ports import NotificationDispatcher, NotificationError
from ..observability.metrics import notifications_sent_total
from .events import (
    RECORD_DELETED,
    RECORD_MANUALLY_DELETED,
    RECORD_MARKED_FOR_DELETION,
    RECORD_RESCUED,
    ArchivalEvent,
    DeliveryResult,
    EventConsumer,
)

logger = logging.getLogger(__name__)

# module -> (display name, frontend path)
MODULE_DISPLAY = {
    "panKyc": ("PAN KYC", "pan-kyc"),
    "aadhaarPan": ("Aadhaar-PAN", "aadhaar-pan"),
}

_NOTIFICATION_KIND = {
    RECORD_MARKED_FOR_DELETION: "warning",
    RECORD_DELETED: "deletion",
    RECORD_MANUALLY_DELETED: "deletion",
    RECORD_RESCUED: "rescue",
}


def _display(module: str) -> Tuple[str, str]:
    return MODULE_DISPLAY.get(module, (module, module))


def _date(value: Optional[str]) -> str:
    if not value:
        return "N/A"
    return datetime.fromisoformat(value).strftime("%d %b %Y")


def _days_until(value: Optional[str], now: datetime) -> int:
    if not value:
        return 0
    remaining = datetime.fromisoformat(value) - now
    return max(0, math.ceil(remaining.total_seconds() / 86400))


def _details_list(event: ArchivalEvent, extra_rows: Tuple[Tuple[str, str], ...] = ()) -> str:
    payload = event.payload
    rows = [
        ("Record ID", event.record_id),
        ("Batch ID", payload.get("batchId") or "N/A"),
        ("Status", payload.get("status") or "N/A"),
        ("Created", _date(payload.get("createdAt"))),
    ]
    if payload.get("maskedIdentifier"):
        rows.append(("Identifier", payload["maskedIdentifier"]))
    rows.extend(extra_rows)
    rows.append(("Module", _display(event.module)[0]))
    items = "".join(f"<li>{escape(label)}: {escape(str(value))}</li>" for label, value in rows)
    return f"<ul>{items}</ul>"


def _layout(title: str, body: str, action_url: str, action_text: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #333;">{escape(title)}</h2>
  {body}
  <p style="margin: 30px 0;"><a href="{escape(action_url)}" style="background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px;">{escape(action_text)}</a></p>
  <hr style="border: none; border-top: 1px solid #e0e0e0;">
  <p style="color: #666; font-size: 12px;">This is an automated notification sent under our data retention policy.</p>
</body>
</html>"""


def build_owner_warning(event: ArchivalEvent, now: datetime, frontend_url: str) -> Tuple[str, str]:
    display, path = _display(event.module)
    deletion = event.payload.get("scheduledDeletionDate")
    days = _days_until(deletion, now)
    owner = event.payload.get("owner") or {}
    subject = f"Data Deletion Warning - {display} Record #{event.record_id}"
    body = (
        f"<p>Dear {escape(owner.get('firstName') or 'User')},</p>"
        f"<p>Your {escape(display)} verification record will be deleted automatically in "
        f"<strong>{days} days</strong> (on {escape(_date(deletion))}) under our data retention policy.</p>"
        "<p><strong>Record Details:</strong></p>"
        + _details_list(event, (("Scheduled Deletion", _date(deletion)),))
        + "<p>If you need to keep this data, download or export it before the deletion date. "
        "Deleted data cannot be recovered.</p>"
    )
    return subject, _layout(subject, body, f"{frontend_url}/{path}", f"View {display} Records")


def build_admin_warning(event: ArchivalEvent, now: datetime, frontend_url: str) -> Tuple[str, str]:
    display, _ = _display(event.module)
    deletion = event.payload.get("scheduledDeletionDate")
    days = _days_until(deletion, now)
    owner = event.payload.get("owner") or {}
    owner_label = " ".join(
        part for part in (owner.get("firstName"), owner.get("lastName")) if part
    ) or "N/A"
    subject = f"Admin Notification - {display} Record Scheduled for Deletion"
    body = (
        "<p>Dear Admin,</p>"
        f"<p>A {escape(display)} verification record is scheduled for automatic deletion in "
        f"<strong>{days} days</strong> (on {escape(_date(deletion))}).</p>"
        "<p><strong>Record Details:</strong></p>"
        + _details_list(event, (
            ("User", f"{owner_label} ({owner.get('email') or 'no email'})"),
            ("Scheduled Deletion", _date(deletion)),
        ))
        + "<p>Any action on this record must be taken before the deletion date.</p>"
    )
    return subject, _layout(subject, body, f"{frontend_url}/admin/archival", "View Archival Dashboard")


def build_deletion_confirmation(event: ArchivalEvent, now: datetime, frontend_url: str) -> Tuple[str, str]:
    display, path = _display(event.module)
    owner = event.payload.get("owner") or {}
    manual = event.event_type == RECORD_MANUALLY_DELETED
    subject = f"Data Deleted - {display} Record #{event.record_id}"
    if manual:
        intro = f"Your {escape(display)} verification record has been deleted by an administrator."
        extra = (("Deleted", _date(event.payload.get("deletedAt"))), ("Reason", event.payload.get("reason") or "manual"))
    else:
        intro = (
            f"Your {escape(display)} verification record has been deleted automatically "
            "under our data retention policy."
        )
        extra = (("Deleted", _date(event.payload.get("deletedAt"))),)
    body = (
        f"<p>Dear {escape(owner.get('firstName') or 'User')},</p>"
        f"<p>{intro}</p>"
        "<p><strong>Deleted Record Details:</strong></p>"
        + _details_list(event, extra)
        + "<p>If you have any questions, please contact our support team.</p>"
    )
    return subject, _layout(subject, body, f"{frontend_url}/{path}", f"View {display} Records")


def build_rescue_notice(event: ArchivalEvent, now: datetime, frontend_url: str) -> Tuple[str, str]:
    display, path = _display(event.module)
    owner = event.payload.get("owner") or {}
    subject = f"Deletion Cancelled - {display} Record #{event.record_id}"
    body = (
        f"<p>Dear {escape(owner.get('firstName') or 'User')},</p>"
        f"<p>The retention policy for your {escape(display)} records has changed. The record below "
        "is no longer scheduled for deletion and has been kept.</p>"
        + _details_list(event)
    )
    return subject, _layout(subject, body, f"{frontend_url}/{path}", f"View {display} Records")


class NotificationConsumer(EventConsumer):
    """Sends the retention notices for archival events."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        frontend_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.dispatcher = dispatcher
        self.frontend_url = (frontend_url or get_settings().FRONTEND_URL).rstrip("/")
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _messages(self, event: ArchivalEvent) -> List[Tuple[str, str, str]]:
        """(address, subject, html) for every notice the event produces.

        The owner and each admin address get their own message, even when
        the owner's address also appears in the admin list.
        """
        now = self.clock()
        payload = event.payload
        owner_email = (payload.get("owner") or {}).get("email")
        notify_owner = bool(payload.get("notifyOwner") and owner_email)
        messages = []

        if event.event_type == RECORD_MARKED_FOR_DELETION:
            if notify_owner:
                messages.append((owner_email, *build_owner_warning(event, now, self.frontend_url)))
            for address in payload.get("adminEmails") or []:
                messages.append((address, *build_admin_warning(event, now, self.frontend_url)))
        elif notify_owner and event.event_type in (RECORD_DELETED, RECORD_MANUALLY_DELETED):
            messages.append((owner_email, *build_deletion_confirmation(event, now, self.frontend_url)))
        elif notify_owner and event.event_type == RECORD_RESCUED:
            messages.append((owner_email, *build_rescue_notice(event, now, self.frontend_url)))
        return messages

    def handle(self, event: ArchivalEvent) -> DeliveryResult:
        result = DeliveryResult()
        kind = _NOTIFICATION_KIND.get(event.event_type, "other")
        metadata = {
            "eventType": event.event_type,
            "module": event.module,
            "recordId": event.record_id,
        }

        for address, subject, html_body in self._messages(event):
            result.attempted += 1
            try:
                self.dispatcher.send(address, subject, html_body, metadata)
            except Exception as e:
                # Any transport error counts against this recipient only
                result.failed += 1
                result.errors.append(str(e))
                notifications_sent_total.labels(kind=kind, status="error").inc()
                logger.error(
                    f"Failed to send {kind} notification: {e}",
                    exc_info=not isinstance(e, NotificationError),
                    extra={"module_name": event.module, "record_id": event.record_id},
                )
                continue
            result.sent += 1
            notifications_sent_total.labels(kind=kind, status="success").inc()

        return result
