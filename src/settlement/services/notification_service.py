"""Notification service for settlement events.

Stores in-app notifications per recipient. Delivery to devices (push) is
handled by a separate consumer of the notifications table.
"""

import datetime as dt
import uuid
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from settlement.models import CancellationActor, Notification, NotificationType
from settlement.utils.logging import get_logger

from .dynamodb import DynamoDBService

logger = get_logger(__name__)


def format_amount(amount: int, currency: str) -> str:
    """Format cents for display, e.g. 18000 usd -> 'USD 180.00'."""
    return f"{currency.upper()} {amount / 100:.2f}"


class Notifier(Protocol):
    """Outbound notifications emitted by settlement."""

    def notify_cancellation(
        self,
        booking_id: str,
        listing_title: str,
        refund_amount: int,
        currency: str,
        cancelled_by: CancellationActor,
        recipients: Iterable[str],
    ) -> None: ...

    def notify_refund_processed(
        self,
        booking_id: str,
        listing_title: str,
        amount: int,
        currency: str,
        recipient: str,
    ) -> None: ...

    def notify_escrow_dispute(
        self,
        booking_id: str,
        reason: str,
        recipients: Iterable[str],
    ) -> None: ...


class NotificationService:
    """Notifier backed by the DynamoDB notifications table."""

    NOTIFICATIONS_TABLE = "notifications"

    def __init__(
        self,
        db: DynamoDBService,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.db = db
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))

    def _store(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        booking_id: str,
        data: dict[str, Any],
    ) -> Notification:
        notification = Notification(
            notification_id=f"NTF-{uuid.uuid4().hex[:12].upper()}",
            recipient_id=recipient_id,
            type=notification_type,
            title=title,
            message=message,
            booking_id=booking_id,
            data=data,
            created_at=self.clock(),
        )
        self.db.put_item(
            self.NOTIFICATIONS_TABLE,
            {
                "notification_id": notification.notification_id,
                "recipient_id": notification.recipient_id,
                "type": notification.type.value,
                "title": notification.title,
                "message": notification.message,
                "booking_id": booking_id,
                "data": notification.data,
                "read": False,
                "created_at": notification.created_at.isoformat(),
            },
        )
        return notification

    def notify_cancellation(
        self,
        booking_id: str,
        listing_title: str,
        refund_amount: int,
        currency: str,
        cancelled_by: CancellationActor,
        recipients: Iterable[str],
    ) -> None:
        """Tell both parties that a booking was cancelled."""
        title = (
            "Booking Cancelled by Guest"
            if cancelled_by == CancellationActor.GUEST
            else "Booking Cancelled"
        )
        if refund_amount > 0:
            message = (
                f"The booking for {listing_title} has been cancelled. "
                f"A refund of {format_amount(refund_amount, currency)} will be processed."
            )
        else:
            message = (
                f"The booking for {listing_title} has been cancelled. "
                "No refund is applicable."
            )

        for recipient in recipients:
            self._store(
                recipient,
                NotificationType.BOOKING_STATUS_CHANGE,
                title,
                message,
                booking_id,
                {
                    "refund_amount": refund_amount,
                    "currency": currency,
                    "cancelled_by": cancelled_by.value,
                },
            )
        logger.info("Cancellation notifications stored for booking %s", booking_id)

    def notify_refund_processed(
        self,
        booking_id: str,
        listing_title: str,
        amount: int,
        currency: str,
        recipient: str,
    ) -> None:
        """Tell the guest their refund went through."""
        self._store(
            recipient,
            NotificationType.PAYMENT_CONFIRMATION,
            "Refund Processed",
            f"Your refund of {format_amount(amount, currency)} for {listing_title} "
            "has been processed.",
            booking_id,
            {"refund_amount": amount, "currency": currency},
        )

    def notify_escrow_dispute(
        self,
        booking_id: str,
        reason: str,
        recipients: Iterable[str],
    ) -> None:
        """Tell both parties that the held funds are under dispute."""
        for recipient in recipients:
            self._store(
                recipient,
                NotificationType.ESCROW_DISPUTE,
                "Payment Under Review",
                f"Funds for booking {booking_id} are on hold while a dispute is reviewed.",
                booking_id,
                {"reason": reason},
            )

    def get_notifications(self, recipient_id: str) -> list[Notification]:
        """Get a recipient's notifications, newest first."""
        items = self.db.query_by_gsi(
            self.NOTIFICATIONS_TABLE,
            "recipient_id-index",
            "recipient_id",
            recipient_id,
        )
        notifications = [
            Notification(
                notification_id=item["notification_id"],
                recipient_id=item["recipient_id"],
                type=NotificationType(item["type"]),
                title=item["title"],
                message=item["message"],
                booking_id=item.get("booking_id"),
                data=dict(item.get("data", {})),
                read=bool(item.get("read", False)),
                created_at=dt.datetime.fromisoformat(item["created_at"]),
            )
            for item in items
        ]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications
