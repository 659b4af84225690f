"""Settlement persistence over DynamoDB.

Reads and writes the booking, listing, payment, escrow, payout, check-in and
connected-account tables. Every state transition is a status-predicated write
(ConditionExpression), never a read-then-write, so concurrent requests for the
same booking cannot both succeed.
"""

import datetime as dt
from typing import Any

from boto3.dynamodb.conditions import Key

from settlement.models import (
    Booking,
    BookingStatus,
    CancellationActor,
    CheckIn,
    CheckInMethod,
    ConnectedAccount,
    Escrow,
    EscrowStatus,
    Listing,
    Payment,
    PaymentStatus,
    Payout,
    PayoutStatus,
)

from .dynamodb import DynamoDBService, serialize_attribute


def _iso(value: dt.datetime) -> str:
    """Serialize a timestamp as sortable UTC ISO-8601."""
    return value.astimezone(dt.UTC).isoformat()


def _parse_datetime(value: Any) -> dt.datetime | None:
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def _parse_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _compact(item: dict[str, Any]) -> dict[str, Any]:
    """Drop unset attributes before writing."""
    return {k: v for k, v in item.items() if v is not None}


# Shared expression for "booking is still open"
_OPEN_BOOKING_CONDITION = "#status = :pending OR #status = :confirmed"
_OPEN_BOOKING_VALUES = {
    ":pending": BookingStatus.PENDING.value,
    ":confirmed": BookingStatus.CONFIRMED.value,
}


class SettlementRepository:
    """Persistence collaborator for settlement records."""

    BOOKINGS_TABLE = "bookings"
    LISTINGS_TABLE = "listings"
    PAYMENTS_TABLE = "payments"
    ESCROW_TABLE = "escrow"
    PAYOUTS_TABLE = "payouts"
    CHECK_INS_TABLE = "check-ins"
    CONNECTED_ACCOUNTS_TABLE = "connected-accounts"

    def __init__(self, db: DynamoDBService) -> None:
        """Initialize repository.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    # =========================================================================
    # Bookings and listings
    # =========================================================================

    def get_booking(self, booking_id: str) -> Booking | None:
        """Get a booking by ID."""
        item = self.db.get_item(self.BOOKINGS_TABLE, {"booking_id": booking_id})
        return self._item_to_booking(item) if item else None

    def put_booking(self, booking: Booking) -> None:
        """Store a booking record (reservation creation is owned elsewhere)."""
        self.db.put_item(self.BOOKINGS_TABLE, self._booking_to_item(booking))

    def get_listing(self, listing_id: str) -> Listing | None:
        """Get a listing by ID."""
        item = self.db.get_item(self.LISTINGS_TABLE, {"listing_id": listing_id})
        if not item:
            return None
        return Listing(
            listing_id=item["listing_id"],
            host_id=item["host_id"],
            title=item.get("title") or "Property",
            cancellation_policy=item.get("cancellation_policy"),
        )

    def put_listing(self, listing: Listing) -> None:
        """Store a listing record."""
        self.db.put_item(self.LISTINGS_TABLE, _compact(listing.model_dump()))

    def cancel_booking(
        self,
        booking_id: str,
        *,
        reason: str,
        cancelled_by: CancellationActor,
        user_id: str,
        refunded_amount: int,
        cancelled_at: dt.datetime,
    ) -> Booking | None:
        """Mark a booking cancelled if it is still pending or confirmed.

        Returns:
            The updated booking, or None if the booking was missing or
            already terminal (nothing written).
        """
        attrs = self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking_id},
            "SET #status = :cancelled, cancellation_reason = :reason, "
            "cancelled_by = :actor, cancelled_by_user_id = :uid, "
            "cancelled_at = :now, refunded_amount = :refund, updated_at = :now",
            {
                ":cancelled": BookingStatus.CANCELLED.value,
                ":reason": reason,
                ":actor": cancelled_by.value,
                ":uid": user_id,
                ":now": _iso(cancelled_at),
                ":refund": refunded_amount,
                **_OPEN_BOOKING_VALUES,
            },
            {"#status": "status"},  # status is a reserved word
            condition_expression=f"attribute_exists(booking_id) AND ({_OPEN_BOOKING_CONDITION})",
        )
        return self._item_to_booking(attrs) if attrs else None

    def confirm_booking(self, booking_id: str, confirmed_at: dt.datetime) -> bool:
        """Move a pending booking to confirmed. Returns False if not pending."""
        attrs = self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking_id},
            "SET #status = :confirmed, updated_at = :now",
            {
                ":confirmed": BookingStatus.CONFIRMED.value,
                ":pending": BookingStatus.PENDING.value,
                ":now": _iso(confirmed_at),
            },
            {"#status": "status"},
            condition_expression="#status = :pending",
        )
        return attrs is not None

    def attach_escrow(self, booking_id: str, escrow_id: str) -> None:
        """Link an escrow record to its booking."""
        self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking_id},
            "SET escrow_id = :eid",
            {":eid": escrow_id},
            condition_expression="attribute_exists(booking_id)",
        )

    def record_check_in(self, check_in: CheckIn) -> bool:
        """Create a check-in record and complete the booking atomically.

        Both writes happen in one transaction guarded by the booking still
        being pending or confirmed.

        Returns:
            True if committed, False if the booking was no longer open.
        """
        check_in_item = _compact(
            {
                "check_in_id": check_in.check_in_id,
                "booking_id": check_in.booking_id,
                "checked_in_at": _iso(check_in.checked_in_at),
                "checked_in_by": check_in.checked_in_by,
                "method": check_in.method.value,
                "notes": check_in.notes,
            }
        )
        values = {
            ":completed": BookingStatus.COMPLETED.value,
            ":cid": check_in.check_in_id,
            ":now": _iso(check_in.checked_in_at),
            **_OPEN_BOOKING_VALUES,
        }
        return self.db.transact_write(
            [
                {
                    "Put": {
                        "TableName": self.db.table_name(self.CHECK_INS_TABLE),
                        "Item": {k: serialize_attribute(v) for k, v in check_in_item.items()},
                        "ConditionExpression": "attribute_not_exists(check_in_id)",
                    }
                },
                {
                    "Update": {
                        "TableName": self.db.table_name(self.BOOKINGS_TABLE),
                        "Key": {"booking_id": {"S": check_in.booking_id}},
                        "UpdateExpression": "SET #status = :completed, check_in_id = :cid, updated_at = :now",
                        "ConditionExpression": _OPEN_BOOKING_CONDITION,
                        "ExpressionAttributeNames": {"#status": "status"},
                        "ExpressionAttributeValues": {
                            k: serialize_attribute(v) for k, v in values.items()
                        },
                    }
                },
            ]
        )

    def get_check_in(self, check_in_id: str) -> CheckIn | None:
        """Get a check-in record by ID."""
        item = self.db.get_item(self.CHECK_INS_TABLE, {"check_in_id": check_in_id})
        if not item:
            return None
        return CheckIn(
            check_in_id=item["check_in_id"],
            booking_id=item["booking_id"],
            checked_in_at=_parse_datetime(item["checked_in_at"]),
            checked_in_by=item["checked_in_by"],
            method=CheckInMethod(item["method"]),
            notes=item.get("notes"),
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def get_payment(self, payment_id: str) -> Payment | None:
        """Get a payment by ID."""
        item = self.db.get_item(self.PAYMENTS_TABLE, {"payment_id": payment_id})
        return self._item_to_payment(item) if item else None

    def get_payment_for_booking(self, booking_id: str) -> Payment | None:
        """Get the payment attached to a booking (earliest if several)."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE,
            "booking_id-index",
            "booking_id",
            booking_id,
        )
        if not items:
            return None
        items.sort(key=lambda item: str(item.get("created_at", "")))
        return self._item_to_payment(items[0])

    def get_payment_by_reference(self, payment_reference: str) -> Payment | None:
        """Get a payment by its processor reference (PaymentIntent ID)."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE,
            "processor_payment_reference-index",
            "processor_payment_reference",
            payment_reference,
        )
        return self._item_to_payment(items[0]) if items else None

    def put_payment(self, payment: Payment) -> None:
        """Store a payment record."""
        self.db.put_item(self.PAYMENTS_TABLE, self._payment_to_item(payment))

    def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        updated_at: dt.datetime,
    ) -> None:
        """Set the payment status."""
        self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            "SET #status = :status, updated_at = :now",
            {":status": status.value, ":now": _iso(updated_at)},
            {"#status": "status"},
        )

    def update_payment_refund(
        self,
        payment_id: str,
        *,
        status: PaymentStatus,
        refund_id: str,
        refunded_amount: int,
        refunded_at: dt.datetime,
    ) -> None:
        """Record a processed refund on the payment."""
        self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            "SET #status = :status, refund_id = :rid, refunded_amount = :amount, updated_at = :now",
            {
                ":status": status.value,
                ":rid": refund_id,
                ":amount": refunded_amount,
                ":now": _iso(refunded_at),
            },
            {"#status": "status"},
        )

    # =========================================================================
    # Escrow
    # =========================================================================

    def get_escrow(self, escrow_id: str) -> Escrow | None:
        """Get an escrow record by ID."""
        item = self.db.get_item(self.ESCROW_TABLE, {"escrow_id": escrow_id})
        return self._item_to_escrow(item) if item else None

    def get_escrow_for_booking(self, booking_id: str) -> Escrow | None:
        """Get the escrow record of a booking, if any."""
        items = self.db.query_by_gsi(
            self.ESCROW_TABLE,
            "booking_id-index",
            "booking_id",
            booking_id,
        )
        return self._item_to_escrow(items[0]) if items else None

    def create_escrow(self, escrow: Escrow) -> bool:
        """Create an escrow record. Returns False if the ID already exists."""
        return self.db.put_item(
            self.ESCROW_TABLE,
            self._escrow_to_item(escrow),
            condition_expression="attribute_not_exists(escrow_id)",
        )

    def release_escrow(
        self,
        escrow_id: str,
        *,
        expected_released_amount: int,
        released_amount: int,
        status: EscrowStatus,
        reason: str | None,
        released_at: dt.datetime,
    ) -> Escrow | None:
        """Apply a release if the escrow is unchanged since it was read.

        Returns:
            Updated escrow, or None if it was already released or another
            release moved released_amount in between.
        """
        attrs = self.db.update_item(
            self.ESCROW_TABLE,
            {"escrow_id": escrow_id},
            "SET #status = :status, released_amount = :released, "
            "release_date = :now, release_reason = :reason",
            {
                ":status": status.value,
                ":released": released_amount,
                ":expected": expected_released_amount,
                ":released_status": EscrowStatus.RELEASED.value,
                ":now": _iso(released_at),
                ":reason": reason or "",
            },
            {"#status": "status"},
            condition_expression="#status <> :released_status AND released_amount = :expected",
        )
        return self._item_to_escrow(attrs) if attrs else None

    def dispute_escrow(self, escrow_id: str, reason: str) -> Escrow | None:
        """Mark a held escrow as disputed. Returns None if not held."""
        attrs = self.db.update_item(
            self.ESCROW_TABLE,
            {"escrow_id": escrow_id},
            "SET #status = :disputed, dispute_reason = :reason",
            {
                ":disputed": EscrowStatus.DISPUTED.value,
                ":held": EscrowStatus.HELD.value,
                ":reason": reason,
            },
            {"#status": "status"},
            condition_expression="#status = :held",
        )
        return self._item_to_escrow(attrs) if attrs else None

    # =========================================================================
    # Payouts
    # =========================================================================

    def get_payout(self, payout_id: str) -> Payout | None:
        """Get a payout by ID."""
        item = self.db.get_item(self.PAYOUTS_TABLE, {"payout_id": payout_id})
        return self._item_to_payout(item) if item else None

    def create_payout(self, payout: Payout) -> bool:
        """Create a payout record. Returns False if the ID already exists."""
        return self.db.put_item(
            self.PAYOUTS_TABLE,
            self._payout_to_item(payout),
            condition_expression="attribute_not_exists(payout_id)",
        )

    def get_payouts_for_booking(self, booking_id: str) -> list[Payout]:
        """Get all payouts of a booking."""
        items = self.db.query_by_gsi(
            self.PAYOUTS_TABLE, "booking_id-index", "booking_id", booking_id
        )
        return [self._item_to_payout(item) for item in items]

    def get_payouts_for_host(self, host_id: str) -> list[Payout]:
        """Get all payouts of a host, newest first."""
        items = self.db.query_by_gsi(
            self.PAYOUTS_TABLE, "host_id-index", "host_id", host_id
        )
        payouts = [self._item_to_payout(item) for item in items]
        payouts.sort(key=lambda p: p.created_at or p.scheduled_at, reverse=True)
        return payouts

    def get_due_payouts(self, now: dt.datetime) -> list[Payout]:
        """Get pending payouts whose scheduled time has passed."""
        items = self.db.query_by_gsi(
            self.PAYOUTS_TABLE,
            "status-scheduled_at-index",
            "status",
            PayoutStatus.PENDING.value,
            sort_key_condition=Key("scheduled_at").lte(_iso(now)),
        )
        return [self._item_to_payout(item) for item in items]

    def reschedule_payout(
        self,
        payout_id: str,
        *,
        amount: int,
        scheduled_at: dt.datetime,
    ) -> Payout | None:
        """Move a pending payout to a new time. Returns None if not pending."""
        attrs = self.db.update_item(
            self.PAYOUTS_TABLE,
            {"payout_id": payout_id},
            "SET scheduled_at = :scheduled, amount = :amount",
            {
                ":scheduled": _iso(scheduled_at),
                ":amount": amount,
                ":pending": PayoutStatus.PENDING.value,
            },
            {"#status": "status"},
            condition_expression="#status = :pending",
        )
        return self._item_to_payout(attrs) if attrs else None

    def mark_payout_paid(
        self,
        payout_id: str,
        *,
        transfer_reference: str,
        paid_at: dt.datetime,
    ) -> Payout | None:
        """Transition pending -> paid. Returns None if not pending."""
        attrs = self.db.update_item(
            self.PAYOUTS_TABLE,
            {"payout_id": payout_id},
            "SET #status = :paid, processor_transfer_reference = :tr, paid_at = :now",
            {
                ":paid": PayoutStatus.PAID.value,
                ":pending": PayoutStatus.PENDING.value,
                ":tr": transfer_reference,
                ":now": _iso(paid_at),
            },
            {"#status": "status"},
            condition_expression="#status = :pending",
        )
        return self._item_to_payout(attrs) if attrs else None

    def mark_payout_failed(self, payout_id: str, *, reason: str) -> Payout | None:
        """Transition pending -> failed. Returns None if not pending."""
        attrs = self.db.update_item(
            self.PAYOUTS_TABLE,
            {"payout_id": payout_id},
            "SET #status = :failed, failure_reason = :reason",
            {
                ":failed": PayoutStatus.FAILED.value,
                ":pending": PayoutStatus.PENDING.value,
                ":reason": reason,
            },
            {"#status": "status"},
            condition_expression="#status = :pending",
        )
        return self._item_to_payout(attrs) if attrs else None

    def get_connected_account(self, host_id: str) -> ConnectedAccount | None:
        """Get the processor account of a host."""
        item = self.db.get_item(self.CONNECTED_ACCOUNTS_TABLE, {"host_id": host_id})
        if not item:
            return None
        return ConnectedAccount(
            host_id=item["host_id"],
            processor_account_id=item["processor_account_id"],
            charges_enabled=bool(item.get("charges_enabled", False)),
            payouts_enabled=bool(item.get("payouts_enabled", False)),
        )

    # Conversion helpers

    def _booking_to_item(self, booking: Booking) -> dict[str, Any]:
        """Convert Booking model to DynamoDB item."""
        return _compact(
            {
                "booking_id": booking.booking_id,
                "guest_id": booking.guest_id,
                "host_id": booking.host_id,
                "listing_id": booking.listing_id,
                "check_in_date": booking.check_in_date.isoformat(),
                "check_out_date": booking.check_out_date.isoformat(),
                "status": booking.status.value,
                "currency": booking.currency,
                "cancellation_reason": booking.cancellation_reason,
                "cancelled_by": booking.cancelled_by.value if booking.cancelled_by else None,
                "cancelled_by_user_id": booking.cancelled_by_user_id,
                "cancelled_at": _iso(booking.cancelled_at) if booking.cancelled_at else None,
                "refunded_amount": booking.refunded_amount,
                "escrow_id": booking.escrow_id,
                "check_in_id": booking.check_in_id,
                "created_at": _iso(booking.created_at) if booking.created_at else None,
                "updated_at": _iso(booking.updated_at) if booking.updated_at else None,
            }
        )

    def _item_to_booking(self, item: dict[str, Any]) -> Booking:
        """Convert DynamoDB item to Booking model."""
        return Booking(
            booking_id=item["booking_id"],
            guest_id=item["guest_id"],
            host_id=item["host_id"],
            listing_id=item["listing_id"],
            check_in_date=dt.date.fromisoformat(item["check_in_date"][:10]),
            check_out_date=dt.date.fromisoformat(item["check_out_date"][:10]),
            status=BookingStatus(item["status"]),
            currency=item.get("currency", "usd"),
            cancellation_reason=item.get("cancellation_reason"),
            cancelled_by=(
                CancellationActor(item["cancelled_by"]) if item.get("cancelled_by") else None
            ),
            cancelled_by_user_id=item.get("cancelled_by_user_id"),
            cancelled_at=_parse_datetime(item.get("cancelled_at")),
            refunded_amount=_parse_int(item.get("refunded_amount")),
            escrow_id=item.get("escrow_id"),
            check_in_id=item.get("check_in_id"),
            created_at=_parse_datetime(item.get("created_at")),
            updated_at=_parse_datetime(item.get("updated_at")),
        )

    def _payment_to_item(self, payment: Payment) -> dict[str, Any]:
        """Convert Payment model to DynamoDB item."""
        return _compact(
            {
                "payment_id": payment.payment_id,
                "booking_id": payment.booking_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "platform_fee": payment.platform_fee,
                "host_amount": payment.host_amount,
                "status": payment.status.value,
                "processor_payment_reference": payment.processor_payment_reference,
                "refund_id": payment.refund_id,
                "refunded_amount": payment.refunded_amount,
                "created_at": _iso(payment.created_at) if payment.created_at else None,
                "updated_at": _iso(payment.updated_at) if payment.updated_at else None,
            }
        )

    def _item_to_payment(self, item: dict[str, Any]) -> Payment:
        """Convert DynamoDB item to Payment model."""
        return Payment(
            payment_id=item["payment_id"],
            booking_id=item["booking_id"],
            amount=int(item["amount"]),
            currency=item.get("currency", "usd"),
            platform_fee=int(item.get("platform_fee", 0)),
            host_amount=int(item.get("host_amount", 0)),
            status=PaymentStatus(item["status"]),
            processor_payment_reference=item.get("processor_payment_reference"),
            refund_id=item.get("refund_id"),
            refunded_amount=_parse_int(item.get("refunded_amount")),
            created_at=_parse_datetime(item.get("created_at")),
            updated_at=_parse_datetime(item.get("updated_at")),
        )

    def _escrow_to_item(self, escrow: Escrow) -> dict[str, Any]:
        """Convert Escrow model to DynamoDB item."""
        return _compact(
            {
                "escrow_id": escrow.escrow_id,
                "booking_id": escrow.booking_id,
                "status": escrow.status.value,
                "held_amount": escrow.held_amount,
                "released_amount": escrow.released_amount,
                "release_date": _iso(escrow.release_date) if escrow.release_date else None,
                "release_reason": escrow.release_reason,
                "dispute_reason": escrow.dispute_reason,
                "created_at": _iso(escrow.created_at) if escrow.created_at else None,
            }
        )

    def _item_to_escrow(self, item: dict[str, Any]) -> Escrow:
        """Convert DynamoDB item to Escrow model."""
        return Escrow(
            escrow_id=item["escrow_id"],
            booking_id=item["booking_id"],
            status=EscrowStatus(item["status"]),
            held_amount=int(item["held_amount"]),
            released_amount=int(item.get("released_amount", 0)),
            release_date=_parse_datetime(item.get("release_date")),
            release_reason=item.get("release_reason") or None,
            dispute_reason=item.get("dispute_reason"),
            created_at=_parse_datetime(item.get("created_at")),
        )

    def _payout_to_item(self, payout: Payout) -> dict[str, Any]:
        """Convert Payout model to DynamoDB item."""
        return _compact(
            {
                "payout_id": payout.payout_id,
                "booking_id": payout.booking_id,
                "host_id": payout.host_id,
                "amount": payout.amount,
                "currency": payout.currency,
                "status": payout.status.value,
                "scheduled_at": _iso(payout.scheduled_at),
                "paid_at": _iso(payout.paid_at) if payout.paid_at else None,
                "processor_transfer_reference": payout.processor_transfer_reference,
                "failure_reason": payout.failure_reason,
                "created_at": _iso(payout.created_at) if payout.created_at else None,
            }
        )

    def _item_to_payout(self, item: dict[str, Any]) -> Payout:
        """Convert DynamoDB item to Payout model."""
        return Payout(
            payout_id=item["payout_id"],
            booking_id=item["booking_id"],
            host_id=item["host_id"],
            amount=int(item["amount"]),
            currency=item.get("currency", "usd"),
            status=PayoutStatus(item["status"]),
            scheduled_at=_parse_datetime(item["scheduled_at"]),
            paid_at=_parse_datetime(item.get("paid_at")),
            processor_transfer_reference=item.get("processor_transfer_reference"),
            failure_reason=item.get("failure_reason"),
            created_at=_parse_datetime(item.get("created_at")),
        )
