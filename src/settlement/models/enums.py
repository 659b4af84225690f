"""Enumeration types for settlement data models."""

from enum import Enum


class BookingStatus(str, Enum):
    """Status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Bookings in these states accept no further cancellation or check-in
TERMINAL_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)


class PaymentStatus(str, Enum):
    """Status of the payment attached to a booking."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class EscrowStatus(str, Enum):
    """Status of funds held for the host."""

    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"


class PayoutStatus(str, Enum):
    """Status of a scheduled host payout."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CancellationActor(str, Enum):
    """Party initiating a cancellation."""

    GUEST = "guest"
    HOST = "host"


class CheckInMethod(str, Enum):
    """How a check-in was recorded."""

    SELF = "self"
    HOST = "host"
