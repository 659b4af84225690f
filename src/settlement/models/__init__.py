"""Pydantic models for settlement data entities."""

from .booking import Booking, CheckIn, Listing
from .enums import (
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    CancellationActor,
    CheckInMethod,
    EscrowStatus,
    PaymentStatus,
    PayoutStatus,
)
from .errors import (
    BookingCannotCancelError,
    BookingCannotCheckInError,
    BookingError,
    BookingNotFoundError,
    ErrorCode,
    ErrorResponse,
    EscrowNotFoundError,
    ForbiddenError,
    PaymentProcessorError,
    PayoutError,
    PayoutNotFoundError,
    SettlementError,
)
from .escrow import Escrow
from .notification import Notification, NotificationType
from .payment import Payment
from .payout import ConnectedAccount, Payout, PayoutRunSummary, PayoutStats
from .policy import CancellationPolicy
from .settlement import (
    CancellationRequest,
    CancellationResult,
    CheckInAvailability,
    CheckInResult,
    RefundCalculation,
)
from .webhook import PaymentIntentEvent, WebhookEventLog

__all__ = [
    # Enums
    "BookingStatus",
    "CancellationActor",
    "CheckInMethod",
    "EscrowStatus",
    "PaymentStatus",
    "PayoutStatus",
    "TERMINAL_BOOKING_STATUSES",
    # Errors
    "BookingCannotCancelError",
    "BookingCannotCheckInError",
    "BookingError",
    "BookingNotFoundError",
    "ErrorCode",
    "ErrorResponse",
    "EscrowNotFoundError",
    "ForbiddenError",
    "PaymentProcessorError",
    "PayoutError",
    "PayoutNotFoundError",
    "SettlementError",
    # Records
    "Booking",
    "CheckIn",
    "ConnectedAccount",
    "Escrow",
    "Listing",
    "Notification",
    "NotificationType",
    "Payment",
    "Payout",
    "PayoutRunSummary",
    "PayoutStats",
    # Policy and results
    "CancellationPolicy",
    "CancellationRequest",
    "CancellationResult",
    "CheckInAvailability",
    "CheckInResult",
    "RefundCalculation",
    # Webhooks
    "PaymentIntentEvent",
    "WebhookEventLog",
]
