"""Standard error codes for settlement operations.

Precondition failures (missing booking, wrong actor, terminal status) are
raised as BookingError subclasses before any record is mutated. Escrow and
payout failures share the SettlementError base and its ErrorResponse. Payment
processor failures are wrapped in PaymentProcessorError and are tolerated by
the orchestrator after its commit point.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes for settlement operations."""

    # Booking error codes (ERR_001-ERR_004)
    BOOKING_NOT_FOUND = "ERR_001"
    FORBIDDEN = "ERR_002"
    BOOKING_CANNOT_CANCEL = "ERR_003"
    BOOKING_CANNOT_CHECK_IN = "ERR_004"

    # Payment processor error codes (ERR_PROC_001-ERR_PROC_003)
    PROCESSOR_API_ERROR = "ERR_PROC_001"
    PROCESSOR_DISABLED = "ERR_PROC_002"
    INVALID_WEBHOOK_SIGNATURE = "ERR_PROC_003"

    # Escrow and payout error codes
    ESCROW_NOT_FOUND = "ERR_ESC_001"
    PAYOUT_NOT_FOUND = "ERR_PAY_001"
    PAYOUT_NOT_PROCESSABLE = "ERR_PAY_002"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.FORBIDDEN: "User is not allowed to perform this action on the booking",
    ErrorCode.BOOKING_CANNOT_CANCEL: "Booking cannot be cancelled",
    ErrorCode.BOOKING_CANNOT_CHECK_IN: "Booking cannot be checked in",
    ErrorCode.PROCESSOR_API_ERROR: "Payment processor error occurred",
    ErrorCode.PROCESSOR_DISABLED: "Payment processing is disabled in this environment",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.ESCROW_NOT_FOUND: "Escrow not found",
    ErrorCode.PAYOUT_NOT_FOUND: "Payout not found",
    ErrorCode.PAYOUT_NOT_PROCESSABLE: "Payout cannot be processed",
}

# Recovery suggestions for callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.BOOKING_NOT_FOUND: "Verify the booking ID",
    ErrorCode.FORBIDDEN: "Only the booking's guest or host may act on it",
    ErrorCode.BOOKING_CANNOT_CANCEL: "Booking is already cancelled or completed",
    ErrorCode.BOOKING_CANNOT_CHECK_IN: "Booking is already cancelled or completed",
    ErrorCode.PROCESSOR_API_ERROR: "Retry later or reconcile with the processor dashboard",
    ErrorCode.PROCESSOR_DISABLED: "Configure processor credentials for this environment",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.ESCROW_NOT_FOUND: "Verify the escrow ID",
    ErrorCode.PAYOUT_NOT_FOUND: "Verify the payout ID",
    ErrorCode.PAYOUT_NOT_PROCESSABLE: "Check the payout status, due time and host account",
}


class ErrorResponse(BaseModel):
    """Standard error payload returned to screen-layer callers."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class SettlementError(Exception):
    """Base exception for typed settlement failures."""

    code: ErrorCode = ErrorCode.BOOKING_NOT_FOUND

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
    ):
        self.message = message or ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse(
            error_code=self.code,
            message=self.message,
            recovery=self.recovery,
            details=self.details,
        )


class BookingError(SettlementError):
    """Precondition failure on a booking.

    Raised before any state mutation. Callers should not retry without
    changing the request.
    """


class BookingNotFoundError(BookingError):
    """Booking (or its payment record) does not exist."""

    code = ErrorCode.BOOKING_NOT_FOUND


class ForbiddenError(BookingError):
    """Acting user is not the party allowed to act on the booking."""

    code = ErrorCode.FORBIDDEN


class BookingCannotCancelError(BookingError):
    """Booking is in a terminal state."""

    code = ErrorCode.BOOKING_CANNOT_CANCEL


class BookingCannotCheckInError(BookingError):
    """Booking is in a terminal state."""

    code = ErrorCode.BOOKING_CANNOT_CHECK_IN


class EscrowNotFoundError(SettlementError):
    """Escrow record does not exist."""

    code = ErrorCode.ESCROW_NOT_FOUND


class PayoutError(SettlementError):
    """A payout cannot be processed or cancelled."""

    code = ErrorCode.PAYOUT_NOT_PROCESSABLE

    def __init__(self, message: str, payout_id: Optional[str] = None) -> None:
        super().__init__(message, details={"payout_id": payout_id} if payout_id else None)
        self.payout_id = payout_id


class PayoutNotFoundError(PayoutError):
    """Payout record does not exist."""

    code = ErrorCode.PAYOUT_NOT_FOUND


class PaymentProcessorError(Exception):
    """Raised when a payment processor operation fails."""

    def __init__(
        self,
        message: str,
        processor_error_code: Optional[str] = None,
        code: ErrorCode = ErrorCode.PROCESSOR_API_ERROR,
    ) -> None:
        """Initialize with message and optional processor error code.

        Args:
            message: Human-readable error message.
            processor_error_code: Processor-specific error code if available.
            code: Settlement error code for the failure.
        """
        super().__init__(message)
        self.processor_error_code = processor_error_code
        self.code = code


# Processor error codes that indicate a later retry may succeed
PROCESSOR_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def is_processor_error_retryable(processor_error_code: Optional[str]) -> bool:
    """Check if a processor error is likely transient and retryable.

    Used by reconciliation tooling deciding whether to re-attempt a
    refund or transfer that failed during settlement.

    Args:
        processor_error_code: The processor error code.

    Returns:
        True if the error may be resolved by retrying.
    """
    return processor_error_code in PROCESSOR_RETRYABLE_ERRORS if processor_error_code else False
