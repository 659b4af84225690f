"""Request and result models for settlement operations."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import CancellationActor
from .policy import CancellationPolicy


class RefundCalculation(BaseModel):
    """Monetary split of a cancellation refund.

    All amounts are in cents. refundable_amount never includes the
    platform fee.
    """

    model_config = ConfigDict(strict=True)

    original_amount: int
    refund_amount: int
    refund_percentage: int
    platform_fee: int
    host_amount: int
    refundable_amount: int
    days_until_check_in: int
    policy: CancellationPolicy


class CancellationRequest(BaseModel):
    """A guest or host request to cancel a booking."""

    model_config = ConfigDict(strict=True)

    booking_id: str
    reason: str
    cancelled_by: CancellationActor
    user_id: str = Field(..., description="Acting user ID")


class CancellationResult(BaseModel):
    """Outcome of a cancellation.

    success is True once the booking is cancelled, even when the refund
    could not be issued; refund_id is then None and warnings explain why.
    """

    success: bool
    refund_amount: int | None = None
    refund_id: str | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class CheckInAvailability(BaseModel):
    """Whether check-in may be offered right now."""

    available: bool
    reason: str | None = None


class CheckInResult(BaseModel):
    """Outcome of a check-in confirmation."""

    success: bool
    available: bool = True
    message: str
    check_in_id: str | None = None
    payout_id: str | None = None
    payout_scheduled_at: datetime | None = None
    warnings: list[str] = Field(default_factory=list)
