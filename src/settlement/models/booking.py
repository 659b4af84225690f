"""Booking, listing and check-in models."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    CancellationActor,
    CheckInMethod,
)


class Listing(BaseModel):
    """The listing a booking was made against.

    Only the fields settlement needs are modelled here.
    """

    model_config = ConfigDict(strict=True)

    listing_id: str = Field(..., description="Unique listing ID")
    host_id: str = Field(..., description="Host user ID")
    title: str = Field(default="Property", description="Listing title")
    cancellation_policy: str | None = Field(
        default=None,
        description="Cancellation policy ID (flexible, moderate, strict, no_refund)",
        examples=["moderate"],
    )


class Booking(BaseModel):
    """A reserved stay.

    Status moves forward only: cancelled and completed are terminal.
    """

    model_config = ConfigDict(strict=True)

    booking_id: str = Field(..., description="Unique booking ID")
    guest_id: str = Field(..., description="Guest user ID")
    host_id: str = Field(..., description="Host user ID")
    listing_id: str = Field(..., description="Reference to Listing")
    check_in_date: date = Field(..., description="Check-in date")
    check_out_date: date = Field(..., description="Check-out date")
    status: BookingStatus = Field(..., description="Booking status")
    currency: str = Field(default="usd", description="Currency code")
    cancellation_reason: str | None = Field(default=None)
    cancelled_by: CancellationActor | None = Field(
        default=None, description="Role of the party that cancelled"
    )
    cancelled_by_user_id: str | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    refunded_amount: int | None = Field(
        default=None, ge=0, description="Refund granted on cancellation, in cents"
    )
    escrow_id: str | None = Field(default=None, description="Reference to Escrow")
    check_in_id: str | None = Field(default=None, description="Reference to CheckIn")
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        """Whether the booking can no longer be cancelled or checked in."""
        return self.status in TERMINAL_BOOKING_STATUSES


class CheckIn(BaseModel):
    """Record of a guest arrival confirmation."""

    model_config = ConfigDict(strict=True)

    check_in_id: str = Field(..., description="Unique check-in ID")
    booking_id: str = Field(..., description="Reference to Booking")
    checked_in_at: datetime = Field(..., description="Check-in timestamp")
    checked_in_by: str = Field(..., description="User ID who confirmed arrival")
    method: CheckInMethod = Field(default=CheckInMethod.HOST)
    notes: str | None = Field(default=None)
