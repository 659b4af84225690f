"""Payment model for the charge attached to a booking."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import PaymentStatus


class Payment(BaseModel):
    """The monetary record attached 1:1 to a booking.

    Amounts are stored in minor currency units (cents).
    host_amount + platform_fee equals amount, allowing one unit of rounding.
    """

    model_config = ConfigDict(strict=True)

    payment_id: str = Field(..., description="Unique payment ID")
    booking_id: str = Field(..., description="Reference to Booking")
    amount: int = Field(..., ge=0, description="Original total charge in cents")
    currency: str = Field(default="usd", description="Currency code")
    platform_fee: int = Field(default=0, ge=0, description="Non-refundable platform fee")
    host_amount: int = Field(..., ge=0, description="Amount owed to the host")
    status: PaymentStatus = Field(..., description="Payment status")
    processor_payment_reference: str | None = Field(
        default=None,
        description="Processor payment reference (Stripe PaymentIntent ID)",
        examples=["pi_3ABC123DEF456"],
    )
    refund_id: str | None = Field(
        default=None,
        description="Processor refund ID (re_xxx) if refunded",
        examples=["re_3ABC123DEF456"],
    )
    refunded_amount: int | None = Field(default=None, ge=0)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def _check_split(self) -> "Payment":
        if abs(self.host_amount + self.platform_fee - self.amount) > 1:
            raise ValueError(
                f"host_amount ({self.host_amount}) + platform_fee ({self.platform_fee}) "
                f"must equal amount ({self.amount})"
            )
        return self
