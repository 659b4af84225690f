"""Payout and connected-account models for host earnings."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import PayoutStatus


class Payout(BaseModel):
    """A scheduled transfer of host earnings.

    Leaves PENDING exactly once, to PAID or FAILED.
    """

    model_config = ConfigDict(strict=True)

    payout_id: str = Field(..., description="Unique payout ID")
    booking_id: str = Field(..., description="Reference to Booking")
    host_id: str = Field(..., description="Host receiving the payout")
    amount: int = Field(..., ge=0, description="Amount in cents")
    currency: str = Field(default="usd")
    status: PayoutStatus = Field(..., description="Payout status")
    scheduled_at: datetime = Field(..., description="Earliest processing time")
    paid_at: datetime | None = Field(default=None)
    processor_transfer_reference: str | None = Field(
        default=None,
        description="Processor transfer ID (tr_xxx)",
        examples=["tr_1ABC123DEF456"],
    )
    failure_reason: str | None = Field(default=None)
    created_at: datetime | None = Field(default=None)


class ConnectedAccount(BaseModel):
    """A host's payment-processor account receiving transfers."""

    model_config = ConfigDict(strict=True)

    host_id: str
    processor_account_id: str = Field(..., examples=["acct_1ABC123"])
    charges_enabled: bool = False
    payouts_enabled: bool = False

    @property
    def is_payout_ready(self) -> bool:
        """Whether transfers to this account can be made."""
        return self.charges_enabled and self.payouts_enabled


class PayoutStats(BaseModel):
    """Aggregated payout figures for a host."""

    total_earned: int = 0
    total_paid: int = 0
    pending_amount: int = 0
    next_payout_date: datetime | None = None


class PayoutRunSummary(BaseModel):
    """Outcome of a batch run over due payouts."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[dict[str, str]] = Field(default_factory=list)
