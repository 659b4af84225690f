"""Escrow model for funds held on behalf of the host."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import EscrowStatus


class Escrow(BaseModel):
    """Funds held until release conditions are met."""

    model_config = ConfigDict(strict=True)

    escrow_id: str = Field(..., description="Unique escrow ID")
    booking_id: str = Field(..., description="Reference to Booking")
    status: EscrowStatus = Field(..., description="Escrow status")
    held_amount: int = Field(..., ge=0, description="Amount held in cents")
    released_amount: int = Field(default=0, ge=0, description="Amount released in cents")
    release_date: datetime | None = Field(default=None)
    release_reason: str | None = Field(default=None)
    dispute_reason: str | None = Field(default=None)
    created_at: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def _check_amounts(self) -> "Escrow":
        if self.released_amount > self.held_amount:
            raise ValueError("released_amount cannot exceed held_amount")
        if self.status == EscrowStatus.RELEASED and self.released_amount < self.held_amount:
            raise ValueError("escrow can only be released once fully paid out")
        return self

    @property
    def remaining_amount(self) -> int:
        """Amount still held."""
        return self.held_amount - self.released_amount
