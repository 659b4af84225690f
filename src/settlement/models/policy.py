"""Cancellation policy model."""

from pydantic import BaseModel, ConfigDict, Field


class CancellationPolicy(BaseModel):
    """A static cancellation policy from the policy catalog."""

    model_config = ConfigDict(strict=True, frozen=True)

    policy_id: str = Field(..., examples=["flexible"])
    name: str
    description: str
    refund_percentage: int = Field(..., ge=0, le=100)
    deadline_days: int = Field(..., ge=0, description="Days before check-in for the headline refund")
    conditions: tuple[str, ...] = ()
