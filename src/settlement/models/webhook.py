"""Typed payment-processor webhook events.

Raw Stripe payloads are mapped into these models before they reach
settlement logic, so handlers never read loosely-typed dicts.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentEvent(BaseModel):
    """A payment_intent.* event reduced to the fields settlement uses."""

    model_config = ConfigDict(strict=True)

    event_id: str = Field(..., examples=["evt_1ABC123DEF456"])
    event_type: Literal["payment_intent.succeeded", "payment_intent.payment_failed"]
    payment_intent_id: str = Field(..., examples=["pi_3ABC123DEF456"])
    amount_received: int = Field(default=0, ge=0)
    failure_message: str | None = None


class WebhookEventLog(BaseModel):
    """Log of a received webhook event for idempotency and auditing."""

    model_config = ConfigDict(strict=True)

    event_id: str
    event_type: str
    processed_at: datetime
    payload_hash: str
    booking_id: str | None = None
    payment_id: str | None = None
    processing_result: str = Field(
        default="success",
        description="Result of processing: success, duplicate, skipped, error",
    )
    error_message: str | None = None
