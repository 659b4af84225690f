"""In-app notification model."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    """Kinds of notifications emitted by settlement."""

    BOOKING_STATUS_CHANGE = "booking_status_change"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    ESCROW_DISPUTE = "escrow_dispute"


class Notification(BaseModel):
    """A notification stored for one recipient."""

    model_config = ConfigDict(strict=True)

    notification_id: str
    recipient_id: str
    type: NotificationType
    title: str
    message: str
    booking_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime
