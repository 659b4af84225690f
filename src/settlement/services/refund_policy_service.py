"""Refund policy service for calculating cancellation refunds.

Implements the listing cancellation policies:
- flexible: 100% if cancelled 1+ days before check-in, 50% on the day, else 0%
- moderate: 100% if 5+ days before, 50% if 1-4 days before, else 0%
- strict: 50% if 7+ days before, else 0%
- no_refund: always 0%

Listings without a known policy are treated as flexible.
All amounts are in cents to avoid floating-point issues. The platform fee is
never refunded, even under a 100% policy.
"""

import datetime as dt
import math
from typing import TYPE_CHECKING

from settlement.models import (
    Booking,
    BookingNotFoundError,
    CancellationPolicy,
    Listing,
    Payment,
    RefundCalculation,
)

if TYPE_CHECKING:
    from .repository import SettlementRepository


DEFAULT_POLICY_ID = "flexible"

CANCELLATION_POLICIES: dict[str, CancellationPolicy] = {
    "flexible": CancellationPolicy(
        policy_id="flexible",
        name="Flexible",
        description="Full refund up to 24 hours before check-in",
        refund_percentage=100,
        deadline_days=1,
        conditions=(
            "Full refund if cancelled 24+ hours before check-in",
            "50% refund if cancelled within 24 hours of check-in",
            "No refund for no-shows",
        ),
    ),
    "moderate": CancellationPolicy(
        policy_id="moderate",
        name="Moderate",
        description="Full refund up to 5 days before check-in",
        refund_percentage=100,
        deadline_days=5,
        conditions=(
            "Full refund if cancelled 5+ days before check-in",
            "50% refund if cancelled 1-5 days before check-in",
            "No refund if cancelled within 24 hours of check-in",
        ),
    ),
    "strict": CancellationPolicy(
        policy_id="strict",
        name="Strict",
        description="50% refund up to 7 days before check-in",
        refund_percentage=50,
        deadline_days=7,
        conditions=(
            "50% refund if cancelled 7+ days before check-in",
            "No refund if cancelled within 7 days of check-in",
        ),
    ),
    "no_refund": CancellationPolicy(
        policy_id="no_refund",
        name="No Refund",
        description="No refunds for cancellations",
        refund_percentage=0,
        deadline_days=0,
        conditions=("No refunds for any cancellations",),
    ),
}

# (minimum days until check-in, refund percentage), checked in order
_REFUND_TIERS: dict[str, tuple[tuple[int, int], ...]] = {
    "flexible": ((1, 100), (0, 50)),
    "moderate": ((5, 100), (1, 50)),
    "strict": ((7, 50),),
    "no_refund": (),
}

SECONDS_PER_DAY = 24 * 60 * 60


def get_cancellation_policy(policy_id: str | None) -> CancellationPolicy:
    """Get a policy from the catalog, falling back to flexible."""
    return CANCELLATION_POLICIES.get(policy_id or DEFAULT_POLICY_ID) or CANCELLATION_POLICIES[
        DEFAULT_POLICY_ID
    ]


def resolve_refund_percentage(policy_id: str | None, days_until_check_in: int) -> int:
    """Get the refund percentage for a policy and cancellation timing.

    Args:
        policy_id: Policy ID; unknown or missing IDs resolve to flexible
        days_until_check_in: Whole days until check-in (negative after it)

    Returns:
        0, 50 or 100
    """
    policy = get_cancellation_policy(policy_id)
    for min_days, percentage in _REFUND_TIERS[policy.policy_id]:
        if days_until_check_in >= min_days:
            return percentage
    return 0


def days_until_check_in(check_in_date: dt.date, as_of: dt.datetime) -> int:
    """Whole days from as_of until check-in, rounded up.

    The check-in date is taken as midnight UTC.
    """
    check_in = dt.datetime.combine(check_in_date, dt.time.min, tzinfo=dt.UTC)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=dt.UTC)
    return math.ceil((check_in - as_of).total_seconds() / SECONDS_PER_DAY)


class RefundCalculator:
    """Turns a refund percentage into amounts for one booking's payment."""

    def __init__(self, repository: "SettlementRepository") -> None:
        """Initialize calculator.

        Args:
            repository: Settlement persistence used to load bookings
        """
        self.repository = repository

    def calculate_refund(
        self,
        booking_id: str,
        as_of: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Calculate the refund for cancelling a booking.

        Args:
            booking_id: Booking to cancel
            as_of: Cancellation timestamp (defaults to now)

        Returns:
            RefundCalculation with amounts and the resolved policy

        Raises:
            BookingNotFoundError: If the booking or its payment is missing
        """
        booking = self.repository.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(details={"booking_id": booking_id})

        payment = self.repository.get_payment_for_booking(booking_id)
        if payment is None:
            raise BookingNotFoundError(
                "No payment found for booking", details={"booking_id": booking_id}
            )

        listing = self.repository.get_listing(booking.listing_id)
        return self.calculate_for(booking, payment, listing, as_of)

    def calculate_for(
        self,
        booking: Booking,
        payment: Payment,
        listing: Listing | None,
        as_of: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Calculate the refund for already-loaded records."""
        as_of = as_of or dt.datetime.now(dt.UTC)
        days = days_until_check_in(booking.check_in_date, as_of)

        policy_id = listing.cancellation_policy if listing else None
        policy = get_cancellation_policy(policy_id)
        percentage = resolve_refund_percentage(policy.policy_id, days)

        original_amount = payment.amount
        # Round half up
        refund_amount = (original_amount * percentage + 50) // 100
        refundable_amount = max(
            0, min(refund_amount, original_amount - payment.platform_fee)
        )

        return RefundCalculation(
            original_amount=original_amount,
            refund_amount=refund_amount,
            refund_percentage=percentage,
            platform_fee=payment.platform_fee,
            host_amount=payment.host_amount,
            refundable_amount=refundable_amount,
            days_until_check_in=days,
            policy=policy,
        )

    @staticmethod
    def get_policy_description(policy_id: str | None) -> str:
        """Get human-readable description of a cancellation policy."""
        policy = get_cancellation_policy(policy_id)
        lines = [f"{policy.name} cancellation policy:"]
        lines.extend(f"• {condition}" for condition in policy.conditions)
        return "\n".join(lines)
