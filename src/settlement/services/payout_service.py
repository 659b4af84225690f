"""Payout service for host earnings.

A booking has at most one pending payout. Scheduling again (payment webhook
followed by check-in, or a retried check-in) moves the existing pending payout
instead of creating a second one. Payouts leave PENDING exactly once through
status-predicated writes, so a payout is never transferred twice. Payouts of
cancelled bookings are voided (marked failed) instead of transferred.
"""

import datetime as dt
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING

from settlement.config import Settings, get_settings
from settlement.models import (
    Booking,
    BookingStatus,
    Payout,
    PayoutError,
    PayoutNotFoundError,
    PayoutRunSummary,
    PayoutStats,
    PayoutStatus,
    PaymentProcessorError,
)
from settlement.utils.logging import (
    correlation_scope,
    get_logger,
    log_settlement_operation,
)

if TYPE_CHECKING:
    from .payment_processor import PaymentProcessor
    from .repository import SettlementRepository

logger = get_logger(__name__)

PAYOUT_CANCEL_REASON = "Booking cancelled"


class PayoutService:
    """Service for scheduling and paying out host earnings."""

    def __init__(
        self,
        repository: "SettlementRepository",
        processor: "PaymentProcessor",
        settings: Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        """Initialize payout service.

        Args:
            repository: Settlement persistence
            processor: Payment processor used for transfers
            settings: Settlement settings (payout delay)
            clock: Returns the current time (UTC)
        """
        self.repository = repository
        self.processor = processor
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))

    def _generate_payout_id(self) -> str:
        return f"PO-{uuid.uuid4().hex[:12].upper()}"

    def schedule_payout(
        self,
        booking: Booking,
        amount: int,
        currency: str | None = None,
    ) -> Payout:
        """Schedule the host payout of a booking.

        The payout becomes due payout_delay_hours after now. An existing
        pending payout for the booking is rescheduled instead of duplicated.

        Args:
            booking: Booking the earnings belong to
            amount: Host amount in cents
            currency: Currency code (defaults to the booking currency)

        Returns:
            The pending payout
        """
        now = self.clock()
        scheduled_at = now + dt.timedelta(hours=self.settings.payout_delay_hours)

        for existing in self.repository.get_payouts_for_booking(booking.booking_id):
            if existing.status != PayoutStatus.PENDING:
                continue
            rescheduled = self.repository.reschedule_payout(
                existing.payout_id, amount=amount, scheduled_at=scheduled_at
            )
            if rescheduled is not None:
                log_settlement_operation(
                    logger,
                    "reschedule_payout",
                    booking_id=booking.booking_id,
                    amount_cents=amount,
                    payout_id=existing.payout_id,
                    scheduled_at=scheduled_at.isoformat(),
                )
                return rescheduled

        payout = Payout(
            payout_id=self._generate_payout_id(),
            booking_id=booking.booking_id,
            host_id=booking.host_id,
            amount=amount,
            currency=currency or booking.currency,
            status=PayoutStatus.PENDING,
            scheduled_at=scheduled_at,
            created_at=now,
        )
        self.repository.create_payout(payout)

        log_settlement_operation(
            logger,
            "schedule_payout",
            booking_id=booking.booking_id,
            amount_cents=amount,
            payout_id=payout.payout_id,
            scheduled_at=scheduled_at.isoformat(),
        )
        return payout

    def get_payout(self, payout_id: str) -> Payout:
        """Get a payout by ID.

        Raises:
            PayoutNotFoundError: If it does not exist
        """
        payout = self.repository.get_payout(payout_id)
        if payout is None:
            raise PayoutNotFoundError(f"Payout {payout_id} not found", payout_id)
        return payout

    def process_payout(self, payout_id: str, force: bool = False) -> Payout:
        """Transfer a pending payout to the host's connected account.

        Args:
            payout_id: Payout to process
            force: Skip the scheduled-time and account-readiness checks

        Returns:
            The payout in PAID status

        Raises:
            PayoutError: If the payout is not processable or the transfer failed
        """
        payout = self.get_payout(payout_id)
        if payout.status != PayoutStatus.PENDING:
            raise PayoutError(
                f"Payout {payout_id} is {payout.status.value}, not pending", payout_id
            )

        booking = self.repository.get_booking(payout.booking_id)
        if booking is not None and booking.status == BookingStatus.CANCELLED:
            # Guest was refunded; the host share is never transferred, even with force
            self.repository.mark_payout_failed(payout_id, reason=PAYOUT_CANCEL_REASON)
            raise PayoutError(
                f"Booking {payout.booking_id} is cancelled, payout {payout_id} voided",
                payout_id,
            )

        now = self.clock()
        if not force and payout.scheduled_at > now:
            raise PayoutError(f"Payout {payout_id} is not due yet", payout_id)

        account = self.repository.get_connected_account(payout.host_id)
        if account is None:
            raise PayoutError(
                f"Host {payout.host_id} has no connected account", payout_id
            )
        if not force and not account.is_payout_ready:
            raise PayoutError(
                f"Connected account for host {payout.host_id} cannot receive payouts",
                payout_id,
            )

        try:
            transfer = self.processor.create_transfer(
                destination=account.processor_account_id,
                amount=payout.amount,
                currency=payout.currency,
                payout_id=payout.payout_id,
                booking_id=payout.booking_id,
                host_id=payout.host_id,
            )
        except PaymentProcessorError as e:
            self.repository.mark_payout_failed(payout_id, reason=str(e))
            log_settlement_operation(
                logger,
                "process_payout",
                booking_id=payout.booking_id,
                amount_cents=payout.amount,
                status=PayoutStatus.FAILED.value,
                error=str(e),
                payout_id=payout_id,
            )
            raise PayoutError(f"Transfer failed: {e}", payout_id) from e

        paid = self.repository.mark_payout_paid(
            payout_id, transfer_reference=transfer.id, paid_at=now
        )
        if paid is None:
            # Another worker settled it between the read and the transfer
            raise PayoutError(f"Payout {payout_id} is no longer pending", payout_id)

        log_settlement_operation(
            logger,
            "process_payout",
            booking_id=paid.booking_id,
            amount_cents=paid.amount,
            status=paid.status.value,
            payout_id=payout_id,
            transfer_id=transfer.id,
        )
        return paid

    def process_due_payouts(self) -> PayoutRunSummary:
        """Process every pending payout whose scheduled time has passed.

        Payouts of hosts whose account is not ready are skipped and stay
        pending for the next run.
        """
        summary = PayoutRunSummary()

        with correlation_scope():
            for payout in self.repository.get_due_payouts(self.clock()):
                account = self.repository.get_connected_account(payout.host_id)
                if account is None or not account.is_payout_ready:
                    summary.skipped += 1
                    summary.results.append(
                        {"payout_id": payout.payout_id, "result": "skipped"}
                    )
                    continue

                try:
                    self.process_payout(payout.payout_id)
                except PayoutError as e:
                    summary.failed += 1
                    summary.results.append(
                        {"payout_id": payout.payout_id, "result": "failed", "error": str(e)}
                    )
                    continue

                summary.processed += 1
                summary.results.append({"payout_id": payout.payout_id, "result": "paid"})

            logger.info(
                "Payout run finished: %d processed, %d failed, %d skipped",
                summary.processed,
                summary.failed,
                summary.skipped,
            )
        return summary

    def cancel_payout(self, payout_id: str, reason: str = "Cancelled") -> Payout:
        """Stop a pending payout from being transferred.

        Raises:
            PayoutError: If the payout does not exist or is no longer pending
        """
        cancelled = self.repository.mark_payout_failed(payout_id, reason=reason)
        if cancelled is None:
            payout = self.get_payout(payout_id)
            raise PayoutError(
                f"Payout {payout_id} is {payout.status.value}, not pending", payout_id
            )

        log_settlement_operation(
            logger,
            "cancel_payout",
            booking_id=cancelled.booking_id,
            status=cancelled.status.value,
            payout_id=payout_id,
            reason=reason,
        )
        return cancelled

    def cancel_pending_payouts(
        self, booking_id: str, reason: str = PAYOUT_CANCEL_REASON
    ) -> list[Payout]:
        """Cancel every pending payout of a booking.

        Raises:
            PayoutError: If a payout stopped being pending before it was cancelled
        """
        return [
            self.cancel_payout(payout.payout_id, reason)
            for payout in self.repository.get_payouts_for_booking(booking_id)
            if payout.status == PayoutStatus.PENDING
        ]

    def get_host_payout_stats(self, host_id: str) -> PayoutStats:
        """Aggregate payout figures for a host's earnings screen."""
        stats = PayoutStats()
        for payout in self.repository.get_payouts_for_host(host_id):
            if payout.status == PayoutStatus.PAID:
                stats.total_paid += payout.amount
                stats.total_earned += payout.amount
            elif payout.status == PayoutStatus.PENDING:
                stats.pending_amount += payout.amount
                stats.total_earned += payout.amount
                if stats.next_payout_date is None or payout.scheduled_at < stats.next_payout_date:
                    stats.next_payout_date = payout.scheduled_at
        return stats
