"""Escrow service for funds held on behalf of hosts.

Escrow is created when a payment succeeds (held amount = host amount) and is
released either on check-in or when the booking is cancelled. Releasing an
already-released escrow is a no-op so that the cancellation path, the
check-in path and operational tooling can all call it safely.
"""

import datetime as dt
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING

from settlement.models import Escrow, EscrowNotFoundError, EscrowStatus
from settlement.utils.logging import get_logger, log_settlement_operation
from settlement.utils.side_effects import best_effort

if TYPE_CHECKING:
    from .notification_service import Notifier
    from .repository import SettlementRepository

logger = get_logger(__name__)


class EscrowService:
    """Service for creating, releasing and disputing escrow holds."""

    # Optimistic retries when a concurrent partial release moves the amount
    MAX_RELEASE_ATTEMPTS = 3

    def __init__(
        self,
        repository: "SettlementRepository",
        notifier: "Notifier | None" = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        """Initialize escrow service.

        Args:
            repository: Settlement persistence
            notifier: Optional notifier for dispute alerts
            clock: Returns the current time (UTC)
        """
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))

    def _generate_escrow_id(self) -> str:
        return f"ESC-{uuid.uuid4().hex[:12].upper()}"

    def create_escrow(
        self,
        booking_id: str,
        held_amount: int,
        release_date: dt.datetime | None = None,
    ) -> Escrow:
        """Hold funds for a booking.

        Args:
            booking_id: Booking the funds belong to
            held_amount: Amount to hold in cents
            release_date: Optional planned release time

        Returns:
            Created Escrow with HELD status
        """
        escrow = Escrow(
            escrow_id=self._generate_escrow_id(),
            booking_id=booking_id,
            status=EscrowStatus.HELD,
            held_amount=held_amount,
            released_amount=0,
            release_date=release_date,
            created_at=self.clock(),
        )
        self.repository.create_escrow(escrow)
        self.repository.attach_escrow(booking_id, escrow.escrow_id)

        log_settlement_operation(
            logger,
            "create_escrow",
            booking_id=booking_id,
            amount_cents=held_amount,
            escrow_id=escrow.escrow_id,
        )
        return escrow

    def get_escrow(self, escrow_id: str) -> Escrow:
        """Get an escrow by ID.

        Raises:
            EscrowNotFoundError: If it does not exist
        """
        escrow = self.repository.get_escrow(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(
                f"Escrow {escrow_id} not found", details={"escrow_id": escrow_id}
            )
        return escrow

    def get_escrow_for_booking(self, booking_id: str) -> Escrow | None:
        """Get the escrow of a booking, if any."""
        return self.repository.get_escrow_for_booking(booking_id)

    def release_escrow(
        self,
        escrow_id: str,
        release_amount: int | None = None,
        reason: str | None = None,
    ) -> Escrow:
        """Release escrow funds, fully or partially.

        Idempotent: an escrow that is already released is returned unchanged.

        Args:
            escrow_id: Escrow to release
            release_amount: Amount in cents; defaults to everything still held
            reason: Why the funds are released

        Returns:
            The escrow after the release

        Raises:
            EscrowNotFoundError: If the escrow does not exist
        """
        for _ in range(self.MAX_RELEASE_ATTEMPTS):
            escrow = self.get_escrow(escrow_id)

            if escrow.status == EscrowStatus.RELEASED:
                logger.info("Escrow %s already released, nothing to do", escrow_id)
                return escrow

            amount = escrow.remaining_amount if release_amount is None else release_amount
            new_released = min(escrow.held_amount, escrow.released_amount + amount)
            new_status = (
                EscrowStatus.RELEASED if new_released >= escrow.held_amount else escrow.status
            )

            updated = self.repository.release_escrow(
                escrow_id,
                expected_released_amount=escrow.released_amount,
                released_amount=new_released,
                status=new_status,
                reason=reason,
                released_at=self.clock(),
            )
            if updated is not None:
                log_settlement_operation(
                    logger,
                    "release_escrow",
                    booking_id=updated.booking_id,
                    amount_cents=new_released - escrow.released_amount,
                    status=updated.status.value,
                    escrow_id=escrow_id,
                )
                return updated

            logger.info("Escrow %s changed during release, re-reading", escrow_id)

        # Lost every race; report whatever state won
        return self.get_escrow(escrow_id)

    def dispute_escrow(self, escrow_id: str, reason: str) -> Escrow:
        """Freeze held funds because of a dispute.

        Raises:
            EscrowNotFoundError: If the escrow does not exist
        """
        updated = self.repository.dispute_escrow(escrow_id, reason)
        if updated is None:
            escrow = self.get_escrow(escrow_id)
            logger.warning(
                "Escrow %s not disputed: status is %s", escrow_id, escrow.status.value
            )
            return escrow

        log_settlement_operation(
            logger,
            "dispute_escrow",
            booking_id=updated.booking_id,
            status=updated.status.value,
            escrow_id=escrow_id,
        )

        if self.notifier is not None:
            booking = self.repository.get_booking(updated.booking_id)
            if booking is not None:
                best_effort(
                    logger,
                    "dispute notification",
                    self.notifier.notify_escrow_dispute,
                    booking_id=booking.booking_id,
                    reason=reason,
                    recipients=[booking.guest_id, booking.host_id],
                )

        return updated
