"""Settlement orchestration for booking cancellation and check-in.

SettlementService is the only component that moves Booking, Payment, Escrow
and Payout state. Each entry point validates first, then commits the booking
transition with a status-predicated write, and only after that commit talks
to the payment processor and notifier. Anything that fails after the commit
is reported as a warning on the result, never by undoing the commit.
"""

import datetime as dt
import uuid
from collections.abc import Callable
from functools import lru_cache
from zoneinfo import ZoneInfo

from settlement.config import Settings, get_settings
from settlement.models import (
    Booking,
    BookingCannotCancelError,
    BookingCannotCheckInError,
    BookingError,
    BookingNotFoundError,
    CancellationActor,
    CancellationPolicy,
    CancellationRequest,
    CancellationResult,
    CheckIn,
    CheckInAvailability,
    CheckInMethod,
    CheckInResult,
    Escrow,
    ForbiddenError,
    Payment,
    PaymentProcessorError,
    PaymentStatus,
    RefundCalculation,
)
from settlement.utils.logging import (
    correlation_scope,
    get_logger,
    log_settlement_operation,
)
from settlement.utils.side_effects import best_effort

from .dynamodb import get_dynamodb_service
from .escrow_service import EscrowService
from .notification_service import NotificationService, Notifier
from .payment_processor import PaymentProcessor, get_payment_processor
from .payout_service import PAYOUT_CANCEL_REASON, PayoutService
from .refund_policy_service import RefundCalculator, get_cancellation_policy
from .repository import SettlementRepository

logger = get_logger(__name__)

CHECK_IN_SUCCESS_MESSAGE = (
    "Check-in completed successfully! Funds will be transferred to the host in 24 hours."
)
ESCROW_RELEASE_ON_CHECK_IN = "Guest checked in successfully"
ESCROW_RELEASE_ON_CANCEL = "Booking cancelled"


def can_cancel_booking(booking: Booking, user_id: str, role: CancellationActor) -> bool:
    """Whether user_id, acting as role, may cancel the booking now."""
    if booking.is_terminal:
        return False
    if role == CancellationActor.GUEST:
        return user_id == booking.guest_id
    return user_id == booking.host_id


class SettlementService:
    """Orchestrates cancellations and check-ins for bookings."""

    def __init__(
        self,
        repository: SettlementRepository,
        processor: PaymentProcessor,
        notifier: Notifier,
        settings: Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        escrow_service: EscrowService | None = None,
        payout_service: PayoutService | None = None,
    ) -> None:
        """Initialize settlement service.

        Args:
            repository: Settlement persistence
            processor: Payment processor for refunds and transfers
            notifier: Outbound notifications
            settings: Settlement settings
            clock: Returns the current time (UTC)
            escrow_service: Escrow operations (built from the repository if omitted)
            payout_service: Payout operations (built from the repository if omitted)
        """
        self.repository = repository
        self.processor = processor
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))
        self.refund_calculator = RefundCalculator(repository)
        self.escrow_service = escrow_service or EscrowService(
            repository, notifier=notifier, clock=self.clock
        )
        self.payout_service = payout_service or PayoutService(
            repository, processor, settings=self.settings, clock=self.clock
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def calculate_refund(
        self,
        booking_id: str,
        as_of: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Calculate what cancelling the booking now would refund."""
        return self.refund_calculator.calculate_refund(booking_id, as_of or self.clock())

    def get_cancellation_policy(self, policy_id: str | None) -> CancellationPolicy:
        """Get a policy from the catalog, falling back to flexible."""
        return get_cancellation_policy(policy_id)

    def can_cancel_booking(
        self, booking: Booking, user_id: str, role: CancellationActor
    ) -> bool:
        """Whether user_id, acting as role, may cancel the booking now."""
        return can_cancel_booking(booking, user_id, role)

    def check_in_availability(
        self,
        booking: Booking,
        now: dt.datetime | None = None,
    ) -> CheckInAvailability:
        """Whether check-in may be offered for the booking at this moment.

        Check-in opens on the check-in date and only between the configured
        window hours, evaluated in the configured check-in timezone.
        """
        if booking.is_terminal:
            return CheckInAvailability(
                available=False, reason=f"Booking is {booking.status.value}"
            )

        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=dt.UTC)
        local_now = now.astimezone(ZoneInfo(self.settings.check_in_timezone))

        start = self.settings.check_in_window_start_hour
        end = self.settings.check_in_window_end_hour
        if local_now.date() < booking.check_in_date:
            return CheckInAvailability(
                available=False,
                reason=f"Check-in opens on {booking.check_in_date.isoformat()}",
            )
        if not start <= local_now.hour <= end:
            return CheckInAvailability(
                available=False,
                reason=f"Check-in is available between {start:02d}:00 and {end:02d}:59",
            )
        return CheckInAvailability(available=True)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_booking(self, request: CancellationRequest) -> CancellationResult:
        """Cancel a booking, refunding the guest under the listing's policy.

        Args:
            request: Who cancels which booking, and why

        Returns:
            CancellationResult. success is True once the booking is cancelled,
            even if the refund failed (refund_id is then None and a warning
            explains why). Unexpected failures return success False.

        Raises:
            BookingNotFoundError: Booking or its payment does not exist
            ForbiddenError: Acting user is not the party they claim to be
            BookingCannotCancelError: Booking is already cancelled or completed
        """
        with correlation_scope():
            try:
                return self._cancel_booking(request)
            except BookingError:
                raise
            except Exception as e:
                log_settlement_operation(
                    logger,
                    "cancel_booking",
                    booking_id=request.booking_id,
                    error=str(e),
                )
                return CancellationResult(success=False, error=str(e))

    def _cancel_booking(self, request: CancellationRequest) -> CancellationResult:
        booking = self.repository.get_booking(request.booking_id)
        if booking is None:
            raise BookingNotFoundError(details={"booking_id": request.booking_id})

        if request.cancelled_by == CancellationActor.GUEST:
            authorized = request.user_id == booking.guest_id
        else:
            authorized = request.user_id == booking.host_id
        if not authorized:
            raise ForbiddenError(
                details={
                    "booking_id": booking.booking_id,
                    "cancelled_by": request.cancelled_by.value,
                }
            )

        if booking.is_terminal:
            raise BookingCannotCancelError(
                f"Booking is already {booking.status.value}",
                details={"booking_id": booking.booking_id, "status": booking.status.value},
            )

        payment = self.repository.get_payment_for_booking(booking.booking_id)
        if payment is None:
            raise BookingNotFoundError(
                "No payment found for booking", details={"booking_id": booking.booking_id}
            )
        listing = self.repository.get_listing(booking.listing_id)

        now = self.clock()
        calculation = self.refund_calculator.calculate_for(booking, payment, listing, now)
        refundable = calculation.refundable_amount

        cancelled = self.repository.cancel_booking(
            booking.booking_id,
            reason=request.reason,
            cancelled_by=request.cancelled_by,
            user_id=request.user_id,
            refunded_amount=refundable,
            cancelled_at=now,
        )
        if cancelled is None:
            # Lost a race with another cancellation or a check-in
            raise BookingCannotCancelError(
                "Booking was cancelled or completed concurrently",
                details={"booking_id": booking.booking_id},
            )

        log_settlement_operation(
            logger,
            "cancel_booking",
            booking_id=booking.booking_id,
            payment_id=payment.payment_id,
            amount_cents=refundable,
            status=cancelled.status.value,
            cancelled_by=request.cancelled_by.value,
            policy=calculation.policy.policy_id,
        )

        warnings: list[str] = []
        refund_id: str | None = None

        if refundable > 0:
            refund_id, warning = self._refund(booking, payment, refundable, request)
            if warning:
                warnings.append(warning)

        _, warning = best_effort(
            logger,
            "escrow release",
            self._release_booking_escrow,
            booking,
            ESCROW_RELEASE_ON_CANCEL,
        )
        if warning:
            warnings.append(warning)

        # A payout scheduled before the cancellation must never be transferred
        _, warning = best_effort(
            logger,
            "payout cancellation",
            self.payout_service.cancel_pending_payouts,
            booking.booking_id,
            PAYOUT_CANCEL_REASON,
        )
        if warning:
            warnings.append(warning)

        title = listing.title if listing else "Property"
        _, warning = best_effort(
            logger,
            "cancellation notification",
            self.notifier.notify_cancellation,
            booking_id=booking.booking_id,
            listing_title=title,
            refund_amount=refundable,
            currency=payment.currency,
            cancelled_by=request.cancelled_by,
            recipients=[booking.guest_id, booking.host_id],
        )
        if warning:
            warnings.append(warning)

        if refundable > 0 and request.cancelled_by == CancellationActor.GUEST:
            _, warning = best_effort(
                logger,
                "refund notification",
                self.notifier.notify_refund_processed,
                booking_id=booking.booking_id,
                listing_title=title,
                amount=refundable,
                currency=payment.currency,
                recipient=booking.guest_id,
            )
            if warning:
                warnings.append(warning)

        return CancellationResult(
            success=True,
            refund_amount=refundable,
            refund_id=refund_id,
            warnings=warnings,
        )

    def _release_booking_escrow(self, booking: Booking, reason: str) -> Escrow | None:
        """Release the booking's escrow, if it has one."""
        escrow_id = booking.escrow_id
        if escrow_id is None:
            escrow = self.repository.get_escrow_for_booking(booking.booking_id)
            if escrow is None:
                return None
            escrow_id = escrow.escrow_id
        return self.escrow_service.release_escrow(escrow_id, reason=reason)

    def _refund(
        self,
        booking: Booking,
        payment: Payment,
        amount: int,
        request: CancellationRequest,
    ) -> tuple[str | None, str | None]:
        """Issue the processor refund and record it on the payment.

        Returns:
            (refund_id, warning). refund_id is None when no refund was made;
            warning is set when the refund or its bookkeeping failed.
        """
        if not payment.processor_payment_reference:
            logger.warning(
                "Payment %s has no processor reference, refund skipped", payment.payment_id
            )
            return None, "Refund not processed: payment has no processor reference"

        reason = (
            "requested_by_customer"
            if request.cancelled_by == CancellationActor.GUEST
            else request.reason
        )
        try:
            refund = self.processor.process_refund(
                payment.processor_payment_reference,
                amount,
                reason,
                booking_id=booking.booking_id,
            )
        except PaymentProcessorError as e:
            log_settlement_operation(
                logger,
                "process_refund",
                booking_id=booking.booking_id,
                payment_id=payment.payment_id,
                amount_cents=amount,
                error=str(e),
                processor_error_code=e.processor_error_code,
            )
            return None, f"Refund failed: {e}"

        status = (
            PaymentStatus.REFUNDED
            if amount == payment.amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        log_settlement_operation(
            logger,
            "process_refund",
            booking_id=booking.booking_id,
            payment_id=payment.payment_id,
            amount_cents=amount,
            status=status.value,
            refund_id=refund.id,
        )
        # The money has moved; a failed bookkeeping write must not hide refund.id
        _, warning = best_effort(
            logger,
            "payment refund update",
            self.repository.update_payment_refund,
            payment.payment_id,
            status=status,
            refund_id=refund.id,
            refunded_amount=amount,
            refunded_at=self.clock(),
        )
        return refund.id, warning

    # =========================================================================
    # Check-in
    # =========================================================================

    def complete_check_in(
        self,
        booking_id: str,
        acting_user_id: str,
        notes: str | None = None,
    ) -> CheckInResult:
        """Confirm the guest's arrival, release escrow and schedule the payout.

        Args:
            booking_id: Booking being checked in
            acting_user_id: User confirming the arrival (must be the host)
            notes: Optional notes stored on the check-in record

        Returns:
            CheckInResult. Outside the check-in window, success and available
            are False and nothing is written.

        Raises:
            BookingNotFoundError: Booking does not exist
            ForbiddenError: Acting user is not the host
            BookingCannotCheckInError: Booking is already cancelled or completed
        """
        with correlation_scope():
            return self._complete_check_in(booking_id, acting_user_id, notes)

    def _complete_check_in(
        self,
        booking_id: str,
        acting_user_id: str,
        notes: str | None,
    ) -> CheckInResult:
        booking = self.repository.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(details={"booking_id": booking_id})

        if acting_user_id != booking.host_id:
            raise ForbiddenError(
                "Only the host can confirm check-in",
                details={"booking_id": booking_id},
            )

        if booking.is_terminal:
            raise BookingCannotCheckInError(
                f"Booking is already {booking.status.value}",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        now = self.clock()
        availability = self.check_in_availability(booking, now)
        if not availability.available:
            logger.info(
                "Check-in not available for booking %s: %s", booking_id, availability.reason
            )
            return CheckInResult(
                success=False,
                available=False,
                message=availability.reason or "Check-in is not available yet",
            )

        check_in = CheckIn(
            check_in_id=f"CI-{uuid.uuid4().hex[:12].upper()}",
            booking_id=booking_id,
            checked_in_at=now,
            checked_in_by=acting_user_id,
            method=CheckInMethod.HOST,
            notes=notes,
        )
        if not self.repository.record_check_in(check_in):
            raise BookingCannotCheckInError(
                "Booking was cancelled or completed concurrently",
                details={"booking_id": booking_id},
            )

        log_settlement_operation(
            logger,
            "complete_check_in",
            booking_id=booking_id,
            check_in_id=check_in.check_in_id,
        )

        warnings: list[str] = []

        _, warning = best_effort(
            logger,
            "escrow release",
            self._release_booking_escrow,
            booking,
            ESCROW_RELEASE_ON_CHECK_IN,
        )
        if warning:
            warnings.append(warning)

        payout = None
        payment = self.repository.get_payment_for_booking(booking_id)
        if payment is None:
            logger.warning("No payment for booking %s, payout not scheduled", booking_id)
            warnings.append("Payout not scheduled: no payment found for booking")
        else:
            payout, warning = best_effort(
                logger,
                "payout scheduling",
                self.payout_service.schedule_payout,
                booking,
                payment.host_amount,
                payment.currency,
            )
            if warning:
                warnings.append(warning)

        return CheckInResult(
            success=True,
            message=CHECK_IN_SUCCESS_MESSAGE,
            check_in_id=check_in.check_in_id,
            payout_id=payout.payout_id if payout else None,
            payout_scheduled_at=payout.scheduled_at if payout else None,
            warnings=warnings,
        )


@lru_cache(maxsize=1)
def get_settlement_service() -> SettlementService:
    """Get the shared SettlementService wired to DynamoDB and the processor."""
    settings = get_settings()
    db = get_dynamodb_service(settings)
    return SettlementService(
        repository=SettlementRepository(db),
        processor=get_payment_processor(),
        notifier=NotificationService(db),
        settings=settings,
    )
