"""Webhook handler for payment processor events.

Raw Stripe payloads are verified, then mapped into PaymentIntentEvent before
any settlement logic runs. Each event ID is processed once; deliveries of an
event that is already in the event log are reported as duplicates.

payment_intent.succeeded: payment -> succeeded, booking -> confirmed, escrow
created for the host amount if the booking has none, host payout scheduled.
payment_intent.payment_failed: payment -> failed.
"""

import datetime as dt
import hashlib
import json
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import stripe
from pydantic import ValidationError

from settlement.config import Settings, get_settings
from settlement.models import (
    BookingStatus,
    ErrorCode,
    PaymentIntentEvent,
    PaymentProcessorError,
    PaymentStatus,
    WebhookEventLog,
)
from settlement.utils.logging import correlation_scope, get_logger, log_webhook_event

from .dynamodb import DynamoDBService, get_dynamodb_service
from .escrow_service import EscrowService
from .payment_processor import get_payment_processor
from .payout_service import PayoutService
from .repository import SettlementRepository
from .ssm_service import STRIPE_WEBHOOK_SECRET, SSMService

logger = get_logger(__name__)

SUPPORTED_EVENT_TYPES = frozenset(
    {"payment_intent.succeeded", "payment_intent.payment_failed"}
)


def parse_payment_intent_event(raw: dict[str, Any]) -> PaymentIntentEvent | None:
    """Map a raw Stripe event into a typed PaymentIntentEvent.

    Returns:
        The typed event, or None if the event type is not handled here.

    Raises:
        ValueError: If a supported event is missing required fields.
    """
    event_type = raw.get("type")
    if event_type not in SUPPORTED_EVENT_TYPES:
        return None

    intent = raw.get("data", {}).get("object", {})
    last_error = intent.get("last_payment_error") or {}
    try:
        return PaymentIntentEvent(
            event_id=raw.get("id", ""),
            event_type=event_type,
            payment_intent_id=intent.get("id", ""),
            amount_received=int(intent.get("amount_received") or 0),
            failure_message=last_error.get("message"),
        )
    except ValidationError as e:
        raise ValueError(f"Malformed {event_type} event: {e}") from e


def payload_hash(raw: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON payload."""
    return hashlib.sha256(json.dumps(raw, sort_keys=True, default=str).encode()).hexdigest()


class WebhookHandler:
    """Handler for payment processor webhook events."""

    WEBHOOK_EVENTS_TABLE = "webhook-events"

    def __init__(
        self,
        repository: SettlementRepository,
        escrow_service: EscrowService,
        payout_service: PayoutService,
        settings: Settings | None = None,
        ssm: SSMService | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        """Initialize webhook handler.

        Args:
            repository: Settlement persistence
            escrow_service: Creates escrow for newly paid bookings
            payout_service: Schedules host payouts
            settings: Settlement settings
            ssm: SSM service for the webhook signing secret
            clock: Returns the current time (UTC)
        """
        self.repository = repository
        self.escrow_service = escrow_service
        self.payout_service = payout_service
        self.settings = settings or get_settings()
        self._ssm = ssm
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))

    @property
    def _db(self) -> DynamoDBService:
        return self.repository.db

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            Parsed Stripe event dictionary

        Raises:
            PaymentProcessorError: If the signature is invalid
        """
        if self._ssm is None:
            self._ssm = SSMService(self.settings)
        webhook_secret = self._ssm.get_secret(STRIPE_WEBHOOK_SECRET)

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise PaymentProcessorError(
                "Invalid webhook signature", code=ErrorCode.INVALID_WEBHOOK_SIGNATURE
            ) from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        return dict(event)

    def is_event_already_processed(self, event_id: str) -> bool:
        """Check if a webhook event was already processed."""
        return self._db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id}) is not None

    def log_event(self, entry: WebhookEventLog) -> None:
        """Store a webhook event for idempotency and audit trail."""
        item: dict[str, Any] = {
            "event_id": entry.event_id,
            "event_type": entry.event_type,
            "processed_at": entry.processed_at.isoformat(),
            "payload_hash": entry.payload_hash,
            "processing_result": entry.processing_result,
        }
        if entry.booking_id:
            item["booking_id"] = entry.booking_id
        if entry.payment_id:
            item["payment_id"] = entry.payment_id
        if entry.error_message:
            item["error_message"] = entry.error_message

        self._db.put_item(self.WEBHOOK_EVENTS_TABLE, item)

    def handle_event(self, raw: dict[str, Any]) -> tuple[str, str | None]:
        """Process a verified webhook event.

        Args:
            raw: Event dictionary from verify_webhook_signature

        Returns:
            Tuple of (processing_result, error_message). processing_result is
            one of success, duplicate, skipped, error.
        """
        event_id = raw.get("id", "")
        # Log records of one event, payout scheduling included, share its ID
        with correlation_scope(event_id or None):
            return self._handle_event(raw, event_id, raw.get("type", ""))

    def _handle_event(
        self, raw: dict[str, Any], event_id: str, event_type: str
    ) -> tuple[str, str | None]:
        if self.is_event_already_processed(event_id):
            log_webhook_event(logger, event_type, event_id, result="duplicate")
            return "duplicate", None

        try:
            event = parse_payment_intent_event(raw)
        except ValueError as e:
            return self._finish(raw, event_type, "error", str(e))

        if event is None:
            log_webhook_event(logger, event_type, event_id, result="skipped")
            return "skipped", f"Unhandled event type: {event_type}"

        if event.event_type == "payment_intent.succeeded":
            return self.process_payment_succeeded(event, raw)
        return self.process_payment_failed(event, raw)

    def process_payment_succeeded(
        self, event: PaymentIntentEvent, raw: dict[str, Any]
    ) -> tuple[str, str | None]:
        """Settle a successful payment: confirm booking, hold escrow, plan payout."""
        payment = self.repository.get_payment_by_reference(event.payment_intent_id)
        if payment is None:
            return self._finish(
                raw,
                event.event_type,
                "error",
                f"No payment for PaymentIntent {event.payment_intent_id}",
            )

        booking = self.repository.get_booking(payment.booking_id)
        if booking is None:
            return self._finish(
                raw,
                event.event_type,
                "error",
                f"Booking {payment.booking_id} not found",
                payment_id=payment.payment_id,
            )

        now = self.clock()
        try:
            self.repository.update_payment_status(
                payment.payment_id, PaymentStatus.SUCCEEDED, now
            )

            if booking.status == BookingStatus.CANCELLED:
                return self._finish(
                    raw,
                    event.event_type,
                    "skipped",
                    "Booking was cancelled before payment settled",
                    booking_id=booking.booking_id,
                    payment_id=payment.payment_id,
                )

            if booking.status == BookingStatus.PENDING:
                self.repository.confirm_booking(booking.booking_id, now)

            if self.repository.get_escrow_for_booking(booking.booking_id) is None:
                self.escrow_service.create_escrow(booking.booking_id, payment.host_amount)

            self.payout_service.schedule_payout(booking, payment.host_amount, payment.currency)
        except Exception as e:
            logger.exception("Failed to settle payment %s", payment.payment_id)
            return self._finish(
                raw,
                event.event_type,
                "error",
                f"Failed to settle payment: {e}",
                booking_id=booking.booking_id,
                payment_id=payment.payment_id,
            )

        return self._finish(
            raw,
            event.event_type,
            "success",
            booking_id=booking.booking_id,
            payment_id=payment.payment_id,
        )

    def process_payment_failed(
        self, event: PaymentIntentEvent, raw: dict[str, Any]
    ) -> tuple[str, str | None]:
        """Mark the payment of a failed PaymentIntent as failed."""
        payment = self.repository.get_payment_by_reference(event.payment_intent_id)
        if payment is None:
            return self._finish(
                raw,
                event.event_type,
                "error",
                f"No payment for PaymentIntent {event.payment_intent_id}",
            )

        self.repository.update_payment_status(
            payment.payment_id, PaymentStatus.FAILED, self.clock()
        )
        logger.info(
            "Payment %s failed: %s", payment.payment_id, event.failure_message or "unknown"
        )
        return self._finish(
            raw,
            event.event_type,
            "success",
            booking_id=payment.booking_id,
            payment_id=payment.payment_id,
        )

    def _finish(
        self,
        raw: dict[str, Any],
        event_type: str,
        result: str,
        error: str | None = None,
        *,
        booking_id: str | None = None,
        payment_id: str | None = None,
    ) -> tuple[str, str | None]:
        event_id = raw.get("id", "")
        self.log_event(
            WebhookEventLog(
                event_id=event_id,
                event_type=event_type,
                processed_at=self.clock(),
                payload_hash=payload_hash(raw),
                booking_id=booking_id,
                payment_id=payment_id,
                processing_result=result,
                error_message=error,
            )
        )
        log_webhook_event(
            logger,
            event_type,
            event_id,
            booking_id=booking_id,
            payment_id=payment_id,
            result=result,
            error=error,
        )
        return result, error


@lru_cache(maxsize=1)
def get_webhook_handler() -> WebhookHandler:
    """Get the shared WebhookHandler wired to DynamoDB and the processor."""
    settings = get_settings()
    repository = SettlementRepository(get_dynamodb_service(settings))
    return WebhookHandler(
        repository=repository,
        escrow_service=EscrowService(repository),
        payout_service=PayoutService(repository, get_payment_processor(), settings=settings),
        settings=settings,
    )
