"""Unit tests for the payment webhook handler.

Test categories:
- Mapping raw Stripe payloads into typed events
- Signature verification
- payment_intent.succeeded settlement (payment, booking, escrow, payout)
- payment_intent.payment_failed
- Idempotency by event ID
- Guest cancellation after the payout was planned
- Log correlation by event ID
"""

import datetime as dt
import logging
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import stripe

from settlement.config import Settings
from settlement.models import (
    Booking,
    BookingStatus,
    CancellationActor,
    CancellationRequest,
    ErrorCode,
    PaymentProcessorError,
    PaymentStatus,
    PayoutStatus,
)
from settlement.services.escrow_service import EscrowService
from settlement.services.payout_service import PayoutService
from settlement.services.repository import SettlementRepository
from settlement.services.settlement_service import SettlementService
from settlement.services.webhook_handler import (
    WebhookHandler,
    parse_payment_intent_event,
)

# === Test Configuration ===

BOOKING_ID = "BK-2026-0001"
GUEST_ID = "guest-123-abc"
HOST_ID = "host-456-def"
PAYMENT_ID = "PAY-0001"
PAYMENT_INTENT_ID = "pi_3ABC123DEF456"
TEST_WEBHOOK_SECRET = "whsec_test_secret123"
NOW = dt.datetime(2026, 6, 1, 9, 10, tzinfo=dt.UTC)


def make_event(
    event_type: str = "payment_intent.succeeded",
    event_id: str = "evt_1ABC123",
    **intent: Any,
) -> dict[str, Any]:
    """Build a raw Stripe event payload."""
    obj = {"id": PAYMENT_INTENT_ID, "object": "payment_intent", "amount_received": 20000}
    obj.update(intent)
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def pending_repository(
    repository: SettlementRepository,
    sample_listing,
    sample_booking: Booking,
    sample_payment,
) -> SettlementRepository:
    """Pending booking with a pending payment and no escrow yet."""
    repository.put_listing(sample_listing)
    repository.put_booking(
        sample_booking.model_copy(update={"status": BookingStatus.PENDING, "escrow_id": None})
    )
    repository.put_payment(sample_payment.model_copy(update={"status": PaymentStatus.PENDING}))
    return repository


@pytest.fixture
def handler(
    pending_repository: SettlementRepository,
    mock_processor: MagicMock,
    settings: Settings,
) -> WebhookHandler:
    clock = lambda: NOW  # noqa: E731
    return WebhookHandler(
        repository=pending_repository,
        escrow_service=EscrowService(pending_repository, clock=clock),
        payout_service=PayoutService(
            pending_repository, mock_processor, settings=settings, clock=clock
        ),
        settings=settings,
        clock=clock,
    )


# === Event Mapping ===


class TestParsePaymentIntentEvent:
    """Raw payloads become typed events."""

    def test_succeeded(self):
        event = parse_payment_intent_event(make_event())

        assert event.event_id == "evt_1ABC123"
        assert event.event_type == "payment_intent.succeeded"
        assert event.payment_intent_id == PAYMENT_INTENT_ID
        assert event.amount_received == 20000

    def test_failed_carries_failure_message(self):
        event = parse_payment_intent_event(
            make_event(
                "payment_intent.payment_failed",
                amount_received=0,
                last_payment_error={"message": "Your card was declined."},
            )
        )

        assert event.failure_message == "Your card was declined."

    def test_unsupported_type_returns_none(self):
        assert parse_payment_intent_event(make_event("charge.refunded")) is None

    def test_missing_intent_id_is_rejected(self):
        raw = make_event()
        raw["data"]["object"]["id"] = None

        with pytest.raises(ValueError, match="Malformed"):
            parse_payment_intent_event(raw)


# === Signature Verification ===


class TestVerifyWebhookSignature:
    """Signatures are checked with the secret from SSM."""

    def test_valid_signature(self, handler: WebhookHandler):
        ssm = MagicMock()
        ssm.get_secret.return_value = TEST_WEBHOOK_SECRET
        handler._ssm = ssm

        with patch(
            "settlement.services.webhook_handler.stripe.Webhook.construct_event"
        ) as construct:
            construct.return_value = make_event()
            event = handler.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert event["id"] == "evt_1ABC123"
        construct.assert_called_once_with(b"{}", "t=1,v1=abc", TEST_WEBHOOK_SECRET)
        ssm.get_secret.assert_called_once_with("stripe/webhook_secret")

    def test_invalid_signature(self, handler: WebhookHandler):
        ssm = MagicMock()
        ssm.get_secret.return_value = TEST_WEBHOOK_SECRET
        handler._ssm = ssm

        with patch(
            "settlement.services.webhook_handler.stripe.Webhook.construct_event"
        ) as construct:
            construct.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=abc")
            with pytest.raises(PaymentProcessorError) as exc_info:
                handler.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert exc_info.value.code == ErrorCode.INVALID_WEBHOOK_SIGNATURE


# === payment_intent.succeeded ===


class TestPaymentSucceeded:
    """Successful payments confirm the booking and set up settlement."""

    def test_result_is_success(self, handler: WebhookHandler):
        assert handler.handle_event(make_event()) == ("success", None)

    def test_payment_and_booking_updated(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        """Payment succeeded and booking confirmed."""
        handler.handle_event(make_event())

        assert pending_repository.get_payment(PAYMENT_ID).status == PaymentStatus.SUCCEEDED
        assert pending_repository.get_booking(BOOKING_ID).status == BookingStatus.CONFIRMED

    def test_escrow_holds_host_amount(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        """Escrow is created for the host amount and linked to the booking."""
        handler.handle_event(make_event())

        escrow = pending_repository.get_escrow_for_booking(BOOKING_ID)
        assert escrow.held_amount == 18000
        assert pending_repository.get_booking(BOOKING_ID).escrow_id == escrow.escrow_id

    def test_payout_scheduled(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        """A pending payout for the host amount is planned 24 hours out."""
        handler.handle_event(make_event())

        payouts = pending_repository.get_payouts_for_booking(BOOKING_ID)
        assert len(payouts) == 1
        assert payouts[0].status == PayoutStatus.PENDING
        assert payouts[0].amount == 18000
        assert payouts[0].scheduled_at == NOW + dt.timedelta(hours=24)

    def test_unknown_payment_intent(self, handler: WebhookHandler):
        result, error = handler.handle_event(make_event(id="pi_unknown"))

        assert result == "error"
        assert "pi_unknown" in error

    def test_cancelled_booking_is_not_settled(
        self,
        handler: WebhookHandler,
        pending_repository: SettlementRepository,
        sample_booking: Booking,
    ):
        """Late payment for a cancelled booking creates no escrow or payout."""
        pending_repository.put_booking(
            sample_booking.model_copy(
                update={"status": BookingStatus.CANCELLED, "escrow_id": None}
            )
        )

        result, _ = handler.handle_event(make_event())

        assert result == "skipped"
        assert pending_repository.get_booking(BOOKING_ID).status == BookingStatus.CANCELLED
        assert pending_repository.get_escrow_for_booking(BOOKING_ID) is None
        assert pending_repository.get_payouts_for_booking(BOOKING_ID) == []


# === payment_intent.payment_failed ===


class TestPaymentFailed:
    """Failed payments only mark the payment."""

    def test_payment_marked_failed(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        result, _ = handler.handle_event(
            make_event("payment_intent.payment_failed", amount_received=0)
        )

        assert result == "success"
        assert pending_repository.get_payment(PAYMENT_ID).status == PaymentStatus.FAILED
        assert pending_repository.get_booking(BOOKING_ID).status == BookingStatus.PENDING


# === Idempotency ===


class TestWebhookIdempotency:
    """Each event ID is processed once."""

    def test_duplicate_delivery(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        """Redelivery is reported as duplicate and creates nothing new."""
        handler.handle_event(make_event())

        assert handler.handle_event(make_event()) == ("duplicate", None)
        assert len(pending_repository.get_payouts_for_booking(BOOKING_ID)) == 1

    def test_event_is_logged(
        self, handler: WebhookHandler, pending_repository: SettlementRepository
    ):
        """The event log records result, booking and payment."""
        handler.handle_event(make_event())

        item = pending_repository.db.get_item(
            WebhookHandler.WEBHOOK_EVENTS_TABLE, {"event_id": "evt_1ABC123"}
        )
        assert item["processing_result"] == "success"
        assert item["booking_id"] == BOOKING_ID
        assert item["payment_id"] == PAYMENT_ID
        assert len(item["payload_hash"]) == 64

    def test_unhandled_type_is_skipped(self, handler: WebhookHandler):
        result, error = handler.handle_event(make_event("charge.refunded"))

        assert result == "skipped"
        assert "charge.refunded" in error


# === Cancellation After Payment ===


class MovableClock:
    """Clock shared by every service in a flow, moved forward by the test."""

    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now


class TestCancellationAfterPayment:
    """A payout planned by the webhook never pays out for a cancelled booking."""

    @pytest.fixture
    def clock(self) -> MovableClock:
        return MovableClock(NOW)

    @pytest.fixture
    def payout_service(
        self,
        pending_repository: SettlementRepository,
        mock_processor: MagicMock,
        settings: Settings,
        clock: MovableClock,
    ) -> PayoutService:
        pending_repository.db.put_item(
            pending_repository.CONNECTED_ACCOUNTS_TABLE,
            {
                "host_id": HOST_ID,
                "processor_account_id": "acct_1ABC123",
                "charges_enabled": True,
                "payouts_enabled": True,
            },
        )
        return PayoutService(
            pending_repository, mock_processor, settings=settings, clock=clock
        )

    @pytest.fixture
    def settlement(
        self,
        pending_repository: SettlementRepository,
        mock_processor: MagicMock,
        mock_notifier: MagicMock,
        settings: Settings,
        clock: MovableClock,
        payout_service: PayoutService,
    ) -> SettlementService:
        webhook = WebhookHandler(
            repository=pending_repository,
            escrow_service=EscrowService(pending_repository, clock=clock),
            payout_service=payout_service,
            settings=settings,
            clock=clock,
        )
        assert webhook.handle_event(make_event()) == ("success", None)
        return SettlementService(
            pending_repository,
            mock_processor,
            mock_notifier,
            settings,
            clock=clock,
            payout_service=payout_service,
        )

    def test_due_run_pays_nothing(
        self,
        settlement: SettlementService,
        payout_service: PayoutService,
        pending_repository: SettlementRepository,
        mock_processor: MagicMock,
        clock: MovableClock,
    ):
        """Cancel after the webhook, then run payouts once they would be due."""
        result = settlement.cancel_booking(
            CancellationRequest(
                booking_id=BOOKING_ID,
                reason="Change of plans",
                cancelled_by=CancellationActor.GUEST,
                user_id=GUEST_ID,
            )
        )
        clock.now = NOW + dt.timedelta(hours=25)

        summary = payout_service.process_due_payouts()

        assert result.success is True
        assert result.warnings == []
        assert summary.processed == 0
        mock_processor.create_transfer.assert_not_called()
        (payout,) = pending_repository.get_payouts_for_booking(BOOKING_ID)
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "Booking cancelled"

    def test_payout_cancellation_failure_is_a_warning(
        self,
        settlement: SettlementService,
        payout_service: PayoutService,
        pending_repository: SettlementRepository,
        mock_processor: MagicMock,
        clock: MovableClock,
    ):
        """If the payout is left pending, processing still refuses to pay it."""
        settlement.payout_service = MagicMock(wraps=payout_service)
        settlement.payout_service.cancel_pending_payouts.side_effect = RuntimeError("throttled")

        result = settlement.cancel_booking(
            CancellationRequest(
                booking_id=BOOKING_ID,
                reason="Change of plans",
                cancelled_by=CancellationActor.GUEST,
                user_id=GUEST_ID,
            )
        )
        clock.now = NOW + dt.timedelta(hours=25)
        summary = payout_service.process_due_payouts()

        assert result.success is True
        assert any("payout cancellation failed" in w for w in result.warnings)
        assert summary.processed == 0
        assert summary.failed == 1
        mock_processor.create_transfer.assert_not_called()
        (payout,) = pending_repository.get_payouts_for_booking(BOOKING_ID)
        assert payout.status == PayoutStatus.FAILED


# === Correlation ===


class TestEventCorrelation:
    def test_records_carry_event_id(
        self, handler: WebhookHandler, caplog: pytest.LogCaptureFixture
    ):
        """Handler and payout records of one event log under the event ID."""
        with caplog.at_level(logging.INFO, logger="settlement"):
            handler.handle_event(make_event(event_id="evt_corr_1"))

        records = [r for r in caplog.records if r.name.startswith("settlement.services")]
        assert records
        assert {r.correlation_id for r in records} == {"evt_corr_1"}
