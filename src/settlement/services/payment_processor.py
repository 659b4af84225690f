"""Payment processor clients for refunds and host transfers.

Provides integration with Stripe using the v8+ StripeClient pattern, with
API keys from SSM Parameter Store. Whether real processor calls are possible
is decided once by get_payment_processor(): environments without payments
enabled, or without credentials, get a DisabledProcessor whose calls fail
with PaymentProcessorError instead of falling back to mock responses.
"""

from functools import lru_cache
from typing import Protocol

import stripe
from pydantic import BaseModel
from stripe import StripeClient

from settlement.config import Settings, get_settings
from settlement.models import ErrorCode, PaymentProcessorError
from settlement.utils.logging import get_logger

from .ssm_service import STRIPE_SECRET_KEY, SSMService, SSMServiceError

logger = get_logger(__name__)


class RefundResult(BaseModel):
    """Refund created by the processor."""

    id: str
    amount: int
    status: str | None = None


class TransferResult(BaseModel):
    """Transfer to a connected account created by the processor."""

    id: str
    amount: int
    destination: str


class PaymentProcessor(Protocol):
    """Operations settlement needs from a payment processor."""

    def process_refund(
        self,
        payment_reference: str,
        amount: int,
        reason: str | None = None,
        *,
        booking_id: str | None = None,
    ) -> RefundResult: ...

    def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        payout_id: str,
        booking_id: str,
        host_id: str,
    ) -> TransferResult: ...


class StripeProcessor:
    """Stripe-backed payment processor.

    Usage:
        processor = get_payment_processor()
        refund = processor.process_refund("pi_3ABC", 18000, "requested_by_customer")
    """

    # Stripe only accepts these values for Refund.reason
    REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})

    def __init__(self, secret_key: str, timeout_seconds: float = 20.0) -> None:
        """Initialize the Stripe client.

        Args:
            secret_key: Stripe secret API key.
            timeout_seconds: HTTP timeout for every Stripe request.
        """
        self._client = StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
        )

    def process_refund(
        self,
        payment_reference: str,
        amount: int,
        reason: str | None = None,
        *,
        booking_id: str | None = None,
    ) -> RefundResult:
        """Create a refund for a payment.

        Args:
            payment_reference: Stripe PaymentIntent ID (pi_xxx).
            amount: Refund amount in cents.
            reason: Stripe refund reason, or free text stored as metadata.
            booking_id: Booking ID used for metadata and the idempotency key.

        Returns:
            RefundResult with the Stripe refund ID.

        Raises:
            PaymentProcessorError: If refund creation fails or times out.
        """
        params: dict = {"payment_intent": payment_reference, "amount": amount}
        metadata: dict[str, str] = {}
        if reason in self.REFUND_REASONS:
            params["reason"] = reason
        elif reason:
            metadata["reason"] = reason
        if booking_id:
            metadata["booking_id"] = booking_id
        if metadata:
            params["metadata"] = metadata

        options = {}
        if booking_id:
            # One refund per booking cancellation, even across retries
            options["idempotency_key"] = f"refund_{booking_id}_{amount}"

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %d cents",
                payment_reference,
                amount,
            )
            refund = self._client.refunds.create(params=params, options=options)
            logger.info(
                "Refund created: %s for PaymentIntent %s",
                refund.id,
                payment_reference,
            )
            return RefundResult(id=refund.id, amount=refund.amount, status=refund.status)

        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error(
                "Stripe refund creation failed: %s (code: %s)",
                str(e),
                error_code,
            )
            raise PaymentProcessorError(
                f"Failed to create refund: {e}",
                processor_error_code=error_code,
            ) from e

    def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        payout_id: str,
        booking_id: str,
        host_id: str,
    ) -> TransferResult:
        """Transfer host earnings to a connected account.

        Args:
            destination: Stripe connected account ID (acct_xxx).
            amount: Amount in cents.
            currency: Currency code.
            payout_id: Payout being paid (transfer group and idempotency key).
            booking_id: Booking the payout belongs to.
            host_id: Host receiving the transfer.

        Returns:
            TransferResult with the Stripe transfer ID.

        Raises:
            PaymentProcessorError: If transfer creation fails or times out.
        """
        try:
            logger.info(
                "Creating transfer for payout %s, amount %d %s",
                payout_id,
                amount,
                currency,
            )
            transfer = self._client.transfers.create(
                params={
                    "amount": amount,
                    "currency": currency.lower(),
                    "destination": destination,
                    "transfer_group": f"payout_{payout_id}",
                    "metadata": {
                        "payout_id": payout_id,
                        "booking_id": booking_id,
                        "host_id": host_id,
                    },
                },
                options={"idempotency_key": f"transfer_{payout_id}"},
            )
            logger.info("Transfer created: %s for payout %s", transfer.id, payout_id)
            return TransferResult(id=transfer.id, amount=transfer.amount, destination=destination)

        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error(
                "Stripe transfer creation failed: %s (code: %s)",
                str(e),
                error_code,
            )
            raise PaymentProcessorError(
                f"Failed to create transfer: {e}",
                processor_error_code=error_code,
            ) from e


class DisabledProcessor:
    """Processor used when payments are unavailable in this environment."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def _fail(self) -> PaymentProcessorError:
        return PaymentProcessorError(
            f"Payment processing is disabled: {self.reason}",
            code=ErrorCode.PROCESSOR_DISABLED,
        )

    def process_refund(
        self,
        payment_reference: str,
        amount: int,
        reason: str | None = None,
        *,
        booking_id: str | None = None,
    ) -> RefundResult:
        raise self._fail()

    def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        payout_id: str,
        booking_id: str,
        host_id: str,
    ) -> TransferResult:
        raise self._fail()


def build_payment_processor(
    settings: Settings,
    ssm: SSMService | None = None,
) -> StripeProcessor | DisabledProcessor:
    """Resolve the processor available in this environment.

    Args:
        settings: Settlement settings.
        ssm: SSM service for the secret key. Defaults to one for settings.

    Returns:
        StripeProcessor if payments are enabled and credentials resolve,
        otherwise DisabledProcessor.
    """
    if not settings.payments_enabled:
        logger.warning("Payments disabled for environment: %s", settings.environment)
        return DisabledProcessor("PAYMENTS_ENABLED is false")

    ssm = ssm or SSMService(settings)
    try:
        secret_key = ssm.get_secret(STRIPE_SECRET_KEY)
    except SSMServiceError as e:
        logger.error("Stripe credentials unavailable, payments disabled: %s", e)
        return DisabledProcessor(str(e))

    logger.info("Stripe processor initialized for environment: %s", settings.environment)
    return StripeProcessor(secret_key, timeout_seconds=settings.processor_timeout_seconds)


@lru_cache(maxsize=1)
def get_payment_processor() -> StripeProcessor | DisabledProcessor:
    """Get the shared payment processor, resolved once per process."""
    return build_payment_processor(get_settings())
