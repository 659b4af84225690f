"""Settlement logging with a per-operation correlation ID.

Every settlement entry point (cancel_booking, complete_check_in, a webhook
event, a payout run) opens a correlation scope. Records logged through
get_logger() inside the scope carry ``correlation_id``, so the host
application can put ``%(correlation_id)s`` in its log format and follow one
cancellation across the refund, escrow, payout and notification records.

Usage:
    from settlement.utils.logging import correlation_scope, get_logger

    logger = get_logger(__name__)

    with correlation_scope(request_id):
        log_settlement_operation(logger, "cancel_booking", booking_id="bk_123")
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

NO_CORRELATION_ID = "no-correlation-id"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get the correlation ID of the current settlement operation."""
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Run a block under a correlation ID.

    A nested scope without an explicit ID keeps the enclosing one, so a
    payout run started from a webhook still logs under the webhook's ID.

    Args:
        correlation_id: ID to use. Defaults to the enclosing ID or a new UUID.

    Yields:
        The correlation ID in effect inside the block
    """
    cid = correlation_id or get_correlation_id() or str(uuid.uuid4())
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def log_settlement_operation(
    logger: logging.Logger,
    operation: str,
    *,
    booking_id: str | None = None,
    payment_id: str | None = None,
    amount_cents: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a settlement operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "cancel_booking", "process_refund")
        booking_id: Booking ID if available
        payment_id: Payment ID if available
        amount_cents: Amount in cents if relevant
        status: Resulting status
        error: Error message if the operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if booking_id:
        context["booking_id"] = booking_id
    if payment_id:
        context["payment_id"] = payment_id
    if amount_cents is not None:
        context["amount_cents"] = amount_cents
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Settlement operation: {operation}"]
    for key, value in context.items():
        if key != "operation":
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    booking_id: str | None = None,
    payment_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
) -> None:
    """Log a webhook event with structured context.

    Args:
        logger: Logger instance
        event_type: Processor event type (e.g., "payment_intent.succeeded")
        event_id: Processor event ID
        booking_id: Associated booking ID if available
        payment_id: Associated payment ID if available
        result: Processing result (success, duplicate, skipped, error)
        error: Error message if processing failed
    """
    msg_parts = [f"Webhook event: {event_type} ({event_id})"]
    if result:
        msg_parts.append(f"result={result}")
    if booking_id:
        msg_parts.append(f"booking={booking_id}")
    if payment_id:
        msg_parts.append(f"payment={payment_id}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message)
    elif result in ("duplicate", "skipped"):
        logger.warning(message)
    else:
        logger.info(message)
