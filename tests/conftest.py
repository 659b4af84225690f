"""Pytest configuration and fixtures for settlement tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all settlement tables and GSIs)
- Sample booking, listing, payment and escrow records
- Mocked payment processor and notifier
"""

import datetime as dt
import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-settlement")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from settlement.config import Settings, get_settings  # noqa: E402
from settlement.models import (  # noqa: E402
    Booking,
    BookingStatus,
    Escrow,
    EscrowStatus,
    Listing,
    Payment,
    PaymentStatus,
)
from settlement.services.dynamodb import (  # noqa: E402
    DynamoDBService,
    reset_dynamodb_service,
)
from settlement.services.payment_processor import (  # noqa: E402
    RefundResult,
    TransferResult,
)
from settlement.services.repository import SettlementRepository  # noqa: E402

TABLE_PREFIX = "test-settlement"

BOOKING_ID = "BK-2026-0001"
GUEST_ID = "guest-123-abc"
HOST_ID = "host-456-def"
LISTING_ID = "LST-789"
PAYMENT_ID = "PAY-0001"
ESCROW_ID = "ESC-0001"
PAYMENT_INTENT_ID = "pi_3ABC123DEF456"

CHECK_IN_DATE = dt.date(2026, 7, 15)


# === Singletons ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached settings and the DynamoDB singleton around each test."""
    get_settings.cache_clear()
    reset_dynamodb_service()
    yield
    get_settings.cache_clear()
    reset_dynamodb_service()


# === DynamoDB Fixtures ===


def _table(
    name: str,
    hash_key: str,
    indexes: list[tuple[str, str, str | None]] | None = None,
) -> dict[str, Any]:
    """Build a create_table request. indexes are (name, hash_key, range_key)."""
    attributes = {hash_key}
    config: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": hash_key, "KeyType": "HASH"}],
        "BillingMode": "PAY_PER_REQUEST",
    }
    gsis = []
    for index_name, index_hash, index_range in indexes or []:
        key_schema = [{"AttributeName": index_hash, "KeyType": "HASH"}]
        attributes.add(index_hash)
        if index_range:
            key_schema.append({"AttributeName": index_range, "KeyType": "RANGE"})
            attributes.add(index_range)
        gsis.append(
            {
                "IndexName": index_name,
                "KeySchema": key_schema,
                "Projection": {"ProjectionType": "ALL"},
            }
        )
    if gsis:
        config["GlobalSecondaryIndexes"] = gsis
    config["AttributeDefinitions"] = [
        {"AttributeName": attr, "AttributeType": "S"} for attr in sorted(attributes)
    ]
    return config


TABLES = [
    _table("bookings", "booking_id"),
    _table("listings", "listing_id"),
    _table(
        "payments",
        "payment_id",
        [
            ("booking_id-index", "booking_id", None),
            ("processor_payment_reference-index", "processor_payment_reference", None),
        ],
    ),
    _table("escrow", "escrow_id", [("booking_id-index", "booking_id", None)]),
    _table(
        "payouts",
        "payout_id",
        [
            ("booking_id-index", "booking_id", None),
            ("host_id-index", "host_id", None),
            ("status-scheduled_at-index", "status", "scheduled_at"),
        ],
    ),
    _table("check-ins", "check_in_id"),
    _table("connected-accounts", "host_id"),
    _table("notifications", "notification_id", [("recipient_id-index", "recipient_id", None)]),
    _table("webhook-events", "event_id"),
]


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client with all settlement tables."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for table_config in TABLES:
            client.create_table(**table_config)
        yield client


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at the test tables."""
    return Settings(environment="test", table_prefix=TABLE_PREFIX)


@pytest.fixture
def db(dynamodb_client: Any, settings: Settings) -> DynamoDBService:
    """DynamoDBService created inside the mock_aws context."""
    return DynamoDBService(settings)


@pytest.fixture
def repository(db: DynamoDBService) -> SettlementRepository:
    """Settlement repository over mocked tables."""
    return SettlementRepository(db)


# === Sample Data Fixtures ===


@pytest.fixture
def sample_listing() -> Listing:
    """Listing with the flexible policy."""
    return Listing(
        listing_id=LISTING_ID,
        host_id=HOST_ID,
        title="Sea View Apartment",
        cancellation_policy="flexible",
    )


@pytest.fixture
def sample_booking() -> Booking:
    """Confirmed booking with an escrow hold."""
    return Booking(
        booking_id=BOOKING_ID,
        guest_id=GUEST_ID,
        host_id=HOST_ID,
        listing_id=LISTING_ID,
        check_in_date=CHECK_IN_DATE,
        check_out_date=dt.date(2026, 7, 20),
        status=BookingStatus.CONFIRMED,
        escrow_id=ESCROW_ID,
        created_at=dt.datetime(2026, 6, 1, 9, 0, tzinfo=dt.UTC),
    )


@pytest.fixture
def sample_payment() -> Payment:
    """Succeeded payment of 200.00 with a 20.00 platform fee."""
    return Payment(
        payment_id=PAYMENT_ID,
        booking_id=BOOKING_ID,
        amount=20000,
        currency="usd",
        platform_fee=2000,
        host_amount=18000,
        status=PaymentStatus.SUCCEEDED,
        processor_payment_reference=PAYMENT_INTENT_ID,
        created_at=dt.datetime(2026, 6, 1, 9, 5, tzinfo=dt.UTC),
    )


@pytest.fixture
def sample_escrow() -> Escrow:
    """Escrow holding the host amount."""
    return Escrow(
        escrow_id=ESCROW_ID,
        booking_id=BOOKING_ID,
        status=EscrowStatus.HELD,
        held_amount=18000,
        released_amount=0,
        created_at=dt.datetime(2026, 6, 1, 9, 5, tzinfo=dt.UTC),
    )


@pytest.fixture
def seeded_repository(
    repository: SettlementRepository,
    sample_listing: Listing,
    sample_booking: Booking,
    sample_payment: Payment,
    sample_escrow: Escrow,
) -> SettlementRepository:
    """Repository with listing, booking, payment and escrow stored."""
    repository.put_listing(sample_listing)
    repository.put_booking(sample_booking)
    repository.put_payment(sample_payment)
    repository.create_escrow(sample_escrow)
    return repository


# === Collaborator Mocks ===


@pytest.fixture
def mock_processor() -> MagicMock:
    """Payment processor that succeeds."""
    processor = MagicMock()
    processor.process_refund.side_effect = lambda ref, amount, reason=None, **kw: RefundResult(
        id="re_3ABC123", amount=amount, status="succeeded"
    )
    processor.create_transfer.side_effect = lambda **kw: TransferResult(
        id="tr_1ABC123", amount=kw["amount"], destination=kw["destination"]
    )
    return processor


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Notifier recording calls."""
    return MagicMock()
