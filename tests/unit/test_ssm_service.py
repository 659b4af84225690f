"""Unit tests for SSMService against moto's Parameter Store."""

from collections.abc import Generator

import boto3
import pytest
from moto import mock_aws

from settlement.config import Settings
from settlement.services.ssm_service import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    SSMService,
    SSMServiceError,
)

# === Test Configuration ===

SECRET_KEY_PATH = "/settlement/test/stripe/secret_key"
TEST_SECRET_KEY = "sk_test_abc123xyz"


@pytest.fixture
def ssm(aws_credentials: None) -> Generator[SSMService, None, None]:
    with mock_aws():
        boto3.client("ssm").put_parameter(
            Name=SECRET_KEY_PATH, Value=TEST_SECRET_KEY, Type="SecureString"
        )
        yield SSMService(Settings(environment="test"))


class TestParameterPath:
    def test_under_environment_prefix(self, aws_credentials: None) -> None:
        with mock_aws():
            ssm = SSMService(Settings(environment="prod"))

        assert ssm.parameter_path(STRIPE_SECRET_KEY) == "/settlement/prod/stripe/secret_key"
        assert ssm.parameter_path("/stripe/webhook_secret/") == (
            "/settlement/prod/stripe/webhook_secret"
        )


class TestGetSecret:
    def test_reads_secure_string(self, ssm: SSMService) -> None:
        assert ssm.get_secret(STRIPE_SECRET_KEY) == TEST_SECRET_KEY

    def test_other_environment_is_not_visible(self, ssm: SSMService) -> None:
        """A prod service never falls back to the test secret."""
        prod = SSMService(Settings(environment="prod"))

        with pytest.raises(SSMServiceError, match="/settlement/prod/stripe/secret_key"):
            prod.get_secret(STRIPE_SECRET_KEY)

    def test_value_is_cached(self, ssm: SSMService) -> None:
        """A cached value survives deletion of the parameter."""
        ssm.get_secret(STRIPE_SECRET_KEY)
        boto3.client("ssm").delete_parameter(Name=SECRET_KEY_PATH)

        assert ssm.get_secret(STRIPE_SECRET_KEY) == TEST_SECRET_KEY
        with pytest.raises(SSMServiceError):
            ssm.get_secret(STRIPE_SECRET_KEY, use_cache=False)

    def test_clear_cache(self, ssm: SSMService) -> None:
        ssm.get_secret(STRIPE_SECRET_KEY)
        boto3.client("ssm").delete_parameter(Name=SECRET_KEY_PATH)
        ssm.clear_cache()

        with pytest.raises(SSMServiceError, match="not found"):
            ssm.get_secret(STRIPE_SECRET_KEY)

    def test_missing_parameter(self, ssm: SSMService) -> None:
        with pytest.raises(SSMServiceError, match="not found"):
            ssm.get_secret(STRIPE_WEBHOOK_SECRET)

    def test_blank_value_rejected(self, ssm: SSMService) -> None:
        boto3.client("ssm").put_parameter(
            Name="/settlement/test/stripe/webhook_secret", Value="   ", Type="SecureString"
        )

        with pytest.raises(SSMServiceError, match="empty"):
            ssm.get_secret(STRIPE_WEBHOOK_SECRET)
