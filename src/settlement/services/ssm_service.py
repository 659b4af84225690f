"""Settlement secrets from AWS SSM Parameter Store.

Secrets live under the environment's prefix (Settings.ssm_prefix) and are
addressed here by their name below it, e.g. "stripe/secret_key" resolves to
/settlement/<environment>/stripe/secret_key. Values are SecureStrings,
decrypted on read and cached for the life of the service.
"""

import boto3
from botocore.exceptions import ClientError

from settlement.config import Settings, get_settings
from settlement.utils.logging import get_logger

logger = get_logger(__name__)

STRIPE_SECRET_KEY = "stripe/secret_key"
STRIPE_WEBHOOK_SECRET = "stripe/webhook_secret"


class SSMServiceError(Exception):
    """Raised when a settlement secret cannot be read."""

    pass


class SSMService:
    """Reads settlement secrets for one environment.

    Usage:
        ssm = SSMService(settings)
        stripe_key = ssm.get_secret(STRIPE_SECRET_KEY)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the SSM client.

        Args:
            settings: Settlement settings. Defaults to get_settings().
        """
        self.settings = settings or get_settings()
        self._client = boto3.client("ssm")
        self._cache: dict[str, str] = {}

    def parameter_path(self, name: str) -> str:
        """Full parameter path of a secret in this environment."""
        return f"{self.settings.ssm_prefix}/{name.strip('/')}"

    def get_secret(self, name: str, *, use_cache: bool = True) -> str:
        """Read a secret of this environment.

        Args:
            name: Secret name below the environment prefix (e.g. "stripe/secret_key")
            use_cache: Whether to return a previously read value

        Returns:
            The decrypted value.

        Raises:
            SSMServiceError: If the secret is missing, empty or unreadable.
        """
        path = self.parameter_path(name)
        if use_cache and path in self._cache:
            return self._cache[path]

        try:
            logger.info("Fetching settlement secret: %s", path)
            response = self._client.get_parameter(Name=path, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {path}") from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {path}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(f"Failed to retrieve SSM parameter {path}: {e}") from e

        value = response["Parameter"]["Value"].strip()
        if not value:
            # An empty key would only fail later, at the first processor call
            raise SSMServiceError(f"SSM parameter is empty: {path}")

        self._cache[path] = value
        return value

    def clear_cache(self) -> None:
        """Forget every secret read so far."""
        self._cache.clear()
