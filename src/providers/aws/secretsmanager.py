"""
AWS Secrets Manager Provider - Implements SecretProvider for AWS Secrets Manager.

Secrets are expected to hold a JSON object in their SecretString. Every
top-level key becomes one key of the synchronized Kubernetes secret.
"""

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
)

from providers.base import (
    AccessDeniedError,
    FetchCancelledError,
    FetchError,
    MalformedResponseError,
    ProviderUnavailableError,
    SecretData,
    SecretNotFoundError,
    SecretProvider,
    ThrottledError,
    parse_secret_string,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"ResourceNotFoundException"}
_ACCESS_DENIED_CODES = {
    "AccessDeniedException",
    "DecryptionFailure",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
}
_THROTTLED_CODES = {"ThrottlingException", "TooManyRequestsException"}
_UNAVAILABLE_CODES = {"InternalServiceError", "ServiceUnavailable"}


class AWSSecretsManagerProvider(SecretProvider):
    """
    Provider backed by AWS Secrets Manager.

    Uses the default boto3 credential chain, which honours AWS_PROFILE and
    in-cluster IAM roles for service accounts.
    """

    def __init__(self, client: Any):
        self._client = client

    @property
    def name(self) -> str:
        return "aws-secretsmanager"

    @classmethod
    def from_config(cls, aws_config=None) -> "AWSSecretsManagerProvider":
        """
        Build a provider from an AWSConfig.

        Args:
            aws_config: AWSConfig instance, or None to rely on boto3 defaults

        Returns:
            A provider with a configured secretsmanager client
        """
        session_kwargs = {}
        client_kwargs = {}
        boto_config = None

        if aws_config is not None:
            if aws_config.profile:
                session_kwargs["profile_name"] = aws_config.profile
            if aws_config.region:
                session_kwargs["region_name"] = aws_config.region
            if aws_config.endpoint_url:
                client_kwargs["endpoint_url"] = aws_config.endpoint_url
            boto_config = BotoConfig(
                connect_timeout=aws_config.connect_timeout,
                read_timeout=aws_config.read_timeout,
                retries={"max_attempts": aws_config.max_attempts, "mode": "standard"},
            )

        session = boto3.session.Session(**session_kwargs)
        client = session.client("secretsmanager", config=boto_config, **client_kwargs)
        logger.debug(
            f"AWS Secrets Manager provider initialized: region={client.meta.region_name}"
        )
        return cls(client)

    async def fetch_secret(
        self, path: str, timeout: Optional[float] = None
    ) -> SecretData:
        """Fetch and decode the secret at ``path`` (a secret name or ARN)."""
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._client.get_secret_value, SecretId=path),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchCancelledError(
                f"fetch did not complete within {timeout}s",
                provider=self.name,
                path=path,
            ) from e
        except ClientError as e:
            raise self._classify_client_error(e, path) from e
        except NoCredentialsError as e:
            raise AccessDeniedError(
                f"no AWS credentials available: {e}", provider=self.name, path=path
            ) from e
        except (BotoConnectionError, HTTPClientError) as e:
            raise ProviderUnavailableError(
                f"AWS Secrets Manager unreachable: {e}", provider=self.name, path=path
            ) from e
        except BotoCoreError as e:
            raise FetchError(
                f"AWS SDK error: {e}", provider=self.name, path=path
            ) from e

        secret_string = response.get("SecretString")
        if secret_string is None:
            raise MalformedResponseError(
                f"secret {path} does not contain a string value",
                provider=self.name,
                path=path,
            )

        return parse_secret_string(secret_string, provider=self.name, path=path)

    def _classify_client_error(self, error: ClientError, path: str) -> FetchError:
        """Map an AWS error response onto the fetch error taxonomy."""
        err = error.response.get("Error", {})
        code = err.get("Code", "")
        message = f"{code}: {err.get('Message', str(error))}"
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

        if code in _NOT_FOUND_CODES:
            error_class = SecretNotFoundError
        elif code in _ACCESS_DENIED_CODES:
            error_class = AccessDeniedError
        elif code in _THROTTLED_CODES or status == 429:
            error_class = ThrottledError
        elif code in _UNAVAILABLE_CODES or status >= 500:
            error_class = ProviderUnavailableError
        else:
            error_class = FetchError

        return error_class(message, provider=self.name, path=path)

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)
