"""
Provider Base - Abstract interface for external secret sources.

A provider fetches a flat key/value mapping from one external secret store
given a provider-specific path. Providers never cache: every fetch is a live
lookup.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Flat mapping of secret key to string value, as returned by a provider
SecretData = Dict[str, str]


class FetchError(Exception):
    """
    Base class for provider fetch failures.

    Subclasses set ``reason`` and ``transient``. Transient failures are
    retried by the controller with backoff; permanent ones are not.
    """

    reason = "FetchFailed"
    transient = False

    def __init__(self, message: str, provider: str = "", path: str = ""):
        self.message = message
        self.provider = provider
        self.path = path
        super().__init__(message)


class SecretNotFoundError(FetchError):
    reason = "NotFound"


class AccessDeniedError(FetchError):
    reason = "AccessDenied"


class MalformedResponseError(FetchError):
    """The provider returned data that is not a flat JSON object."""

    reason = "MalformedResponse"


class ThrottledError(FetchError):
    reason = "Throttled"
    transient = True


class ProviderUnavailableError(FetchError):
    reason = "Unavailable"
    transient = True


class FetchCancelledError(FetchError):
    """The fetch did not complete before its deadline."""

    reason = "Cancelled"
    transient = True


def stringify_value(value: Any) -> str:
    """
    Convert a decoded JSON value to its secret string form.

    Strings pass through, numbers and booleans are rendered the way JSON
    writes them, null becomes an empty string and composite values are
    serialized as compact JSON so nothing is dropped.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def parse_secret_string(
    secret_string: str, provider: str = "", path: str = ""
) -> SecretData:
    """
    Decode a JSON object secret payload into flat string data.

    Raises:
        MalformedResponseError: If the payload is not a JSON object
    """
    try:
        raw = json.loads(secret_string)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            f"failed to parse secret JSON: {e.msg}", provider=provider, path=path
        ) from e

    if not isinstance(raw, dict):
        raise MalformedResponseError(
            f"secret JSON must be an object, got {type(raw).__name__}",
            provider=provider,
            path=path,
        )

    return {str(key): stringify_value(value) for key, value in raw.items()}


class SecretProvider(ABC):
    """
    Abstract base class for secret providers.

    Implementations classify their failures into the FetchError hierarchy
    so the reconciler can decide whether a retry is worthwhile.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier used in annotations (e.g., 'aws-secretsmanager')."""
        pass

    @abstractmethod
    async def fetch_secret(
        self, path: str, timeout: Optional[float] = None
    ) -> SecretData:
        """
        Fetch the secret stored at ``path``.

        Args:
            path: Provider-specific secret identifier
            timeout: Deadline in seconds; exceeding it raises
                FetchCancelledError

        Returns:
            Flat mapping of secret keys to string values

        Raises:
            FetchError: A classified fetch failure
        """
        pass

    async def close(self) -> None:
        """Release any client resources. Optional."""
        pass
