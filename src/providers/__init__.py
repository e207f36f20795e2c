"""
Secret providers for the Secret Sync Operator.

This package provides the provider abstraction, the failure taxonomy and the
registry that maps annotation provider names to fetch implementations.
"""

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
)
from providers.registry import ProviderRegistry, get_registry

__all__ = [
    "AccessDeniedError",
    "FetchCancelledError",
    "FetchError",
    "MalformedResponseError",
    "ProviderUnavailableError",
    "SecretData",
    "SecretNotFoundError",
    "SecretProvider",
    "ThrottledError",
    "ProviderRegistry",
    "get_registry",
]
