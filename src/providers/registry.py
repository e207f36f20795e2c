"""
Provider Registry - Registration and lookup of secret providers.

The registry is populated once at startup and only read afterwards, so
concurrent lookups need no locking.
"""

import logging
from typing import Dict, List, Optional

from providers.base import SecretProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps provider names to initialized provider instances."""

    def __init__(self):
        self._providers: Dict[str, SecretProvider] = {}

    def register(self, provider: SecretProvider) -> None:
        """
        Register a provider under its name.

        A later registration under the same name replaces the earlier one.

        Args:
            provider: The initialized provider instance
        """
        name = provider.name
        if name in self._providers:
            logger.warning(f"Overwriting existing provider: {name}")

        self._providers[name] = provider
        logger.info(f"Registered provider: {name}")

    def get(self, name: str) -> Optional[SecretProvider]:
        """
        Look up a provider by name.

        Returns:
            The provider, or None if no provider has that name
        """
        return self._providers.get(name)

    def has(self, name: str) -> bool:
        """Check if a provider is registered."""
        return name in self._providers

    def list(self) -> List[str]:
        """List all registered provider names."""
        return list(self._providers.keys())

    async def close(self) -> None:
        """Close every registered provider."""
        for name, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.error(f"Error closing provider '{name}': {e}")


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry singleton."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers(
    aws_config=None, enabled: Optional[List[str]] = None
) -> ProviderRegistry:
    """
    Register the providers that ship with the operator.

    A provider that cannot be constructed (missing SDK, no region configured)
    is logged and skipped so the remaining providers stay usable.

    Args:
        aws_config: AWSConfig for the AWS Secrets Manager provider
        enabled: Provider names to register; empty or None means all

    Returns:
        The global registry
    """
    registry = get_registry()

    def wanted(name: str) -> bool:
        return not enabled or name in enabled

    if wanted("aws-secretsmanager"):
        try:
            from providers.aws import AWSSecretsManagerProvider

            registry.register(AWSSecretsManagerProvider.from_config(aws_config))
        except Exception as e:
            logger.warning(f"Could not load AWS Secrets Manager provider: {e}")

    for name in enabled or []:
        if not registry.has(name):
            logger.warning(f"Provider '{name}' is enabled but not available")

    logger.info(f"Initialized provider registry: {registry.list()}")
    return registry
