"""
Configuration module for the Secret Sync Operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_optional_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() == "true"


@dataclass
class ControllerConfig:
    """Work queue, concurrency and retry configuration."""

    max_concurrent_reconciles: int = 5

    # Exponential backoff configuration
    backoff_base_delay: float = 5  # base delay in seconds
    backoff_max_delay: float = 300  # max delay in seconds (5 minutes)
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    fetch_timeout: float = 30  # provider fetch deadline in seconds
    watch_timeout: int = 300  # server-side watch timeout in seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "5")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
            fetch_timeout=float(os.getenv("FETCH_TIMEOUT", "30")),
            watch_timeout=int(os.getenv("WATCH_TIMEOUT", "300")),
        )


@dataclass
class KubeConfig:
    """Kubernetes API access configuration."""

    kubeconfig: Optional[str] = None
    in_cluster: Optional[bool] = None  # None = auto-detect
    watch_namespace: str = ""  # empty = all namespaces
    request_timeout: float = 30

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            kubeconfig=os.getenv("KUBECONFIG") or None,
            in_cluster=_parse_optional_bool(os.getenv("KUBE_IN_CLUSTER")),
            watch_namespace=os.getenv("WATCH_NAMESPACE", ""),
            request_timeout=float(os.getenv("KUBE_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class AWSConfig:
    """AWS Secrets Manager client configuration."""

    region: Optional[str] = None
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None
    connect_timeout: float = 5
    read_timeout: float = 10
    max_attempts: int = 3

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or None,
            profile=os.getenv("AWS_PROFILE") or None,
            endpoint_url=os.getenv("AWS_SECRETSMANAGER_ENDPOINT_URL") or None,
            connect_timeout=float(os.getenv("AWS_CONNECT_TIMEOUT", "5")),
            read_timeout=float(os.getenv("AWS_READ_TIMEOUT", "10")),
            max_attempts=int(os.getenv("AWS_MAX_ATTEMPTS", "3")),
        )


@dataclass
class ProviderConfig:
    """Provider selection configuration."""

    # Provider names to register (empty = all built-in providers)
    enabled_providers: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(enabled_providers=_parse_list(os.getenv("ENABLED_PROVIDERS", "")))


@dataclass
class HealthConfig:
    """Health probe server configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8081

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=os.getenv("HEALTH_ENABLED", "true").lower() == "true",
            host=os.getenv("HEALTH_HOST", "0.0.0.0"),
            port=int(os.getenv("HEALTH_PORT", "8081")),
        )


@dataclass
class MetricsConfig:
    """Prometheus metrics endpoint configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=os.getenv("METRICS_ENABLED", "true").lower() == "true",
            host=os.getenv("METRICS_HOST", "0.0.0.0"),
            port=int(os.getenv("METRICS_PORT", "8080")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    controller: ControllerConfig
    kube: KubeConfig
    aws: AWSConfig
    providers: ProviderConfig
    health: HealthConfig
    metrics: MetricsConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            controller=ControllerConfig.from_env(),
            kube=KubeConfig.from_env(),
            aws=AWSConfig.from_env(),
            providers=ProviderConfig.from_env(),
            health=HealthConfig.from_env(),
            metrics=MetricsConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            controller=ControllerConfig(),
            kube=KubeConfig(),
            aws=AWSConfig(),
            providers=ProviderConfig(),
            health=HealthConfig(),
            metrics=MetricsConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
