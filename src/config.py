"""
Configuration module for stageply.

Loads configuration from environment variables. Command line flags override
individual values at the CLI entry point.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_TIMEOUT = 300  # seconds
VALID_PROPAGATION_POLICIES = ("Foreground", "Background", "Orphan")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class KubeConfig:
    """Cluster connection configuration."""

    kubeconfig: str = os.path.expanduser("~/.kube/config")
    context: Optional[str] = None
    in_cluster: bool = False

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            kubeconfig=os.getenv(
                "KUBECONFIG", os.path.expanduser("~/.kube/config")
            ),
            context=os.getenv("KUBE_CONTEXT") or None,
            in_cluster=_env_bool("KUBE_IN_CLUSTER"),
        )


@dataclass
class ReconcileConfig:
    """Apply, wait and prune configuration."""

    wait_timeout: float = DEFAULT_TIMEOUT
    field_manager: str = "stageply"
    propagation_policy: str = "Foreground"

    def __post_init__(self):
        if self.wait_timeout <= 0:
            raise ValueError("wait_timeout must be positive")
        if not self.field_manager:
            raise ValueError("field_manager cannot be empty")
        if self.propagation_policy not in VALID_PROPAGATION_POLICIES:
            raise ValueError(
                f"propagation_policy must be one of "
                f"{', '.join(VALID_PROPAGATION_POLICIES)}, "
                f"got {self.propagation_policy!r}"
            )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            wait_timeout=float(os.getenv("STAGEPLY_WAIT_TIMEOUT", DEFAULT_TIMEOUT)),
            field_manager=os.getenv("STAGEPLY_FIELD_MANAGER", "stageply"),
            propagation_policy=os.getenv(
                "STAGEPLY_PROPAGATION_POLICY", "Foreground"
            ),
        )


@dataclass
class LogConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    kube: KubeConfig
    reconcile: ReconcileConfig
    log: LogConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            kube=KubeConfig.from_env(),
            reconcile=ReconcileConfig.from_env(),
            log=LogConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            kube=KubeConfig(),
            reconcile=ReconcileConfig(),
            log=LogConfig(),
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
