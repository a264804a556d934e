"""Configuration management for the rollout engine."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Rollout engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROLLOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "rollout-engine"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file, in-cluster config when unset",
    )
    kube_context: Optional[str] = None

    # Rollout Settings
    default_revision_history_limit: int = Field(
        default=5,
        description="Outdated revisions kept when a deployment sets no limit",
    )
    phase_class: str = Field(
        default="default",
        description="Class of delegated phase objects reconciled by this process",
    )

    # Reconciliation Settings
    dependency_requeue_seconds: float = 30
    teardown_requeue_seconds: float = 5
    max_concurrent_reconciles: int = 4
    resync_interval_seconds: float = 300
    requeue_base_delay_seconds: float = 0.5
    requeue_max_delay_seconds: float = 60
    watch_restart_delay_seconds: float = 1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
