"""
Settings for the Benefit Kernel, loaded from environment variables or .env
"""
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from benefit_kernel.models.config import EligibilityConfig, WorkflowConfig


class Settings(BaseSettings):
    """Application settings. Every field maps to BENEFIT_KERNEL_<NAME>."""

    app_name: str = "Benefit Kernel"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # Workflow persistence
    db_path: str = ":memory:"

    # Eligibility
    confidence_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    category_weight: float = 2.0
    field_weight: float = 1.0
    eligibility_workers: int = 8
    cache_max_entries: int = 1024

    # Workflow
    max_retries: int = 3
    backoff_base_seconds: float = 60.0
    backoff_max_seconds: float = 86400.0
    renewal_grace_days: int = 30
    stale_after_days: int = 30
    stale_sweep_schedule: str = "0 * * * *"

    model_config = SettingsConfigDict(
        env_prefix="BENEFIT_KERNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def eligibility_config(self) -> EligibilityConfig:
        return EligibilityConfig(
            confidence_floor=self.confidence_floor,
            category_weight=self.category_weight,
            field_weight=self.field_weight,
            max_workers=self.eligibility_workers,
            cache_max_entries=self.cache_max_entries,
        )

    def workflow_config(self) -> WorkflowConfig:
        return WorkflowConfig(
            max_retries=self.max_retries,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
            renewal_grace_days=self.renewal_grace_days,
            stale_after_days=self.stale_after_days,
            stale_sweep_schedule=self.stale_sweep_schedule,
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
