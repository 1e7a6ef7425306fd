"""Engine configuration — tunable parameters, not business logic."""

from pydantic import BaseModel, Field


class EligibilityConfig(BaseModel):
    """Configuration for evaluation, ranking and alternative search."""

    confidence_floor: float = Field(ge=0.0, le=1.0, default=0.3)
    category_weight: float = Field(gt=0.0, default=2.0)
    field_weight: float = Field(gt=0.0, default=1.0)
    max_workers: int = Field(ge=1, default=8)
    cache_max_entries: int = Field(ge=0, default=1024)   # 0 disables caching


class WorkflowConfig(BaseModel):
    """Configuration for the Workflow Orchestrator and stale-step monitor."""

    max_retries: int = Field(ge=0, default=3)
    backoff_base_seconds: float = Field(gt=0.0, default=60.0)
    backoff_max_seconds: float = Field(gt=0.0, default=86400.0)
    renewal_grace_days: int = Field(ge=0, default=30)
    stale_after_days: int = Field(ge=1, default=30)
    stale_sweep_schedule: str = "0 * * * *"    # Cron expression
