"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_path: str = Field(default="./data/riskcast.duckdb", description="DuckDB file path")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Dispatcher
    evaluation_hour: int = Field(
        default=9, ge=0, le=23, description="Local hour at which daily jobs become eligible"
    )
    eval_window_minutes: int = Field(
        default=10, ge=1, le=59, description="Minutes after the hour a tick is still eligible"
    )
    dispatch_concurrency: int = Field(
        default=12, ge=1, le=64, description="Concurrent users per dispatcher tick"
    )
    fallback_timezone: str = Field(
        default="UTC", description="Timezone used when no location record resolves"
    )

    # Job queue / worker
    worker_concurrency: int = Field(default=6, ge=1, le=64, description="Concurrent jobs per batch")
    worker_batch_size: int = Field(default=50, ge=1, le=500, description="Jobs picked per batch")
    max_attempts: int = Field(default=3, ge=1, le=20, description="Lease attempts before a job errors")
    stale_lock_minutes: int = Field(
        default=10, ge=1, description="Lease age after which a running job is reclaimable"
    )
    derived_stale_lock_minutes: int = Field(
        default=30, ge=1, description="Stale lease timeout for derived-metric jobs"
    )

    # Baseline evaluation
    min_baseline_samples: int = Field(
        default=7, ge=2, description="History samples required for mean/stddev baselines"
    )
    robust_min_baseline_samples: int = Field(
        default=5, ge=2, description="History samples required for median/MAD baselines"
    )
    stddev_multiplier: float = Field(
        default=2.0, gt=0.0, description="Standard deviations that count as a deviation"
    )
    robust_z_threshold: float = Field(
        default=2.0, gt=0.0, description="Robust z-score that counts as a deviation"
    )
    cumulative_low_check_hour: int = Field(
        default=21, ge=0, le=23, description="Local hour before which cumulative lows are not judged"
    )
    default_baseline_days: int = Field(
        default=14, ge=1, le=365, description="Baseline window when a definition leaves it unset"
    )

    # Scoring
    gauge_headroom: float = Field(
        default=1.2, gt=0.0, description="Gauge maximum as a multiple of the HIGH threshold"
    )
    score_window_days: int = Field(
        default=7, ge=1, le=7, description="Decay window and forecast horizon in days"
    )

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    debug: bool = Field(default=False, description="Debug mode")
    testing: bool = Field(default=False, description="Testing mode")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
