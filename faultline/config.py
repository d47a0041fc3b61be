"""
Pipeline configuration management.
"""

import platform as _platform
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from faultline.models.log_record import LogLevel


class Settings(BaseSettings):
    """Pipeline settings loaded from FAULTLINE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FAULTLINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = "development"
    app_version: str = "0.1.0"
    platform: str = _platform.system().lower() or "unknown"
    installation_id: Optional[str] = None

    # Logging
    diagnostics_log_level: str = "WARNING"
    min_log_level: Optional[str] = None  # Derived from environment when unset

    # Console sink
    console_sink_enabled: bool = True
    console_format: str = "text"  # "text" or "json"

    # Rotating file sink
    file_sink_enabled: bool = False
    file_sink_path: str = "logs/faultline.log"
    file_sink_max_bytes: int = 5 * 1024 * 1024
    file_sink_retention_count: int = 5

    # Remote sink
    remote_sink_enabled: bool = False
    remote_sink_url: Optional[str] = None
    remote_sink_batch_size: int = 50
    remote_sink_batch_interval_seconds: float = 30.0
    remote_sink_max_buffer: int = 1000
    remote_sink_timeout_seconds: float = 10.0
    remote_sink_source: str = "faultline"
    shutdown_flush_timeout_seconds: float = 5.0

    # Recovery
    recovery_max_retries: int = 3
    recovery_backoff_base_seconds: float = 1.0
    recovery_backoff_max_seconds: float = 30.0
    recovery_strategy_timeout_seconds: float = 30.0
    report_unrecovered_failures: bool = False

    # User notifications
    notification_limit: int = 3
    notification_window_seconds: float = 60.0

    # Analytics
    analytics_spike_threshold: int = 50
    analytics_spike_window_seconds: float = 3600.0
    analytics_report_interval_seconds: float = 3600.0
    analytics_top_n: int = 10
    analytics_recommendation_threshold: int = 100
    analytics_retention_seconds: float = 7 * 24 * 3600.0

    # Crash reporter
    crash_reporter_url: Optional[str] = None
    crash_reporter_api_key: Optional[str] = None
    crash_reporter_salt: str = "faultline"
    crash_reporter_timeout_seconds: float = 10.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_timeout_seconds: float = 60.0

    # Redis (state snapshots)
    redis_url: Optional[str] = None
    state_snapshot_ttl_seconds: int = 24 * 3600

    # Admin API
    admin_api_key: Optional[str] = None

    @field_validator("min_log_level", mode="before")
    @classmethod
    def normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def build_mode(self) -> str:
        return "release" if self.is_production else "debug"

    @property
    def effective_min_level(self) -> LogLevel:
        """Explicit minimum level, or debug in development and info in production."""
        if self.min_log_level:
            return LogLevel.parse(self.min_log_level)
        return LogLevel.INFO if self.is_production else LogLevel.DEBUG

    def global_context(self) -> Dict[str, Any]:
        """Process-wide context attached to every log record."""
        context: Dict[str, Any] = {
            "app_version": self.app_version,
            "environment": self.environment,
            "platform": self.platform,
        }
        if self.installation_id:
            context["installation_id"] = self.installation_id
        return context

    def crash_attributes(self) -> Dict[str, Any]:
        """Process attributes attached to every crash report."""
        return {
            "app_version": self.app_version,
            "platform": self.platform,
            "build_mode": self.build_mode,
        }


@lru_cache
def get_settings() -> Settings:
    """Get the cached settings instance."""
    return Settings()
