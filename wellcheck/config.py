"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- The scheduler is opt-in outside production
"""

import os
from functools import lru_cache
from typing import Literal, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

Environment = Literal["development", "staging", "production"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class SchedulerConfig(BaseModel):
    """Daily safety-check scheduling."""

    enabled: bool = Field(default=False, description="Run the per-subject scheduler")
    target_hour: int = Field(
        default=8, ge=0, le=23, description="Local hour at which checks run"
    )
    default_timezone: str = Field(
        default="America/New_York", description="Timezone for subjects without a valid one"
    )
    reconcile_interval_hours: float = Field(
        default=6.0, gt=0.0, description="Interval between scans for new subjects"
    )
    run_freshness_hours: float = Field(
        default=23.0, gt=0.0, description="Skip a fire if checks ran more recently than this"
    )
    alert_cooldown_hours: float = Field(
        default=24.0, gt=0.0, description="Window in which an alert type is not repeated"
    )

    @field_validator("default_timezone")
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = Field(default="sqlite:///./wellcheck.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log emitted SQL")


class NotificationConfig(BaseModel):
    """Push notification delivery."""

    expo_push_url: str = Field(
        default="https://exp.host/--/api/v2/push/send", description="Expo push endpoint"
    )
    timeout_seconds: float = Field(default=10.0, gt=0.0, description="HTTP timeout for pushes")
    dry_run: bool = Field(default=False, description="Log notifications instead of sending")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Logging level")
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Environment = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Environment:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> LogLevel:
    v = val.strip().upper()
    return cast(LogLevel, v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO")


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None or not val.strip():
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    scheduler_config = SchedulerConfig(
        enabled=_parse_bool(os.getenv("ENABLE_SAFETY_SCHEDULER"), environment == "production"),
        target_hour=int(os.getenv("SAFETY_CHECK_HOUR", "8")),
        default_timezone=os.getenv("SAFETY_CHECK_TIMEZONE", "America/New_York"),
        reconcile_interval_hours=float(os.getenv("SAFETY_RECONCILE_HOURS", "6")),
    )

    database_config = DatabaseConfig(
        url=os.getenv("DATABASE_URL", "sqlite:///./wellcheck.db"),
        echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
    )

    notification_config = NotificationConfig(
        expo_push_url=os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
        timeout_seconds=float(os.getenv("PUSH_TIMEOUT_SECONDS", "10")),
        dry_run=_parse_bool(os.getenv("PUSH_DRY_RUN"), False),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        scheduler=scheduler_config,
        database=database_config,
        notifications=notification_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")

        if config.scheduler.enabled:
            print("✅ Safety scheduler enabled")
        else:
            print("⚠️  Safety scheduler disabled (set ENABLE_SAFETY_SCHEDULER=true)")

        if config.notifications.dry_run:
            print("⚠️  Push notifications in dry-run mode")

    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n⏰ SCHEDULER CONFIGURATION")
    print(f"Enabled: {config.scheduler.enabled}")
    print(f"Check Hour: {config.scheduler.target_hour:02d}:00 local")
    print(f"Default Timezone: {config.scheduler.default_timezone}")
    print(f"Reconcile Interval: {config.scheduler.reconcile_interval_hours}h")
    print(f"Alert Cooldown: {config.scheduler.alert_cooldown_hours}h")

    print("\n📱 NOTIFICATIONS")
    print(f"Push URL: {config.notifications.expo_push_url}")
    print(f"Dry Run: {config.notifications.dry_run}")

    print("\n🗄️  DATABASE")
    print(f"URL: {config.database.url}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
