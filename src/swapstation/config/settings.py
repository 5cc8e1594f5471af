"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SWAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./swapstation.db",
        description="Database connection URL",
    )

    # Booking Configuration
    reservation_hours: int = Field(
        default=3,
        description="Hours a confirmed booking holds its reserved battery",
    )
    code_max_attempts: int = Field(
        default=10,
        description="Attempts to draw an unused confirmation code before giving up",
    )

    # Battery Selection and Routing
    min_reserve_charge: float = Field(
        default=95.0,
        description="Minimum charge level (%) for a battery to be reserved or released from charging",
    )
    min_service_health: float = Field(
        default=70.0,
        description="Minimum state of health (%) for a battery to stay in service",
    )

    # Charging Simulation
    full_charge_hours: float = Field(
        default=4.0,
        description="Hours to charge a battery from 0% to 100%",
    )
    discharge_min: int = Field(
        default=10,
        description="Lowest simulated charge level (%) of a battery returned from a vehicle",
    )
    discharge_max: int = Field(
        default=49,
        description="Highest simulated charge level (%) of a battery returned from a vehicle",
    )

    # Health Bands
    health_warning_threshold: float = Field(default=80.0, description="SOH below this is WARNING")
    health_critical_threshold: float = Field(default=70.0, description="SOH below this is CRITICAL")
    health_maintenance_threshold: float = Field(
        default=60.0,
        description="SOH below this forces MAINTENANCE (hard floor)",
    )
    usage_per_health_drop: int = Field(
        default=50,
        description="Every N-th use of a battery lowers its SOH",
    )
    health_drop: float = Field(default=0.5, description="SOH percentage points lost per drop")

    # Vehicle Registration
    approval_timeout_hours: int = Field(
        default=12,
        description="Hours a vehicle registration may wait for approval before rejection",
    )

    # Scheduler Intervals (seconds)
    booking_expiry_interval: int = Field(default=300, description="Booking expiry sweep interval")
    auto_charge_interval: int = Field(default=900, description="Auto-charge sweep interval")
    health_check_interval: int = Field(default=86400, description="Daily health sweep interval")
    approval_timeout_interval: int = Field(default=1800, description="Approval timeout sweep interval")
    sweep_batch_size: int = Field(
        default=500,
        ge=1,
        description="Maximum rows a sweep selects in one batch",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (logs to console if not set)",
    )
    log_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        description="Maximum log file size before rotation",
    )
    log_backup_count: int = Field(
        default=5,
        description="Number of backup log files to keep",
    )

    # Notification Configuration
    notifier: Literal["log", "email", "webhook"] = Field(
        default="log",
        description="Notification channel: log (structured log only), email (SMTP), webhook (HTTP POST)",
    )
    webhook_url: str | None = Field(default=None, description="Endpoint receiving notification requests")
    webhook_timeout: int = Field(default=10, description="Webhook request timeout in seconds")
    smtp_host: str = Field(default="smtp.gmail.com", description="SMTP server hostname")
    smtp_port: int = Field(default=587, description="SMTP server port (587 for TLS, 465 for SSL)")
    smtp_username: str | None = Field(default=None, description="SMTP authentication username")
    smtp_password: SecretStr | None = Field(default=None, description="SMTP authentication password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP connection")
    smtp_from_email: str | None = Field(default=None, description="From address for notifications")
    admin_emails: str | None = Field(
        default=None,
        description="Comma-separated addresses receiving maintenance alerts",
    )

    # HTTP API
    api_host: str = Field(default="127.0.0.1", description="Bind address for the HTTP API")
    api_port: int = Field(default=8000, description="Port for the HTTP API")

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if not 0 <= self.discharge_min <= self.discharge_max <= 100:
            raise ValueError("discharge range must satisfy 0 <= discharge_min <= discharge_max <= 100")
        if not (
            self.health_maintenance_threshold
            <= self.health_critical_threshold
            <= self.health_warning_threshold
        ):
            raise ValueError("health thresholds must be ordered maintenance <= critical <= warning")
        return self

    def get_admin_email_list(self) -> list[str]:
        """Parse admin_emails into a list of email addresses."""
        if not self.admin_emails:
            return []
        return [e.strip() for e in self.admin_emails.split(",") if e.strip()]

    @property
    def charge_rate_per_hour(self) -> float:
        """Percentage points gained per hour of charging."""
        return 100.0 / self.full_charge_hours


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
