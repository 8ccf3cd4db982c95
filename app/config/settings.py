"""
Application settings using Pydantic Settings.

Loads configuration from environment variables with validation.
Every polling interval, threshold and exchange close time used by the
strategy trade engine is a named setting here rather than a literal.
"""

from typing import Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    Uses Pydantic for validation and type checking.
    """

    # App Configuration
    APP_NAME: str = Field(default="Strategy Trade Engine")
    APP_VERSION: str = Field(default="1.0.0")
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)

    # Redis (positions, target sets, price cache, outcome stream)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REDIS_SOCKET_TIMEOUT_SECONDS: float = Field(default=0.5)

    # Tick subscription service (broker WebSocket bridge)
    TICK_SUBSCRIPTION_BASE_URL: str = Field(default="http://localhost:8208")
    TICK_SUBSCRIPTION_TIMEOUT_SECONDS: float = Field(default=1.0)

    # Scheduling
    SCHEDULER_ENABLED: bool = Field(default=True)
    POSITION_MONITOR_INTERVAL_SECONDS: float = Field(default=2.0)
    OI_MONITOR_INTERVAL_SECONDS: float = Field(default=60.0)
    MONITOR_CONCURRENCY: int = Field(default=8)
    INSTRUMENT_LOCK_TTL_MS: int = Field(default=5000)

    # Position opening
    LOT_PERCENTAGES: List[int] = Field(default=[40, 30, 20, 10])
    ENTRY_CORRECTION_THRESHOLD: float = Field(default=0.10)
    SWING_CANDLE_COUNT: int = Field(default=60)
    DEFAULT_OPTION_DELTA: float = Field(default=0.5)

    # Position monitoring
    GRACE_PERIOD_SECONDS: int = Field(default=30)
    DRAWDOWN_WINDOW_SECONDS: int = Field(default=300)
    DRAWDOWN_EXIT_FRACTION: float = Field(default=0.01)
    TRAILING_CONFIRMATION_PERCENT: float = Field(default=1.0)

    # OI pattern monitoring
    OI_WINDOW_SIZE: int = Field(default=5)
    OI_MIN_CONFIDENCE: float = Field(default=0.3)
    OI_SIGNAL_CONFIDENCE: float = Field(default=0.5)
    OI_TRIGGER_COUNT: int = Field(default=3)

    # End-of-day liquidation (session name -> "HH:MM" close sweep time)
    EOD_TIMEZONE: str = Field(default="Asia/Kolkata")
    EOD_SESSIONS: Dict[str, str] = Field(
        default={"NSE": "15:25", "CURRENCY": "16:55", "MCX": "23:25"}
    )
    EOD_WEEKDAYS: List[int] = Field(default=[0, 1, 2, 3, 4])
    # Per-instrument lock wait and in-sweep passes over instruments still locked
    EOD_LOCK_WAIT_SECONDS: float = Field(default=5.0)
    EOD_LOCK_ATTEMPTS: int = Field(default=3)

    # Outbound sinks
    TRADE_OUTCOMES_STREAM: str = Field(default="trade-outcomes")
    TRADE_OUTCOMES_MAXLEN: int = Field(default=10000)
    POSITION_UPDATES_CHANNEL: str = Field(default="positions")

    # Celery
    CELERY_BROKER_URL: str = Field(default="")
    CELERY_RESULT_BACKEND: str = Field(default="")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="colored")
    LOG_FILE_PATH: str = Field(default="")

    # CORS
    CORS_ORIGINS: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> List[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return []

    @field_validator("LOT_PERCENTAGES", "EOD_WEEKDAYS", mode="before")
    @classmethod
    def parse_int_list(cls, v) -> List[int]:
        """Parse integer lists from comma-separated string or list."""
        if isinstance(v, str):
            return [int(part.strip()) for part in v.split(",") if part.strip()]
        return v

    @field_validator("LOT_PERCENTAGES")
    @classmethod
    def validate_lot_percentages(cls, v: List[int]) -> List[int]:
        """Validate lot percentages are non-negative and not all zero."""
        if not v or any(p < 0 for p in v) or sum(v) <= 0:
            raise ValueError("LOT_PERCENTAGES must be non-negative with a positive sum")
        return v

    @field_validator("EOD_WEEKDAYS")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        """Validate weekdays are Monday=0 .. Sunday=6."""
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("EOD_WEEKDAYS must contain values between 0 and 6")
        return v

    @field_validator("EOD_SESSIONS")
    @classmethod
    def validate_eod_sessions(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate every session time is HH:MM."""
        for session, at in v.items():
            hour, _, minute = at.partition(":")
            if not (hour.isdigit() and minute.isdigit() and int(hour) < 24 and int(minute) < 60):
                raise ValueError(f"EOD_SESSIONS[{session}] must be HH:MM, got {at!r}")
        return v

    @field_validator(
        "POSITION_MONITOR_INTERVAL_SECONDS",
        "OI_MONITOR_INTERVAL_SECONDS",
        "MONITOR_CONCURRENCY",
        "INSTRUMENT_LOCK_TTL_MS",
        "OI_WINDOW_SIZE",
        "DRAWDOWN_WINDOW_SECONDS",
        "EOD_LOCK_WAIT_SECONDS",
        "EOD_LOCK_ATTEMPTS",
    )
    @classmethod
    def validate_positive(cls, v):
        """Validate intervals and sizes are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @property
    def celery_broker(self) -> str:
        """Celery broker URL, defaulting to the Redis URL."""
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def celery_backend(self) -> str:
        """Celery result backend URL, defaulting to the Redis URL."""
        return self.CELERY_RESULT_BACKEND or self.REDIS_URL

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


# Global settings instance
def get_settings() -> Settings:
    """Get settings instance (lazy loading)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

_settings: Settings | None = None
