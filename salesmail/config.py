"""Configuration management from environment variables."""
import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

from salesmail.errors import ConfigurationError

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
STATE_DB = DATA_DIR / "state.db"
RUNS_FILE = DATA_DIR / "runs.jsonl"

PLACEHOLDER_PREFIXES = ("your-", "your_", "changeme", "<")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def is_placeholder(value: str | None) -> bool:
    """True for unset values and for template values left in .env."""
    if not value or not value.strip():
        return True
    return value.strip().lower().startswith(PLACEHOLDER_PREFIXES)


class Config:
    """Application configuration."""

    # Supabase sink
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_TABLE: str = os.getenv("SUPABASE_TABLE", "sales")

    # Gmail source
    GMAIL_ACCESS_TOKEN: str | None = os.getenv("GMAIL_ACCESS_TOKEN")
    GMAIL_USER: str = os.getenv("GMAIL_USER", "me")
    SEARCH_QUERY: str = os.getenv(
        "SEARCH_QUERY", 'from:noreply@booth.pm subject:"ご注文"'
    )
    PROCESSED_LABEL: str = os.getenv("PROCESSED_LABEL", "sales-processed")
    IN_FLIGHT_LABEL: str = os.getenv("IN_FLIGHT_LABEL", "sales-inflight")
    TIMEOUT: int = int(os.getenv("TIMEOUT", "20"))

    # Scan
    MAX_CANDIDATES: int = int(os.getenv("MAX_CANDIDATES", "50"))
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "10"))
    LOG_INTERVAL: int = int(os.getenv("LOG_INTERVAL", "10"))
    TIME_BUDGET_MINUTES: float = float(os.getenv("TIME_BUDGET_MINUTES", "5"))
    TIME_CHECK_INTERVAL: int = int(os.getenv("TIME_CHECK_INTERVAL", "5"))
    EXTRACT_VARIANT: bool = _env_bool("EXTRACT_VARIANT", "true")

    # Run lock
    LOCK_TIMEOUT_SECONDS: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))
    LOCK_STALE_MINUTES: float = float(os.getenv("LOCK_STALE_MINUTES", "30"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls, require_source: bool = True) -> None:
        """Validate required configuration."""
        errors = []
        if is_placeholder(cls.SUPABASE_URL):
            errors.append("SUPABASE_URL is required")
        if is_placeholder(cls.SUPABASE_SERVICE_ROLE):
            errors.append("SUPABASE_SERVICE_ROLE is required")
        if require_source and is_placeholder(cls.GMAIL_ACCESS_TOKEN):
            errors.append("GMAIL_ACCESS_TOKEN is required")
        if cls.PROCESSED_LABEL == cls.IN_FLIGHT_LABEL:
            errors.append("PROCESSED_LABEL and IN_FLIGHT_LABEL must differ")
        # Fetching is not counted in the budget; leave room for it before the lease goes stale
        if cls.TIME_BUDGET_MINUTES * 2 > cls.LOCK_STALE_MINUTES:
            errors.append("TIME_BUDGET_MINUTES must be at most half of LOCK_STALE_MINUTES")
        if errors:
            raise ConfigurationError(f"Configuration errors: {', '.join(errors)}")


config = Config()


@dataclass(frozen=True)
class ScanSettings:
    """Per-run settings injected into the scan controller."""

    max_candidates: int = 50
    batch_size: int = 10
    log_interval: int = 10
    time_budget_minutes: float = 5.0
    time_check_interval: int = 5
    extract_variant: bool = True
    lock_timeout_seconds: float = 5.0
    processed_marker: str = "sales-processed"
    in_flight_marker: str = "sales-inflight"

    def __post_init__(self) -> None:
        for name in ("max_candidates", "batch_size", "log_interval", "time_check_interval"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        if self.time_budget_minutes < 0:
            raise ConfigurationError("time_budget_minutes must be >= 0")
        if self.processed_marker == self.in_flight_marker:
            raise ConfigurationError("processed and in-flight markers must differ")

    @classmethod
    def from_config(cls, cfg: Config = config, **overrides) -> "ScanSettings":
        """Snapshot the environment configuration, applying CLI/API overrides."""
        values = {
            "max_candidates": cfg.MAX_CANDIDATES,
            "batch_size": cfg.BATCH_SIZE,
            "log_interval": cfg.LOG_INTERVAL,
            "time_budget_minutes": cfg.TIME_BUDGET_MINUTES,
            "time_check_interval": cfg.TIME_CHECK_INTERVAL,
            "extract_variant": cfg.EXTRACT_VARIANT,
            "lock_timeout_seconds": cfg.LOCK_TIMEOUT_SECONDS,
            "processed_marker": cfg.PROCESSED_LABEL,
            "in_flight_marker": cfg.IN_FLIGHT_LABEL,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
