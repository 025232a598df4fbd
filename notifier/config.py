"""Configuration loader for the notifier with validation."""
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """
    Notifier configuration from environment variables.

    All settings are validated on load to fail fast if misconfigured.
    """

    # Storage
    database_url: str

    # Worker pool
    worker_concurrency: int = 5
    poll_interval_seconds: float = 2.0
    maintenance_interval_seconds: int = 60

    # Retry policy
    max_attempts: int = 5
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 3600.0
    lease_seconds: int = 300

    # Retention (completed: 24h / newest 1000, failed: 7 days)
    completed_retention_seconds: int = 24 * 3600
    completed_retention_count: int = 1000
    failed_retention_seconds: int = 7 * 24 * 3600

    # Throughput (stay under Telegram's ~30 msg/s per bot)
    rate_limit_jobs: int = 25
    rate_limit_window_seconds: float = 1.0
    channel_send_timeout_seconds: int = 12
    channel_send_spacing_ms: int = 50

    # Process behavior
    run_worker_in_process: bool = True
    auto_create_schema: bool = False
    seed_default_modules: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.worker_concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")

        if self.max_attempts < 1:
            raise ValueError("JOB_MAX_ATTEMPTS must be at least 1")

        if self.backoff_base_seconds <= 0:
            raise ValueError("JOB_BACKOFF_BASE_SECONDS must be positive")

        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("JOB_BACKOFF_MAX_SECONDS must be >= JOB_BACKOFF_BASE_SECONDS")

        if self.lease_seconds < 10:
            raise ValueError("JOB_LEASE_SECONDS must be at least 10 seconds")

        if self.rate_limit_jobs < 1 or self.rate_limit_window_seconds <= 0:
            raise ValueError("RATE_LIMIT_JOBS must be >= 1 and RATE_LIMIT_WINDOW_SECONDS > 0")

        if self.channel_send_timeout_seconds < 1:
            raise ValueError("CHANNEL_SEND_TIMEOUT_SECONDS must be at least 1")

        if self.channel_send_spacing_ms < 0:
            raise ValueError("CHANNEL_SEND_SPACING_MS must not be negative")

        if min(self.completed_retention_seconds, self.completed_retention_count, self.failed_retention_seconds) < 0:
            raise ValueError("retention settings must not be negative")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Raises:
            RuntimeError: If required environment variables are missing
            ValueError: If configuration values are invalid
        """
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")

        return cls(
            database_url=database_url,
            worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "5")),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "2")),
            maintenance_interval_seconds=int(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "60")),
            max_attempts=int(os.getenv("JOB_MAX_ATTEMPTS", "5")),
            backoff_base_seconds=float(os.getenv("JOB_BACKOFF_BASE_SECONDS", "2")),
            backoff_max_seconds=float(os.getenv("JOB_BACKOFF_MAX_SECONDS", "3600")),
            lease_seconds=int(os.getenv("JOB_LEASE_SECONDS", "300")),
            completed_retention_seconds=int(os.getenv("COMPLETED_RETENTION_SECONDS", str(24 * 3600))),
            completed_retention_count=int(os.getenv("COMPLETED_RETENTION_COUNT", "1000")),
            failed_retention_seconds=int(os.getenv("FAILED_RETENTION_SECONDS", str(7 * 24 * 3600))),
            rate_limit_jobs=int(os.getenv("RATE_LIMIT_JOBS", "25")),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "1")),
            channel_send_timeout_seconds=int(os.getenv("CHANNEL_SEND_TIMEOUT_SECONDS", "12")),
            channel_send_spacing_ms=int(os.getenv("CHANNEL_SEND_SPACING_MS", "50")),
            run_worker_in_process=_env_bool("RUN_WORKER_IN_PROCESS", True),
            auto_create_schema=_env_bool("AUTO_CREATE_SCHEMA", False),
            seed_default_modules=_env_bool("SEED_DEFAULT_MODULES", False),
        )
