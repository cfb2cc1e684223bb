"""Configuration management for the Library Circulation engine.

Circulation policy (loan periods, fine rates, hold windows) and the
concurrency budget (lock timeouts, retry backoff) are loaded from the
environment so that different branches can run different policies without
code changes.
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Circulation engine configuration.

    Every field can be overridden with a ``LIBRARY_CIRCULATION_`` prefixed
    environment variable or a ``.env`` file entry.
    """

    model_config = SettingsConfigDict(
        # Use LIBRARY_CIRCULATION_ prefix for all env vars
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="MCP server name used in protocol handshake",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path",
    )

    sqlite_busy_timeout: float = Field(
        default=5.0,
        description="Seconds SQLite waits on a locked database before failing",
        gt=0,
    )

    # === Loan Policy ===

    loan_period_days: int = Field(
        default=14,
        description="Default loan period for a borrow",
        ge=1,
        le=365,
    )

    max_renewals: int = Field(
        default=3,
        description="Maximum number of renewals on a single loan",
        ge=0,
    )

    renewal_days: int = Field(
        default=14,
        description="Default extension granted by a renewal",
        ge=1,
        le=365,
    )

    # === Fine Policy ===

    fine_per_day: Decimal = Field(
        default=Decimal("0.50"),
        description="Late fee charged per whole day past the due date",
        ge=0,
        decimal_places=2,
    )

    max_fine_per_loan: Decimal = Field(
        default=Decimal("25.00"),
        description="Upper bound on the late fee assessed for one loan",
        ge=0,
        decimal_places=2,
    )

    fine_balance_cap: Decimal = Field(
        default=Decimal("10.00"),
        description="Members owing this much or more may not borrow",
        gt=0,
        decimal_places=2,
    )

    # === Reservation Policy ===

    reservation_expiry_days: int = Field(
        default=30,
        description="Default lifetime of a reservation",
        ge=1,
    )

    hold_pickup_days: int = Field(
        default=3,
        description="Days a fulfilled reservation keeps its copy on the hold shelf",
        ge=1,
    )

    # === Concurrency Budget ===

    lock_timeout: float = Field(
        default=2.0,
        description="Seconds to wait for one entity lock before backing off",
        gt=0,
    )

    busy_retry_attempts: int = Field(
        default=5,
        description="Attempts made before an operation reports Busy",
        ge=1,
        le=50,
    )

    busy_backoff_base: float = Field(
        default=0.05,
        description="Initial backoff delay in seconds, doubled on each retry",
        ge=0,
    )

    busy_backoff_max: float = Field(
        default=1.0,
        description="Ceiling for a single backoff delay",
        ge=0,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve to an absolute path and make sure the directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @model_validator(mode="after")
    def validate_backoff(self) -> "EngineConfig":
        """The backoff ceiling must not undercut the first delay."""
        if self.busy_backoff_max < self.busy_backoff_base:
            raise ValueError("busy_backoff_max must be >= busy_backoff_base")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug or self.log_level == "DEBUG"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.busy_backoff_max, self.busy_backoff_base * (2**attempt))

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = EngineConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
