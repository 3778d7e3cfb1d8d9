"""Configuration management for the Library Circulation service.

Configuration comes from three layers, lowest precedence first:
1. Field defaults declared below
2. A ``.env`` file in the working directory
3. ``LIBRARY_*`` environment variables

Borrowing policy (loan period, renewal cap, fine rate, hold window, loan
limit) lives here as well, but the loan engine never reads it directly: it
is handed a frozen ``LoanPolicy`` built from ``LibraryConfig.policy``.
"""

from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoanPolicy(BaseModel):
    """Immutable set of borrowing rules injected into the loan engine."""

    model_config = ConfigDict(frozen=True)

    loan_duration_days: int = Field(default=14, ge=1)
    renewal_extension_days: int = Field(default=7, ge=1)
    renewal_cap: int = Field(default=3, ge=0)
    daily_fine_rate: Decimal = Field(default=Decimal("2.00"), ge=0)
    reservation_window_days: int = Field(default=2, ge=1)
    max_concurrent_loans: int = Field(default=3, ge=1)


class LibraryConfig(BaseSettings):
    """Service configuration loaded from the environment.

    Server metadata and transport settings are consumed by the request
    layer; the policy fields feed ``LoanPolicy``.
    """

    model_config = SettingsConfigDict(
        # LIBRARY_ prefix keeps our variables apart from other services
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="Server name announced to clients",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
    )

    http_host: str = Field(default="127.0.0.1")

    http_port: int = Field(default=8080, ge=1024, le=65535)

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

    # === Borrowing Policy ===

    loan_duration_days: int = Field(
        default=14,
        description="Days a fresh loan (or confirmed reservation) runs before it is due",
        ge=1,
        le=365,
    )

    renewal_extension_days: int = Field(
        default=7,
        description="Days added to the due date by each renewal",
        ge=1,
        le=365,
    )

    renewal_cap: int = Field(
        default=3,
        description="Maximum renewals per loan",
        ge=0,
        le=20,
    )

    daily_fine_rate: Decimal = Field(
        default=Decimal("2.00"),
        description="Fine charged per full day a loan is returned late",
        ge=0,
    )

    reservation_window_days: int = Field(
        default=2,
        description="Days a hold is kept before it expires",
        ge=1,
        le=60,
    )

    max_concurrent_loans: int = Field(
        default=3,
        description="Maximum loans a patron may hold in Borrowed or Overdue state",
        ge=1,
        le=100,
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    # === Computed Properties ===

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def policy(self) -> LoanPolicy:
        """Build the borrowing policy handed to the loan engine."""
        return LoanPolicy(
            loan_duration_days=self.loan_duration_days,
            renewal_extension_days=self.renewal_extension_days,
            renewal_cap=self.renewal_cap,
            daily_fine_rate=self.daily_fine_rate,
            reservation_window_days=self.reservation_window_days,
            max_concurrent_loans=self.max_concurrent_loans,
        )

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        return f"sqlite:///{self.database_path}"


# === Global Configuration Instance ===


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: LibraryConfig | None = None


def get_config() -> LibraryConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LibraryConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
