"""Configuration for Logfire observability."""

import os

from pydantic import BaseModel, Field


class ObservabilityConfig(BaseModel):
    """Configuration for Logfire observability."""

    # Connection
    token: str = Field(default_factory=lambda: os.getenv("LOGFIRE_TOKEN", ""))
    project_name: str = "library-circulation"
    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # Behavior
    enabled: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_ENABLED", "true").lower() == "true"
    )
    console_output: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_CONSOLE", "false").lower() == "true"
    )
    send_to_logfire: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_SEND", "false").lower() == "true"
    )

    # Forward stdlib ``logging`` records into Logfire spans
    capture_logging: bool = True

    # Patron ids are recorded on spans; set False to keep them out of traces
    record_patron_ids: bool = True


def get_environment_config() -> ObservabilityConfig:
    """Get configuration based on environment."""
    if os.getenv("ENVIRONMENT", "development") == "production":
        return ObservabilityConfig(console_output=False, send_to_logfire=True)
    return ObservabilityConfig()


_config: ObservabilityConfig | None = None


def get_config() -> ObservabilityConfig:
    """Get current observability configuration."""
    global _config  # noqa: PLW0603
    if _config is None:
        _config = get_environment_config()
    return _config


def set_config(config: ObservabilityConfig | None) -> None:
    global _config  # noqa: PLW0603
    _config = config
