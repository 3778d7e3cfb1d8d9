"""Logfire observability for the Library Circulation service."""

import logging

import logfire

from .config import ObservabilityConfig, get_config, get_environment_config, set_config
from .decorators import trace_resource, trace_tool

logger = logging.getLogger(__name__)


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Initialize Logfire with configuration."""
    config = config or get_environment_config()
    set_config(config)

    if not config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=config.token or None,
        service_name=config.project_name,
        environment=config.environment,
        send_to_logfire=config.send_to_logfire,
        console=None if config.console_output else False,
    )

    if config.capture_logging:
        logging.getLogger().addHandler(logfire.LogfireLoggingHandler())

    if config.environment == "production":
        logfire.instrument_system_metrics()

    logger.info("Observability initialized (environment=%s)", config.environment)


__all__ = [
    "ObservabilityConfig",
    "get_config",
    "initialize_observability",
    "trace_resource",
    "trace_tool",
]
