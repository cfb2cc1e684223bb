"""Logfire observability for the Library Circulation engine."""

import logging

import logfire

from .config import ObservabilityConfig

logger = logging.getLogger(__name__)

_config: ObservabilityConfig | None = None


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Configure logfire once at startup."""
    global _config  # noqa: PLW0603
    _config = config or ObservabilityConfig()

    if not _config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=_config.token or None,
        service_name=_config.service_name,
        environment=_config.environment,
        send_to_logfire=_config.resolved_send_to_logfire(),
        console=None if _config.resolved_console_output() else False,
    )
    logger.info(
        "Observability configured for %s (%s)", _config.service_name, _config.environment
    )

    if _config.is_production:
        logfire.instrument_system_metrics()


def get_observability_config() -> ObservabilityConfig:
    global _config  # noqa: PLW0603
    if _config is None:
        _config = ObservabilityConfig()
    return _config


__all__ = [
    "ObservabilityConfig",
    "get_observability_config",
    "initialize_observability",
]
