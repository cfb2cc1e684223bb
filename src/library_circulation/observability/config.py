"""
Observability settings.

Read from ``LOGFIRE_*`` environment variables: ``LOGFIRE_TOKEN``,
``LOGFIRE_ENVIRONMENT``, ``LOGFIRE_ENABLED``, ``LOGFIRE_CONSOLE_OUTPUT``,
``LOGFIRE_SEND_TO_LOGFIRE`` and ``LOGFIRE_SLOW_OPERATION_MS``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilityConfig(BaseSettings):
    """Where traces and metrics go, and what counts as a slow operation."""

    model_config = SettingsConfigDict(env_prefix="LOGFIRE_", extra="ignore")

    token: str = ""
    service_name: str = "library-circulation"
    environment: str = "development"

    enabled: bool = True
    console_output: bool | None = None
    send_to_logfire: bool | None = None

    # Engine operations slower than this are logged at WARNING
    slow_operation_ms: float = Field(default=500.0, gt=0)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_console_output(self) -> bool:
        """Console spans default on in development and off in production."""
        if self.console_output is not None:
            return self.console_output
        return not self.is_production

    def resolved_send_to_logfire(self) -> bool:
        """Export defaults on only in production with a token."""
        if self.send_to_logfire is not None:
            return self.send_to_logfire
        return self.is_production and bool(self.token)
