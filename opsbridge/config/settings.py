"""
Application settings and configuration.

Loads configuration from environment variables (prefixed with OPSBRIDGE_)
and an optional .env file, with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from opsbridge.core.protocol.constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_DESCRIBE_TIMEOUT,
    DEFAULT_INVOKE_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_READINESS_POLL_INTERVAL,
    DEFAULT_REDISCOVERY_INTERVAL,
    DEFAULT_STARTUP_DEADLINE,
    PLUGINS_CONFIG_PATH,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OPSBRIDGE_",
        env_file=".env",
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Plugin Configuration
    plugin_config_path: str = Field(
        default=PLUGINS_CONFIG_PATH,
        description="JSON file listing plugin identities (mounted from a ConfigMap in-cluster)"
    )
    plugin_describe_timeout: float = Field(default=DEFAULT_DESCRIBE_TIMEOUT)
    plugin_invoke_timeout: float = Field(default=DEFAULT_INVOKE_TIMEOUT)
    plugin_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    plugin_backoff_base: float = Field(default=DEFAULT_BACKOFF_BASE)
    plugin_backoff_max: float = Field(default=DEFAULT_BACKOFF_MAX)
    plugin_startup_deadline: float = Field(
        default=DEFAULT_STARTUP_DEADLINE,
        description="Seconds to wait for each plugin to report ready at startup"
    )
    plugin_readiness_poll_interval: float = Field(default=DEFAULT_READINESS_POLL_INTERVAL)
    plugin_rediscovery_interval: float = Field(
        default=DEFAULT_REDISCOVERY_INTERVAL,
        description="Seconds between background attempts to recover unreachable plugins"
    )
    plugin_background_discovery: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Environment
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    @property
    def debug_mode(self) -> bool:
        """Check if running in debug mode."""
        return self.debug

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


# Global settings instance
settings = Settings()
