"""
Gateway Configuration Module

Centralizes the environment-driven settings consumed by the integration
gateway: listener ports, upstream endpoints, and the per-call and drain
timeouts.

Environment:
    GATEWAY_HOST             - bind host for both listeners (default 0.0.0.0)
    PORT                     - HTTP health/info port (default 3000)
    WS_PORT                  - WebSocket listener port (default 8766)
    N8N_WEBHOOK_URL          - workflow engine base URL
    CAPABILITY_PROVIDER_URL  - capability provider base URL
    UPSTREAM_TIMEOUT         - per external call timeout, seconds
    DRAIN_TIMEOUT            - shutdown drain timeout, seconds
    LOG_LEVEL / LOG_TO_FILE  - logging
"""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()

SERVICE_NAME = "n8n Integration Server"
SERVICE_VERSION = "1.0.0"


class GatewayConfig(BaseSettings):
    """Gateway service configuration using Pydantic settings.

    Provides structured access to configuration with validation.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Listener settings
    host: str = Field(default="0.0.0.0", alias="GATEWAY_HOST")
    port: int = Field(default=3000, alias="PORT")
    ws_port: int = Field(default=8766, alias="WS_PORT")

    # Upstreams
    n8n_webhook_url: str = Field(default="http://localhost:5678", alias="N8N_WEBHOOK_URL")
    capability_provider_url: str = Field(
        default="http://localhost:8080", alias="CAPABILITY_PROVIDER_URL"
    )

    # Timeouts
    upstream_timeout: float = Field(
        default=30.0, alias="UPSTREAM_TIMEOUT", description="Per external call timeout in seconds"
    )
    drain_timeout: float = Field(
        default=10.0, alias="DRAIN_TIMEOUT", description="Shutdown drain timeout in seconds"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")

    @field_validator("n8n_webhook_url", "capability_provider_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("upstream_timeout", "drain_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be positive")
        return value


@lru_cache()
def get_config() -> GatewayConfig:
    """Get cached Gateway configuration."""
    return GatewayConfig()
