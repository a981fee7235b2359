"""Service configuration with environment variable support.

All settings can be configured via environment variables with the SPI_ prefix.
Example: SPI_BASE_URL=https://spi.example.com sets base_url.

Service providers are usually listed in a YAML or TOML file:

    base_url: https://spi.example.com
    service_providers:
      - type: GitHub
        client_id: "..."
        client_secret: "..."
      - type: Quay
        client_id: "..."
        client_secret: "..."
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from spi_oauth.oauth.config import ProviderConfig
from spi_oauth.oauth.providers import create_provider

ENV_PREFIX = "SPI_"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


class ServiceProviderSettings(BaseModel):
    """OAuth application registered at one service provider."""

    type: str
    client_id: str
    client_secret: str = Field(repr=False)
    base_url: str | None = Field(
        default=None,
        description="Base URL of a self-hosted provider (GitHub Enterprise, GitLab, Quay).",
    )

    def to_provider_config(self) -> ProviderConfig:
        return create_provider(
            provider_type=self.type,
            client_id=self.client_id,
            client_secret=self.client_secret,
            base_url=self.base_url,
        )


class ServiceConfig(BaseSettings):
    """OAuth service configuration."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        description="Public URL of this service; callback URLs are derived from it.",
    )
    bind: str = Field(
        default="0.0.0.0:8000",
        description="Address the HTTP server listens on.",
    )
    state_signing_secret: str = Field(
        repr=False,
        description="Secret shared with the operator to sign and verify OAuth states.",
    )
    state_ttl: int = Field(
        default=600,
        description="Lifetime in seconds of states encoded by this service.",
    )
    api_server: str = Field(
        default="https://kubernetes.default.svc",
        description="Kubernetes API server (or API proxy) used for access reviews.",
    )
    api_server_ca_path: str | None = Field(
        default=None,
        description="CA bundle for the Kubernetes API server, system CAs if unset.",
    )
    api_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds of Kubernetes API requests.",
    )
    provider_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds of requests to service providers.",
    )
    session_lifetime: int = Field(
        default=3600,
        description="Lifetime in seconds of a user agent session and the states veiled in it.",
    )
    session_cookie_name: str = Field(
        default="spi_oauth_session",
        description="Name of the session cookie.",
    )
    consume_state_on_unveil: bool = Field(
        default=False,
        description="Forget a veiled state as soon as a callback has read it.",
    )
    allowed_origins: list[str] = Field(
        default_factory=list,
        description="Origins allowed by CORS.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines.",
    )
    service_providers: list[ServiceProviderSettings] = Field(
        default_factory=list,
        description="OAuth applications of the supported service providers.",
    )

    @field_validator("base_url", "state_signing_secret")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("session_lifetime")
    @classmethod
    def _session_lifetime_minimum(cls, value: int) -> int:
        if value < 60:
            raise ValueError("session_lifetime must be at least 60 seconds")
        return value

    def provider_configs(self) -> list[ProviderConfig]:
        """Validate the configured providers.

        Raises:
            ValueError: On an unknown type, missing credentials or a duplicate type
        """
        configs = [p.to_provider_config() for p in self.service_providers]
        types = [c.provider_type for c in configs]
        duplicates = {t.value for t in types if types.count(t) > 1}
        if duplicates:
            raise ValueError(f"Service providers configured more than once: {sorted(duplicates)}")
        return configs


def load_config(path: str | Path | None = None, **overrides: Any) -> ServiceConfig:
    """Build the service configuration.

    Precedence, highest first: explicit overrides, SPI_* environment
    variables, the config file, defaults.
    """
    file_config: dict[str, Any] = {}
    if path:
        file_config = {
            key: value
            for key, value in load_config_from_file(path).items()
            if f"{ENV_PREFIX}{key.upper()}" not in os.environ
        }
    file_config.update({k: v for k, v in overrides.items() if v is not None})
    return ServiceConfig(**file_config)
