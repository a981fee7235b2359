"""Tests for configuration loading from files and environment variables."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from spi_oauth.core.config import ServiceConfig, load_config, load_config_from_file
from spi_oauth.oauth.config import ProviderType

YAML_CONFIG = """
base_url: https://spi.example.com
state_signing_secret: from-file
service_providers:
  - type: GitHub
    client_id: gh-id
    client_secret: gh-secret
  - type: GitLab
    client_id: gl-id
    client_secret: gl-secret
    base_url: https://gitlab.example.com
"""

TOML_CONFIG = """
base_url = "https://spi.example.com"
state_signing_secret = "from-file"

[[service_providers]]
type = "Quay"
client_id = "quay-id"
client_secret = "quay-secret"
"""


class TestLoadConfigFromFile:
    """Test load_config_from_file."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(YAML_CONFIG)
        data = load_config_from_file(path)
        assert data["base_url"] == "https://spi.example.com"
        assert len(data["service_providers"]) == 2

    def test_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(TOML_CONFIG)
        data = load_config_from_file(path)
        assert data["service_providers"][0]["type"] == "Quay"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{}")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("base_url: [unclosed")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)


class TestServiceConfig:
    """Test ServiceConfig settings."""

    def test_default_values(self):
        config = ServiceConfig(base_url="https://spi.example.com", state_signing_secret="s")
        assert config.bind == "0.0.0.0:8000"
        assert config.state_ttl == 600
        assert config.session_lifetime == 3600
        assert config.session_cookie_name == "spi_oauth_session"
        assert config.consume_state_on_unveil is False
        assert config.service_providers == []

    def test_env_override(self):
        env = {
            "SPI_BASE_URL": "https://env.example.com",
            "SPI_STATE_SIGNING_SECRET": "env-secret",
            "SPI_CONSUME_STATE_ON_UNVEIL": "true",
            "SPI_SESSION_LIFETIME": "900",
        }
        with patch.dict(os.environ, env):
            config = ServiceConfig()
        assert config.base_url == "https://env.example.com"
        assert config.consume_state_on_unveil is True
        assert config.session_lifetime == 900

    def test_empty_base_url_rejected(self):
        with pytest.raises(ValidationError):
            ServiceConfig(base_url="", state_signing_secret="s")

    def test_empty_secret_rejected(self):
        with pytest.raises(ValidationError):
            ServiceConfig(base_url="https://spi.example.com", state_signing_secret="")

    def test_short_session_lifetime_rejected(self):
        with pytest.raises(ValidationError):
            ServiceConfig(base_url="https://spi.example.com", state_signing_secret="s", session_lifetime=5)

    def test_secret_not_in_repr(self):
        config = ServiceConfig(
            base_url="https://spi.example.com",
            state_signing_secret="hush",
            service_providers=[{"type": "GitHub", "client_id": "id", "client_secret": "psst"}],
        )
        assert "hush" not in repr(config)
        assert "psst" not in repr(config)

    def test_provider_configs(self):
        config = ServiceConfig(
            base_url="https://spi.example.com",
            state_signing_secret="s",
            service_providers=[
                {"type": "github", "client_id": "id", "client_secret": "secret"},
                {"type": "Quay", "client_id": "id", "client_secret": "secret"},
            ],
        )
        types = [p.provider_type for p in config.provider_configs()]
        assert types == [ProviderType.GITHUB, ProviderType.QUAY]

    def test_duplicate_providers_rejected(self):
        config = ServiceConfig(
            base_url="https://spi.example.com",
            state_signing_secret="s",
            service_providers=[
                {"type": "GitHub", "client_id": "a", "client_secret": "a"},
                {"type": "github", "client_id": "b", "client_secret": "b"},
            ],
        )
        with pytest.raises(ValueError, match="more than once"):
            config.provider_configs()

    def test_unknown_provider_rejected(self):
        config = ServiceConfig(
            base_url="https://spi.example.com",
            state_signing_secret="s",
            service_providers=[{"type": "Bitbucket", "client_id": "a", "client_secret": "a"}],
        )
        with pytest.raises(ValueError, match="Unknown provider type"):
            config.provider_configs()


class TestLoadConfig:
    """Test load_config precedence."""

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(YAML_CONFIG)
        config = load_config(path)
        assert config.base_url == "https://spi.example.com"
        gitlab = config.provider_configs()[1]
        assert gitlab.capabilities.endpoint.token_url == "https://gitlab.example.com/oauth/token"

    def test_env_beats_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(YAML_CONFIG)
        with patch.dict(os.environ, {"SPI_BASE_URL": "https://env.example.com"}):
            config = load_config(path)
        assert config.base_url == "https://env.example.com"
        assert config.state_signing_secret == "from-file"

    def test_overrides_beat_everything(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(TOML_CONFIG)
        with patch.dict(os.environ, {"SPI_BIND": "127.0.0.1:9000"}):
            config = load_config(path, bind="0.0.0.0:7000", log_level=None)
        assert config.bind == "0.0.0.0:7000"
        assert config.log_level == "info"
