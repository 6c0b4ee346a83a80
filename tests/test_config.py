"""
Tests for runtime configuration and ness.json settings.
"""

import json

import pytest

from ness.config import NessConfig
from ness.errors import ConfigurationError
from ness.settings import NessSettings, load_settings, save_settings


class TestNessConfig:
    """Test environment overrides."""

    def test_defaults(self):
        config = NessConfig.from_env({})
        assert config.region == "us-east-1"
        assert config.stack_prefix == "ness"
        assert config.dns_max_attempts is None

    def test_overrides(self):
        config = NessConfig.from_env({
            "NESS_REGION": "eu-west-1",
            "NESS_POLL_INTERVAL": "0.5",
            "NESS_DNS_MAX_ATTEMPTS": "10",
            "NESS_EVENTS_URL": "https://events.example.com",
        })
        assert config.region == "eu-west-1"
        assert config.poll_interval == 0.5
        assert config.dns_max_attempts == 10
        assert config.events_url == "https://events.example.com"

    def test_invalid_number(self):
        with pytest.raises(ConfigurationError, match="NESS_POLL_INTERVAL"):
            NessConfig.from_env({"NESS_POLL_INTERVAL": "soon"})

    def test_negative_number(self):
        with pytest.raises(ConfigurationError, match="must not be negative"):
            NessConfig.from_env({"NESS_STACK_TIMEOUT": "-1"})


class TestSettings:
    """Test loading and saving ness.json."""

    def test_missing_file(self, tmp_path):
        assert load_settings(str(tmp_path)) is None

    def test_camel_case_keys(self, tmp_path):
        (tmp_path / "ness.json").write_text(json.dumps({
            "dir": "public", "domain": "example.com", "redirectWww": True, "unknown": 1,
        }))

        settings = load_settings(str(tmp_path))

        assert settings.dir == "public"
        assert settings.redirect_www
        assert settings.has_custom_domain

    def test_invalid_json(self, tmp_path):
        (tmp_path / "ness.json").write_text("{not json")
        with pytest.raises(ConfigurationError):
            load_settings(str(tmp_path))

    def test_not_an_object(self, tmp_path):
        (tmp_path / "ness.json").write_text("[]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_settings(str(tmp_path))

    def test_save_omits_profile(self, tmp_path):
        path = save_settings(NessSettings(dir="public", profile="work"), str(tmp_path))

        data = json.loads(path.read_text())
        assert "profile" not in data
        assert "domain" not in data
        assert data["dir"] == "public"

    def test_merge_ignores_none(self):
        settings = NessSettings(dir="public", domain="example.com").merge({"domain": None, "spa": True})
        assert settings.domain == "example.com"
        assert settings.spa

    def test_require_publish_dir(self):
        with pytest.raises(ConfigurationError, match="No publish directory specified"):
            NessSettings().require_publish_dir()

    def test_event_options_drop_csp(self):
        options = NessSettings(csp="default-src 'self'", profile="work").to_event_options()
        assert "csp" not in options
        assert "profile" not in options
