"""Unit tests for ABAC engine configuration."""

import json

import pytest
import yaml

from abac_engine.config import (
    ABACConfig,
    BusinessHoursConfig,
    EvaluationLimits,
    NetworkConfig,
    PathConfig,
    SecurityLoggingConfig,
    get_default_config,
)
from abac_engine.exceptions import ConfigurationError


class TestConfigSections:
    """Test cases for the individual configuration sections."""

    def test_default_limits(self):
        limits = EvaluationLimits()

        assert limits.max_condition_depth == 10
        assert limits.max_condition_keys == 100
        assert limits.max_context_keys == 200
        assert limits.max_evaluation_time_ms == 5000

    @pytest.mark.parametrize("kwargs", [
        {"max_condition_depth": 0},
        {"max_condition_keys": 0},
        {"max_context_keys": 0},
        {"max_evaluation_time_ms": 0},
    ])
    def test_invalid_limits(self, kwargs):
        with pytest.raises(ConfigurationError):
            EvaluationLimits(**kwargs)

    def test_business_hours(self):
        hours = BusinessHoursConfig()

        assert hours.is_business_hours(9, "Monday")
        assert hours.is_business_hours(16, "friday")
        assert not hours.is_business_hours(17, "monday")
        assert not hours.is_business_hours(8, "monday")
        assert not hours.is_business_hours(10, "saturday")

    def test_business_days_are_normalized(self):
        hours = BusinessHoursConfig(business_days=["Saturday", "SUNDAY"])

        assert hours.business_days == ["saturday", "sunday"]

    @pytest.mark.parametrize("kwargs", [
        {"start_hour": 18, "end_hour": 9},
        {"start_hour": -1},
        {"end_hour": 25},
        {"business_days": ["funday"]},
    ])
    def test_invalid_business_hours(self, kwargs):
        with pytest.raises(ConfigurationError):
            BusinessHoursConfig(**kwargs)

    def test_network_ranges_are_validated(self):
        assert "10.0.0.0/8" in NetworkConfig().internal_ip_ranges

        with pytest.raises(ConfigurationError):
            NetworkConfig(internal_ip_ranges=["10.0.0.0/99"])

    def test_path_shortcuts_are_validated(self):
        with pytest.raises(ConfigurationError):
            PathConfig(shortcuts={"user.x": ["attributes"]})
        with pytest.raises(ConfigurationError):
            PathConfig(shortcuts={"user": []})

    def test_security_logging_validation(self):
        with pytest.raises(ConfigurationError):
            SecurityLoggingConfig(log_level="VERBOSE")
        with pytest.raises(ConfigurationError):
            SecurityLoggingConfig(log_format="xml")


class TestABACConfig:
    """Test cases for the top-level configuration model."""

    def test_defaults(self):
        config = ABACConfig()

        assert config.service_name == "abac-engine"
        assert config.limits.max_condition_depth == 10
        assert config.business_hours.start_hour == 9
        assert config.paths.shortcuts["user"] == ["attributes"]
        assert config.security_logging.enabled is True

    def test_from_dict(self):
        config = ABACConfig.from_dict({
            "limits": {"max_condition_depth": 4},
            "business_hours": {"start_hour": 8, "end_hour": 18},
            "service_name": "authz",
        })

        assert config.limits.max_condition_depth == 4
        assert config.limits.max_condition_keys == 100
        assert config.business_hours.end_hour == 18
        assert config.service_name == "authz"

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ConfigurationError):
            ABACConfig.from_dict({"limitz": {}})

    def test_invalid_section_values(self):
        with pytest.raises(ConfigurationError):
            ABACConfig.from_dict({"business_hours": {"start_hour": 20, "end_hour": 10}})

    def test_blank_service_name(self):
        with pytest.raises(ConfigurationError):
            ABACConfig.from_dict({"service_name": "   "})

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ABAC_MAX_CONDITION_DEPTH", "5")
        monkeypatch.setenv("ABAC_BUSINESS_DAYS", "monday, tuesday")
        monkeypatch.setenv("ABAC_INTERNAL_IP_RANGES", "10.0.0.0/8,192.0.2.0/24")
        monkeypatch.setenv("ABAC_LOGGING_ENABLED", "no")
        monkeypatch.setenv("ABAC_SERVICE_NAME", "authz")

        config = ABACConfig.from_env()

        assert config.limits.max_condition_depth == 5
        assert config.business_hours.business_days == ["monday", "tuesday"]
        assert config.network.internal_ip_ranges == ["10.0.0.0/8", "192.0.2.0/24"]
        assert config.security_logging.enabled is False
        assert config.service_name == "authz"

    def test_from_env_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("ABAC_MAX_CONTEXT_KEYS", "lots")

        with pytest.raises(ConfigurationError):
            ABACConfig.from_env()

    def test_from_yaml_file(self, tmp_path):
        config_file = tmp_path / "abac.yaml"
        config_file.write_text(yaml.safe_dump({
            "limits": {"max_context_keys": 50},
            "network": {"internal_ip_ranges": ["172.16.0.0/12"]},
        }))

        config = ABACConfig.from_file(config_file)

        assert config.limits.max_context_keys == 50
        assert config.network.internal_ip_ranges == ["172.16.0.0/12"]

    def test_from_json_file(self, tmp_path):
        config_file = tmp_path / "abac.json"
        config_file.write_text(json.dumps({"security_logging": {"log_format": "text"}}))

        config = ABACConfig.from_file(config_file)

        assert config.security_logging.log_format == "text"

    def test_from_file_errors(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ABACConfig.from_file(tmp_path / "missing.yaml")

        unsupported = tmp_path / "abac.toml"
        unsupported.write_text("limits = 1")
        with pytest.raises(ConfigurationError):
            ABACConfig.from_file(unsupported)

        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        with pytest.raises(ConfigurationError):
            ABACConfig.from_file(broken)

    def test_to_file_and_back(self, tmp_path):
        config = ABACConfig.from_dict({"limits": {"max_condition_keys": 42}})
        target = tmp_path / "saved.yaml"

        config.to_file(target)
        loaded = ABACConfig.from_file(target)

        assert loaded.limits.max_condition_keys == 42
        assert loaded.to_dict() == config.to_dict()

    def test_to_file_unsupported_format(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ABACConfig().to_file(tmp_path / "saved.ini", format="ini")

    def test_to_dict(self):
        data = ABACConfig().to_dict()

        assert data["limits"]["max_condition_depth"] == 10
        assert data["network"]["internal_ip_ranges"][0] == "10.0.0.0/8"

    def test_default_config_is_shared(self):
        assert get_default_config() is get_default_config()
