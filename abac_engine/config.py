# abac-engine/abac_engine/config.py
"""
Configuration management for the ABAC engine.

This module holds the tunables of the policy evaluation pipeline: evaluation
limits, business-hours definition, internal network ranges, path shortcuts
and security logging. Configuration can be built in code, loaded from a
YAML/JSON file or read from ``ABAC_*`` environment variables.
"""

import ipaddress
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import ConfigurationError

WEEKDAY_NAMES = [
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"
]


@dataclass
class EvaluationLimits:
    """Bounds on worst-case work done for a single evaluation."""
    max_condition_depth: int = 10
    max_condition_keys: int = 100
    max_context_keys: int = 200
    max_evaluation_time_ms: int = 5000

    def __post_init__(self):
        """Validate evaluation limits."""
        if self.max_condition_depth < 1:
            raise ConfigurationError("max_condition_depth must be at least 1")
        if self.max_condition_keys < 1:
            raise ConfigurationError("max_condition_keys must be at least 1")
        if self.max_context_keys < 1:
            raise ConfigurationError("max_context_keys must be at least 1")
        if self.max_evaluation_time_ms <= 0:
            raise ConfigurationError("max_evaluation_time_ms must be positive")


@dataclass
class BusinessHoursConfig:
    """Definition of business hours used by time-based operators."""
    start_hour: int = 9
    end_hour: int = 17  # exclusive
    business_days: List[str] = field(
        default_factory=lambda: ["monday", "tuesday", "wednesday", "thursday", "friday"]
    )

    def __post_init__(self):
        """Validate business hours configuration."""
        if not 0 <= self.start_hour <= 23 or not 1 <= self.end_hour <= 24:
            raise ConfigurationError("Business hours must be within 0-24")
        if self.start_hour >= self.end_hour:
            raise ConfigurationError("start_hour must be before end_hour")
        self.business_days = [day.lower() for day in self.business_days]
        for day in self.business_days:
            if day not in WEEKDAY_NAMES:
                raise ConfigurationError(f"Invalid business day: {day}")

    def is_business_hours(self, hour: int, day_name: str) -> bool:
        """Check whether an hour on a given weekday falls within business hours."""
        return (
            self.start_hour <= hour < self.end_hour
            and day_name.lower() in self.business_days
        )


@dataclass
class NetworkConfig:
    """Network ranges considered internal."""
    internal_ip_ranges: List[str] = field(default_factory=lambda: [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
    ])

    def __post_init__(self):
        """Validate CIDR ranges."""
        for cidr in self.internal_ip_ranges:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                raise ConfigurationError(f"Invalid internal IP range {cidr}: {e}")


@dataclass
class PathConfig:
    """Shortcut rewrites applied by the path resolver (prefix -> sub-path)."""
    shortcuts: Dict[str, List[str]] = field(default_factory=lambda: {
        "user": ["attributes"],
        "resource": ["attributes"],
    })

    def __post_init__(self):
        """Validate shortcut configuration."""
        for prefix, target in self.shortcuts.items():
            if not prefix or "." in prefix:
                raise ConfigurationError(f"Invalid shortcut prefix: {prefix!r}")
            if not target:
                raise ConfigurationError(f"Shortcut '{prefix}' needs a target path")


@dataclass
class SecurityLoggingConfig:
    """Configuration for security event logging."""
    enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate security logging configuration."""
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
        if self.log_format not in ("json", "text"):
            raise ConfigurationError("log_format must be 'json' or 'text'")


class ABACConfig(BaseModel):
    """
    Complete configuration for the policy decision point.
    Groups the evaluation limits, business hours, network ranges, path
    shortcuts and logging settings consumed by the evaluator components.
    """
    limits: EvaluationLimits = Field(default_factory=EvaluationLimits)
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    paths: PathConfig = Field(default_factory=PathConfig)
    security_logging: SecurityLoggingConfig = Field(default_factory=SecurityLoggingConfig)
    service_name: str = "abac-engine"

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v):
        """Service name is attached to every security event."""
        if not v or not v.strip():
            raise ValueError("service_name cannot be empty")
        return v.strip()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ABACConfig":
        """Build configuration from a plain dictionary."""
        try:
            return cls(**(data or {}))
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e)

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "ABACConfig":
        """Load configuration from file (JSON or YAML)."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                if config_path.suffix.lower() in [".yaml", ".yml"]:
                    data = yaml.safe_load(f)
                elif config_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    raise ConfigurationError(
                        f"Unsupported configuration file format: {config_path.suffix}"
                    )
        except ConfigurationError:
            raise
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {config_path}: {e}", cause=e
            )
        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls, prefix: str = "ABAC_") -> "ABACConfig":
        """Load configuration from environment variables."""
        config_data: Dict[str, Any] = {}

        env_mappings = {
            f"{prefix}MAX_CONDITION_DEPTH": ("limits.max_condition_depth", int),
            f"{prefix}MAX_CONDITION_KEYS": ("limits.max_condition_keys", int),
            f"{prefix}MAX_CONTEXT_KEYS": ("limits.max_context_keys", int),
            f"{prefix}MAX_EVALUATION_TIME_MS": ("limits.max_evaluation_time_ms", int),
            f"{prefix}BUSINESS_HOURS_START": ("business_hours.start_hour", int),
            f"{prefix}BUSINESS_HOURS_END": ("business_hours.end_hour", int),
            f"{prefix}BUSINESS_DAYS": ("business_hours.business_days", list),
            f"{prefix}INTERNAL_IP_RANGES": ("network.internal_ip_ranges", list),
            f"{prefix}LOGGING_ENABLED": ("security_logging.enabled", bool),
            f"{prefix}LOG_LEVEL": ("security_logging.log_level", str),
            f"{prefix}LOG_FORMAT": ("security_logging.log_format", str),
            f"{prefix}LOG_FILE": ("security_logging.log_file", str),
            f"{prefix}SERVICE_NAME": ("service_name", str),
        }

        for env_var, (config_path, config_type) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                if config_type == bool:
                    value = value.lower() in ("true", "1", "yes", "on")
                elif config_type == int:
                    value = int(value)
                elif config_type == list:
                    value = [item.strip() for item in value.split(",") if item.strip()]
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {e}", cause=e)

            cls._set_nested_value(config_data, config_path, value)

        return cls.from_dict(config_data)

    @staticmethod
    def _set_nested_value(data: dict, path: str, value: Any):
        """Set a nested dictionary value using dot notation."""
        keys = path.split(".")
        current = data
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    def to_file(self, config_path: Union[str, Path], format: str = "yaml"):
        """Save configuration to file."""
        config_path = Path(config_path)
        config_data = self.to_dict()

        if format.lower() not in ["yaml", "yml", "json"]:
            raise ConfigurationError(f"Unsupported format: {format}")
        try:
            with open(config_path, "w", encoding="utf-8") as f:
                if format.lower() in ["yaml", "yml"]:
                    yaml.safe_dump(config_data, f, default_flow_style=False, indent=2)
                else:
                    json.dump(config_data, f, indent=2)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration to {config_path}: {e}", cause=e)


_default_config: Optional[ABACConfig] = None


def get_default_config() -> ABACConfig:
    """Get the process-wide default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = ABACConfig()
    return _default_config
