"""
Configuration module for the Lifecycle Toolkit.

Provides centralized configuration management for soft delete behaviour.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class BulkMode(str, Enum):
    """How bulk transitions treat ids that cannot transition."""

    PARTIAL = "partial"
    ALL_OR_NOTHING = "all_or_nothing"


class LifecycleConfig(BaseModel):
    """Central configuration for lifecycle operations.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (LIFECYCLE_ prefix)
        3. Configuration files (JSON or YAML)
        4. Default values (lowest priority)

    Example:
        >>> config = LifecycleConfig(bulk_mode="all_or_nothing", max_bulk_size=500)

        >>> os.environ['LIFECYCLE_AUDIT_ENABLED'] = 'false'
        >>> config = LifecycleConfig.from_env()

        >>> config = LifecycleConfig.from_file('lifecycle.yaml')
    """

    application_name: str = Field(
        "Lifecycle Application", description="Name of the application for audit events"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )

    audit_enabled: bool = Field(
        True, description="Send lifecycle transitions to the audit logger"
    )

    bulk_mode: BulkMode = Field(
        BulkMode.PARTIAL, description="Partial success or all-or-nothing batches"
    )
    max_bulk_size: int = Field(
        1000, description="Maximum ids accepted by one bulk call", gt=0, le=100000
    )

    default_database_url: Optional[str] = Field(
        None, description="Database used by the audit CLI when none is given"
    )
    log_level: str = Field("WARNING", description="Log level for the CLI")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {
            "development",
            "staging",
            "production",
            "validation",
            "test",
        }
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure the log level is one the logging module knows."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "LIFECYCLE_") -> "LifecycleConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Optional[T] -> T
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in (
                        "true",
                        "1",
                        "yes",
                        "on",
                    )
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value)
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # leave the raw value for pydantic to report
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LifecycleConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: File ending in .json, .yaml or .yml

        Returns:
            Configuration instance
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")

        if path.suffix.lower() == ".json":
            data = json.loads(text)
        elif path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            raise ValueError(f"Unsupported configuration file type: {path.suffix}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        return cls.model_validate(data)


# Global configuration instance
_config: Optional[LifecycleConfig] = None


def get_config() -> LifecycleConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        try:
            _config = LifecycleConfig.from_env()
        except ValueError as e:
            logger.warning(f"Ignoring invalid LIFECYCLE_ environment settings: {e}")
            _config = LifecycleConfig.model_validate({})

    return _config


def set_config(config: Optional[LifecycleConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload on next access
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> LifecycleConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = LifecycleConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = LifecycleConfig(**config_dict)

    return _config
