"""
Centralized configuration for the inference layer.

This module loads the provider descriptors, fallback chain, primary provider
and routing rules that the client manager and router are built from:
- Defaults, then ``config.yaml`` / ``config.json``
- Environment-specific overrides from ``environments/config.{env}.yaml|json``
- Environment variables, which take precedence over files
- Validation on load, so misconfigured ids fail at startup
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, Optional, Union, List
from pathlib import Path
from dataclasses import dataclass, field
from enum import Enum
import threading

from inference_core.llm.interfaces.llm_provider_interface import (
    ProviderDescriptor,
    LLMConfigurationError,
    MAX_HEALTH_TIMEOUT
)
from inference_core.llm.router import RoutingRule
from inference_core.monitoring.structured_logger import configure_logging


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_id_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class LoggingConfig:
    """Logging configuration"""

    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
    json_format: bool = False


@dataclass
class InferenceConfig:
    """
    Inference configuration.

    ``providers`` holds raw descriptor mappings as they appear in the
    configuration files; ``routing_rules`` holds raw rule mappings.
    """

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    providers: List[Dict[str, Any]] = field(default_factory=list)
    fallback_chain: List[str] = field(default_factory=list)
    primary_provider: Optional[str] = None
    routing_rules: List[Dict[str, Any]] = field(default_factory=list)
    health_check_interval: int = 30
    health_timeout: float = MAX_HEALTH_TIMEOUT
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""

    pass


class ConfigManager:
    """
    Centralized configuration manager with support for:
    - Environment-specific configurations
    - Configuration validation
    - Building provider descriptors and routing rules
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        """Singleton pattern implementation"""
        if not cls._instance:
            with cls._lock:
                if not cls._instance:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        # Avoid re-initialization in singleton
        if hasattr(self, "_initialized"):
            return

        self._initialized = True
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            project_root = Path(__file__).parent.parent.parent
            self.config_dir = project_root / "config"

        self.config: InferenceConfig = InferenceConfig()
        self.logger = logging.getLogger(__name__)

        self._load_configuration()

    def _load_configuration(self):
        """Load configuration from multiple sources in priority order"""
        # 1. Defaults
        self.config = InferenceConfig()

        # 2. Base configuration file
        self._load_from_file("config.yaml")
        self._load_from_file("config.json")

        # 3. Environment-specific configuration
        env = os.getenv("ENVIRONMENT", "development").lower()
        self._load_from_file(f"environments/config.{env}.yaml")
        self._load_from_file(f"environments/config.{env}.json")

        # 4. Environment variables (highest priority)
        self._load_from_environment()

        # 5. Validate
        self._validate_configuration()

    def _load_from_file(self, filename: str):
        """Load configuration from YAML/JSON file"""
        file_path = self.config_dir / filename
        if not file_path.exists():
            return

        try:
            with open(file_path, "r") as f:
                if filename.endswith(".yaml") or filename.endswith(".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.warning(f"Failed to load configuration from {filename}: {e}")
            return

        if data:
            self._update_config_from_dict(data)
            self.logger.info(f"Loaded configuration from {filename}")

    def _load_from_environment(self):
        """Load configuration from environment variables"""
        env_mappings = {
            "ENVIRONMENT": ("environment", lambda x: Environment(x.lower())),
            "DEBUG": ("debug", _parse_bool),
            # Providers
            "INFERENCE_PRIMARY_PROVIDER": ("primary_provider", str),
            "INFERENCE_FALLBACK_CHAIN": ("fallback_chain", _parse_id_list),
            "INFERENCE_HEALTH_INTERVAL": ("health_check_interval", int),
            "INFERENCE_HEALTH_TIMEOUT": ("health_timeout", float),
            # Logging
            "LOG_LEVEL": ("logging.level", lambda x: LogLevel(x.upper())),
            "LOG_FORMAT": ("logging.format", str),
            "LOG_JSON": ("logging.json_format", _parse_bool),
        }

        for env_var, (config_path, converter) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                try:
                    self._set_nested_attr(self.config, config_path, converter(value))
                except (ValueError, TypeError) as e:
                    self.logger.warning(f"Invalid value for {env_var}: {value}, error: {e}")

    def _update_config_from_dict(self, data: Dict[str, Any], prefix: str = ""):
        """Update configuration from dictionary recursively. Lists replace, never merge."""
        for key, value in data.items():
            config_path = f"{prefix}.{key}" if prefix else key

            if isinstance(value, dict):
                self._update_config_from_dict(value, config_path)
                continue

            try:
                if config_path == "environment" and isinstance(value, str):
                    value = Environment(value.lower())
                elif config_path == "logging.level" and isinstance(value, str):
                    value = LogLevel(value.upper())
                elif config_path == "fallback_chain" and isinstance(value, str):
                    value = _parse_id_list(value)

                self._set_nested_attr(self.config, config_path, value)

            except AttributeError:
                self.logger.warning(f"Unknown configuration key: {config_path}")
            except ValueError as e:
                self.logger.warning(f"Invalid value for {config_path}: {value}, error: {e}")

    def _set_nested_attr(self, obj: Any, path: str, value: Any):
        """Set nested attribute using dot notation"""
        parts = path.split(".")
        for part in parts[:-1]:
            obj = getattr(obj, part)
        if not hasattr(obj, parts[-1]):
            raise AttributeError(parts[-1])
        setattr(obj, parts[-1], value)

    def _validate_configuration(self):
        """Validate configuration settings"""
        errors = []

        declared = set()
        for index, raw in enumerate(self.config.providers):
            if not isinstance(raw, dict):
                errors.append(f"Provider entry {index} must be a mapping")
                continue
            try:
                descriptor = ProviderDescriptor.from_dict(raw)
            except LLMConfigurationError as e:
                errors.append(str(e))
                continue

            key = descriptor.provider_id.lower()
            if key in declared:
                errors.append(f"Duplicate provider id '{descriptor.provider_id}'")
            declared.add(key)

            if not descriptor.base_url and not 0 < int(descriptor.port) <= 65535:
                errors.append(f"Provider '{descriptor.provider_id}' port must be between 1 and 65535")
            if descriptor.timeout <= 0:
                errors.append(f"Provider '{descriptor.provider_id}' timeout must be positive")

        primary = self.config.primary_provider
        if primary and primary.lower() not in declared:
            errors.append(f"Primary provider '{primary}' is not a declared provider")

        for provider_id in self.config.fallback_chain:
            if provider_id.lower() not in declared:
                errors.append(f"Fallback provider '{provider_id}' is not a declared provider")

        for raw in self.config.routing_rules:
            try:
                rule = RoutingRule.from_dict(raw)
            except (LLMConfigurationError, AttributeError):
                errors.append(f"Invalid routing rule: {raw!r}")
                continue
            if rule.provider_id.lower() not in declared:
                errors.append(f"Routing rule target '{rule.provider_id}' is not a declared provider")

        if self.config.health_check_interval <= 0:
            errors.append("Health check interval must be positive")

        if errors:
            raise ConfigValidationError(f"Configuration validation failed: {'; '.join(errors)}")

        self.logger.info("Configuration validation passed")

    def reload_configuration(self):
        """Reload configuration from all sources"""
        self._load_configuration()
        self.logger.info("Configuration reloaded successfully")

    def get(self, path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        try:
            obj = self.config
            for part in path.split("."):
                obj = getattr(obj, part)
            return obj
        except AttributeError:
            return default

    def set(self, path: str, value: Any):
        """Set configuration value using dot notation"""
        self._set_nested_attr(self.config, path, value)
        self._validate_configuration()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""

        def _asdict_recursive(obj):
            if hasattr(obj, "__dict__"):
                result = {}
                for key, value in obj.__dict__.items():
                    if isinstance(value, Enum):
                        result[key] = value.value
                    elif hasattr(value, "__dict__"):
                        result[key] = _asdict_recursive(value)
                    else:
                        result[key] = value
                return result
            return obj

        return _asdict_recursive(self.config)

    @property
    def fallback_chain(self) -> List[str]:
        return list(self.config.fallback_chain)

    @property
    def primary_provider(self) -> Optional[str]:
        return self.config.primary_provider

    @property
    def health_timeout(self) -> float:
        return self.config.health_timeout

    def get_provider_descriptors(self) -> List[ProviderDescriptor]:
        """Build descriptors for every declared provider, in declared order."""
        return [ProviderDescriptor.from_dict(raw) for raw in self.config.providers]

    def get_routing_rules(self) -> List[RoutingRule]:
        """Build routing rules in priority order."""
        return [RoutingRule.from_dict(raw) for raw in self.config.routing_rules]

    def apply_logging(self):
        """Configure root logging from the logging section."""
        logging_config = self.config.logging
        configure_logging(
            log_level=logging_config.level.value,
            json_format=logging_config.json_format,
            log_format=logging_config.format
        )


# Global configuration instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def init_config(config_dir: Optional[Union[str, Path]] = None) -> ConfigManager:
    """Initialize the global configuration manager"""
    global _config_manager
    _config_manager = ConfigManager(config_dir)
    return _config_manager
