from .config_manager import (
    ConfigManager,
    InferenceConfig,
    LoggingConfig,
    get_config,
    init_config,
    ConfigValidationError,
    Environment,
)

__all__ = [
    "ConfigManager",
    "InferenceConfig",
    "LoggingConfig",
    "get_config",
    "init_config",
    "ConfigValidationError",
    "Environment",
]
