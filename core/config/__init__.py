"""Config package facade."""

from .loader import load_config, load_config_file
from .schema import ConfigError, LoadedConfig
from .settings import PipelineSettings, build_pipeline_settings
from .validate import validate_config

__all__ = [
    "ConfigError",
    "LoadedConfig",
    "PipelineSettings",
    "build_pipeline_settings",
    "load_config",
    "load_config_file",
    "validate_config",
]
