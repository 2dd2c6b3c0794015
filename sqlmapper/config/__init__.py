"""Mapper configuration: pydantic models and loaders."""

from .loader import ConfigLoader, DictConfigLoader, TomlConfigLoader
from .models import (
    CacheModelConfig,
    DatabaseConfig,
    DataSourceConfig,
    MapperConfig,
    ReadPolicyName,
    SettingsConfig,
    StatementConfig,
)

__all__ = [
    "ConfigLoader",
    "DictConfigLoader",
    "TomlConfigLoader",
    "CacheModelConfig",
    "DatabaseConfig",
    "DataSourceConfig",
    "MapperConfig",
    "ReadPolicyName",
    "SettingsConfig",
    "StatementConfig",
]
