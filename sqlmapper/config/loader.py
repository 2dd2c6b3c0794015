"""Configuration loaders.

A loader is created once, read once when the mapper is constructed, and
closed when the mapper is closed.
"""

from __future__ import annotations

import logging
import os
import tomllib
from typing import Any, Mapping, Optional, Protocol

from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import MapperConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "sqlmapper.toml"


class ConfigLoader(Protocol):
    def load(self) -> MapperConfig: ...

    def close(self) -> None: ...


def _validate(data: Mapping[str, Any], source: str) -> MapperConfig:
    try:
        return MapperConfig.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid mapper configuration in {source}: {e}") from e


class DictConfigLoader:
    """Loads configuration from an in-memory mapping."""

    def __init__(self, data: Mapping[str, Any]):
        self._data = data
        self._config: Optional[MapperConfig] = None
        self.closed = False

    def load(self) -> MapperConfig:
        if self._config is None:
            self._config = _validate(self._data, "mapping")
        return self._config

    def close(self) -> None:
        self._config = None
        self.closed = True


class TomlConfigLoader:
    """Loads configuration from a TOML file.

    Search order when no path is given:
    1) SQLMAPPER_CONFIG env var (file path)
    2) ./sqlmapper.toml (cwd)
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or os.getenv("SQLMAPPER_CONFIG") or os.path.join(
            os.getcwd(), DEFAULT_CONFIG_PATH
        )
        self._config: Optional[MapperConfig] = None

    def load(self) -> MapperConfig:
        if self._config is not None:
            return self._config
        try:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Mapper config not found: {self.path}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Failed to parse TOML at {self.path}: {e}") from e

        self._config = _validate(data, self.path)
        logger.info(
            f"Loaded mapper config from {self.path} "
            f"({len(self._config.statements)} statements, {len(self._config.caches)} caches)"
        )
        return self._config

    def close(self) -> None:
        self._config = None
