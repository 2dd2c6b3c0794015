"""Mapper composition: every collaborator is pluggable and defaults are filled in by ``setup``."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from dotenv import load_dotenv

from .cache import CacheManager, CacheStore, create_cache_store
from .config.loader import ConfigLoader, TomlConfigLoader
from .config.models import MapperConfig
from .core.builder import SqlBuilder, StatementSqlBuilder
from .core.datasource import DataSourceFilter, ReadPolicy, policy_from_name
from .core.executor import CommandExecutor
from .core.materializer import RowMaterializer
from .core.store import DbSessionStore
from .db.engine import DriverResolver

logger = logging.getLogger(__name__)


def _env_int(key: str) -> Optional[int]:
    value = os.getenv(key)
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-integer {key}={value!r}")
        return None


@dataclass
class MapperOptions:
    """Collaborators used by :class:`~sqlmapper.mapper.SqlMapper`.

    Any field left as ``None`` gets its default implementation in ``setup()``.
    ``cache_url``, ``cache_max_size`` and ``cache_default_ttl`` override the
    values from the loaded configuration's ``settings`` section.
    """

    config_loader: Optional[ConfigLoader] = None
    sql_builder: Optional[SqlBuilder] = None
    data_source_filter: Optional[DataSourceFilter] = None
    read_policy: Optional[ReadPolicy] = None
    drivers: Optional[DriverResolver] = None
    session_store: Optional[DbSessionStore] = None
    command_executor: Optional[CommandExecutor] = None
    materializer: Optional[RowMaterializer] = None
    cache_store: Optional[CacheStore] = None
    cache_manager: Optional[CacheManager] = None
    cache_url: Optional[str] = None
    cache_max_size: Optional[int] = None
    cache_default_ttl: Optional[int] = None
    config: Optional[MapperConfig] = None

    def setup(self) -> "MapperOptions":
        """Load configuration once and build missing collaborators."""
        if self.config is not None:
            return self

        if self.config_loader is None:
            self.config_loader = TomlConfigLoader()
        self.config = self.config_loader.load()
        settings = self.config.settings

        if self.sql_builder is None:
            self.sql_builder = StatementSqlBuilder()
        if self.data_source_filter is None:
            self.data_source_filter = DataSourceFilter.from_config(
                self.config.database,
                self.read_policy or policy_from_name(settings.read_policy),
            )
        if self.session_store is None:
            self.session_store = DbSessionStore(self.drivers)
        if self.command_executor is None:
            self.command_executor = CommandExecutor()
        if self.materializer is None:
            self.materializer = RowMaterializer()
        if self.cache_manager is None:
            store = self.cache_store or create_cache_store(
                self.cache_url or settings.cache_url,
                max_size=self.cache_max_size or settings.cache_max_size,
                default_ttl=self.cache_default_ttl or settings.cache_default_ttl,
            )
            self.cache_manager = CacheManager(self.config, store)
        return self

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides: Any) -> "MapperOptions":
        """Build options from the environment (and a ``.env`` file if present).

        Reads SQLMAPPER_CONFIG, SQLMAPPER_CACHE_URL, SQLMAPPER_CACHE_MAX_SIZE
        and SQLMAPPER_CACHE_DEFAULT_TTL. Keyword arguments take precedence.
        """
        load_dotenv(env_file)
        values: dict = {
            "config_loader": TomlConfigLoader(os.getenv("SQLMAPPER_CONFIG")),
            "cache_url": os.getenv("SQLMAPPER_CACHE_URL") or None,
            "cache_max_size": _env_int("SQLMAPPER_CACHE_MAX_SIZE"),
            "cache_default_ttl": _env_int("SQLMAPPER_CACHE_DEFAULT_TTL"),
        }
        values.update(overrides)
        return cls(**values)
