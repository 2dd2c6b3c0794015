"""Pydantic models describing mapper configuration."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ReadPolicyName(str, Enum):
    WEIGHTED = "weighted"
    ROUND_ROBIN = "round_robin"


class DataSourceConfig(BaseModel):
    name: str
    url: str
    weight: int = Field(default=1, ge=0)


class DatabaseConfig(BaseModel):
    """One write data source plus any number of read replicas."""

    write: Optional[DataSourceConfig] = None
    reads: List[DataSourceConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_names(self) -> "DatabaseConfig":
        names = [ds.name for ds in self.reads]
        if self.write is not None:
            names.append(self.write.name)
        if len(names) != len(set(names)):
            raise ValueError("Data source names must be unique")
        return self


class CacheModelConfig(BaseModel):
    """A named cache partition.

    ``flush_on_execute`` lists the statement ids whose write execution
    invalidates every entry of this cache.
    """

    id: str
    flush_on_execute: List[str] = Field(default_factory=list)
    flush_interval: Optional[int] = Field(default=None, ge=1, description="Entry TTL in seconds")

    @field_validator("id")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if ":" in value:
            raise ValueError(f"Cache id must not contain ':', got {value!r}")
        return value


class StatementConfig(BaseModel):
    id: str
    sql: str
    cache: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _qualified(cls, value: str) -> str:
        if "." not in value:
            raise ValueError(f"Statement id must be of the form 'Scope.SqlId', got {value!r}")
        return value


class SettingsConfig(BaseModel):
    read_policy: ReadPolicyName = ReadPolicyName.WEIGHTED
    cache_url: Optional[str] = None
    cache_max_size: int = Field(default=10000, ge=1)
    cache_default_ttl: Optional[int] = Field(default=None, ge=1)


class MapperConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    statements: List[StatementConfig] = Field(default_factory=list)
    caches: List[CacheModelConfig] = Field(default_factory=list)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)

    @model_validator(mode="after")
    def _check_references(self) -> "MapperConfig":
        cache_ids = {cache.id for cache in self.caches}
        if len(cache_ids) != len(self.caches):
            raise ValueError("Cache ids must be unique")
        statement_ids = [stmt.id for stmt in self.statements]
        if len(statement_ids) != len(set(statement_ids)):
            raise ValueError("Statement ids must be unique")
        for stmt in self.statements:
            if stmt.cache is not None and stmt.cache not in cache_ids:
                raise ValueError(f"Statement {stmt.id} references unknown cache {stmt.cache!r}")
        return self

    def statement_map(self) -> Dict[str, StatementConfig]:
        return {stmt.id: stmt for stmt in self.statements}
