"""Data source registry and read/write election."""

from __future__ import annotations

import itertools
import logging
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

from ..config.models import DatabaseConfig, ReadPolicyName
from ..errors import ConfigurationError
from .request import Intent, RequestContext

logger = logging.getLogger(__name__)


class DataSourceRole(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class DataSource:
    """A physical endpoint tagged for read or write traffic."""

    name: str
    url: str
    role: DataSourceRole
    weight: int = 1


class ReadPolicy(Protocol):
    def choose(self, sources: Sequence[DataSource]) -> DataSource: ...


class WeightedRandomPolicy:
    """Pick a read source at random, proportionally to its weight."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def choose(self, sources: Sequence[DataSource]) -> DataSource:
        weights = [max(source.weight, 0) for source in sources]
        if sum(weights) == 0:
            return sources[0]
        return self._rng.choices(list(sources), weights=weights, k=1)[0]


class RoundRobinPolicy:
    """Cycle through read sources in registration order."""

    def __init__(self) -> None:
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def choose(self, sources: Sequence[DataSource]) -> DataSource:
        with self._lock:
            index = next(self._counter)
        return sources[index % len(sources)]


def policy_from_name(name: ReadPolicyName) -> ReadPolicy:
    if name == ReadPolicyName.ROUND_ROBIN:
        return RoundRobinPolicy()
    return WeightedRandomPolicy()


class DataSourceFilter:
    """Elects the endpoint a request should run against.

    The registry is fixed at construction and shared across contexts
    without locking.
    """

    def __init__(
        self,
        write: Optional[DataSource],
        reads: Sequence[DataSource] = (),
        policy: Optional[ReadPolicy] = None,
    ):
        if write is not None and write.role is not DataSourceRole.WRITE:
            raise ConfigurationError(f"Data source {write.name} is not tagged for writes")
        for source in reads:
            if source.role is not DataSourceRole.READ:
                raise ConfigurationError(f"Data source {source.name} is not tagged for reads")
        self.write_source = write
        self.read_sources = tuple(reads)
        self._by_name = {source.name: source for source in self.read_sources}
        self._policy = policy or WeightedRandomPolicy()

    @classmethod
    def from_config(
        cls, database: DatabaseConfig, policy: Optional[ReadPolicy] = None
    ) -> "DataSourceFilter":
        write = None
        if database.write is not None:
            write = DataSource(
                name=database.write.name,
                url=database.write.url,
                role=DataSourceRole.WRITE,
                weight=database.write.weight,
            )
        reads = [
            DataSource(name=ds.name, url=ds.url, role=DataSourceRole.READ, weight=ds.weight)
            for ds in database.reads
        ]
        return cls(write, reads, policy)

    def elect(self, request: RequestContext) -> DataSource:
        if request.intent is Intent.WRITE:
            if self.write_source is None:
                raise ConfigurationError("No write data source is configured")
            return self.write_source

        if request.intent is Intent.READ:
            if not self.read_sources:
                raise ConfigurationError("No read data source is configured")
            if request.read_db:
                source = self._by_name.get(request.read_db)
                if source is None:
                    raise ConfigurationError(f"Unknown read data source: {request.read_db}")
                return source
            return self._policy.choose(self.read_sources)

        raise ConfigurationError(
            f"Cannot elect a data source for {request.full_sql_id or 'request'} "
            "with unspecified intent"
        )
