"""Request pipeline building blocks: requests, data sources, sessions and execution."""

from .datasource import (
    DataSource,
    DataSourceFilter,
    DataSourceRole,
    ReadPolicy,
    RoundRobinPolicy,
    WeightedRandomPolicy,
)
from .request import Intent, RequestContext
from .session import DbSession, SessionLifecycle, SessionState
from .store import DbSessionStore, ExecutionContext

__all__ = [
    "DataSource",
    "DataSourceFilter",
    "DataSourceRole",
    "DbSession",
    "DbSessionStore",
    "ExecutionContext",
    "Intent",
    "ReadPolicy",
    "RequestContext",
    "RoundRobinPolicy",
    "SessionLifecycle",
    "SessionState",
    "WeightedRandomPolicy",
]
