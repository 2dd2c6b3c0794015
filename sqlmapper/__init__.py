"""sqlmapper - statement mapping with read/write splitting, sessions and result caching."""

from .cache import CacheManager, MemoryCacheStore
from .core.datasource import DataSource, DataSourceFilter, DataSourceRole
from .core.request import Intent, RequestContext
from .core.results import AsyncMultipleResult, DataSet, DataTable, MultipleResult
from .core.session import DbSession, SessionLifecycle, SessionState
from .core.store import ExecutionContext
from .db.base import IsolationLevel
from .errors import (
    ConfigurationError,
    ConversionError,
    DuplicateSessionError,
    ExecutionError,
    MapperError,
    NoActiveSessionError,
    RequestStateError,
    SessionBusyError,
    SessionStateError,
)
from .mapper import SqlMapper
from .options import MapperOptions

__version__ = "0.1.0"

__all__ = [
    "AsyncMultipleResult",
    "CacheManager",
    "ConfigurationError",
    "ConversionError",
    "DataSet",
    "DataSource",
    "DataSourceFilter",
    "DataSourceRole",
    "DataTable",
    "DbSession",
    "DuplicateSessionError",
    "ExecutionContext",
    "ExecutionError",
    "Intent",
    "IsolationLevel",
    "MapperError",
    "MapperOptions",
    "MemoryCacheStore",
    "MultipleResult",
    "NoActiveSessionError",
    "RequestContext",
    "RequestStateError",
    "SessionBusyError",
    "SessionLifecycle",
    "SessionState",
    "SessionStateError",
    "SqlMapper",
    "__version__",
]
