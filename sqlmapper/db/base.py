"""Base driver abstractions for multi-backend support."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

# Type for database row results
Row = Tuple[Any, ...]
Rows = List[Row]


class IsolationLevel(str, Enum):
    UNSPECIFIED = "unspecified"
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"


class Cursor(Protocol):
    """DB-API style cursor returned by a synchronous connection."""

    rowcount: int
    description: Optional[Sequence[Sequence[Any]]]

    def fetchone(self) -> Optional[Row]: ...

    def fetchall(self) -> Rows: ...

    def close(self) -> None: ...


class AsyncCursor(Protocol):
    rowcount: int
    description: Optional[Sequence[Sequence[Any]]]

    async def fetchone(self) -> Optional[Row]: ...

    async def fetchall(self) -> Rows: ...

    async def close(self) -> None: ...


class Connection(Protocol):
    """Synchronous connection handle owned by a session."""

    def begin(self, isolation: IsolationLevel) -> None: ...

    def execute(self, sql: str, parameters: Any = None) -> Cursor: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


class AsyncConnection(Protocol):
    async def begin(self, isolation: IsolationLevel) -> None: ...

    async def execute(self, sql: str, parameters: Any = None) -> AsyncCursor: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def close(self) -> None: ...


class Driver(ABC):
    """Opens connections for one kind of endpoint URL."""

    name: str = "base"

    @abstractmethod
    def connect(self, url: str) -> Connection:
        """Open a synchronous connection."""
        ...

    @abstractmethod
    async def aconnect(self, url: str) -> AsyncConnection:
        """Open an asynchronous connection."""
        ...


def sanitize_connection_string(conn_str: str) -> str:
    """Remove password from connection string for logging."""
    return re.sub(r":([^:@/]+)@", r":***@", conn_str)
