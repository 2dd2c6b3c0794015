"""Exception hierarchy for the mapper."""

from __future__ import annotations

from typing import Any, Optional


class MapperError(Exception):
    """Base class for every error raised by sqlmapper."""


class ConfigurationError(MapperError):
    """Raised when configuration is missing or inconsistent (e.g. no endpoint for a role)."""


class DuplicateSessionError(MapperError):
    """Raised when a session or transaction is begun while one is already bound."""


class NoActiveSessionError(MapperError):
    """Raised when commit/rollback/end is called without an ambient session."""


class SessionStateError(MapperError):
    """Raised on an invalid session state transition."""


class SessionBusyError(MapperError):
    """Raised when two operations try to use the same session at once."""


class RequestStateError(MapperError):
    """Raised when a resolved request is mutated in a way that is not allowed."""


class ConversionError(MapperError):
    """Raised when a result value cannot be converted to the requested type."""

    def __init__(self, value: Any, target_type: Any, message: Optional[str] = None):
        self.value = value
        self.target_type = target_type
        name = getattr(target_type, "__name__", repr(target_type))
        super().__init__(message or f"Cannot convert {value!r} to {name}")


class ExecutionError(MapperError):
    """Wraps an underlying data-access fault.

    The original exception is available as ``cause`` and ``__cause__``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None, sql: Optional[str] = None):
        super().__init__(message)
        self.cause = cause
        self.sql = sql
