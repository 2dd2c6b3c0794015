"""Statement resolution: turns a request into final SQL text and parameters."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

from ..config.models import MapperConfig, StatementConfig
from ..errors import ConfigurationError
from .request import RequestContext


class SqlBuilder(Protocol):
    def build_sql(self, request: RequestContext, config: MapperConfig) -> None:
        """Fill ``request.real_sql``, ``request.parameters`` and ``request.statement``."""
        ...


class StatementSqlBuilder:
    """Resolves configured statements by ``Scope.SqlId``.

    The statement text is used verbatim; request params are bound as a
    mapping, so statements use the driver's named placeholder style
    (``:name``). Requests that only carry ``real_sql`` pass through.
    """

    def __init__(self) -> None:
        self._config: Optional[MapperConfig] = None
        self._statements: Dict[str, StatementConfig] = {}

    def _statement_map(self, config: MapperConfig) -> Dict[str, StatementConfig]:
        if config is not self._config:
            self._statements = config.statement_map()
            self._config = config
        return self._statements

    def build_sql(self, request: RequestContext, config: MapperConfig) -> None:
        full_sql_id = request.full_sql_id
        if full_sql_id is None:
            if not request.real_sql:
                raise ConfigurationError("Request has neither a statement id nor real_sql")
            request.parameters = _bind(request.params)
            return

        statement = self._statement_map(config).get(full_sql_id)
        if statement is None:
            raise ConfigurationError(f"Unknown statement: {full_sql_id}")
        request.statement = statement
        request.real_sql = statement.sql
        request.parameters = _bind(request.params)


def _bind(params: Any) -> Any:
    if params is None:
        return {}
    if isinstance(params, Mapping):
        return dict(params)
    return tuple(params)
