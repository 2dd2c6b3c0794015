"""Turns cursors into Python values."""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from ..db.base import AsyncCursor, Cursor
from ..errors import ConversionError, ExecutionError, MapperError
from .convert import convert_value
from .request import RequestContext

RowFactory = Callable[[Sequence[Any]], Any]

_SCALAR_TYPES = (int, float, str, bool, bytes, Decimal, datetime, date)


def column_names(cursor: Any) -> List[str]:
    description = getattr(cursor, "description", None) or ()
    return [column[0] for column in description]


def _field_lookup(names: Sequence[str]) -> Dict[str, str]:
    return {name.lower(): name for name in names}


def _keyed(columns: Sequence[str], fields: Dict[str, str]) -> List[Optional[str]]:
    return [fields.get(column.lower()) for column in columns]


def row_factory(columns: Sequence[str], result_type: Any = None) -> RowFactory:
    """Build a callable mapping a raw row to ``result_type``.

    Column names match dataclass and pydantic field names case-insensitively;
    columns without a matching field are ignored.
    """
    if result_type is None or result_type is dict:
        return lambda row: dict(zip(columns, row))
    if result_type is tuple:
        return tuple
    if result_type in _SCALAR_TYPES or (
        isinstance(result_type, type) and issubclass(result_type, Enum)
    ):
        return lambda row: convert_value(row[0], result_type)
    if isinstance(result_type, type) and issubclass(result_type, BaseModel):
        keys = _keyed(columns, _field_lookup(list(result_type.model_fields)))

        def validate(row: Sequence[Any]) -> Any:
            try:
                return result_type.model_validate(
                    {key: value for key, value in zip(keys, row) if key is not None}
                )
            except ValidationError as e:
                raise ConversionError(tuple(row), result_type, str(e)) from e

        return validate
    if dataclasses.is_dataclass(result_type):
        keys = _keyed(columns, _field_lookup([f.name for f in dataclasses.fields(result_type)]))
        return lambda row: result_type(
            **{key: value for key, value in zip(keys, row) if key is not None}
        )
    return lambda row: result_type(**dict(zip(columns, row)))


def _fetch_fault(request: RequestContext, e: Exception) -> ExecutionError:
    return ExecutionError(
        f"Failed to read results of {request.full_sql_id or 'statement'}: {e}",
        cause=e,
        sql=request.real_sql,
    )


class RowMaterializer:
    """Default result materializer. Cursors are read to completion, never rewound."""

    def to_list(self, request: RequestContext, cursor: Cursor, result_type: Any = None) -> list:
        factory = row_factory(column_names(cursor), result_type)
        try:
            rows = cursor.fetchall()
        except MapperError:
            raise
        except Exception as e:
            raise _fetch_fault(request, e) from e
        return [factory(row) for row in rows]

    def to_single(self, request: RequestContext, cursor: Cursor, result_type: Any = None) -> Any:
        factory = row_factory(column_names(cursor), result_type)
        try:
            row = cursor.fetchone()
        except MapperError:
            raise
        except Exception as e:
            raise _fetch_fault(request, e) from e
        return factory(row) if row is not None else None

    async def to_list_async(
        self, request: RequestContext, cursor: AsyncCursor, result_type: Any = None
    ) -> list:
        factory = row_factory(column_names(cursor), result_type)
        try:
            rows = await cursor.fetchall()
        except MapperError:
            raise
        except Exception as e:
            raise _fetch_fault(request, e) from e
        return [factory(row) for row in rows]

    async def to_single_async(
        self, request: RequestContext, cursor: AsyncCursor, result_type: Any = None
    ) -> Any:
        factory = row_factory(column_names(cursor), result_type)
        try:
            row = await cursor.fetchone()
        except MapperError:
            raise
        except Exception as e:
            raise _fetch_fault(request, e) from e
        return factory(row) if row is not None else None
