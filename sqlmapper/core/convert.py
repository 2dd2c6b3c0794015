"""Typed conversion of raw column values."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Type, TypeVar, Union, overload

from ..errors import ConversionError

T = TypeVar("T")

_TRUE = {"1", "true", "yes", "on", "t", "y"}
_FALSE = {"0", "false", "no", "off", "f", "n"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, (int, float, Decimal)):
        if value in (0, 1):
            return bool(value)
        raise ConversionError(value, bool)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE:
            return True
        if normalized in _FALSE:
            return False
    raise ConversionError(value, bool)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ConversionError(value, int, f"Cannot convert non-integral {value!r} to int")
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ConversionError(value, int, f"Cannot convert non-integral {value!r} to int")
        return int(value)
    if isinstance(value, (str, bytes)):
        try:
            return int(value.strip())
        except ValueError as e:
            raise ConversionError(value, int) from e
    raise ConversionError(value, int)


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ConversionError(value, Decimal) from e


def _to_datetime(value: Any, target_type: type) -> Any:
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ConversionError(value, target_type) from e
        return parsed if target_type is datetime else parsed.date()
    if isinstance(value, datetime) and target_type is date:
        return value.date()
    raise ConversionError(value, target_type)


@overload
def convert_value(value: Any, target_type: Type[T]) -> Optional[T]: ...


@overload
def convert_value(value: Any, target_type: None) -> Any: ...


def convert_value(value: Any, target_type: Union[Type[Any], None]) -> Any:
    """Convert ``value`` to ``target_type``.

    SQL NULL (``None``) stays ``None`` for every target type. Raises
    ``ConversionError`` when the value cannot be represented.
    """
    if target_type is None or target_type is Any or target_type is object or value is None:
        return value

    if isinstance(value, target_type) and not (
        (target_type is int and isinstance(value, bool))
        or (target_type is date and isinstance(value, datetime))
    ):
        return value

    if target_type is bool:
        return _to_bool(value)
    if target_type is int:
        return _to_int(value)
    if target_type is float:
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConversionError(value, float) from e
    if target_type is Decimal:
        return _to_decimal(value)
    if target_type is str:
        if isinstance(value, (bytes, bytearray, memoryview)):
            try:
                return bytes(value).decode()
            except UnicodeDecodeError as e:
                raise ConversionError(value, str) from e
        return str(value)
    if target_type is bytes:
        if isinstance(value, str):
            return value.encode()
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        raise ConversionError(value, bytes)
    if target_type in (datetime, date):
        return _to_datetime(value, target_type)
    if isinstance(target_type, type) and issubclass(target_type, Enum):
        try:
            return target_type(value)
        except ValueError as e:
            raise ConversionError(value, target_type) from e

    try:
        return target_type(value)
    except (TypeError, ValueError) as e:
        raise ConversionError(value, target_type) from e
