from dataclasses import dataclass
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel, ValidationError

from sqlmapper import ConversionError, ExecutionError, RequestContext
from sqlmapper.core.materializer import RowMaterializer, row_factory
from sqlmapper.core.results import DataSet, DataTable


class UserModel(BaseModel):
    id: int
    name: str


@dataclass
class UserRecord:
    id: int
    name: str
    age: int = 0


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y


def _cursor(columns, rows):
    cursor = MagicMock()
    cursor.description = [(name, None, None, None, None, None, None) for name in columns]
    cursor.fetchall.return_value = list(rows)
    cursor.fetchone.return_value = rows[0] if rows else None
    return cursor


class TestRowFactory:
    """Test row mapping to result types."""

    def test_default_is_dict(self):
        assert row_factory(["id", "name"])((1, "a")) == {"id": 1, "name": "a"}

    def test_tuple(self):
        assert row_factory(["id"], tuple)([1]) == (1,)

    def test_scalar_uses_first_column(self):
        assert row_factory(["total"], Decimal)(("1.5",)) == Decimal("1.5")

    def test_pydantic_model_case_insensitive(self):
        user = row_factory(["ID", "Name", "extra"], UserModel)((1, "alice", "ignored"))
        assert user == UserModel(id=1, name="alice")

    def test_pydantic_validation_failure_is_conversion_error(self):
        with pytest.raises(ConversionError) as exc_info:
            row_factory(["id", "name"], UserModel)(("not-a-number", "alice"))
        assert exc_info.value.target_type is UserModel
        assert exc_info.value.value == ("not-a-number", "alice")
        assert isinstance(exc_info.value.__cause__, ValidationError)

    def test_dataclass(self):
        record = row_factory(["id", "NAME"], UserRecord)((2, "bob"))
        assert record == UserRecord(id=2, name="bob")

    def test_plain_class(self):
        point = row_factory(["x", "y"], Point)((1, 2))
        assert (point.x, point.y) == (1, 2)


class TestRowMaterializer:
    """Test cursor materialization."""

    def test_to_list(self):
        cursor = _cursor(["id", "name"], [(1, "a"), (2, "b")])
        result = RowMaterializer().to_list(RequestContext(), cursor, UserModel)
        assert [u.name for u in result] == ["a", "b"]

    def test_to_single_empty(self):
        cursor = _cursor(["id"], [])
        assert RowMaterializer().to_single(RequestContext(), cursor) is None

    def test_fetch_fault_is_wrapped(self):
        cursor = _cursor(["id"], [])
        cursor.fetchall.side_effect = RuntimeError("disk gone")
        with pytest.raises(ExecutionError) as exc_info:
            RowMaterializer().to_list(RequestContext(scope="User", sql_id="GetAll"), cursor)
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestDataTable:
    """Test tabular results."""

    def test_from_cursor_closes_cursor(self):
        cursor = _cursor(["id", "name"], [(1, "a")])
        table = DataTable.from_cursor(cursor)

        assert table.columns == ["id", "name"]
        assert table.to_dicts() == [{"id": 1, "name": "a"}]
        assert table.column("name") == ["a"]
        assert len(table) == 1
        cursor.close.assert_called_once()

    def test_data_set_indexing(self):
        data_set = DataSet([DataTable(["a"], [(1,)]), DataTable(["b"], [])])
        assert len(data_set) == 2
        assert data_set[1].columns == ["b"]
