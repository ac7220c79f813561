# tests/engine/test_transform.py
"""Tests for the keyed and positional record transforms."""

from decimal import Decimal
from typing import Any

import pytest

from socrata_sync.contracts.errors import MissingRequiredFieldError, RecordShapeError, UnhandledConversionError, ValueConversionError
from socrata_sync.contracts.metadata import ColumnMetadata
from socrata_sync.core.schema import TableSchema
from socrata_sync.engine.transform import transform_keyed, transform_positional


def _schema(**fields: dict[str, Any]) -> TableSchema:
    return TableSchema.from_dict(fields)


def _date(source_field: str = "a", **extra: Any) -> dict[str, Any]:
    return {"source_field": source_field, "source_field_type": "text", "bigquery_type": "DATE", "time_format": "2006/01/02", **extra}


class TestTransformKeyed:
    """Keyed records from API pages."""

    def test_converts_declared_fields(self) -> None:
        assert transform_keyed({"a": "2010/01/02"}, _schema(a=_date())) == {"a": "2010-01-02"}

    def test_output_follows_declaration_order_and_is_fully_populated(self) -> None:
        schema = _schema(
            second={"source_field": "y", "bigquery_type": "STRING"},
            first={"source_field": "x", "bigquery_type": "STRING"},
        )

        out = transform_keyed({"x": "1", "extra": "ignored"}, schema)

        assert out == {"second": None, "first": "1"}
        assert list(out) == ["second", "first"]

    def test_required_empty_value_is_missing(self) -> None:
        schema = _schema(a=_date(required=True, on_error="RAISE"))

        with pytest.raises(MissingRequiredFieldError, match='missing required field "a"'):
            transform_keyed({"a": ""}, schema)

    def test_required_absent_value_is_missing(self) -> None:
        schema = _schema(a={"source_field": "a", "bigquery_type": "STRING", "required": True, "on_error": "RAISE"})

        with pytest.raises(MissingRequiredFieldError) as exc_info:
            transform_keyed({}, schema)

        assert exc_info.value.field_name == "a"
        assert exc_info.value.source_field == "a"

    def test_required_numeric_zero_is_kept(self) -> None:
        schema = _schema(n={"source_field": "n", "source_field_type": "number", "bigquery_type": "NUMERIC", "required": True})

        assert transform_keyed({"n": 0}, schema) == {"n": 0}

    def test_required_numeric_null_is_missing(self) -> None:
        schema = _schema(
            n={"source_field": "n", "source_field_type": "number", "bigquery_type": "NUMERIC", "required": True, "on_error": "RAISE"}
        )

        with pytest.raises(MissingRequiredFieldError):
            transform_keyed({"n": None}, schema)

    def test_skip_value_nulls_the_field(self) -> None:
        schema = _schema(a=_date(on_error="SKIP_VALUE"), b={"source_field": "b", "bigquery_type": "STRING"})

        assert transform_keyed({"a": "not a date", "b": "kept"}, schema) == {"a": None, "b": "kept"}

    def test_skip_row_drops_the_record(self) -> None:
        schema = _schema(a=_date(on_error="SKIP_ROW"), b={"source_field": "b", "bigquery_type": "STRING"})

        assert transform_keyed({"a": "not a date", "b": "kept"}, schema) is None

    def test_raise_propagates_with_field_context(self) -> None:
        schema = _schema(a=_date(on_error="RAISE"))

        with pytest.raises(ValueConversionError) as exc_info:
            transform_keyed({"a": "not a date"}, schema)

        assert exc_info.value.field_name == "a"
        assert exc_info.value.raw_value == "not a date"

    def test_skip_value_on_required_field_drops_the_row(self) -> None:
        schema = _schema(a=_date(required=True, on_error="SKIP_VALUE"))

        assert transform_keyed({"a": ""}, schema) is None

    def test_unhandled_conversion_follows_policy(self) -> None:
        schema = _schema(g={"source_field": "g", "source_field_type": "number", "bigquery_type": "GEOGRAPHY", "on_error": "RAISE"})

        with pytest.raises(UnhandledConversionError):
            transform_keyed({"g": 1}, schema)

    def test_point_exact_fidelity(self) -> None:
        schema = _schema(site={"source_field": "site", "source_field_type": "point", "bigquery_type": "GEOGRAPHY"})
        point = {"type": "Point", "coordinates": [Decimal("-87.629799129486081"), Decimal("41.87811360319265")]}

        out = transform_keyed({"site": point}, schema)

        assert out == {"site": '{"type":"Point","coordinates":[-87.629799129486081,41.87811360319265]}'}


def _columns(*names: str) -> list[ColumnMetadata]:
    return [ColumnMetadata(id=-1 if name.startswith(":") else i, fieldName=name) for i, name in enumerate(names)]


class TestTransformPositional:
    """Positional rows from full exports."""

    @pytest.fixture
    def schema(self) -> TableSchema:
        return _schema(
            name={"source_field": "name", "bigquery_type": "STRING"},
            fee={"source_field": "fee", "source_field_type": "number", "bigquery_type": "NUMERIC"},
        )

    def test_synthetic_and_declared_columns(self, schema: TableSchema) -> None:
        ordered = schema.to_ordered(_columns(":sid", ":id", ":created_at", ":updated_at", "name", "fee"))
        row = ["row-1", "00000000-0000", 1546300800, 1546300801, "Alice", "12.1234567891"]

        out = transform_positional(row, ordered)

        assert out is not None
        assert list(out) == ["_id", "_created_at", "_updated_at", "name", "fee"]
        assert out["_id"] == "row-1"
        assert out["_created_at"] == "2019-01-01T00:00:00Z"
        assert out["_updated_at"] == "2019-01-01T00:00:01Z"
        assert out["name"] == "Alice"
        assert str(out["fee"]) == "12.123456789"

    def test_row_length_mismatch(self, schema: TableSchema) -> None:
        ordered = schema.to_ordered(_columns("name", "fee"))

        with pytest.raises(RecordShapeError, match="row has 1 values but 2 columns"):
            transform_positional(["Alice"], ordered)

    def test_missing_column_yields_null(self) -> None:
        schema = _schema(ghost={"source_field": "ghost", "bigquery_type": "STRING"})
        ordered = schema.to_ordered(_columns("name"))

        assert transform_positional(["Alice"], ordered) == {"ghost": None}
