# tests/contracts/test_errors.py
"""Tests for the error taxonomy."""

from decimal import Decimal

import pytest

from socrata_sync.contracts.cursor import SyncCursor
from socrata_sync.contracts.errors import (
    AcquireTimeoutError,
    ConfigurationError,
    MissingRequiredFieldError,
    SyncError,
    ValueConversionError,
)
from socrata_sync.contracts.values import dumps


class TestErrors:
    def test_missing_required_field_message(self) -> None:
        error = MissingRequiredFieldError("a", source_field="a")

        assert str(error) == 'missing required field "a"'
        assert error.field_name == "a"

    def test_configuration_error_is_value_error(self) -> None:
        """pydantic validators wrap ValueErrors, so this must be one."""
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(ConfigurationError, SyncError)

    def test_at_row_records_row_number(self) -> None:
        error = ValueConversionError("bad value")

        assert error.at_row(42) is error
        assert error.row_number == 42
        assert "row 42" in error.__notes__

    def test_for_field_keeps_existing_context(self) -> None:
        error = ValueConversionError("bad", raw_value="x")

        error.for_field("target", "source", "ignored")

        assert error.field_name == "target"
        assert error.source_field == "source"
        assert error.raw_value == "x"

    def test_acquire_timeout_message(self) -> None:
        error = AcquireTimeoutError(0.5)

        assert error.timeout == 0.5
        assert "0.5s" in str(error)


class TestSyncCursor:
    def test_end_is_exclusive(self) -> None:
        assert SyncCursor(offset=500, limit=250).end == 750

    def test_rejects_negative_offset(self) -> None:
        with pytest.raises(ValueError, match="offset"):
            SyncCursor(offset=-1, limit=1)


class TestDumps:
    def test_compact_and_unicode(self) -> None:
        assert dumps({"a": "é", "b": [1, None]}) == '{"a":"é","b":[1,null]}'

    def test_decimals_keep_their_digits(self) -> None:
        assert dumps({"whole": Decimal("3.000"), "frac": Decimal("-87.62979912948608123")}) == '{"whole":3.000,"frac":-87.62979912948608123}'
