# tests/core/test_timeformat.py
"""Tests for reference layout translation."""

from datetime import datetime

import pytest

from socrata_sync.core.timeformat import parse, to_strptime


class TestToStrptime:
    @pytest.mark.parametrize(
        ("layout", "expected"),
        [
            ("01/02/2006", "%m/%d/%Y"),
            ("2006-01-02T15:04:05", "%Y-%m-%dT%H:%M:%S"),
            ("2006-01-02T00:00:00.000", "%Y-%m-%dT00:00:00.%f"),
            ("03:04pm", "%I:%M%p"),
            ("0304PM", "%I%M%p"),
            ("Jan 2, 2006", "%b %d, %Y"),
            ("January _2 06", "%B %d %y"),
            ("Mon, 02 Jan 2006 15:04:05 -0700", "%a, %d %b %Y %H:%M:%S %z"),
        ],
    )
    def test_layouts(self, layout: str, expected: str) -> None:
        assert to_strptime(layout) == expected

    def test_strptime_patterns_pass_through(self) -> None:
        assert to_strptime("%d.%m.%Y") == "%d.%m.%Y"


class TestParse:
    def test_reference_layout(self) -> None:
        assert parse("02/28/2019", "01/02/2006") == datetime(2019, 2, 28)

    def test_calendar_date_with_fraction(self) -> None:
        assert parse("2020-03-04T00:00:00.000", "2006-01-02T00:00:00.000") == datetime(2020, 3, 4)

    def test_mismatch_raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse("2019-02-28", "01/02/2006")
