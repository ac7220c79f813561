# tests/engine/conftest.py
"""Engine test fixtures."""

from typing import Any

import pytest

from tests.fixtures.collaborators import FakeSource, FakeStaging, FakeWarehouse


@pytest.fixture
def rows() -> list[dict[str, Any]]:
    return [
        {":id": f"row-{i}", ":created_at": "2019-01-01T00:00:00.000", "name": f"n{i}", "amount": str(i), "opened_date": "01/02/2019"}
        for i in range(10)
    ]


@pytest.fixture
def source(rows: list[dict[str, Any]]) -> FakeSource:
    return FakeSource(rows)


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def staging() -> FakeStaging:
    return FakeStaging()
