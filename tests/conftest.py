# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from collections.abc import Iterator
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from socrata_sync.core.schema import TableSchema

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture(autouse=True)
def _clear_log_context() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def schema_settings() -> dict[str, dict[str, Any]]:
    """A small schema covering the system fields and the common column types."""
    return {
        "_id": {"source_field": ":id", "bigquery_type": "STRING", "required": True},
        "_created_at": {"source_field": ":created_at", "bigquery_type": "TIMESTAMP", "required": True},
        "name": {"source_field": "name", "source_field_type": "text", "bigquery_type": "STRING"},
        "amount": {"source_field": "amount", "source_field_type": "number", "bigquery_type": "NUMERIC"},
        "opened": {
            "source_field": "opened_date",
            "source_field_type": "text",
            "bigquery_type": "DATE",
            "time_format": "01/02/2006",
            "on_error": "SKIP_VALUE",
        },
    }


@pytest.fixture
def table_schema(schema_settings: dict[str, dict[str, Any]]) -> TableSchema:
    return TableSchema.from_dict(schema_settings)


@pytest.fixture
def settings_dict(schema_settings: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """A complete, valid settings document."""
    return {
        "dataset": "https://data.example.org/d/abcd-1234",
        "google_storage_bucket_name": "staging-bucket",
        "bigquery": {
            "project_id": "my-project",
            "dataset_name": "open_data",
            "table_name": "permits_abcd_1234",
        },
        "schema": schema_settings,
    }
