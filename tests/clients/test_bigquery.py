# tests/clients/test_bigquery.py
"""Tests for the BigQuery warehouse wrapper, with a mocked client."""

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import Forbidden, NotFound
from google.cloud import bigquery

from socrata_sync.clients.bigquery import BigQueryWarehouse, to_schema_fields
from socrata_sync.contracts.errors import PersistentIOError
from socrata_sync.core.config import BigQuerySettings
from socrata_sync.core.schema import TableSchema


@pytest.fixture
def bq_settings() -> BigQuerySettings:
    return BigQuerySettings(project_id="my-project", dataset_name="open_data", table_name="permits", location="EU")


@pytest.fixture
def client() -> MagicMock:
    return MagicMock(spec=bigquery.Client)


@pytest.fixture
def warehouse(bq_settings: BigQuerySettings, client: MagicMock) -> BigQueryWarehouse:
    return BigQueryWarehouse(bq_settings, client=client)


class TestSchemaFields:
    def test_modes_and_types(self, table_schema: TableSchema) -> None:
        fields = to_schema_fields(table_schema)

        assert [f.name for f in fields] == ["_id", "_created_at", "name", "amount", "opened"]
        assert fields[0].mode == "REQUIRED"
        assert fields[1].field_type == "TIMESTAMP"
        assert fields[3].field_type == "NUMERIC"
        assert fields[4].mode == "NULLABLE"


class TestTables:
    def test_table_id(self, warehouse: BigQueryWarehouse) -> None:
        assert warehouse.table_id == "my-project.open_data.permits"

    def test_existing_table_returns_row_count(self, warehouse: BigQueryWarehouse, client: MagicMock, table_schema: TableSchema) -> None:
        client.get_table.return_value = SimpleNamespace(num_rows=1234, modified=None)

        assert warehouse.ensure_table(table_schema) == 1234
        client.create_table.assert_not_called()

    def test_missing_table_is_created(self, warehouse: BigQueryWarehouse, client: MagicMock, schema_settings: dict[str, Any]) -> None:
        schema = TableSchema.from_dict(schema_settings, partition_field="_created_at", clustering_fields=["name"])
        client.get_table.side_effect = NotFound("no such table")
        client.create_table.return_value = SimpleNamespace(num_rows=None, modified=None)

        assert warehouse.ensure_table(schema) == 0

        table = client.create_table.call_args.args[0]
        assert table.table_id == "permits"
        assert table.time_partitioning.field == "_created_at"
        assert table.clustering_fields == ["name"]
        assert [f.name for f in table.schema][0] == "_id"

    def test_lookup_failure(self, warehouse: BigQueryWarehouse, client: MagicMock, table_schema: TableSchema) -> None:
        client.get_table.side_effect = Forbidden("denied")

        with pytest.raises(PersistentIOError, match="table lookup failed"):
            warehouse.ensure_table(table_schema)

    def test_missing_dataset(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        client.get_dataset.side_effect = NotFound("no such dataset")

        with pytest.raises(PersistentIOError, match="dataset lookup failed"):
            warehouse.ensure_dataset()

        client.get_dataset.assert_called_once_with("my-project.open_data")


class TestWatermark:
    def _rows(self, client: MagicMock, value: object) -> None:
        client.query.return_value.result.return_value = [SimpleNamespace(watermark=value)]

    def test_latest_timestamp(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        latest = datetime(2019, 5, 1, tzinfo=UTC)
        self._rows(client, latest)

        assert warehouse.max_timestamp("_created_at") == latest
        query = client.query.call_args.args[0]
        assert query == "SELECT MAX(`_created_at`) AS watermark FROM `my-project.open_data.permits`"
        assert client.query.call_args.kwargs["location"] == "EU"

    def test_empty_table(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        self._rows(client, None)

        assert warehouse.max_timestamp("_created_at") is None

    def test_column_must_be_a_timestamp(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        self._rows(client, "2019-05-01")

        with pytest.raises(PersistentIOError, match="not a TIMESTAMP"):
            warehouse.max_timestamp("_created_at")


class TestLoads:
    def test_load_appends_json(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        job = client.load_table_from_uri.return_value
        job.job_id = "job-42"
        job.output_rows = 10

        assert warehouse.load_from_uri("gs://bucket/obj.json.gz") == "job-42"

        args, kwargs = client.load_table_from_uri.call_args
        assert args == ("gs://bucket/obj.json.gz", "my-project.open_data.permits")
        config = kwargs["job_config"]
        assert config.source_format == bigquery.SourceFormat.NEWLINE_DELIMITED_JSON
        assert config.write_disposition == bigquery.WriteDisposition.WRITE_APPEND
        job.result.assert_called_once_with()

    def test_failed_job(self, warehouse: BigQueryWarehouse, client: MagicMock) -> None:
        client.load_table_from_uri.return_value.result.side_effect = Forbidden("bad rows")

        with pytest.raises(PersistentIOError, match="load job failed"):
            warehouse.load_from_uri("gs://bucket/obj.json.gz")

    def test_client_created_lazily(self, bq_settings: BigQuerySettings) -> None:
        warehouse = BigQueryWarehouse(bq_settings)

        assert warehouse._client is None
