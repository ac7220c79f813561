# src/socrata_sync/clients/bigquery.py
"""BigQuery destination: table management, watermark query and loads."""

from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

import structlog
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import bigquery

from socrata_sync.contracts.errors import PersistentIOError
from socrata_sync.core.config import BigQuerySettings
from socrata_sync.core.schema import TableSchema

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def to_schema_fields(schema: TableSchema) -> list[bigquery.SchemaField]:
    """BigQuery column definitions in declaration order."""
    return [
        bigquery.SchemaField(
            name,
            str(descriptor.target_type),
            mode="REQUIRED" if descriptor.required else "NULLABLE",
            description=descriptor.description or None,
        )
        for name, descriptor in schema.items()
    ]


class BigQueryWarehouse:
    """One destination table.

    The client is created lazily on first use, so constructing a warehouse
    performs no I/O and needs no credentials.
    """

    def __init__(self, settings: BigQuerySettings, client: bigquery.Client | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def table_id(self) -> str:
        return self._settings.table_id

    def initialize_client(self) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=self._settings.project_id)
        return self._client

    def _call(self, what: str, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except GoogleAPIError as e:
            raise PersistentIOError(f"BigQuery {what} failed for {self.table_id}: {e}") from e

    def ensure_dataset(self) -> None:
        """Fail early when the dataset is missing or unreadable."""
        client = self.initialize_client()
        dataset_ref = f"{self._settings.project_id}.{self._settings.dataset_name}"
        dataset = self._call("dataset lookup", lambda: client.get_dataset(dataset_ref))
        logger.info("dataset ok", dataset=dataset.full_dataset_id, modified=str(dataset.modified))

    def ensure_table(self, schema: TableSchema) -> int:
        """Look up the table, creating it from ``schema`` when absent.

        Returns:
            Current row count.
        """
        client = self.initialize_client()
        try:
            table = client.get_table(self.table_id)
        except NotFound:
            logger.info("auto-creating table", table=self.table_id)
            table = self._call("table creation", lambda: client.create_table(self._new_table(schema)))
        except GoogleAPIError as e:
            raise PersistentIOError(f"BigQuery table lookup failed for {self.table_id}: {e}") from e
        logger.info("table ok", table=self.table_id, rows=table.num_rows, modified=str(table.modified))
        return int(table.num_rows or 0)

    def _new_table(self, schema: TableSchema) -> bigquery.Table:
        table = bigquery.Table(self.table_id, schema=to_schema_fields(schema))
        table.description = self._settings.description or None
        if schema.partition_field:
            table.time_partitioning = bigquery.TimePartitioning(
                type_=bigquery.TimePartitioningType.DAY,
                field=schema.partition_field,
            )
        if schema.clustering_fields:
            table.clustering_fields = list(schema.clustering_fields)
        return table

    def row_count(self) -> int:
        client = self.initialize_client()
        table = self._call("table lookup", lambda: client.get_table(self.table_id))
        return int(table.num_rows or 0)

    def max_timestamp(self, column: str) -> datetime | None:
        """Newest value of ``column``, or None when the table has no non-null value."""
        client = self.initialize_client()
        query = f"SELECT MAX(`{column}`) AS watermark FROM `{self.table_id}`"
        rows = self._call("watermark query", lambda: list(client.query(query, location=self._settings.location).result()))
        # Empty tables return one row holding NULL.
        if not rows:
            return None
        watermark = rows[0].watermark
        if watermark is not None and not isinstance(watermark, datetime):
            raise PersistentIOError(f"{column} is not a TIMESTAMP column in {self.table_id}")
        return watermark

    def load_from_uri(self, uri: str) -> str:
        """Append newline-delimited JSON at ``uri`` to the table and wait for the job.

        Returns:
            The load job id.
        """
        client = self.initialize_client()
        job_config = bigquery.LoadJobConfig(
            source_format=bigquery.SourceFormat.NEWLINE_DELIMITED_JSON,
            write_disposition=bigquery.WriteDisposition.WRITE_APPEND,
            autodetect=False,
        )
        job = self._call(
            "load submission",
            lambda: client.load_table_from_uri(uri, self.table_id, job_config=job_config, location=self._settings.location),
        )
        logger.info("load job running", job_id=job.job_id, uri=uri)
        self._call("load job", job.result)
        logger.info("load job done", job_id=job.job_id, output_rows=job.output_rows)
        return str(job.job_id)
