"""Upstream dataset metadata, as served by ``/api/views/{id}.json``.

The same ``view`` document is embedded under ``meta.view`` in full exports,
which is where the positional column order comes from.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class ColumnMetadata(BaseModel):
    """One upstream column.

    System columns (``:id``, ``:sid``, ``:created_at`` ...) carry id -1 in
    exports and always have a field name starting with a colon.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: int = 0
    field_name: str = Field(alias="fieldName")
    data_type_name: str = Field("", alias="dataTypeName")
    name: str = ""

    @property
    def is_synthetic(self) -> bool:
        return self.id == -1 or self.field_name.startswith(":")


class DatasetMetadata(BaseModel):
    """Dataset-level metadata used for logging, init and positional decoding."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    rows_updated_at: int | None = Field(None, alias="rowsUpdatedAt")
    columns: tuple[ColumnMetadata, ...] = ()

    @property
    def last_modified(self) -> datetime | None:
        if self.rows_updated_at is None:
            return None
        return datetime.fromtimestamp(self.rows_updated_at, tz=UTC)
