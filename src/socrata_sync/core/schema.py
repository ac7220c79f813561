# src/socrata_sync/core/schema.py
"""Schema declaration: how each warehouse field is produced.

A TableSchema maps target field names to FieldDescriptors. It is built once
per run from settings through the fallible ``from_dict`` constructor and is
read-only afterwards.

Positional upstream bodies (full exports) address values by column index, so
they need an OrderedTableSchema: the TableSchema aligned against the column
order announced in the export's ``meta`` block.
"""

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from socrata_sync.contracts.enums import OnError, SourceType, TargetType
from socrata_sync.contracts.errors import ConfigurationError
from socrata_sync.contracts.metadata import ColumnMetadata
from socrata_sync.core.logging import get_logger

logger = get_logger(__name__)

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,299}$")

_PARTITION_TYPES = frozenset({TargetType.DATE, TargetType.TIMESTAMP, TargetType.DATETIME})


class FieldDescriptor(BaseModel):
    """How one target field is produced from one upstream field.

    Settings keys follow the schema file spelling (``source_field_type``,
    ``bigquery_type``); attribute names describe the role.

    Attributes:
        source_field: Upstream field name (``:created_at`` style for system fields)
        source_type: Upstream data type tag
        target_type: Warehouse column type
        time_format: Reference layout or strptime pattern for textual DATE/TIME sources
        required: Null or empty output is a MissingRequiredFieldError
        on_error: Failure policy as declared
        description: Warehouse column description
        example_values: Sample upstream values recorded by ``init``
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    source_field: str = Field(min_length=1)
    source_type: SourceType = Field(SourceType.UNSPECIFIED, alias="source_field_type")
    target_type: TargetType = Field(alias="bigquery_type")
    time_format: str = ""
    required: bool = False
    on_error: OnError = OnError.SKIP_ROW
    description: str = ""
    example_values: str = ""

    @field_validator("source_type", mode="before")
    @classmethod
    def _parse_source_type(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return SourceType.parse(v)
        return v

    @field_validator("target_type", mode="before")
    @classmethod
    def _parse_target_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return TargetType.parse(v)
        return v

    @field_validator("on_error", mode="before")
    @classmethod
    def _parse_on_error(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return OnError.parse(v)
        return v

    @model_validator(mode="after")
    def _require_time_format(self) -> Self:
        if self.target_type.is_temporal and self.source_type.is_textual and not self.time_format:
            raise ConfigurationError(
                f"time_format is required for {self.target_type} fields with {self.source_type or 'unspecified'} source "
                f"(source_field {self.source_field!r})"
            )
        return self

    @property
    def effective_on_error(self) -> OnError:
        """Policy actually applied.

        Nulling a required field would itself be a missing-field error, so
        SKIP_VALUE on a required field behaves as SKIP_ROW.
        """
        if self.required and self.on_error is OnError.SKIP_VALUE:
            return OnError.SKIP_ROW
        return self.on_error

    def to_settings(self) -> dict[str, Any]:
        """Settings-file representation, omitting defaults."""
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


@dataclass(frozen=True, slots=True)
class OrderedField:
    """A target field bound to an upstream column position.

    ``index`` is None when the declared source column is not present upstream;
    the field is then produced from a null source value.
    """

    name: str
    descriptor: FieldDescriptor
    index: int | None


# System columns exposed in full exports and the fixed fields they populate.
SYNTHETIC_FIELDS: Mapping[str, tuple[str, FieldDescriptor]] = MappingProxyType(
    {
        ":sid": (
            "_id",
            FieldDescriptor(source_field=":sid", source_type=SourceType.TEXT, target_type=TargetType.STRING),
        ),
        ":created_at": (
            "_created_at",
            FieldDescriptor(source_field=":created_at", source_type=SourceType.EPOCH_SECONDS, target_type=TargetType.TIMESTAMP),
        ),
        ":updated_at": (
            "_updated_at",
            FieldDescriptor(source_field=":updated_at", source_type=SourceType.EPOCH_SECONDS, target_type=TargetType.TIMESTAMP),
        ),
    }
)


class OrderedTableSchema(Sequence[OrderedField]):
    """Positional projection of a TableSchema for one upstream column order."""

    def __init__(self, fields: Sequence[OrderedField], column_count: int) -> None:
        self._fields = tuple(fields)
        self.column_count = column_count

    def __getitem__(self, index: int) -> OrderedField:  # type: ignore[override]
        return self._fields[index]

    def __len__(self) -> int:
        return len(self._fields)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self._fields]


class TableSchema(Mapping[str, FieldDescriptor]):
    """Immutable mapping of target field name to FieldDescriptor.

    Iteration follows declaration order, which is also the key order of
    transformed records.
    """

    def __init__(
        self,
        fields: Mapping[str, FieldDescriptor],
        *,
        partition_field: str | None = None,
        clustering_fields: Sequence[str] = (),
    ) -> None:
        if not fields:
            raise ConfigurationError("schema declares no fields")
        for name in fields:
            if not _FIELD_NAME.match(name):
                raise ConfigurationError(f"invalid field name {name!r}: use letters, digits and underscores")
        if partition_field is not None:
            if partition_field not in fields:
                raise ConfigurationError(f"partition field {partition_field!r} is not declared in the schema")
            if fields[partition_field].target_type not in _PARTITION_TYPES:
                raise ConfigurationError(
                    f"partition field {partition_field!r} must be DATE, TIMESTAMP or DATETIME, "
                    f"not {fields[partition_field].target_type}"
                )
        for name in clustering_fields:
            if name not in fields:
                raise ConfigurationError(f"clustering field {name!r} is not declared in the schema")

        self._fields: Mapping[str, FieldDescriptor] = MappingProxyType(dict(fields))
        self.partition_field = partition_field
        self.clustering_fields = tuple(clustering_fields)

        for name, descriptor in self._fields.items():
            if descriptor.required and descriptor.on_error is OnError.SKIP_VALUE:
                logger.warning(
                    "SKIP_VALUE on a required field drops the row instead",
                    field=name,
                    source_field=descriptor.source_field,
                )

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        *,
        partition_field: str | None = None,
        clustering_fields: Sequence[str] = (),
    ) -> Self:
        """Build a schema from settings, reporting every problem as ConfigurationError.

        Args:
            raw: Target field name to descriptor settings (or FieldDescriptor)
            partition_field: Optional DATE/TIMESTAMP/DATETIME field to partition by
            clustering_fields: Optional declared fields to cluster by

        Raises:
            ConfigurationError: If any descriptor or table option is invalid.
        """
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"schema must be a mapping of field name to settings, got {type(raw).__name__}")
        fields: dict[str, FieldDescriptor] = {}
        for name, entry in raw.items():
            if isinstance(entry, FieldDescriptor):
                fields[name] = entry
                continue
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"schema field {name!r} must be a mapping, got {type(entry).__name__}")
            try:
                fields[name] = FieldDescriptor.model_validate(dict(entry))
            except ValidationError as e:
                raise ConfigurationError(f"invalid schema field {name!r}: {_first_error(e)}") from e
        return cls(fields, partition_field=partition_field, clustering_fields=clustering_fields)

    def __getitem__(self, key: str) -> FieldDescriptor:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"TableSchema({list(self._fields)!r})"

    def to_settings(self) -> dict[str, dict[str, Any]]:
        return {name: descriptor.to_settings() for name, descriptor in self._fields.items()}

    def to_ordered(self, columns: Sequence[ColumnMetadata]) -> OrderedTableSchema:
        """Align this schema against an upstream column order.

        System columns with a fixed mapping come first and take precedence
        over user declarations of the same target name. Other system columns
        are ignored, as are user fields sourced from a system column. User
        fields without an upstream column keep ``index=None``.

        Raises:
            ConfigurationError: If the partition field's source column is absent.
        """
        entries: list[OrderedField] = []
        claimed: set[str] = set()

        for index, column in enumerate(columns):
            if column.is_synthetic and column.field_name in SYNTHETIC_FIELDS:
                target, descriptor = SYNTHETIC_FIELDS[column.field_name]
                entries.append(OrderedField(target, descriptor, index))
                claimed.add(target)

        positions = {column.field_name: index for index, column in enumerate(columns) if not column.is_synthetic}
        for name, descriptor in self._fields.items():
            if name in claimed or descriptor.source_field.startswith(":"):
                continue
            index = positions.get(descriptor.source_field)
            if index is None:
                if name == self.partition_field:
                    raise ConfigurationError(
                        f"partition field {name!r} reads {descriptor.source_field!r}, which is not an upstream column"
                    )
                logger.warning("declared source column not present upstream", field=name, source_field=descriptor.source_field)
            entries.append(OrderedField(name, descriptor, index))

        return OrderedTableSchema(entries, column_count=len(columns))


def _first_error(error: ValidationError) -> str:
    """Compact message for the first validation problem."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    message = str(first["msg"]).removeprefix("Value error, ")
    return f"{location}: {message}" if location else message
