# src/socrata_sync/core/inference.py
"""Schema inference for ``socrata-sync init``.

Builds a starting settings document from upstream metadata and a handful of
example records. The guesses are deliberately simple; the generated file is
meant to be reviewed and edited before the first sync.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from socrata_sync.contracts.enums import OnError, SourceType, TargetType
from socrata_sync.contracts.errors import ConfigurationError
from socrata_sync.contracts.metadata import DatasetMetadata
from socrata_sync.contracts.values import JSONValue, dumps
from socrata_sync.core.schema import FieldDescriptor, TableSchema
from socrata_sync.engine.coercion import to_geography

logger = structlog.get_logger(__name__)

MAX_EXAMPLES = 3

# System fields every generated schema starts with.
_SYSTEM_FIELDS: dict[str, tuple[str, TargetType, bool]] = {
    "_id": (":id", TargetType.STRING, True),
    "_created_at": (":created_at", TargetType.TIMESTAMP, True),
    "_updated_at": (":updated_at", TargetType.TIMESTAMP, True),
    "_version": (":version", TargetType.STRING, False),
}


def guess_target_type(data_type_name: str, field_name: str) -> tuple[TargetType, str]:
    """Guess a warehouse type and time format for one upstream column.

    Raises:
        ConfigurationError: For upstream types with no sensible default.
    """
    match data_type_name:
        case "text":
            if "date" in field_name:
                return TargetType.DATE, "2006/01/02"
            if "time" in field_name:
                return TargetType.TIME, "03:04pm"
            return TargetType.STRING, ""
        case "url":
            return TargetType.STRING, ""
        case "number":
            return TargetType.NUMERIC, ""
        case "calendar_date":
            return TargetType.DATE, "2006-01-02T00:00:00.000"
        case "point" | "location":
            return TargetType.GEOGRAPHY, ""
        case "checkbox":
            return TargetType.BOOLEAN, ""
        case _:
            raise ConfigurationError(f"cannot guess a type for column {field_name!r} of type {data_type_name!r}")


def table_name(dataset_id: str, name: str) -> str:
    """Table name derived from the dataset name and id, e.g. ``311_service_requests_erm2_nwe9``."""
    return re.sub(r"[^0-9a-z_]", "_", f"{name.strip().lower()}-{dataset_id}")


def _example_text(value: JSONValue) -> str | None:
    match value:
        case str():
            return '"' + value.replace('"', '\\"') + '"'
        case bool():
            return "true" if value else "false"
        case int():
            return str(value)
        case {"url": str() as url}:
            return url
        case {"type": "Point"}:
            return dumps(value)
        case {"human_address": _}:
            located = to_geography(value, SourceType.LOCATION)
            return located if isinstance(located, str) else None
        case _:
            logger.debug("no example rendering", value_type=type(value).__name__)
            return None


def collect_examples(records: Iterable[Mapping[str, JSONValue]], limit: int = MAX_EXAMPLES) -> dict[str, str]:
    """Up to ``limit`` distinct rendered values per field, comma separated."""
    seen: dict[str, list[str]] = {}
    for record in records:
        for key, value in record.items():
            text = _example_text(value)
            if text is None:
                continue
            bucket = seen.setdefault(key, [])
            if text not in bucket and len(bucket) < limit:
                bucket.append(text)
    return {key: ", ".join(values) for key, values in seen.items()}


def _source_type(data_type_name: str) -> SourceType:
    try:
        return SourceType.parse(data_type_name)
    except ConfigurationError:
        return SourceType.UNSPECIFIED


def infer_schema(metadata: DatasetMetadata, examples: Mapping[str, str] | None = None) -> TableSchema:
    """Guess a TableSchema for every non-system upstream column."""
    examples = examples or {}
    fields: dict[str, FieldDescriptor] = {}
    for name, (source_field, target_type, required) in _SYSTEM_FIELDS.items():
        fields[name] = FieldDescriptor(
            source_field=source_field,
            target_type=target_type,
            required=required,
            example_values=examples.get(source_field, ""),
        )
    for column in metadata.columns:
        if column.is_synthetic:
            continue
        target_type, time_format = guess_target_type(column.data_type_name, column.field_name)
        fields[column.field_name] = FieldDescriptor(
            source_field=column.field_name,
            source_type=_source_type(column.data_type_name),
            target_type=target_type,
            time_format=time_format,
            # Unparseable dates are common in open data; keep the row.
            on_error=OnError.SKIP_VALUE if time_format else OnError.SKIP_ROW,
            description=column.name.strip(),
            example_values=examples.get(column.field_name, ""),
        )
    return TableSchema(fields)


def new_settings_document(
    dataset_url: str,
    metadata: DatasetMetadata,
    examples: Mapping[str, str] | None = None,
    *,
    project_id: str = "",
    dataset_name: str = "",
    bucket: str = "",
) -> dict[str, Any]:
    """Settings document for a new dataset, ready to be written as YAML."""
    schema = infer_schema(metadata, examples)
    return {
        "dataset": dataset_url,
        "google_storage_bucket_name": bucket,
        "bigquery": {
            "project_id": project_id,
            "dataset_name": dataset_name,
            "table_name": table_name(metadata.id, metadata.name),
            "description": metadata.name.strip(),
            "where_filter": "",
        },
        "schema": schema.to_settings(),
    }
