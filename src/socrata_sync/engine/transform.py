# src/socrata_sync/engine/transform.py
"""Record transform: apply coercion to every declared field of one record.

Two entry points locate source values differently and share the per-field
rules:

- ``transform_keyed`` reads ``record[descriptor.source_field]`` (API pages).
- ``transform_positional`` reads ``row[index]`` through an OrderedTableSchema
  (full exports).

Per field, in declaration order: a null source for a required field is a
MissingRequiredFieldError; otherwise the value is coerced, and a null or empty
result for a required non-numeric field is also a MissingRequiredFieldError.
Any field error is then resolved by the field's on_error policy:

- SKIP_VALUE: store null and continue with the next field.
- SKIP_ROW: drop the whole record (returns None).
- RAISE: propagate the error to the caller.
"""

from collections.abc import Iterable, Mapping, Sequence

import structlog

from socrata_sync.contracts.enums import OnError
from socrata_sync.contracts.errors import FieldError, MissingRequiredFieldError, RecordShapeError, UnhandledConversionError
from socrata_sync.contracts.values import JSONValue, Record
from socrata_sync.core.schema import FieldDescriptor, OrderedTableSchema, TableSchema
from socrata_sync.engine.coercion import coerce

logger = structlog.get_logger(__name__)


def produce_field(name: str, descriptor: FieldDescriptor, source_value: JSONValue) -> JSONValue:
    """Produce one target value, enforcing the required-field rule.

    Raises:
        FieldError: Conversion failed or a required value is missing.
    """
    if source_value is None and descriptor.required:
        raise MissingRequiredFieldError(name, source_field=descriptor.source_field)
    value = coerce(source_value, descriptor)
    # Numeric fields only fail the required check through a null source.
    if descriptor.required and not descriptor.target_type.is_numeric and (value is None or value == ""):
        raise MissingRequiredFieldError(name, source_field=descriptor.source_field, raw_value=source_value)
    return value


def _transform_fields(fields: Iterable[tuple[str, FieldDescriptor, JSONValue]]) -> Record | None:
    out: Record = {}
    for name, descriptor, source_value in fields:
        try:
            out[name] = produce_field(name, descriptor, source_value)
        except FieldError as e:
            e.for_field(name, descriptor.source_field, source_value)
            policy = descriptor.effective_on_error
            if isinstance(e, UnhandledConversionError):
                logger.error(
                    "unhandled conversion",
                    field=name,
                    source_field=descriptor.source_field,
                    source_type=str(descriptor.source_type),
                    target_type=str(descriptor.target_type),
                    on_error=str(policy),
                )
            if policy is OnError.RAISE:
                raise
            if policy is OnError.SKIP_VALUE:
                logger.warning(
                    "skipping invalid value",
                    field=name,
                    source_field=descriptor.source_field,
                    value=source_value,
                    error=str(e),
                )
                out[name] = None
                continue
            logger.warning(
                "skipping row",
                field=name,
                source_field=descriptor.source_field,
                value=source_value,
                error=str(e),
            )
            return None
    return out


def transform_keyed(record: Mapping[str, JSONValue], schema: TableSchema) -> Record | None:
    """Transform one keyed record. Returns None when the row is skipped.

    Raises:
        FieldError: A field with the RAISE policy failed.
    """
    return _transform_fields((name, descriptor, record.get(descriptor.source_field)) for name, descriptor in schema.items())


def transform_positional(row: Sequence[JSONValue], ordered: OrderedTableSchema) -> Record | None:
    """Transform one positional row. Returns None when the row is skipped.

    Raises:
        RecordShapeError: The row length does not match the announced columns.
        FieldError: A field with the RAISE policy failed.
    """
    if len(row) != ordered.column_count:
        raise RecordShapeError(f"row has {len(row)} values but {ordered.column_count} columns were announced")
    return _transform_fields(
        (entry.name, entry.descriptor, None if entry.index is None else row[entry.index]) for entry in ordered
    )
