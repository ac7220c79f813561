"""Error taxonomy for synchronization runs.

Errors fall into three tiers:

- Field errors (ValueConversionError, MissingRequiredFieldError) are raised by
  coercion and resolved by the field's on_error policy inside the record
  transform. They only escape a stream under the RAISE policy.
- Chunk errors (TransientTransportError) mean an upstream page was cut short.
  The chunk orchestrator retries the whole chunk.
- Fatal errors (ConfigurationError, PersistentIOError, RecordShapeError) abort
  the run. Nothing below the CLI terminates the process.

Errors that escape a stream are annotated with ``row_number`` so operators can
find the offending record.
"""

from typing import Any


class SyncError(Exception):
    """Base class for all errors raised by socrata_sync."""

    row_number: int | None = None

    def at_row(self, row_number: int) -> "SyncError":
        """Record the 1-based stream row at which this error surfaced."""
        self.row_number = row_number
        self.add_note(f"row {row_number}")
        return self


class ConfigurationError(SyncError, ValueError):
    """Settings or schema declaration is invalid. Never retried.

    Also a ValueError so that pydantic validators can raise it directly.
    """


class FieldError(SyncError):
    """A single field of a single record could not be produced.

    Attributes:
        field_name: Target field name (set by the record transform)
        source_field: Upstream field the value was read from
        raw_value: The offending upstream value
    """

    def __init__(
        self,
        message: str,
        *,
        field_name: str | None = None,
        source_field: str | None = None,
        raw_value: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field_name = field_name
        self.source_field = source_field
        self.raw_value = raw_value

    def for_field(self, field_name: str, source_field: str, raw_value: Any) -> "FieldError":
        """Attach field context, keeping anything already set."""
        self.field_name = self.field_name or field_name
        self.source_field = self.source_field or source_field
        if self.raw_value is None:
            self.raw_value = raw_value
        return self


class ValueConversionError(FieldError):
    """A value is malformed for its declared target type."""


class UnhandledConversionError(ValueConversionError):
    """No conversion exists for the declared source/target combination.

    Still governed by on_error, but always logged at error level since it
    points at a schema declaration mistake rather than bad data.
    """


class MissingRequiredFieldError(FieldError):
    """A required field is null, absent or empty after coercion."""

    def __init__(self, field_name: str, *, source_field: str | None = None, raw_value: Any = None) -> None:
        super().__init__(
            f'missing required field "{field_name}"',
            field_name=field_name,
            source_field=source_field,
            raw_value=raw_value,
        )


class RecordShapeError(SyncError):
    """The upstream stream does not have the expected JSON shape. Fatal."""


class TransientTransportError(SyncError):
    """An upstream page ended prematurely. The chunk is retried."""


class PersistentIOError(SyncError):
    """A fetch, staging or load operation failed and will not be retried."""


class AcquireTimeoutError(SyncError):
    """A concurrency slot could not be acquired within the timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"timed out after {timeout:g}s waiting for a concurrency slot")
        self.timeout = timeout
