"""Type tags and policies shared by schema declaration and coercion.

Values are the spellings accepted in settings files. Parsing goes through the
``parse`` classmethods so that legacy spellings and casing differences are
normalised in one place and unknown tags surface as ConfigurationError.
"""

from enum import StrEnum
from typing import Self

from socrata_sync.contracts.errors import ConfigurationError


class SourceType(StrEnum):
    """Upstream column data type (Socrata ``dataTypeName``)."""

    UNSPECIFIED = ""
    TEXT = "text"
    NUMBER = "number"
    CALENDAR_DATE = "calendar_date"
    POINT = "point"
    LOCATION = "location"
    URL = "url"
    EPOCH_SECONDS = "epoch_seconds"

    @classmethod
    def parse(cls, raw: str | None) -> Self:
        if raw is None:
            return cls("")
        normalized = raw.strip()
        if normalized == "json.Number":
            normalized = "epoch_seconds"
        try:
            return cls(normalized.lower())
        except ValueError:
            raise ConfigurationError(f"unknown source field type {raw!r}") from None

    @property
    def is_textual(self) -> bool:
        return self in (SourceType.TEXT, SourceType.UNSPECIFIED)


class TargetType(StrEnum):
    """BigQuery column type produced by coercion."""

    STRING = "STRING"
    NUMERIC = "NUMERIC"
    FLOAT = "FLOAT"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    DATETIME = "DATETIME"
    GEOGRAPHY = "GEOGRAPHY"
    BOOLEAN = "BOOLEAN"

    @classmethod
    def parse(cls, raw: str) -> Self:
        normalized = raw.strip().upper()
        normalized = _TARGET_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"unhandled schema type {raw!r}") from None

    @property
    def is_numeric(self) -> bool:
        return self in (TargetType.NUMERIC, TargetType.FLOAT)

    @property
    def is_temporal(self) -> bool:
        """Types whose textual sources need a time_format."""
        return self in (TargetType.DATE, TargetType.TIME)


_TARGET_ALIASES = {
    "FLOAT64": "FLOAT",
    "BOOL": "BOOLEAN",
    "BIGNUMERIC": "NUMERIC",
}


class OnError(StrEnum):
    """Per-field failure policy.

    SKIP_VALUE nulls the field, SKIP_ROW drops the record, RAISE aborts the stream.
    """

    SKIP_VALUE = "SKIP_VALUE"
    SKIP_ROW = "SKIP_ROW"
    RAISE = "RAISE"

    @classmethod
    def parse(cls, raw: str | None) -> Self:
        if raw is None or not raw.strip():
            return cls("SKIP_ROW")
        normalized = raw.strip().upper()
        if normalized == "ERROR":
            normalized = "RAISE"
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"unknown on_error policy {raw!r}; expected SKIP_VALUE, SKIP_ROW or RAISE") from None


class UpstreamShape(StrEnum):
    """Wire shape of an upstream response body."""

    KEYED = "keyed"  # [{"field": value, ...}, ...]
    POSITIONAL = "positional"  # {"meta": {"view": {"columns": [...]}}, "data": [[...], ...]}
