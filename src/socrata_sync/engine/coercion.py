# src/socrata_sync/engine/coercion.py
"""Value coercion: one upstream value to one warehouse-typed value.

Every function here is pure. Dispatch is by target type, then by source type,
then by the shape of the decoded value; each dispatch ends in an explicit
failure branch so no shape is accepted by accident.

Null results are legitimate (empty optional values, unreadable coordinates).
Whether a null is acceptable for a required field is decided by the record
transform, not here.
"""

import math
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from socrata_sync.contracts.enums import SourceType, TargetType
from socrata_sync.contracts.errors import ConfigurationError, UnhandledConversionError, ValueConversionError
from socrata_sync.contracts.values import JSONValue, dumps
from socrata_sync.core import timeformat
from socrata_sync.core.schema import FieldDescriptor

# BigQuery NUMERIC scale.
NUMERIC_SCALE_DIGITS = 9

_DATE_OUTPUT = "%Y-%m-%d"
_TIME_OUTPUT = "%H:%M:%S"
_TIMESTAMP_OUTPUT = "%Y-%m-%dT%H:%M:%SZ"


def coerce(value: JSONValue, descriptor: FieldDescriptor) -> JSONValue:
    """Convert ``value`` to the descriptor's target type.

    Raises:
        ValueConversionError: The value is malformed for the target type.
        UnhandledConversionError: No conversion exists for the source/target pair.
        ConfigurationError: The target type is not supported at all.
    """
    match descriptor.target_type:
        case TargetType.STRING:
            return to_string(value, descriptor.source_type)
        case TargetType.NUMERIC | TargetType.FLOAT:
            return to_number(value, descriptor.source_type, descriptor.target_type)
        case TargetType.DATE:
            return to_date(value, descriptor.source_type, descriptor.time_format)
        case TargetType.TIME:
            return to_time(value, descriptor.source_type, descriptor.time_format)
        case TargetType.TIMESTAMP | TargetType.DATETIME:
            return to_timestamp(value, descriptor.source_type)
        case TargetType.GEOGRAPHY:
            return to_geography(value, descriptor.source_type)
        case TargetType.BOOLEAN:
            return to_boolean(value)
        case _:
            raise ConfigurationError(f"unhandled schema type {descriptor.target_type!r}")


def _unhandled(source_type: SourceType, target_type: TargetType) -> UnhandledConversionError:
    return UnhandledConversionError(f"unhandled conversion from {str(source_type)!r} to {str(target_type)!r}")


def _describe(value: JSONValue) -> str:
    return type(value).__name__


def to_string(value: JSONValue, source_type: SourceType) -> JSONValue:
    """STRING: text passes through, url objects yield their link."""
    match source_type:
        case SourceType.URL:
            match value:
                case None | str():
                    return value
                case {"url": str() | None as url}:
                    return url
                case dict():
                    return None
                case [str() | None as url, *_]:
                    return url
                case []:
                    return None
                case _:
                    raise ValueConversionError(f"expected a url object, got {_describe(value)}", raw_value=value)
        case SourceType.TEXT | SourceType.UNSPECIFIED:
            match value:
                case None | str():
                    return value
                case bool():
                    return "true" if value else "false"
                case int() | float() | Decimal():
                    return str(value)
                case _:
                    raise ValueConversionError(f"expected text, got {_describe(value)}", raw_value=value)
        case _:
            raise _unhandled(source_type, TargetType.STRING)


def truncate_fraction(numeral: str, digits: int = NUMERIC_SCALE_DIGITS) -> str:
    """Drop fractional digits beyond ``digits`` without rounding."""
    head, dot, fraction = numeral.partition(".")
    if not dot or len(fraction) <= digits:
        return numeral
    return f"{head}.{fraction[:digits]}"


def _parse_decimal(numeral: str, raw: JSONValue) -> Decimal:
    try:
        parsed = Decimal(numeral.strip())
    except InvalidOperation:
        raise ValueConversionError(f"invalid number {numeral!r}", raw_value=raw) from None
    if not parsed.is_finite():
        raise ValueConversionError(f"non-finite number {numeral!r}", raw_value=raw)
    return parsed


def _check_finite(value: int | float | Decimal) -> int | float | Decimal:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueConversionError(f"non-finite number {value!r}", raw_value=value)
    if isinstance(value, Decimal) and not value.is_finite():
        raise ValueConversionError(f"non-finite number {value!r}", raw_value=str(value))
    return value


def to_number(value: JSONValue, source_type: SourceType, target_type: TargetType = TargetType.NUMERIC) -> JSONValue:
    """NUMERIC/FLOAT: numbers pass through, numerals are parsed.

    Textual sources may carry thousands separators. Numerals from ``number``
    columns (full exports encode every number as a string) are truncated to
    the warehouse NUMERIC scale.
    """
    match source_type:
        case SourceType.TEXT:
            match value:
                case None:
                    return None
                case bool():
                    raise ValueConversionError("expected a number, got bool", raw_value=value)
                case int() | float() | Decimal():
                    return _check_finite(value)
                case str():
                    return _parse_decimal(value.replace(",", ""), value)
                case _:
                    raise ValueConversionError(f"expected a number, got {_describe(value)}", raw_value=value)
        case SourceType.NUMBER | SourceType.UNSPECIFIED | SourceType.EPOCH_SECONDS:
            match value:
                case None:
                    return None
                case bool():
                    raise ValueConversionError("expected a number, got bool", raw_value=value)
                case int() | float() | Decimal():
                    return _check_finite(value)
                case "":
                    return None
                case str():
                    return _parse_decimal(truncate_fraction(value.strip()), value)
                case _:
                    raise ValueConversionError(f"expected a number, got {_describe(value)}", raw_value=value)
        case _:
            raise _unhandled(source_type, target_type)


def _require_text(value: JSONValue) -> str:
    if not isinstance(value, str):
        raise ValueConversionError(f"expected text, got {_describe(value)}", raw_value=value)
    return value


def to_date(value: JSONValue, source_type: SourceType, time_format: str) -> JSONValue:
    """DATE: calendar dates are cut at ``T``, text is parsed with ``time_format``."""
    match source_type:
        case SourceType.CALENDAR_DATE:
            if value is None:
                return None
            text = _require_text(value)
            if not text:
                return None
            return text.partition("T")[0]
        case SourceType.TEXT | SourceType.UNSPECIFIED:
            if value is None:
                return None
            text = _require_text(value)
            if not text:
                return None
            try:
                return timeformat.parse(text, time_format).strftime(_DATE_OUTPUT)
            except ValueError:
                raise ValueConversionError(f"cannot parse date {text!r} with time format {time_format!r}", raw_value=value) from None
        case _:
            raise _unhandled(source_type, TargetType.DATE)


def to_time(value: JSONValue, source_type: SourceType, time_format: str) -> JSONValue:
    """TIME: parse case-insensitively and emit 24-hour ``HH:MM:SS``.

    A format ending in a bare ``p`` meridiem marker (``0304p``) matches values
    like ``1001p`` by widening both to ``pm``.
    """
    if not source_type.is_textual:
        raise _unhandled(source_type, TargetType.TIME)
    if value is None:
        return None
    text = _require_text(value).lower()
    if not text:
        return None
    layout = time_format
    if layout.lower().endswith("p"):
        layout = layout[:-1] + "pm"
        text += "m"
    try:
        return timeformat.parse(text, layout).strftime(_TIME_OUTPUT)
    except ValueError:
        raise ValueConversionError(f"cannot parse time {value!r} with time format {time_format!r}", raw_value=value) from None


def _epoch_seconds(value: JSONValue) -> int:
    match value:
        case bool():
            raise ValueConversionError("expected epoch seconds, got bool", raw_value=value)
        case int():
            return value
        case Decimal() | float() if math.isfinite(value) and value == int(value):
            return int(value)
        case str() if value.strip().lstrip("-").isdigit():
            return int(value)
        case _:
            raise ValueConversionError(f"expected whole epoch seconds, got {value!r}", raw_value=value)


def to_timestamp(value: JSONValue, source_type: SourceType) -> JSONValue:
    """TIMESTAMP/DATETIME: epoch seconds become RFC 3339 UTC, anything else passes through."""
    if source_type is not SourceType.EPOCH_SECONDS:
        return value
    if value is None or value == "":
        return None
    seconds = _epoch_seconds(value)
    try:
        return datetime.fromtimestamp(seconds, tz=UTC).strftime(_TIMESTAMP_OUTPUT)
    except (OverflowError, OSError, ValueError):
        raise ValueConversionError(f"epoch seconds out of range: {seconds}", raw_value=value) from None


def _point(longitude: Decimal, latitude: Decimal) -> str:
    return dumps({"type": "Point", "coordinates": [longitude, latitude]})


def to_geography(value: JSONValue, source_type: SourceType) -> JSONValue:
    """GEOGRAPHY: GeoJSON text.

    ``point`` values are already GeoJSON objects and are re-serialized
    verbatim. ``location`` values come either as ``[address, lat, lon, ...]``
    (full exports) or ``{"latitude": ..., "longitude": ...}`` (API rows) and
    are rebuilt as a Point with ``[longitude, latitude]`` ordering.
    Coordinates that are not strings yield null.
    """
    match source_type:
        case SourceType.POINT:
            match value:
                case None:
                    return None
                case dict():
                    return dumps(value)
                case str():
                    raise ValueConversionError("point values must be GeoJSON objects; WKT text is not supported", raw_value=value)
                case _:
                    raise ValueConversionError(f"expected a GeoJSON object, got {_describe(value)}", raw_value=value)
        case SourceType.LOCATION:
            match value:
                case None:
                    return None
                case [_, str() as latitude, str() as longitude, *_]:
                    pass
                case [_, _, _, *_]:
                    return None
                case {"latitude": str() as latitude, "longitude": str() as longitude}:
                    pass
                case dict():
                    return None
                case _:
                    raise ValueConversionError(f"unhandled location shape {_describe(value)}", raw_value=value)
            if not latitude.strip() or not longitude.strip():
                return None
            return _point(_parse_decimal(longitude, value), _parse_decimal(latitude, value))
        case _:
            raise _unhandled(source_type, TargetType.GEOGRAPHY)


def to_boolean(value: JSONValue) -> JSONValue:
    """BOOLEAN: only real booleans (or null) are accepted."""
    match value:
        case None | bool():
            return value
        case _:
            raise ValueConversionError(f"expected a boolean, got {_describe(value)}", raw_value=value)
