# src/socrata_sync/engine/transcoder.py
"""Streaming transcoder: upstream JSON in, newline-delimited JSON out.

Bodies arrive as an iterable of byte chunks and are decoded incrementally with
ijson's push parser, so memory use is bounded by one record regardless of
page size. Each decoded record goes through the record transform and, if
kept, is written to the sink immediately as one JSON line.

Two upstream shapes are supported:

- KEYED: ``[{"field": value, ...}, ...]`` as served by ``/resource/{id}.json``
- POSITIONAL: ``{"meta": {"view": {...}}, "data": [[...], ...]}`` as served by
  ``/api/views/{id}/rows.json``. The column order in ``meta`` must precede
  ``data``.
"""

import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Protocol

import ijson
import structlog
from pydantic import ValidationError

from socrata_sync.contracts.enums import UpstreamShape
from socrata_sync.contracts.errors import FieldError, RecordShapeError, SyncError, TransientTransportError
from socrata_sync.contracts.metadata import DatasetMetadata
from socrata_sync.contracts.results import ProgressEvent, TranscodeStats
from socrata_sync.contracts.values import JSONValue, Record, dumps
from socrata_sync.core.schema import OrderedTableSchema, TableSchema
from socrata_sync.engine.transform import transform_keyed, transform_positional

logger = structlog.get_logger(__name__)

DEFAULT_PROGRESS_INTERVAL = 100_000

Event = tuple[str, str, Any]


class TextSink(Protocol):
    """Anything with a text ``write`` (open files, TextIOWrapper, StringIO)."""

    def write(self, s: str, /) -> int: ...


def iter_events(chunks: Iterable[bytes]) -> Iterator[Event]:
    """Yield ijson parse events from a sequence of byte chunks.

    Raises:
        TransientTransportError: The body ended before the JSON document did.
        RecordShapeError: The body is not valid JSON.
    """
    events = ijson.sendable_list()
    parser = ijson.parse_coro(events)
    try:
        for chunk in chunks:
            parser.send(chunk)
            yield from events
            del events[:]
        parser.close()
    except ijson.IncompleteJSONError as e:
        raise TransientTransportError(f"upstream body ended prematurely: {e}") from e
    except ijson.JSONError as e:
        raise RecordShapeError(f"upstream body is not valid JSON: {e}") from e
    yield from events


def _build(event: str, value: Any, events: Iterator[Event]) -> JSONValue:
    """Materialize the value that starts with (event, value)."""
    if event not in ("start_map", "start_array"):
        return value
    builder = ijson.ObjectBuilder()
    builder.event(event, value)
    depth = 1
    for _, nested_event, nested_value in events:
        builder.event(nested_event, nested_value)
        if nested_event in ("start_map", "start_array"):
            depth += 1
        elif nested_event in ("end_map", "end_array"):
            depth -= 1
            if depth == 0:
                return builder.value  # type: ignore[no-any-return]
    raise TransientTransportError("upstream body ended inside a record")


def _expect(events: Iterator[Event], expected: str, where: str) -> None:
    for _, event, _ in events:
        if event != expected:
            raise RecordShapeError(f"expected {expected} at {where}, got {event}")
        return
    raise TransientTransportError(f"upstream body ended before {where}")


def iter_keyed(events: Iterator[Event]) -> Iterator[dict[str, JSONValue]]:
    """Yield the objects of a top-level JSON array."""
    _expect(events, "start_array", "top level")
    for _, event, value in events:
        if event == "end_array":
            return
        if event != "start_map":
            raise RecordShapeError(f"expected an object per record, got {event}")
        record = _build(event, value, events)
        assert isinstance(record, dict)
        yield record
    raise TransientTransportError("upstream body ended before the end of the record array")


def iter_positional(events: Iterator[Event], on_meta: Callable[[DatasetMetadata], None]) -> Iterator[list[JSONValue]]:
    """Yield the rows of a ``{meta, data}`` envelope.

    ``on_meta`` is called once with the view metadata, before any row.
    """
    _expect(events, "start_map", "top level")
    seen_meta = False
    for _, event, key in events:
        if event == "end_map":
            return
        if event != "map_key":
            raise RecordShapeError(f"unexpected {event} in export envelope")
        _, value_event, value = next(events, ("", "", None))
        if not value_event:
            break
        if key == "meta":
            meta = _build(value_event, value, events)
            if not isinstance(meta, dict) or not isinstance(meta.get("view"), dict):
                raise RecordShapeError("export meta block has no view")
            try:
                on_meta(DatasetMetadata.model_validate(meta["view"]))
            except ValidationError as e:
                raise RecordShapeError(f"invalid export metadata: {e}") from e
            seen_meta = True
        elif key == "data":
            if not seen_meta:
                raise RecordShapeError("export data precedes its meta block")
            if value_event != "start_array":
                raise RecordShapeError(f"export data must be an array, got {value_event}")
            for _, row_event, row_value in events:
                if row_event == "end_array":
                    break
                if row_event != "start_array":
                    raise RecordShapeError(f"expected an array per row, got {row_event}")
                row = _build(row_event, row_value, events)
                assert isinstance(row, list)
                yield row
            else:
                break
        else:
            _build(value_event, value, events)
    raise TransientTransportError("upstream body ended inside the export envelope")


class StreamTranscoder:
    """Decode, transform and re-encode one upstream body.

    Example:
        transcoder = StreamTranscoder(schema, on_progress=print)
        with open("out.json", "w") as sink:
            stats = transcoder.transcode(chunks, sink, shape=UpstreamShape.KEYED, expected_rows=500_000)
    """

    def __init__(
        self,
        schema: TableSchema,
        *,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        quiet: bool = False,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {progress_interval}")
        self._schema = schema
        self._progress_interval = progress_interval
        self._quiet = quiet
        self._on_progress = on_progress
        self._clock = clock

    def transcode(
        self,
        chunks: Iterable[bytes],
        sink: TextSink,
        *,
        shape: UpstreamShape = UpstreamShape.KEYED,
        expected_rows: int | None = None,
    ) -> TranscodeStats:
        """Transcode one body into ``sink``, preserving arrival order.

        Args:
            chunks: The upstream body as byte chunks
            sink: Text sink receiving one JSON object per line
            shape: Upstream wire shape
            expected_rows: Total rows expected, for ETA reporting

        Returns:
            Rows read (including skipped ones) and rows written.

        Raises:
            TransientTransportError: The body was cut short. Safe to retry.
            RecordShapeError: The body does not have the expected shape.
            FieldError: A field with the RAISE policy failed.
        """
        events = iter_events(chunks)
        ordered: OrderedTableSchema | None = None

        def bind_columns(metadata: DatasetMetadata) -> None:
            nonlocal ordered
            ordered = self._schema.to_ordered(metadata.columns)
            logger.debug("aligned export columns", columns=len(metadata.columns), fields=ordered.field_names)

        rows_read = 0
        rows_written = 0
        started = self._clock()
        records: Iterator[Any]
        if shape is UpstreamShape.POSITIONAL:
            records = iter_positional(events, bind_columns)
        else:
            records = iter_keyed(events)

        try:
            for raw in records:
                rows_read += 1
                out: Record | None
                if shape is UpstreamShape.POSITIONAL:
                    assert ordered is not None
                    out = transform_positional(raw, ordered)
                else:
                    out = transform_keyed(raw, self._schema)
                if out is not None:
                    sink.write(dumps(out))
                    sink.write("\n")
                    rows_written += 1
                if rows_read % self._progress_interval == 0:
                    self._report(rows_read, started, expected_rows, final=False)
        except SyncError as e:
            e.at_row(rows_read)
            field_context = (
                {"field": e.field_name, "source_field": e.source_field, "value": e.raw_value} if isinstance(e, FieldError) else {}
            )
            logger.error("transcoding failed", row=rows_read, error=str(e), error_type=type(e).__name__, **field_context)
            raise

        if rows_read % self._progress_interval != 0:
            self._report(rows_read, started, expected_rows, final=True)
        return TranscodeStats(rows_read=rows_read, rows_written=rows_written)

    def _report(self, rows: int, started: float, expected_rows: int | None, *, final: bool) -> None:
        if self._quiet:
            return
        elapsed = max(self._clock() - started, 0.0)
        rate = rows / elapsed if elapsed > 0 else 0.0
        remaining: int | None = None
        eta: float | None = None
        if expected_rows is not None and not final:
            remaining = max(expected_rows - rows, 0)
            eta = remaining / rate if rate > 0 else None
        event = ProgressEvent(
            rows_processed=rows,
            elapsed_seconds=elapsed,
            rows_per_second=rate,
            rows_remaining=remaining,
            eta_seconds=eta,
            final=final,
        )
        logger.info(
            "processed rows",
            rows=rows,
            elapsed_seconds=round(elapsed, 1),
            rows_per_second=round(rate, 1),
            remaining=remaining,
            eta_seconds=None if eta is None else round(eta, 1),
        )
        if self._on_progress is not None:
            self._on_progress(event)
