# src/socrata_sync/engine/orchestrator.py
"""Chunk copy orchestration and the two run modes.

One chunk copy is: fetch a window of upstream rows, transcode it into its own
staging object, append that object to the warehouse table, delete it.

Staging object lifecycle:
- the body cannot be opened: no object is created
- transcoding fails: the partial object is kept and its URI logged
- no rows written: nothing is loaded, the object is deleted
- load attempted: the object is deleted whether the load succeeded or not

A chunk whose upstream page is cut short is retried from the start, up to the
retry ceiling; exhaustion becomes PersistentIOError. Every other error is
fatal on the first occurrence.

Runs are not transactional. When a chunk fails, chunks already loaded stay in
the warehouse and the next sync resumes after them.
"""

import gzip
from collections.abc import Callable, Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from functools import partial
from pathlib import Path

import structlog

from socrata_sync.contracts.cursor import SyncCursor
from socrata_sync.contracts.enums import UpstreamShape
from socrata_sync.contracts.errors import PersistentIOError, TransientTransportError
from socrata_sync.contracts.results import ChunkResult, SyncResult, TranscodeStats
from socrata_sync.core.config import Settings
from socrata_sync.engine.protocols import StagingStore, UpstreamSource, Warehouse
from socrata_sync.engine.resume import WATERMARK_COLUMN, plan_chunks, plan_resume
from socrata_sync.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from socrata_sync.engine.transcoder import StreamTranscoder
from socrata_sync.pooling import PoolConfig, PooledExecutor

logger = structlog.get_logger(__name__)

_FILE_CHUNK_SIZE = 64 * 1024

BodyOpener = Callable[[], AbstractContextManager[Iterable[bytes]]]


@contextmanager
def open_export_file(path: Path) -> Iterator[Iterator[bytes]]:
    """Byte chunks of a local export file, transparently gunzipped for ``.gz``."""
    try:
        handle = gzip.open(path, "rb") if path.suffix == ".gz" else path.open("rb")
    except OSError as e:
        raise PersistentIOError(f"cannot open export file {path}: {e}") from e

    def chunks() -> Iterator[bytes]:
        try:
            while block := handle.read(_FILE_CHUNK_SIZE):
                yield block
        except (OSError, EOFError) as e:
            raise PersistentIOError(f"cannot read export file {path}: {e}") from e

    with handle:
        yield chunks()


class ChunkCopier:
    """Copies upstream windows into the warehouse through staging objects."""

    def __init__(
        self,
        *,
        source: UpstreamSource,
        warehouse: Warehouse,
        staging: StagingStore,
        transcoder: StreamTranscoder,
        retry: RetryManager | None = None,
    ) -> None:
        self._source = source
        self._warehouse = warehouse
        self._staging = staging
        self._transcoder = transcoder
        self._retry = retry or RetryManager(RetryConfig())

    def stage_and_load(
        self,
        key: str,
        open_body: BodyOpener,
        *,
        shape: UpstreamShape,
        expected_rows: int | None = None,
    ) -> tuple[TranscodeStats, str, str | None]:
        """Transcode one body into a staging object and load it.

        Returns:
            Transcode stats, the staging URI and the load job id (None when
            nothing was loaded).
        """
        name = self._staging.object_name(key)
        uri = self._staging.uri(name)
        with open_body() as chunks, self._staging.open_writer(name) as sink:
            try:
                stats = self._transcoder.transcode(chunks, sink, shape=shape, expected_rows=expected_rows)
            except Exception:
                # The writer is open here, so the object exists.
                logger.error("staging object kept for inspection", uri=uri)
                raise
        logger.info("staged rows", uri=uri, rows_read=stats.rows_read, rows_written=stats.rows_written)

        job_id: str | None = None
        try:
            if stats.rows_written:
                job_id = self._warehouse.load_from_uri(uri)
            else:
                logger.info("no rows to load", uri=uri)
        except BaseException:
            self._delete_quietly(name, uri)
            raise
        self._staging.delete(name)
        return stats, uri, job_id

    def _delete_quietly(self, name: str, uri: str) -> None:
        try:
            self._staging.delete(name)
        except PersistentIOError as e:
            logger.error("could not delete staging object", uri=uri, error=str(e))

    def copy_once(self, cursor: SyncCursor) -> ChunkResult:
        """One attempt at one window, without retry."""
        with structlog.contextvars.bound_contextvars(offset=cursor.offset, limit=cursor.limit):
            stats, uri, job_id = self.stage_and_load(
                f"{self._source.dataset_id}-{cursor.offset}",
                partial(self._source.stream_page, cursor),
                shape=UpstreamShape.KEYED,
                expected_rows=cursor.limit,
            )
        return ChunkResult(
            offset=cursor.offset,
            limit=cursor.limit,
            rows_read=stats.rows_read,
            rows_loaded=stats.rows_written,
            staging_uri=uri,
            load_job_id=job_id,
        )

    def copy(self, cursor: SyncCursor) -> ChunkResult:
        """Copy one window, retrying the whole chunk on truncated pages.

        Raises:
            PersistentIOError: Every attempt was truncated, or a fetch, stage
                or load step failed.
            SyncError: Any other fatal error (configuration, RAISE policy).
        """
        attempts = 0

        def attempt() -> ChunkResult:
            nonlocal attempts
            attempts += 1
            return self.copy_once(cursor)

        def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.warning(
                "chunk truncated",
                offset=cursor.offset,
                end=cursor.end,
                attempt=attempt_number,
                max_attempts=self._retry.max_attempts,
                error=str(error),
            )

        try:
            result = self._retry.execute_with_retry(
                attempt,
                is_retryable=lambda e: isinstance(e, TransientTransportError),
                on_retry=on_retry,
            )
        except MaxRetriesExceeded as e:
            raise PersistentIOError(
                f"chunk {cursor.offset}-{cursor.end} failed after {e.attempts} attempts: {e.last_error}"
            ) from e.last_error
        logger.info("chunk committed", offset=cursor.offset, end=cursor.end, rows=result.rows_loaded, attempts=attempts)
        return replace(result, attempts=attempts)


def _log_dataset(source: UpstreamSource) -> None:
    metadata = source.metadata()
    modified = metadata.last_modified
    logger.info(
        "upstream dataset",
        dataset_id=metadata.id,
        name=metadata.name,
        last_modified=modified.isoformat() if modified else None,
    )


def run_sync(
    settings: Settings,
    *,
    source: UpstreamSource,
    warehouse: Warehouse,
    staging: StagingStore,
    transcoder: StreamTranscoder,
    concurrency: int | None = None,
    page_size: int | None = None,
    retry: RetryManager | None = None,
) -> SyncResult:
    """Incrementally copy rows the warehouse has not seen yet.

    Args:
        settings: Validated settings
        source: Upstream API client
        warehouse: Destination table
        staging: Staging object store
        transcoder: Configured transcoder (progress, schema)
        concurrency: Overrides ``sync.concurrency``
        page_size: Overrides ``sync.page_size``
        retry: Overrides the retry policy from ``retry`` settings

    Raises:
        SyncError: On the first fatal error. Chunks loaded before it stay loaded.
    """
    schema = settings.table_schema
    concurrency = concurrency or settings.sync.concurrency
    page_size = page_size or settings.sync.page_size
    retry = retry or RetryManager(RetryConfig.from_settings(settings.retry))
    user_filter = settings.bigquery.where_filter

    _log_dataset(source)
    warehouse.ensure_dataset()
    target_count = warehouse.ensure_table(schema)
    source_count = source.count(user_filter)

    plan = plan_resume(
        source_count=source_count,
        target_count=target_count,
        user_filter=user_filter,
        fetch_watermark=partial(warehouse.max_timestamp, WATERMARK_COLUMN),
    )
    logger.info(
        "sync plan",
        source_count=plan.source_count,
        target_count=plan.target_count,
        missing=plan.missing_count,
        where=plan.where_filter or None,
    )
    result = SyncResult(
        source_count=plan.source_count,
        target_count=plan.target_count,
        missing_count=plan.missing_count,
        where_filter=plan.where_filter,
    )
    if plan.is_complete:
        logger.info("0 out-of-sync records found; sync complete")
        return result

    cursors = plan_chunks(plan.missing_count, page_size, plan.where_filter)
    copier = ChunkCopier(source=source, warehouse=warehouse, staging=staging, transcoder=transcoder, retry=retry)
    pool_config = PoolConfig(pool_size=concurrency, acquire_timeout_seconds=settings.sync.acquire_timeout_seconds)
    logger.info("copying chunks", chunks=len(cursors), page_size=page_size, concurrency=concurrency)
    with PooledExecutor(pool_config) as executor:
        result.chunks = executor.execute_all([partial(copier.copy, cursor) for cursor in cursors])
        logger.debug("pool stats", **executor.get_stats())

    logger.info("sync complete", chunks=len(result.chunks), rows_loaded=result.rows_loaded, rows_read=result.rows_read)
    return result


def run_download(
    settings: Settings,
    *,
    source: UpstreamSource,
    warehouse: Warehouse,
    staging: StagingStore,
    transcoder: StreamTranscoder,
    export_file: Path | None = None,
) -> SyncResult:
    """Load a full export, from a local file or streamed from upstream.

    No resume logic: every exported row is appended.
    """
    schema = settings.table_schema
    _log_dataset(source)
    warehouse.ensure_dataset()
    target_count = warehouse.ensure_table(schema)

    open_body: BodyOpener
    if export_file is not None:
        logger.info("reading export file", path=str(export_file))
        open_body = partial(open_export_file, export_file)
    else:
        open_body = source.stream_export

    copier = ChunkCopier(source=source, warehouse=warehouse, staging=staging, transcoder=transcoder)
    stats, uri, job_id = copier.stage_and_load(source.dataset_id, open_body, shape=UpstreamShape.POSITIONAL)

    result = SyncResult(target_count=target_count)
    result.chunks.append(
        ChunkResult(
            offset=0,
            limit=max(stats.rows_read, 1),
            rows_read=stats.rows_read,
            rows_loaded=stats.rows_written,
            staging_uri=uri,
            load_job_id=job_id,
        )
    )
    logger.info("download complete", rows_read=stats.rows_read, rows_loaded=stats.rows_written)
    return result
