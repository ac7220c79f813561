# src/socrata_sync/engine/resume.py
"""Resume cursor calculation and chunk planning.

An incremental sync copies only rows the warehouse has not seen:

1. missing = upstream count - warehouse count (both under the user filter)
2. if the warehouse already has rows, the newest ``_created_at`` becomes a
   watermark and rows created after it are selected by an extra predicate
3. the missing range is split into fixed-size offset/limit windows

Rows previously dropped by SKIP_ROW are indistinguishable from rows never
copied, so ``missing`` can overstate the remaining work. That is tolerated.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from socrata_sync.contracts.cursor import ResumePlan, SyncCursor

logger = structlog.get_logger(__name__)

# Upstream system column matched against the warehouse watermark column.
UPSTREAM_CREATED_COLUMN = ":created_at"
WATERMARK_COLUMN = "_created_at"

_SOQL_TIMESTAMP = "%Y-%m-%dT%H:%M:%SZ"


def missing_count(source_count: int, target_count: int) -> int:
    """Rows to copy, clamped at zero when the warehouse holds more than upstream."""
    if target_count > source_count:
        logger.warning(
            "warehouse has more rows than upstream; nothing to copy",
            source_count=source_count,
            target_count=target_count,
        )
        return 0
    return source_count - target_count


def watermark_filter(watermark: datetime) -> str:
    """Predicate selecting upstream rows created after ``watermark``.

    The watermark is moved forward one second and truncated to whole seconds.
    Naive datetimes are taken as UTC.
    """
    if watermark.tzinfo is None:
        watermark = watermark.replace(tzinfo=UTC)
    after = (watermark + timedelta(seconds=1)).astimezone(UTC)
    return f"{UPSTREAM_CREATED_COLUMN} >= '{after.strftime(_SOQL_TIMESTAMP)}'"


def combine_filters(user_filter: str, derived_filter: str) -> str:
    """Conjoin the user predicate with a derived one; either may be empty."""
    user_filter = user_filter.strip()
    derived_filter = derived_filter.strip()
    if not user_filter:
        return derived_filter
    if not derived_filter:
        return user_filter
    return f"({user_filter}) and {derived_filter}"


def plan_resume(
    *,
    source_count: int,
    target_count: int,
    user_filter: str,
    fetch_watermark: Callable[[], datetime | None],
) -> ResumePlan:
    """Compute the work for one sync invocation.

    Args:
        source_count: Upstream rows matching the user filter
        target_count: Rows already in the warehouse table
        user_filter: Optional user SoQL predicate
        fetch_watermark: Returns the newest warehouse ``_created_at``, or
            None when there is none yet. Only called when the warehouse
            already has rows and something is missing.
    """
    missing = missing_count(source_count, target_count)
    where = user_filter.strip()
    watermark: datetime | None = None
    if missing and target_count > 0:
        watermark = fetch_watermark()
        if watermark is not None:
            derived = watermark_filter(watermark)
            where = combine_filters(user_filter, derived)
            logger.info("resuming after watermark", watermark=watermark.isoformat(), where=where)
        else:
            logger.info("warehouse rows carry no watermark; copying without one")
    return ResumePlan(
        source_count=source_count,
        target_count=target_count,
        missing_count=missing,
        where_filter=where,
        watermark=watermark,
    )


def plan_chunks(missing: int, page_size: int, where_filter: str = "") -> list[SyncCursor]:
    """Split ``[0, missing)`` into disjoint windows of at most ``page_size`` rows.

    Raises:
        ValueError: If page_size < 1 or missing < 0.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    if missing < 0:
        raise ValueError(f"missing must be >= 0, got {missing}")
    return [
        SyncCursor(offset=offset, limit=min(page_size, missing - offset), where_filter=where_filter)
        for offset in range(0, missing, page_size)
    ]
