"""Resume cursor contracts.

A sync invocation computes one ResumePlan, then splits the missing range into
SyncCursor windows. Both are immutable for the rest of the run.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class SyncCursor:
    """One offset/limit window of upstream rows, fetched as a unit.

    Attributes:
        offset: First upstream row of the window (0-based)
        limit: Number of rows in the window (>= 1)
        where_filter: SoQL predicate applied to the page request
    """

    offset: int
    limit: int
    where_filter: str = ""

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")

    @property
    def end(self) -> int:
        """Exclusive end of the window."""
        return self.offset + self.limit


@dataclass(frozen=True, slots=True)
class ResumePlan:
    """How much to copy and which predicate selects unseen rows.

    missing_count may overstate real work: rows dropped by SKIP_ROW earlier
    look identical to rows never copied.
    """

    source_count: int
    target_count: int
    missing_count: int
    where_filter: str
    watermark: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.missing_count == 0
