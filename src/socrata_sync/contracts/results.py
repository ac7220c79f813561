"""Result and progress types returned across engine boundaries."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProgressEvent:
    """Periodic transcoding progress.

    Emitted every ``progress_interval`` rows and once at the end of a stream.
    ``rows_remaining`` and ``eta_seconds`` are None when the expected total is
    unknown (download mode).
    """

    rows_processed: int
    elapsed_seconds: float
    rows_per_second: float
    rows_remaining: int | None = None
    eta_seconds: float | None = None
    final: bool = False


@dataclass(frozen=True)
class TranscodeStats:
    """Outcome of one transcoded stream.

    rows_read counts every decoded record, including skipped ones.
    """

    rows_read: int
    rows_written: int

    @property
    def rows_skipped(self) -> int:
        return self.rows_read - self.rows_written


@dataclass(frozen=True)
class ChunkResult:
    """Outcome of one chunk copy (fetch, transcode, stage, load, clean up)."""

    offset: int
    limit: int
    rows_read: int
    rows_loaded: int
    staging_uri: str
    attempts: int = 1
    load_job_id: str | None = None


@dataclass
class SyncResult:
    """Outcome of a whole sync or download run."""

    source_count: int = 0
    target_count: int = 0
    missing_count: int = 0
    where_filter: str = ""
    chunks: list[ChunkResult] = field(default_factory=list)

    @property
    def rows_loaded(self) -> int:
        return sum(chunk.rows_loaded for chunk in self.chunks)

    @property
    def rows_read(self) -> int:
        return sum(chunk.rows_read for chunk in self.chunks)
