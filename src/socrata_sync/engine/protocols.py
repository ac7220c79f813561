# src/socrata_sync/engine/protocols.py
"""Collaborator interfaces used by the orchestrator.

The concrete implementations live in ``socrata_sync.clients``; tests use
in-memory fakes.
"""

from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, TextIO

from socrata_sync.contracts.cursor import SyncCursor
from socrata_sync.contracts.metadata import DatasetMetadata
from socrata_sync.core.schema import TableSchema


class UpstreamSource(Protocol):
    """Paginated upstream API for one dataset."""

    @property
    def dataset_id(self) -> str: ...

    def metadata(self) -> DatasetMetadata: ...

    def count(self, where: str = "") -> int: ...

    def stream_page(self, cursor: SyncCursor) -> AbstractContextManager[Iterable[bytes]]:
        """Keyed records for one window, ordered by a stable sort key."""
        ...

    def stream_export(self) -> AbstractContextManager[Iterable[bytes]]:
        """The full positional export."""
        ...


class Warehouse(Protocol):
    """Append-only destination table."""

    def ensure_dataset(self) -> None: ...

    def ensure_table(self, schema: TableSchema) -> int:
        """Create the table when absent; return its row count."""
        ...

    def max_timestamp(self, column: str) -> datetime | None:
        """Newest value of ``column``; None when there is none yet."""
        ...

    def load_from_uri(self, uri: str) -> str:
        """Append a JSON-lines staging object; return the job id."""
        ...


class StagingStore(Protocol):
    """Write-once staging objects."""

    def object_name(self, key: str) -> str: ...

    def uri(self, name: str) -> str: ...

    def open_writer(self, name: str) -> AbstractContextManager[TextIO]: ...

    def delete(self, name: str) -> None: ...
