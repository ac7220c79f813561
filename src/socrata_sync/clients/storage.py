# src/socrata_sync/clients/storage.py
"""Cloud Storage staging for chunk loads.

Each chunk is written to its own object, named from a fixed namespace, the
run timestamp and a per-chunk key, so concurrent chunks never share an object:

    socrata_to_bigquery/20240131-154502/abcd-1234-500000.json.gz
"""

import gzip
import io
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TextIO

import structlog
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage

from socrata_sync.contracts.errors import PersistentIOError

logger = structlog.get_logger(__name__)

CONTENT_TYPE = "application/json"

_RUN_STAMP = "%Y%m%d-%H%M%S"


def run_stamp(now: datetime) -> str:
    return now.strftime(_RUN_STAMP)


class GCSStagingStore:
    """Write-once staging objects in one bucket.

    The client is created lazily on first use.
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        namespace: str,
        run_started: datetime,
        compress: bool = True,
        client: storage.Client | None = None,
        project: str | None = None,
    ) -> None:
        self._bucket_name = bucket_name
        self._namespace = namespace.strip("/")
        self._stamp = run_stamp(run_started)
        self._compress = compress
        self._client = client
        self._project = project

    def initialize_client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client(project=self._project)
        return self._client

    def object_name(self, key: str) -> str:
        suffix = ".json.gz" if self._compress else ".json"
        return f"{self._namespace}/{self._stamp}/{key}{suffix}"

    def uri(self, name: str) -> str:
        return f"gs://{self._bucket_name}/{name}"

    @contextmanager
    def open_writer(self, name: str) -> Iterator[TextIO]:
        """Open a staging object for text writing.

        The object is finalized when the context exits, also on error, so a
        failed chunk leaves a partial object behind for inspection.
        """
        blob = self.initialize_client().bucket(self._bucket_name).blob(name)
        blob.content_type = CONTENT_TYPE
        logger.info("writing staging object", uri=self.uri(name))
        try:
            if not self._compress:
                with blob.open("wt", ignore_flush=True, encoding="utf-8") as text:
                    yield text
                return
            blob.content_encoding = "gzip"
            with (
                blob.open("wb", ignore_flush=True) as raw,
                gzip.GzipFile(fileobj=raw, mode="wb") as compressed,
                io.TextIOWrapper(compressed, encoding="utf-8") as text,
            ):
                yield text
        except GoogleAPIError as e:
            raise PersistentIOError(f"Cloud Storage write failed for {self.uri(name)}: {e}") from e

    def delete(self, name: str) -> None:
        """Delete a staging object. A missing object is not an error."""
        blob = self.initialize_client().bucket(self._bucket_name).blob(name)
        try:
            blob.delete()
        except NotFound:
            logger.debug("staging object already gone", uri=self.uri(name))
            return
        except GoogleAPIError as e:
            raise PersistentIOError(f"Cloud Storage delete failed for {self.uri(name)}: {e}") from e
        logger.debug("deleted staging object", uri=self.uri(name))
