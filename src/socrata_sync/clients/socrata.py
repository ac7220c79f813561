# src/socrata_sync/clients/socrata.py
"""HTTP client for the Socrata Open Data (SODA) API.

Page and export bodies are exposed as byte-chunk iterators so they can be
transcoded without being held in memory. Failures are mapped at this
boundary:

- HTTP status >= 400 or a failed connection: PersistentIOError
- the connection dropping while a body is being read: TransientTransportError
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from socrata_sync.contracts.cursor import SyncCursor
from socrata_sync.contracts.errors import PersistentIOError, TransientTransportError
from socrata_sync.contracts.metadata import DatasetMetadata

logger = structlog.get_logger(__name__)

APP_TOKEN_HEADER = "X-App-Token"

# All declared columns plus system columns (:id, :created_at, ...).
SELECT_ALL = ":*, *"

# Paging is only stable under a deterministic sort.
STABLE_ORDER = ":id"

_CHUNK_SIZE = 64 * 1024


class SocrataClient:
    """Client for one dataset.

    httpx.Client is thread-safe, so one instance is shared by all concurrent
    chunk copies.

    Example:
        with SocrataClient("https://data.example.org", "abcd-1234", app_token=token) as client:
            total = client.count()
            with client.stream_page(SyncCursor(offset=0, limit=1000)) as chunks:
                for chunk in chunks:
                    ...
    """

    def __init__(
        self,
        api_base: str,
        dataset_id: str,
        *,
        app_token: str | None = None,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._dataset_id = dataset_id
        headers = {"Accept": "application/json"}
        if app_token:
            headers[APP_TOKEN_HEADER] = app_token
        self._client = httpx.Client(
            base_url=api_base,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 30.0)),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def dataset_id(self) -> str:
        return self._dataset_id

    def __enter__(self) -> "SocrataClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def _resource_path(self) -> str:
        return f"/resource/{quote(self._dataset_id)}.json"

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise PersistentIOError(f"request to {path} failed: {e}") from e
        _check_status(response)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise PersistentIOError(f"response from {path} is not JSON: {e}") from e

    def metadata(self) -> DatasetMetadata:
        """Dataset metadata from ``/api/views/{id}.json``."""
        payload = self._get_json(f"/api/views/{quote(self._dataset_id)}.json")
        try:
            return DatasetMetadata.model_validate(payload)
        except ValidationError as e:
            raise PersistentIOError(f"unexpected metadata for dataset {self._dataset_id}: {e}") from e

    def count(self, where: str = "") -> int:
        """Rows matching ``where`` (all rows when empty)."""
        params = {"$select": "count(*)"}
        if where:
            params["$where"] = where
        payload = self._get_json(self._resource_path, params)
        try:
            (row,) = payload
            (value,) = row.values()
            return int(value)
        except (TypeError, ValueError, AttributeError) as e:
            raise PersistentIOError(f"unexpected count response {payload!r}") from e

    def example_records(self, limit: int = 10) -> list[dict[str, Any]]:
        """First ``limit`` rows including system fields, for schema inference."""
        payload = self._get_json(self._resource_path, {"$select": SELECT_ALL, "$limit": limit})
        if not isinstance(payload, list):
            raise PersistentIOError(f"expected a list of records, got {type(payload).__name__}")
        return payload

    def page_params(self, cursor: SyncCursor) -> dict[str, Any]:
        params: dict[str, Any] = {
            "$select": SELECT_ALL,
            "$order": STABLE_ORDER,
            "$limit": cursor.limit,
            "$offset": cursor.offset,
        }
        if cursor.where_filter:
            params["$where"] = cursor.where_filter
        return params

    @contextmanager
    def stream_page(self, cursor: SyncCursor) -> Iterator[Iterator[bytes]]:
        """Stream one window of keyed records (``[{...}, ...]``)."""
        with self._stream(self._resource_path, self.page_params(cursor)) as chunks:
            yield chunks

    @contextmanager
    def stream_export(self) -> Iterator[Iterator[bytes]]:
        """Stream the full positional export (``{"meta": ..., "data": [...]}``)."""
        path = f"/api/views/{quote(self._dataset_id)}/rows.json"
        with self._stream(path, {"accessType": "DOWNLOAD"}) as chunks:
            yield chunks

    @contextmanager
    def _stream(self, path: str, params: dict[str, Any]) -> Iterator[Iterator[bytes]]:
        request = self._client.build_request("GET", path, params=params)
        logger.info("connecting", url=str(request.url))
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise PersistentIOError(f"request to {request.url} failed: {e}") from e
        try:
            _check_status(response)
            yield _body_chunks(response)
        finally:
            response.close()


def _check_status(response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise PersistentIOError(f"got unexpected response {response.status_code} from {response.request.url}")


def _body_chunks(response: httpx.Response) -> Iterator[bytes]:
    try:
        yield from response.iter_bytes(_CHUNK_SIZE)
    except (httpx.RemoteProtocolError, httpx.ReadError) as e:
        raise TransientTransportError(f"connection dropped while reading {response.request.url}: {e}") from e
    except httpx.HTTPError as e:
        raise PersistentIOError(f"failed reading {response.request.url}: {e}") from e
