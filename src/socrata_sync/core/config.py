# src/socrata_sync/core/config.py
"""Settings models and loader.

One settings file describes one dataset sync: where the data comes from, the
BigQuery table it lands in, the staging bucket, tuning knobs and the field
schema. Files may be TOML or YAML and are loaded through Dynaconf, so any
value can be overridden from the environment:

    SOCRATA_SYNC_BIGQUERY__PROJECT_ID=my-project
    SOCRATA_SYNC_SYNC__CONCURRENCY=3

Values may also reference environment variables as ``${VAR}`` or
``${VAR:-default}``.
"""

import os
import re
from pathlib import Path
from typing import Any, Self
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

from socrata_sync.contracts.errors import ConfigurationError
from socrata_sync.core.schema import TableSchema

ENVVAR_PREFIX = "SOCRATA_SYNC"

DEFAULT_STAGING_NAMESPACE = "socrata_to_bigquery"

# CamelCase keys used by older TOML settings files, after lowercasing.
_LEGACY_KEYS: dict[str, str] = {
    "googlestoragebucketname": "google_storage_bucket_name",
    "projectid": "project_id",
    "datasetname": "dataset_name",
    "tablename": "table_name",
    "wherefilter": "where_filter",
}

_SECTIONS = ("bigquery", "sync", "retry")

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


class BigQuerySettings(BaseModel):
    """Destination table coordinates and table-creation options."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    project_id: str = Field(min_length=1, description="Google Cloud project holding the dataset")
    dataset_name: str = Field(min_length=1, description="BigQuery dataset")
    table_name: str = Field(min_length=1, description="BigQuery table, auto-created when absent")
    description: str = Field("", description="Table description used on creation")
    where_filter: str = Field("", description="SoQL predicate restricting which upstream rows are synced")
    location: str | None = Field(None, description="Dataset location for queries and load jobs")
    partition_field: str | None = Field(None, description="DATE/TIMESTAMP field to partition by on creation")
    clustering_fields: list[str] = Field(default_factory=list, max_length=4)

    @property
    def table_id(self) -> str:
        return f"{self.project_id}.{self.dataset_name}.{self.table_name}"


class SyncSettings(BaseModel):
    """Transfer tuning."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    concurrency: int = Field(2, ge=1, description="Chunk copies in flight")
    page_size: int = Field(500_000, ge=1, description="Rows per chunk")
    progress_interval: int = Field(100_000, ge=1, description="Rows between progress reports")
    staging_namespace: str = Field(DEFAULT_STAGING_NAMESPACE, min_length=1)
    gzip: bool = Field(True, description="Gzip staging objects")
    http_timeout_seconds: float = Field(300.0, gt=0)
    acquire_timeout_seconds: float | None = Field(None, gt=0)


class RetrySettings(BaseModel):
    """Whole-chunk retry on truncated upstream pages."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(3, ge=1, description="Total tries per chunk")
    initial_delay_seconds: float = Field(1.0, ge=0)
    max_delay_seconds: float = Field(30.0, ge=0)
    jitter_seconds: float = Field(1.0, ge=0)
    exponential_base: float = Field(2.0, ge=1)


class Settings(BaseModel):
    """A complete dataset sync declaration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    dataset: str = Field(description="URL of the Socrata dataset, e.g. https://data.example.org/d/abcd-1234")
    google_storage_bucket_name: str = Field("", description="Bucket for staging objects")
    bigquery: BigQuerySettings
    sync: SyncSettings = Field(default_factory=SyncSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    schema_fields: dict[str, dict[str, Any]] = Field(alias="schema")

    _table_schema: TableSchema = PrivateAttr()

    @field_validator("dataset")
    @classmethod
    def _validate_dataset_url(cls, v: str) -> str:
        parts = urlsplit(v.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"dataset must be an http(s) URL, got {v!r}")
        if not parts.path.strip("/"):
            raise ValueError(f"dataset URL has no dataset id: {v!r}")
        return v.strip()

    @model_validator(mode="after")
    def _build_table_schema(self) -> Self:
        self._table_schema = TableSchema.from_dict(
            self.schema_fields,
            partition_field=self.bigquery.partition_field,
            clustering_fields=self.bigquery.clustering_fields,
        )
        return self

    @property
    def table_schema(self) -> TableSchema:
        return self._table_schema

    @property
    def dataset_id(self) -> str:
        """Last path segment of the dataset URL (the four-by-four id)."""
        return urlsplit(self.dataset).path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def api_base(self) -> str:
        """Scheme and host of the dataset URL."""
        parts = urlsplit(self.dataset)
        return f"{parts.scheme}://{parts.netloc}"

    def require_bucket(self) -> str:
        if not self.google_storage_bucket_name:
            raise ConfigurationError("google_storage_bucket_name is required to stage data")
        return self.google_storage_bucket_name

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Self:
        """Validate raw settings, reporting problems as ConfigurationError."""
        try:
            return cls.model_validate(_normalize_keys(raw))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Lowercase section keys and translate legacy CamelCase names.

    Field names under ``schema`` are preserved as written.
    """
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = key.lower()
        name = _LEGACY_KEYS.get(name, name)
        if name in _SECTIONS and isinstance(value, dict):
            value = {_LEGACY_KEYS.get(k.lower(), k.lower()): v for k, v in value.items()}
        out[name] = value
    return out


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} in string values.

    Unknown variables without a default are left as written.
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)

    def expand(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        if isinstance(value, dict):
            return {k: expand(v) for k, v in value.items()}
        if isinstance(value, list):
            return [expand(item) for item in value]
        return value

    return {k: expand(v) for k, v in config.items()}


def load_settings(config_path: Path) -> Settings:
    """Load a settings file with environment variable overrides.

    Precedence, highest first:
    1. Environment variables (SOCRATA_SYNC_*, nested with ``__``)
    2. The settings file (TOML or YAML, by extension)
    3. Model defaults

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        ConfigurationError: If the settings fail validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files.
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix=ENVVAR_PREFIX,
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return Settings.from_dict(_expand_env_vars(raw_config))
