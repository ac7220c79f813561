# src/socrata_sync/cli.py
"""socrata-sync command line interface.

Entry point for the socrata-sync CLI tool. This module is the only place
that turns errors into exit codes; everything below it raises.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError

from socrata_sync import __version__
from socrata_sync.contracts.errors import ConfigurationError, FieldError, SyncError
from socrata_sync.contracts.results import SyncResult
from socrata_sync.core.config import Settings, load_settings

if TYPE_CHECKING:
    from socrata_sync.clients.bigquery import BigQueryWarehouse
    from socrata_sync.clients.socrata import SocrataClient
    from socrata_sync.clients.storage import GCSStagingStore
    from socrata_sync.engine.transcoder import StreamTranscoder

__all__ = ["app"]

APP_TOKEN_ENVVAR = "SOCRATA_APP_TOKEN"

app = typer.Typer(
    name="socrata-sync",
    help="Replicate Socrata open datasets into BigQuery.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"socrata-sync version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file without overriding existing ones.

    Raises:
        typer.Exit: If an explicit env_file doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs.",
    ),
) -> None:
    """Replicate Socrata open datasets into BigQuery."""
    from socrata_sync.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load_or_exit(settings_path: Path) -> Settings:
    """Load a settings file, reporting any problem and exiting 1."""
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings_path}: {e.problem}", err=True)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings_path}", err=True)
    except ConfigurationError as e:
        typer.echo(f"Configuration error in {settings_path}:", err=True)
        typer.echo(f"  {e}", err=True)
    raise typer.Exit(1)


def _build_runtime(
    settings: Settings,
    *,
    app_token: str | None,
    quiet: bool,
) -> tuple[SocrataClient, BigQueryWarehouse, GCSStagingStore, StreamTranscoder]:
    from socrata_sync.clients.bigquery import BigQueryWarehouse
    from socrata_sync.clients.socrata import SocrataClient
    from socrata_sync.clients.storage import GCSStagingStore
    from socrata_sync.engine.transcoder import StreamTranscoder

    source = SocrataClient(
        settings.api_base,
        settings.dataset_id,
        app_token=app_token,
        timeout=settings.sync.http_timeout_seconds,
    )
    warehouse = BigQueryWarehouse(settings.bigquery)
    staging = GCSStagingStore(
        settings.require_bucket(),
        namespace=settings.sync.staging_namespace,
        run_started=datetime.now(UTC),
        compress=settings.sync.gzip,
        project=settings.bigquery.project_id,
    )
    transcoder = StreamTranscoder(
        settings.table_schema,
        progress_interval=settings.sync.progress_interval,
        quiet=quiet,
    )
    return source, warehouse, staging, transcoder


def _report(result: SyncResult) -> None:
    typer.echo(f"Chunks: {len(result.chunks)}")
    typer.echo(f"Rows read: {result.rows_read}")
    typer.echo(f"Rows loaded: {result.rows_loaded}")


def _fail(e: Exception) -> typer.Exit:
    details: list[str] = []
    row = getattr(e, "row_number", None)
    if row is not None:
        details.append(f"row {row}")
    if isinstance(e, FieldError) and e.field_name is not None:
        details.append(f"field {e.field_name!r} from {e.source_field!r}")
        details.append(f"value {e.raw_value!r}")
    where = f" ({', '.join(details)})" if details else ""
    typer.echo(f"Error: {e}{where}", err=True)
    return typer.Exit(1)


_SETTINGS_OPTION = typer.Option(..., "--settings", "-s", help="Path to settings file (TOML or YAML).")
_TOKEN_OPTION = typer.Option(None, "--socrata-app-token", envvar=APP_TOKEN_ENVVAR, help="Socrata app token.")
_QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Disable progress reporting.")


@app.command()
def sync(
    settings: Path = _SETTINGS_OPTION,
    app_token: str | None = _TOKEN_OPTION,
    quiet: bool = _QUIET_OPTION,
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=1, help="Chunk copies in flight."),
    page_size: int | None = typer.Option(None, "--page-size", min=1, help="Rows per chunk."),
) -> None:
    """Copy rows the BigQuery table does not have yet."""
    from socrata_sync.engine.orchestrator import run_sync

    config = _load_or_exit(settings.expanduser())
    try:
        source, warehouse, staging, transcoder = _build_runtime(config, app_token=app_token, quiet=quiet)
        with source:
            result = run_sync(
                config,
                source=source,
                warehouse=warehouse,
                staging=staging,
                transcoder=transcoder,
                concurrency=concurrency,
                page_size=page_size,
            )
    except SyncError as e:
        raise _fail(e) from None

    if result.missing_count == 0:
        typer.echo("Already in sync.")
        return
    _report(result)


@app.command()
def download(
    settings: Path = _SETTINGS_OPTION,
    app_token: str | None = _TOKEN_OPTION,
    quiet: bool = _QUIET_OPTION,
    download_file: Path | None = typer.Option(
        None,
        "--download-file",
        help="Load a previously downloaded rows.json export (.gz allowed) instead of streaming it.",
    ),
) -> None:
    """Load the full dataset export into BigQuery."""
    from socrata_sync.engine.orchestrator import run_download

    config = _load_or_exit(settings.expanduser())
    try:
        source, warehouse, staging, transcoder = _build_runtime(config, app_token=app_token, quiet=quiet)
        with source:
            result = run_download(
                config,
                source=source,
                warehouse=warehouse,
                staging=staging,
                transcoder=transcoder,
                export_file=download_file.expanduser() if download_file else None,
            )
    except SyncError as e:
        raise _fail(e) from None
    _report(result)


@app.command()
def validate(
    settings: Path = _SETTINGS_OPTION,
) -> None:
    """Validate a settings file without contacting any service."""
    config = _load_or_exit(settings.expanduser())
    typer.echo(f"Settings valid: {settings}")
    typer.echo(f"  Dataset: {config.dataset_id} ({config.api_base})")
    typer.echo(f"  Table: {config.bigquery.table_id}")
    typer.echo(f"  Fields: {len(config.table_schema)}")


@app.command()
def init(
    dataset_url: str = typer.Argument(..., help="Dataset URL, e.g. https://data.example.org/d/abcd-1234"),
    app_token: str | None = _TOKEN_OPTION,
    project_id: str = typer.Option("", "--project-id", help="BigQuery project."),
    bq_dataset: str = typer.Option("", "--bq-dataset", help="BigQuery dataset."),
    bucket: str = typer.Option("", "--bucket", help="Staging bucket."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Settings file to write (default: <table name>.yaml).",
    ),
    stdout: bool = typer.Option(False, "--stdout", help="Print the settings instead of writing a file."),
    sample_size: int = typer.Option(10, "--sample-size", min=1, help="Records sampled for example values."),
) -> None:
    """Generate a starting settings file from a live dataset."""
    from urllib.parse import urlsplit

    import yaml

    from socrata_sync.clients.socrata import SocrataClient
    from socrata_sync.core.inference import collect_examples, new_settings_document

    parts = urlsplit(dataset_url)
    dataset_id = parts.path.rstrip("/").rsplit("/", 1)[-1]
    if parts.scheme not in ("http", "https") or not parts.netloc or not dataset_id:
        typer.echo(f"Error: not a dataset URL: {dataset_url}", err=True)
        raise typer.Exit(1)

    try:
        with SocrataClient(f"{parts.scheme}://{parts.netloc}", dataset_id, app_token=app_token) as client:
            metadata = client.metadata()
            examples = collect_examples(client.example_records(sample_size))
        document = new_settings_document(
            dataset_url,
            metadata,
            examples,
            project_id=project_id,
            dataset_name=bq_dataset,
            bucket=bucket,
        )
    except SyncError as e:
        raise _fail(e) from None

    text = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    if stdout:
        typer.echo(text, nl=False)
        return

    target = output or Path(f"{document['bigquery']['table_name']}.yaml")
    if target.exists():
        typer.echo(f"Error: {target} already exists", err=True)
        raise typer.Exit(1)
    target.write_text(text, encoding="utf-8")
    typer.echo(f"Wrote {target}")
