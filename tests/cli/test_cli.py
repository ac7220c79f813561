# tests/cli/test_cli.py
"""Tests for the socrata-sync CLI."""

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from socrata_sync import __version__
from socrata_sync.cli import app
from socrata_sync.contracts.errors import PersistentIOError, ValueConversionError
from socrata_sync.contracts.metadata import ColumnMetadata, DatasetMetadata
from socrata_sync.contracts.results import ChunkResult, SyncResult

runner = CliRunner()


@pytest.fixture
def settings_file(tmp_path: Path, settings_dict: dict[str, Any]) -> Path:
    path = tmp_path / "permits.yaml"
    path.write_text(yaml.safe_dump(settings_dict))
    return path


def _result(missing: int, loaded: int) -> SyncResult:
    result = SyncResult(source_count=10, target_count=10 - missing, missing_count=missing)
    if loaded:
        result.chunks.append(ChunkResult(offset=0, limit=missing, rows_read=loaded, rows_loaded=loaded, staging_uri="gs://b/o"))
    return result


class TestCallback:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "absent.env"), "validate", "-s", "x.yaml"])

        assert result.exit_code == 1
        assert ".env file not found" in result.output


class TestValidateCommand:
    def test_valid_settings(self, settings_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", "--settings", str(settings_file)])

        assert result.exit_code == 0
        assert "Settings valid" in result.output
        assert "abcd-1234" in result.output
        assert "my-project.open_data.permits_abcd_1234" in result.output
        assert "Fields: 5" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "Settings file not found" in result.output

    def test_invalid_settings(self, tmp_path: Path, settings_dict: dict[str, Any]) -> None:
        settings_dict["schema"]["opened"].pop("time_format")
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(settings_dict))

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("bigquery:\n  project_id: [unclosed")

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(path)])

        assert result.exit_code == 1


class TestSyncCommand:
    def test_reports_loaded_rows(self, settings_file: Path) -> None:
        with patch("socrata_sync.engine.orchestrator.run_sync", return_value=_result(4, 4)) as run_sync:
            result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(settings_file), "-q", "-c", "3", "--page-size", "100"])

        assert result.exit_code == 0
        assert "Rows loaded: 4" in result.output
        kwargs = run_sync.call_args.kwargs
        assert kwargs["concurrency"] == 3
        assert kwargs["page_size"] == 100

    def test_already_in_sync(self, settings_file: Path) -> None:
        with patch("socrata_sync.engine.orchestrator.run_sync", return_value=_result(0, 0)):
            result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(settings_file)])

        assert result.exit_code == 0
        assert "Already in sync." in result.output

    def test_fatal_error_exits_1(self, settings_file: Path) -> None:
        error = PersistentIOError("chunk 0-4 failed after 3 attempts: cut short")
        with patch("socrata_sync.engine.orchestrator.run_sync", side_effect=error):
            result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(settings_file)])

        assert result.exit_code == 1
        assert "Error: chunk 0-4 failed after 3 attempts" in result.output

    def test_row_number_is_reported(self, settings_file: Path) -> None:
        error = ValueConversionError("cannot parse 'nope'").at_row(17)
        with patch("socrata_sync.engine.orchestrator.run_sync", side_effect=error):
            result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(settings_file)])

        assert result.exit_code == 1
        assert "(row 17)" in result.output

    def test_field_failure_names_field_and_value(self, settings_file: Path) -> None:
        error = ValueConversionError("invalid number 'abc'", raw_value="abc").for_field("amount", "amt", "abc").at_row(2)
        with patch("socrata_sync.engine.orchestrator.run_sync", side_effect=error):
            result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(settings_file)])

        assert result.exit_code == 1
        assert "Error: invalid number 'abc' (row 2, field 'amount' from 'amt', value 'abc')" in result.output

    def test_missing_bucket(self, tmp_path: Path, settings_dict: dict[str, Any]) -> None:
        settings_dict["google_storage_bucket_name"] = ""
        path = tmp_path / "nobucket.yaml"
        path.write_text(yaml.safe_dump(settings_dict))

        result = runner.invoke(app, ["--no-dotenv", "sync", "-s", str(path)])

        assert result.exit_code == 1
        assert "google_storage_bucket_name is required" in result.output


class TestDownloadCommand:
    def test_passes_the_export_file(self, tmp_path: Path, settings_file: Path) -> None:
        export = tmp_path / "rows.json.gz"
        with patch("socrata_sync.engine.orchestrator.run_download", return_value=_result(2, 2)) as run_download:
            result = runner.invoke(app, ["--no-dotenv", "download", "-s", str(settings_file), "--download-file", str(export)])

        assert result.exit_code == 0
        assert "Rows loaded: 2" in result.output
        assert run_download.call_args.kwargs["export_file"] == export

    def test_fatal_error_exits_1(self, settings_file: Path) -> None:
        with patch("socrata_sync.engine.orchestrator.run_download", side_effect=PersistentIOError("load failed")):
            result = runner.invoke(app, ["--no-dotenv", "download", "-s", str(settings_file)])

        assert result.exit_code == 1
        assert "Error: load failed" in result.output


class TestInitCommand:
    @pytest.fixture
    def socrata(self) -> Iterator[MagicMock]:
        client = MagicMock()
        client.metadata.return_value = DatasetMetadata(
            id="abcd-1234",
            name="Building Permits",
            columns=(
                ColumnMetadata(id=1, field_name="permit_no", data_type_name="text", name="Permit Number"),
                ColumnMetadata(id=2, field_name="fee", data_type_name="number", name="Fee"),
            ),
        )
        client.example_records.return_value = [{"permit_no": "P-1", "fee": "12.50"}]
        with patch("socrata_sync.clients.socrata.SocrataClient") as client_cls:
            client_cls.return_value.__enter__.return_value = client
            yield client_cls

    def test_prints_settings(self, socrata: MagicMock) -> None:
        result = runner.invoke(
            app,
            ["--no-dotenv", "init", "https://data.example.org/d/abcd-1234", "--project-id", "my-project", "--stdout"],
        )

        assert result.exit_code == 0
        document = yaml.safe_load(result.output)
        assert document["dataset"] == "https://data.example.org/d/abcd-1234"
        assert document["bigquery"]["project_id"] == "my-project"
        assert document["bigquery"]["table_name"] == "building_permits_abcd_1234"
        assert document["schema"]["fee"]["bigquery_type"] == "NUMERIC"
        socrata.assert_called_once_with("https://data.example.org", "abcd-1234", app_token=None)

    def test_writes_settings_file(self, tmp_path: Path, socrata: MagicMock) -> None:
        target = tmp_path / "permits.yaml"

        result = runner.invoke(app, ["--no-dotenv", "init", "https://data.example.org/d/abcd-1234", "-o", str(target)])

        assert result.exit_code == 0
        assert yaml.safe_load(target.read_text())["bigquery"]["table_name"] == "building_permits_abcd_1234"

    def test_refuses_to_overwrite(self, tmp_path: Path, socrata: MagicMock) -> None:
        target = tmp_path / "permits.yaml"
        target.write_text("keep me")

        result = runner.invoke(app, ["--no-dotenv", "init", "https://data.example.org/d/abcd-1234", "-o", str(target)])

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert target.read_text() == "keep me"

    def test_rejects_non_url(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "init", "abcd-1234"])

        assert result.exit_code == 1
        assert "not a dataset URL" in result.output
