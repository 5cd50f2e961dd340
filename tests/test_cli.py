"""Tests for the command-line interface."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from sqlserver_migrator import cli
from sqlserver_migrator.errors import CatalogReadError
from sqlserver_migrator.migration.importer import ImportResult, ImportStep, ReplayFailure
from sqlserver_migrator.snapshot.archive import write_archive
from sqlserver_migrator.snapshot.models import Metadata, SnapshotDocument

CONNECTION_ARGS = ["--server", "db01", "--database", "shop", "--username", "sa", "--password", "secret"]


@pytest.fixture(autouse=True)
def _no_logging_setup():
    """Leave the root logger alone during CLI tests."""
    with patch("sqlserver_migrator.cli._configure_logging"):
        yield


@pytest.fixture
def fake_connection():
    """Patch open_connection to yield a mock connection."""
    conn = MagicMock()

    @contextmanager
    def _open(settings):
        yield conn

    with patch("sqlserver_migrator.cli.open_connection", side_effect=_open) as opener:
        yield opener


@pytest.fixture
def archive(tmp_path) -> str:
    """A small valid archive on disk."""
    doc = SnapshotDocument(metadata=Metadata(database_name="shop"))
    return write_archive(doc, tmp_path / "shop.gz")


def _answer(text: str):
    return patch.object(cli.console, "input", return_value=text)


class TestFormatting:
    """Display helpers."""

    @pytest.mark.parametrize(
        "password,expected",
        [("secret", "s****t"), ("abc", "a*c"), ("ab", "**"), ("a", "**"), ("", "(empty)"), (None, "(empty)")],
    )
    def test_mask_password(self, password, expected):
        assert cli.mask_password(password) == expected

    @pytest.mark.parametrize(
        "size,expected",
        [(512, "512 B"), (1536, "1.5 KB"), (5 * 1024 ** 2, "5.0 MB"), (3 * 1024 ** 3 // 2, "1.5 GB")],
    )
    def test_format_file_size(self, size, expected):
        assert cli.format_file_size(size) == expected

    @pytest.mark.parametrize("seconds,expected", [(4.25, "4.2s"), (59.94, "59.9s"), (60, "1m 0s"), (135.7, "2m 15s")])
    def test_format_duration(self, seconds, expected):
        assert cli.format_duration(seconds) == expected


class TestConfirmOperation:
    """Interactive confirmation."""

    @pytest.mark.parametrize("answer", ["SI", "si", "SÍ", "sí", "YES", "yes", "S", " s "])
    def test_affirmative(self, answer):
        with _answer(answer):
            assert cli.confirm_operation("export") is True

    @pytest.mark.parametrize("answer", ["", "no", "y", "n", "sure"])
    def test_negative(self, answer):
        with _answer(answer):
            assert cli.confirm_operation("export") is False

    def test_end_of_input(self):
        """Closed stdin counts as no."""
        with patch.object(cli.console, "input", side_effect=EOFError):
            assert cli.confirm_operation("export") is False


class TestMain:
    """Argument handling and dispatch."""

    def test_no_arguments_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "--export" in capsys.readouterr().out

    def test_no_command(self):
        """Flags without a command fail."""
        assert cli.main(["--server", "db01"]) == 1

    def test_commands_mutually_exclusive(self):
        with pytest.raises(SystemExit):
            cli.main(["--export", "--verify"])

    def test_missing_connection_values(self, capsys, fake_connection):
        """Missing required flags fail before connecting."""
        assert cli.main(["--export", "--server", "db01", "--force"]) == 1
        assert "--database is required" in capsys.readouterr().out
        fake_connection.assert_not_called()


class TestExportCommand:
    """--export."""

    def test_success(self, tmp_path, fake_connection, capsys):
        """Exports with --force and reports the archive."""
        output = tmp_path / "out.gz"
        output.write_bytes(b"x" * 2048)
        with patch("sqlserver_migrator.cli.export_database", return_value=str(output)) as export:
            code = cli.main(["--export", "--force", "--output", str(output), *CONNECTION_ARGS])
        assert code == 0
        assert export.call_args.args[1] == str(output)
        out = capsys.readouterr().out
        assert "Export complete" in out
        assert "2.0 KB" in out
        assert "s****t" in out
        assert "secret" not in out

    def test_declined_prompt_cancels(self, fake_connection, capsys):
        """Answering no exits 0 without connecting."""
        with _answer("no"):
            assert cli.main(["--export", *CONNECTION_ARGS]) == 0
        fake_connection.assert_not_called()
        assert "cancelled" in capsys.readouterr().out

    def test_confirmed_prompt_runs(self, tmp_path, fake_connection):
        output = tmp_path / "out.gz"
        output.write_bytes(b"x")
        with _answer("si"), patch("sqlserver_migrator.cli.export_database", return_value=str(output)):
            assert cli.main(["--export", *CONNECTION_ARGS]) == 0
        fake_connection.assert_called_once()

    def test_failure_exit_code(self, fake_connection, capsys):
        """Migration errors print the message and exit 1."""
        with patch("sqlserver_migrator.cli.export_database", side_effect=CatalogReadError("query failed")):
            assert cli.main(["--export", "--force", *CONNECTION_ARGS]) == 1
        assert "query failed" in capsys.readouterr().out

    def test_unexpected_error_hint(self, fake_connection, capsys):
        """Unexpected errors suggest --debug."""
        with patch("sqlserver_migrator.cli.export_database", side_effect=RuntimeError("boom")):
            assert cli.main(["--export", "--force", *CONNECTION_ARGS]) == 1
        assert "--debug" in capsys.readouterr().out


class TestImportCommand:
    """--import."""

    def test_requires_backup_file(self, fake_connection, capsys):
        assert cli.main(["--import", "--force", *CONNECTION_ARGS]) == 1
        assert "--backup-file is required" in capsys.readouterr().out
        fake_connection.assert_not_called()

    def test_backup_file_must_exist(self, tmp_path, fake_connection, capsys):
        missing = tmp_path / "missing.gz"
        assert cli.main(["--import", "--force", "--backup-file", str(missing), *CONNECTION_ARGS]) == 1
        assert "not found" in capsys.readouterr().out

    def test_success_with_failures_listed(self, archive, fake_connection, capsys):
        """Non-fatal failures are listed but the exit code is 0."""
        result = ImportResult(
            success=True,
            tables_created=3,
            rows_inserted=8,
            failures=[ReplayFailure(step=ImportStep.VIEWS, name="sales.v_open", message="Invalid column")],
        )
        with patch("sqlserver_migrator.cli.import_archive", return_value=result):
            code = cli.main(["--import", "--force", "--backup-file", archive, *CONNECTION_ARGS])
        assert code == 0
        out = capsys.readouterr().out
        assert "Import complete" in out
        assert "sales.v_open" in out

    def test_failed_import_exit_code(self, archive, fake_connection, capsys):
        """A rolled-back import exits 1."""
        result = ImportResult(success=False, failed_step=ImportStep.DATA, error="truncation")
        with patch("sqlserver_migrator.cli.import_archive", return_value=result):
            code = cli.main(["--import", "--force", "--backup-file", archive, *CONNECTION_ARGS])
        assert code == 1
        out = capsys.readouterr().out
        assert "rolled back" in out
        assert "truncation" in out

    def test_declined_prompt_cancels(self, archive, fake_connection):
        with _answer("n"), patch("sqlserver_migrator.cli.import_archive") as run_import:
            assert cli.main(["--import", "--backup-file", archive, *CONNECTION_ARGS]) == 0
        run_import.assert_not_called()
        fake_connection.assert_not_called()


class TestVerifyCommand:
    """--verify."""

    def test_valid_archive(self, archive, capsys):
        assert cli.main(["--verify", "--backup-file", archive]) == 0
        out = capsys.readouterr().out
        assert "Archive is valid" in out
        assert "shop" in out

    def test_invalid_archive(self, tmp_path, capsys):
        path = tmp_path / "bad.gz"
        path.write_text("not gzip")
        assert cli.main(["--verify", "--backup-file", str(path)]) == 1
        assert "Archive is invalid" in capsys.readouterr().out

    def test_requires_backup_file(self):
        assert cli.main(["--verify"]) == 1
