"""CLI for exporting, importing, and verifying SQL Server snapshot archives.

Usage:
    sqlserver-migrator --export --server db01 --database shop --username sa --password ...
    sqlserver-migrator --export --server db01 --instance SQLEXPRESS --database shop ...
    sqlserver-migrator --import --backup-file sqlserver_backup_shop_20240301_140509.gz \\
        --server db02 --database shop_copy --username sa --password ...
    sqlserver-migrator --verify --backup-file sqlserver_backup_shop_20240301_140509.gz
    sqlserver-migrator --export --profile staging --force

Commands:
    --export  - Export a database to a compressed archive
    --import  - Import an archive into a database (single transaction)
    --verify  - Check an archive without touching any database
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from sqlserver_migrator.adapters import SqlServerCatalogReader, SqlServerTarget
from sqlserver_migrator.config import DEFAULT_CONFIG_FILE, ConnectionSettings
from sqlserver_migrator.errors import MigrationError
from sqlserver_migrator.factory import build_settings, open_connection
from sqlserver_migrator.migration import export_database, import_archive, verify_archive

console = Console()

AFFIRMATIVE_ANSWERS = frozenset({"SI", "SÍ", "YES", "S"})


# ============================================================================
# Formatting helpers
# ============================================================================


def mask_password(password: str | None) -> str:
    """Mask a password for display, keeping the first and last character.

    Example:
        >>> mask_password("secret")
        's****t'
        >>> mask_password("ab")
        '**'
    """
    if not password:
        return "(empty)"
    if len(password) <= 2:
        return "**"
    return password[0] + "*" * (len(password) - 2) + password[-1]


def format_file_size(size: int) -> str:
    """Human-readable file size.

    Example:
        >>> format_file_size(1536)
        '1.5 KB'
    """
    if size < 1024:
        return f"{size} B"
    if size < 1024 ** 2:
        return f"{size / 1024:.1f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.1f} MB"
    return f"{size / 1024 ** 3:.1f} GB"


def format_duration(seconds: float) -> str:
    """Elapsed time as ``Xm Ys`` from one minute up, else ``X.Ys``."""
    if seconds >= 60:
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs}s"
    return f"{seconds:.1f}s"


def confirm_operation(description: str) -> bool:
    """Ask the user to confirm a destructive or long-running operation.

    Accepts SI, SÍ, YES or S (any case).  End of input counts as "no".
    """
    try:
        answer = console.input(f"[bold yellow]?[/bold yellow] Confirm {description}? (yes/no): ")
    except EOFError:
        return False
    return answer.strip().upper() in AFFIRMATIVE_ANSWERS


def _print_connection(title: str, settings: ConnectionSettings) -> None:
    table = Table(title=title, show_header=False, title_justify="left")
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    table.add_row("Server", settings.display_target())
    table.add_row("Database", settings.database)
    table.add_row("Username", settings.username)
    table.add_row("Password", mask_password(settings.password))
    table.add_row("Driver", settings.driver)
    console.print(table)


# ============================================================================
# Argument validation
# ============================================================================


def _resolve_settings(args: argparse.Namespace) -> ConnectionSettings:
    """Merge profile values and command-line flags into connection settings.

    Raises:
        ConfigurationError: If required values are missing or invalid
    """
    return build_settings(
        profile=args.profile,
        config_path=args.config,
        server=args.server,
        port=args.port,
        instance=args.instance,
        database=args.database,
        username=args.username,
        password=args.password,
        driver=args.driver,
    )


def _require_backup_file(args: argparse.Namespace) -> Path | None:
    if not args.backup_file:
        console.print("[red]Error: --backup-file is required[/red]")
        return None
    path = Path(args.backup_file)
    if not path.is_file():
        console.print(f"[red]Error: backup file not found: {path}[/red]")
        return None
    return path


# ============================================================================
# Command implementations
# ============================================================================


def cmd_export(args: argparse.Namespace) -> int:
    """Export the source database to an archive.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success or cancel, 1 on failure.
    """
    settings = _resolve_settings(args)
    _print_connection("Export source", settings)

    if not args.force and not confirm_operation(f"export of database '{settings.database}'"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        return 0

    started = time.monotonic()
    with open_connection(settings) as conn:
        archive_path = export_database(SqlServerCatalogReader(conn), args.output)
    elapsed = time.monotonic() - started

    size = Path(archive_path).stat().st_size
    console.print()
    console.print("[bold green]v[/bold green] Export complete")
    console.print(f"  Archive: [cyan]{archive_path}[/cyan]")
    console.print(f"  Size: {format_file_size(size)}")
    console.print(f"  Time: {format_duration(elapsed)}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import an archive into the destination database.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success or cancel, 1 on failure.
    """
    archive_path = _require_backup_file(args)
    if archive_path is None:
        return 1

    settings = _resolve_settings(args)
    _print_connection("Import destination", settings)
    console.print(f"  Archive: [cyan]{archive_path}[/cyan] ({format_file_size(archive_path.stat().st_size)})")

    if not args.force:
        console.print(
            "[yellow]Objects will be created in the destination database. "
            "The database should be empty.[/yellow]"
        )
        if not confirm_operation(f"import into database '{settings.database}'"):
            console.print("[yellow]Operation cancelled.[/yellow]")
            return 0

    started = time.monotonic()
    with open_connection(settings) as conn:
        result = import_archive(SqlServerTarget(conn), archive_path)
    elapsed = time.monotonic() - started

    console.print()
    if not result.success:
        step = f" during {result.failed_step.value}" if result.failed_step else ""
        console.print(f"[bold red]x[/bold red] Import failed{step}, all changes rolled back")
        console.print(f"  [red]{escape(result.error or '')}[/red]")
        return 1

    console.print("[bold green]v[/bold green] Import complete")
    console.print(f"  Tables: {result.tables_created}")
    console.print(f"  Rows: {result.rows_inserted}")
    console.print(f"  Time: {format_duration(elapsed)}")

    if result.failures:
        failures = Table(
            title=f"Objects not created ({result.failure_count})",
            show_header=True,
            header_style="bold",
        )
        failures.add_column("Step", style="dim")
        failures.add_column("Object")
        failures.add_column("Error", style="yellow")
        for failure in result.failures:
            failures.add_row(failure.step.value, escape(failure.name), escape(failure.message))
        console.print(failures)

    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify an archive without connecting to a database.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 if the archive is valid, 1 otherwise.
    """
    archive_path = _require_backup_file(args)
    if archive_path is None:
        return 1

    console.print(f"Verifying: [cyan]{archive_path}[/cyan]")
    report = verify_archive(archive_path)

    metadata = report["metadata"]
    if metadata:
        console.print(f"  Database: {metadata.get('database_name')}")
        console.print(f"  Exported: {metadata.get('export_date')}")
        console.print(f"  Format: {metadata.get('version')}")
        server_version = metadata.get("sql_server_version") or ""
        if server_version:
            console.print(f"  Server: {server_version.splitlines()[0]}")

    if report["object_counts"]:
        counts = Table(title="Archive contents", show_header=True, header_style="bold")
        counts.add_column("Object", style="dim")
        counts.add_column("Count", justify="right")
        for name, count in report["object_counts"].items():
            counts.add_row(name.replace("_", " "), str(count))
        console.print(counts)

    if report["errors"]:
        console.print(f"\n[red]Found {len(report['errors'])} errors:[/red]")
        for error in report["errors"]:
            console.print(f"  - {escape(error)}")

    if report["warnings"]:
        console.print(f"\n[yellow]Found {len(report['warnings'])} warnings:[/yellow]")
        for warning in report["warnings"]:
            console.print(f"  - {escape(warning)}")

    console.print()
    if report["valid"]:
        console.print("[bold green]v[/bold green] Archive is valid")
        return 0

    console.print("[bold red]x[/bold red] Archive is invalid")
    return 1


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlserver-migrator",
        description="Logical export and import of SQL Server databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export with a named instance
  sqlserver-migrator --export --server localhost --instance SQLEXPRESS \\
      --database shop --username sa --password secret

  # Import without confirmation
  sqlserver-migrator --import --force --backup-file backup.gz \\
      --server localhost --database shop_copy --username sa --password secret

  # Verify an archive
  sqlserver-migrator --verify --backup-file backup.gz
        """,
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--export", action="store_true", help="Export a database to an archive")
    commands.add_argument("--import", dest="import_", action="store_true", help="Import an archive into a database")
    commands.add_argument("--verify", action="store_true", help="Verify an archive file")

    conn = parser.add_argument_group("connection")
    conn.add_argument("--server", help="SQL Server hostname")
    conn.add_argument("--port", type=int, help="Port (default: 1433)")
    conn.add_argument("--instance", help="Named instance (e.g. SQLEXPRESS)")
    conn.add_argument("--database", help="Database name")
    conn.add_argument("--username", help="SQL Server login")
    conn.add_argument("--password", help="Password")
    conn.add_argument("--driver", help="ODBC driver name (default: ODBC Driver 18 for SQL Server)")
    conn.add_argument("--profile", help="Connection profile from the config file")
    conn.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"Profile config file (default: {DEFAULT_CONFIG_FILE})",
    )

    parser.add_argument("--backup-file", help="Archive file (required for --import and --verify)")
    parser.add_argument("--output", "-o", help="Export archive path (default: sqlserver_backup_<db>_<timestamp>.gz)")
    parser.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and error tracebacks")

    return parser


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=debug, rich_tracebacks=True)],
        force=True,
    )


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to the selected command.

    Returns:
        Exit code (0 for success or cancel, 1 for errors).
    """
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    _configure_logging(args.debug)

    if args.export:
        handler = cmd_export
    elif args.import_:
        handler = cmd_import
    elif args.verify:
        handler = cmd_verify
    else:
        console.print("[red]Error: no command given.[/red] Use --export, --import or --verify (see --help).")
        return 1

    try:
        return handler(args)
    except MigrationError as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        if args.debug:
            console.print_exception()
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return 1
    except Exception as e:
        console.print(f"\n[bold red]x[/bold red] Unexpected error: {escape(str(e))}")
        if args.debug:
            console.print_exception()
        else:
            console.print("[dim]Run with --debug for details.[/dim]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
