"""Exception hierarchy for export, import, and verification.

All errors raised by the package derive from ``MigrationError`` so callers
(the CLI in particular) can report them uniformly.

Usage:
    from sqlserver_migrator.errors import ArchiveFormatError, MigrationError

    try:
        snapshot = read_archive(path)
    except ArchiveFormatError as e:
        console.print(f"[red]{e}[/red]")
"""


class MigrationError(Exception):
    """Base class for all migrator errors."""

    pass


class ConfigurationError(MigrationError):
    """Raised when connection parameters are missing or invalid.

    Always raised before any connection attempt.
    """

    pass


class ConnectivityError(MigrationError):
    """Raised when a database connection cannot be established."""

    pass


class CatalogReadError(MigrationError):
    """Raised when an introspection or data-read query fails."""

    pass


class CodecError(MigrationError):
    """Raised internally when a cell value cannot be encoded or decoded.

    ``decode_value`` catches it and passes the original value through.
    """

    pass


class ReplayError(MigrationError):
    """Raised when a statement fails while replaying a snapshot.

    Attributes:
        step: Import step that was running (e.g. ``"tables"``).
        object_name: Qualified name of the object being created.
        fatal: True when the failure aborts the whole import.
    """

    def __init__(self, message: str, step: str, object_name: str = "", fatal: bool = True):
        super().__init__(message)
        self.step = step
        self.object_name = object_name
        self.fatal = fatal


class ArchiveFormatError(MigrationError):
    """Raised when an archive cannot be read or its document is malformed."""

    pass
