"""Gzip-compressed JSON archive for snapshot documents.

Usage:
    from sqlserver_migrator.snapshot.archive import read_archive, write_archive

    path = write_archive(document, "backups/sales.gz")
    document = read_archive(path)
"""

import gzip
import logging
import os
import zlib
from pathlib import Path

from pydantic import ValidationError

from sqlserver_migrator.errors import ArchiveFormatError
from sqlserver_migrator.snapshot.models import SnapshotDocument

logger = logging.getLogger(__name__)


def write_archive(document: SnapshotDocument, path: str | Path) -> str:
    """Serialize ``document`` and write it as a gzip archive.

    The archive is written to ``<path>.tmp`` and renamed into place only
    after the write completes, so a failed export never leaves a partial
    archive behind.

    Args:
        document: Snapshot to persist.
        path: Destination file path.  Parent directories are created.

    Returns:
        The archive path as a string.
    """
    final_path = Path(path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = final_path.with_name(final_path.name + ".tmp")

    payload = document.model_dump_json(by_alias=True)
    try:
        with gzip.open(tmp_path, "wt", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, final_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.debug(f"Archive written: {final_path} ({final_path.stat().st_size} bytes)")
    return str(final_path)


def read_archive(path: str | Path) -> SnapshotDocument:
    """Read and validate a snapshot archive.

    Args:
        path: Archive file path.

    Returns:
        The parsed ``SnapshotDocument``.

    Raises:
        ArchiveFormatError: If the file is missing, is not gzip data, or
            does not contain a valid snapshot document.
    """
    archive_path = Path(path)
    try:
        with gzip.open(archive_path, "rt", encoding="utf-8") as f:
            payload = f.read()
    except FileNotFoundError as e:
        raise ArchiveFormatError(f"Archive not found: {archive_path}") from e
    except (OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
        raise ArchiveFormatError(f"Archive is not readable: {e}") from e

    try:
        return SnapshotDocument.model_validate_json(payload)
    except ValidationError as e:
        raise ArchiveFormatError(
            f"Archive does not contain a valid snapshot document: "
            f"{e.error_count()} validation errors"
        ) from e
