"""Synchronization of rendered VCL files with the shared VCL directory."""

import logging
from pathlib import Path

from constants import VCL_FILE_SUFFIX
from metrics import VCL_FILE_OPERATIONS
from models import VCLFileError

logger = logging.getLogger(__name__)


def get_current_files(directory: str | Path) -> dict[str, str]:
    """Read every ``*.vcl`` file in ``directory``, keyed by file name."""
    directory = Path(directory)
    try:
        paths = sorted(directory.iterdir())
    except OSError as e:
        raise VCLFileError(f"Cannot list VCL directory {directory}: {e}") from e

    files: dict[str, str] = {}
    for path in paths:
        if path.suffix != VCL_FILE_SUFFIX or not path.is_file():
            continue
        try:
            files[path.name] = path.read_text()
        except OSError as e:
            raise VCLFileError(f"Cannot read VCL file {path}: {e}") from e
    return files


def sync_files(
    directory: str | Path, current: dict[str, str], desired: dict[str, str]
) -> bool:
    """Make the directory hold exactly ``desired``.

    Files only in ``current`` are deleted, files whose content changed are
    rewritten and new files are written. Returns True if anything changed.
    The first failing operation raises VCLFileError; operations already done
    are kept and the next pass converges the rest.
    """
    directory = Path(directory)
    touched = False

    for name in sorted(set(current) | set(desired)):
        path = directory / name
        try:
            if name not in desired:
                touched = True
                logger.info("Removing file %s", path)
                path.unlink()
                VCL_FILE_OPERATIONS.labels(action="delete").inc()
            elif name not in current:
                touched = True
                path.write_text(desired[name])
                VCL_FILE_OPERATIONS.labels(action="write").inc()
                logger.info("Writing new file %s", path)
            elif current[name] != desired[name]:
                touched = True
                path.write_text(desired[name])
                VCL_FILE_OPERATIONS.labels(action="rewrite").inc()
                logger.info("Rewriting file %s", path)
        except OSError as e:
            raise VCLFileError(f"Could not update VCL file {path}: {e}") from e

    return touched
