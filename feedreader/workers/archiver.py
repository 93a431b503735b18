"""
Feed Reader - File Archiver

Relocates consumed files out of the watched folder. Used for both the
`produced/` archive and the selector's `duplicate/` side folder. Moves always
overwrite a same-named file at the destination.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from feedreader.workers.models import PRODUCED_FOLDER

logger = logging.getLogger(__name__)


def move_file(source: Path, destination_dir: Path) -> Path:
    """
    Move a file into destination_dir, replacing any file with the same name.

    Returns:
        The new path of the file

    Raises:
        OSError: If the folder cannot be created or the move fails
    """
    destination_dir.mkdir(parents=True, exist_ok=True)
    destination = destination_dir / source.name
    if destination.exists():
        destination.unlink()
    shutil.move(str(source), str(destination))
    logger.debug("Moved %s to %s", source, destination)
    return destination


def archive(path: Path) -> Path:
    """Move a fully read file into the `produced/` folder beside it."""
    archived = move_file(path, path.parent / PRODUCED_FOLDER)
    logger.info("Archived file %s to %s", path.name, archived.parent)
    return archived
