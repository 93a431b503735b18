"""
Feed Reader - File Selector

Picks the next file to process from a watched folder.

Candidates are the regular files directly under the folder whose name fully
matches the feed's pattern, newest (by modification time) first. Duplicates
found along the way are moved to `duplicate/` and skipped; the first
non-duplicate is returned and the rest are left for the next poll.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from feedreader.workers.archiver import move_file
from feedreader.workers.duplicate_guard import DuplicateGuard
from feedreader.workers.models import DUPLICATE_FOLDER

logger = logging.getLogger(__name__)


class FileSelector:
    """Selects files for one feed's watched folder."""

    def __init__(
        self,
        folder: str | Path,
        data_feed: str,
        guard: DuplicateGuard,
        file_pattern: str | None = None,
    ) -> None:
        self.folder = Path(folder)
        self.data_feed = data_feed
        self._guard = guard
        self._pattern = re.compile(file_pattern) if file_pattern else None

    def matches(self, filename: str) -> bool:
        if self._pattern is None:
            return True
        return self._pattern.fullmatch(filename) is not None

    def list_candidates(self) -> list[Path]:
        """
        Matching regular files, most recently modified first.

        Raises:
            OSError: If the folder cannot be listed
        """
        stamped: list[tuple[float, Path]] = []
        for entry in self.folder.iterdir():
            if not (entry.is_file() and self.matches(entry.name)):
                continue
            try:
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                logger.debug("File %s vanished before selection, skipping", entry)
                continue
            stamped.append((mtime, entry))
        stamped.sort(key=lambda item: item[0], reverse=True)
        return [entry for _, entry in stamped]

    def select(self) -> Path | None:
        """Return the next non-duplicate file, or None if nothing is available."""
        for candidate in self.list_candidates():
            if self._guard.is_duplicate(self.data_feed, candidate.name):
                logger.info("Found duplicate file %s, moving to %s/", candidate, DUPLICATE_FOLDER)
                move_file(candidate, self.folder / DUPLICATE_FOLDER)
                continue
            return candidate

        logger.debug("No files to read in folder %s", self.folder)
        return None
