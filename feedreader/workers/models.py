"""
Feed Reader - File Record

Accounting state for one selected file. Owned by a single FeedWorker for the
lifetime of that file, then written once to the dedup cache and once to the
queue as the file-level summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

PRODUCED_FOLDER = "produced"
DUPLICATE_FOLDER = "duplicate"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FileRecord:
    """
    A feed file being processed and its running totals.

    Accounting:
        total_records:   every line read except the in-file header line and
                         lines whose handling raised
        total_lines:     valid (non-blank, non-skipped) lines, header included
        invalid_records: total_records - lines handed to the publish step
    """

    filename: str
    data_feed: str
    watch_folder: str
    backup_folder: str
    last_modified: datetime
    file_size: int
    loading_time: datetime = field(default_factory=_utcnow)
    total_lines: int = 0
    total_records: int = 0
    invalid_records: int = 0
    time_processed: datetime | None = None

    @classmethod
    def from_path(cls, path: Path, data_feed: str) -> "FileRecord":
        """Build a record from a file on disk, stamping the pick-up time."""
        stat = path.stat()
        watch_folder = str(path.parent)
        return cls(
            filename=path.name,
            data_feed=data_feed,
            watch_folder=watch_folder,
            backup_folder=str(path.parent / PRODUCED_FOLDER),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            file_size=stat.st_size,
        )

    @property
    def path(self) -> Path:
        return Path(self.watch_folder) / self.filename

    @property
    def cache_key(self) -> str:
        return cache_key(self.data_feed, self.filename)

    def update_totals(self, records: int, lines: int, valid_records: int) -> None:
        """Refresh the running totals after a line has been handled."""
        self.total_records = records
        self.total_lines = lines
        self.invalid_records = records - valid_records
        self.time_processed = _utcnow()

    def context_fields(self) -> dict[str, str]:
        """Fields merged into every record published from this file."""
        return {
            "filename": self.filename,
            "dataFeed": self.data_feed,
            "watchFolder": self.watch_folder,
            "backUpFolder": self.backup_folder,
        }

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe summary payload."""
        return {
            **self.context_fields(),
            "lastModified": self.last_modified.isoformat(),
            "fileSize": self.file_size,
            "loadingTime": self.loading_time.isoformat(),
            "totalLines": self.total_lines,
            "totalRecords": self.total_records,
            "invalidRecords": self.invalid_records,
            "timeProcessed": self.time_processed.isoformat() if self.time_processed else None,
        }


def cache_key(data_feed: str, filename: str) -> str:
    """Dedup cache key for a (feed, filename) pair."""
    return f"{data_feed}_{filename}"
