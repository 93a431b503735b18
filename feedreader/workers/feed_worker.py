"""
Feed Reader - Feed Worker

One worker per feed configuration. Runs until stopped:

    IDLE -> SELECTING -> PROCESSING -> IDLE ...
                  (stop requested) -> STOPPED

Per selected file:
    build FileRecord -> read line by line (validate, resolve header, parse,
    name fields, merge context, publish, throttle, account, report)
    -> archive to produced/ -> record completion in the dedup cache
    -> publish the file summary -> report file stat

Error containment:
- A failure on one line (parse or publish) is logged and reported as a failed
  record stat; the next line is processed as usual.
- A failure outside the line loop (open/read, archive, cache write, summary
  publish) is reported as a failed file stat and propagates to run(), which
  logs it and backs off before selecting again.

The stop token is only checked between files, so a file that has started is
always read to the end (or to a file-level failure).

Usage:
    worker = FeedWorker(feed, publisher=queue_client, store=ttl_store)
    thread = threading.Thread(target=worker.run, name=f"feed-{feed.data_key}")
    thread.start()
    ...
    worker.stop()
    thread.join()
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any

from feedreader.clients.protocols import QueuePublisher, TelemetrySink, TTLStore
from feedreader.core.config import DEFAULT_TOPIC, FeedConfiguration
from feedreader.core.errors import FileProcessingError
from feedreader.core.logging import log_context
from feedreader.workers import parser
from feedreader.workers.archiver import archive
from feedreader.workers.duplicate_guard import DuplicateGuard
from feedreader.workers.file_selector import FileSelector
from feedreader.workers.models import FileRecord
from feedreader.workers.rate_limiter import next_delay
from feedreader.workers.stats import StatsReporter, elapsed_ms

logger = logging.getLogger(__name__)

DEFAULT_ERROR_BACKOFF_SECONDS = 6.0


class WorkerState(str, Enum):
    """Feed worker lifecycle states."""

    IDLE = "idle"
    SELECTING = "selecting"
    PROCESSING = "processing"
    STOPPED = "stopped"


class FeedWorker:
    """Reads one feed's watched folder and publishes its records."""

    def __init__(
        self,
        feed: FeedConfiguration,
        publisher: QueuePublisher,
        store: TTLStore,
        telemetry: TelemetrySink | None = None,
        *,
        summary_topic: str = DEFAULT_TOPIC,
        stop_event: threading.Event | None = None,
        idle_poll_seconds: float = 0.0,
        error_backoff_seconds: float = DEFAULT_ERROR_BACKOFF_SECONDS,
    ) -> None:
        self.feed = feed
        self._publisher = publisher
        self._summary_topic = summary_topic
        self._stop_event = stop_event or threading.Event()
        self._idle_poll_seconds = idle_poll_seconds
        self._error_backoff_seconds = error_backoff_seconds

        self.guard = DuplicateGuard(store, feed.check_file_duplicates)
        self.selector = FileSelector(feed.folder, feed.data_key, self.guard, feed.file_pattern)
        self.stats = StatsReporter(telemetry, feed.data_key)
        self._headers = feed.headers

        self._state = WorkerState.IDLE
        self._files_processed = 0
        self._files_failed = 0
        self._records_published = 0
        self._records_failed = 0

        logger.info(
            "Initialized %s dataKey=%s folder=%s topic=%s eventsPerSecond=%d",
            self.__class__.__name__,
            feed.data_key,
            feed.folder,
            feed.topic,
            feed.events_per_second,
        )

    @property
    def data_key(self) -> str:
        return self.feed.data_key

    @property
    def state(self) -> WorkerState:
        return self._state

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Request a stop; takes effect before the next file is selected."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        """Main loop. Returns only after stop() has been called."""
        logger.info("Starting feed worker dataKey=%s folder=%s", self.data_key, self.feed.folder)

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.warning(
                    "Encountered exception in feed %s, backing off %.1fs: %s",
                    self.data_key,
                    self._error_backoff_seconds,
                    e,
                    exc_info=True,
                )
                self._stop_event.wait(self._error_backoff_seconds)

        self._state = WorkerState.STOPPED
        logger.info(
            "Feed worker stopped dataKey=%s files=%d failed_files=%d records=%d failed_records=%d",
            self.data_key,
            self._files_processed,
            self._files_failed,
            self._records_published,
            self._records_failed,
        )

    def run_once(self) -> FileRecord | None:
        """
        Select and process at most one file.

        Returns:
            The completed FileRecord, or None when no file was available

        Raises:
            Exception: Any file-level failure, after reporting a failed file stat
        """
        self._state = WorkerState.SELECTING
        try:
            path = self.selector.select()
            if path is None:
                self._state = WorkerState.IDLE
                if self._idle_poll_seconds:
                    self._stop_event.wait(self._idle_poll_seconds)
                return None

            self._state = WorkerState.PROCESSING
            return self.process_file(path)
        finally:
            self._state = WorkerState.IDLE

    # -------------------------------------------------------------------------
    # File Processing
    # -------------------------------------------------------------------------

    def process_file(self, path: Path) -> FileRecord:
        """Read, publish, archive and account for one file."""
        start = time.monotonic()
        with log_context(feed=self.data_key, file=path.name):
            try:
                logger.info("BEGIN|Feed: %s |Retrieved file %s", self.data_key, path.name)
                try:
                    file_record = FileRecord.from_path(path, self.data_key)
                    self._read_file(file_record)
                    archive(path)
                except OSError as e:
                    raise FileProcessingError(path.name, str(e)) from e

                self.guard.record_completion(file_record)
                self._publisher.publish(
                    file_record.to_payload(), self._summary_topic, self.data_key
                )
                logger.debug("Published file summary with key=%s", self.data_key)
            except Exception:
                self._files_failed += 1
                self.stats.file_processed(start, False)
                raise

            self._files_processed += 1
            self.stats.file_processed(start, True)

            time_taken_ms = max(elapsed_ms(start), 1)
            records_per_second = round(file_record.total_records * 1000.0 / time_taken_ms)
            logger.info(
                "END|Read file %s with records=%d invalid=%d in %dms. Current TPS=%d, Expected TPS=%d",
                path.name,
                file_record.total_records,
                file_record.invalid_records,
                time_taken_ms,
                records_per_second,
                self.feed.events_per_second,
            )
            return file_record

    def _read_file(self, file_record: FileRecord) -> None:
        feed = self.feed
        line_number = 0
        record_count = 0
        valid_records = 0
        in_file_header: list[str] | None = None
        context = file_record.context_fields()

        with open(file_record.path, "r", encoding=feed.encoding, errors="replace") as handle:
            for raw_line in handle:
                line = raw_line.rstrip("\r\n")
                line_start = time.monotonic()
                try:
                    logger.debug("Reading line: %s", line)
                    if parser.is_valid(line, feed.record_skip_pattern):
                        line_number += 1
                        fields = parser.parse_line(line, feed.record_delimiter)

                        if parser.is_header_line(line_number, feed.header_line):
                            in_file_header = fields
                            logger.debug("Captured in-file header %s", in_file_header)
                            file_record.update_totals(record_count, line_number, valid_records)
                            continue

                        record = parser.with_context(
                            parser.to_field_mapping(fields, in_file_header, self._headers),
                            context,
                        )
                        valid_records += 1
                        self._publish_record(record, line_start)

                    # A line that raised above is left out of the totals.
                    record_count += 1
                    file_record.update_totals(record_count, line_number, valid_records)
                except Exception as e:
                    logger.warning("Encountered exception on line %r: %s", line, e, exc_info=True)
                    self._records_failed += 1
                    self.stats.record_published(line_start, False)

    def _publish_record(self, record: dict[str, Any], start: float) -> None:
        try:
            self._publisher.publish(record, self.feed.topic, self.data_key)
        except Exception as e:
            logger.warning("Unable to publish record %s to %s: %s", record, self.feed.topic, e)
            self._records_failed += 1
            self.stats.record_published(start, False)
            return

        sleep_ms = next_delay(self.feed.events_per_second, elapsed_ms(start))
        if sleep_ms > 0:
            logger.debug("Sleeping for %dms", sleep_ms)
            self._stop_event.wait(sleep_ms / 1000.0)

        self._records_published += 1
        self.stats.record_published(start, True)

    # -------------------------------------------------------------------------
    # Utilities
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        return {
            "data_key": self.data_key,
            "folder": self.feed.folder,
            "state": self._state.value,
            "files_processed": self._files_processed,
            "files_failed": self._files_failed,
            "records_published": self._records_published,
            "records_failed": self._records_failed,
            "stop_requested": self.stop_requested,
        }

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"data_key={self.data_key} "
            f"folder={self.feed.folder} "
            f"state={self._state.value}>"
        )
