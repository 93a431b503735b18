"""
Feed Reader - Runner

Process bootstrap: builds the collaborators from settings, starts one
FeedWorker thread per configured feed and shuts everything down on
SIGTERM/SIGINT.

Usage:
    python -m feedreader --feeds-file feeds.json
    python -m feedreader --env-file .env --log-level DEBUG

Exit codes:
    0 - clean shutdown
    2 - configuration error at startup
    1 - collaborator initialization failed
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Any, Sequence

from dotenv import load_dotenv

from feedreader.clients.cache import InMemoryTTLStore, PostgresTTLStore
from feedreader.clients.protocols import QueuePublisher, TelemetrySink, TTLStore
from feedreader.clients.queue_client import QueueClient
from feedreader.clients.telemetry_client import TelemetryClient
from feedreader.core.config import (
    FeedConfiguration,
    Settings,
    get_settings,
    load_feed_configurations,
)
from feedreader.core.errors import ConfigurationError
from feedreader.core.logging import configure_logging
from feedreader.workers.feed_worker import FeedWorker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_CONFIG_ERROR = 2

HEALTH_CHECK_INTERVAL_SECONDS = 10.0
THREAD_JOIN_TIMEOUT_SECONDS = 30.0


def build_store(settings: Settings) -> TTLStore:
    """Create the dedup store selected by CACHE_BACKEND."""
    if settings.CACHE_BACKEND == "memory":
        logger.warning("Using in-memory dedup cache; entries do not survive restarts")
        return InMemoryTTLStore()
    store = PostgresTTLStore(settings.DATABASE_URL)
    store.ensure_schema()
    return store


class FeedReaderApp:
    """Owns the feed workers, their threads and the shared collaborators."""

    def __init__(
        self,
        feeds: Sequence[FeedConfiguration],
        publisher: QueuePublisher,
        store: TTLStore,
        telemetry: TelemetrySink | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._publisher = publisher
        self._store = store
        self._telemetry = telemetry
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self.workers = [
            FeedWorker(
                feed,
                publisher,
                store,
                telemetry,
                summary_topic=settings.SUMMARY_TOPIC,
                stop_event=self._stop_event,
                idle_poll_seconds=settings.IDLE_POLL_SECONDS,
                error_backoff_seconds=settings.ERROR_BACKOFF_SECONDS,
            )
            for feed in feeds
        ]

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeedReaderApp":
        feeds = load_feed_configurations(settings.FEEDS_FILE)
        if not feeds:
            raise ConfigurationError(f"No feeds configured in {settings.FEEDS_FILE}")

        publisher = QueueClient(settings)
        logger.info("Initialized queue client at %s", publisher.rpc_base_url)
        store = build_store(settings)
        telemetry = None
        if settings.telemetry_enabled:
            telemetry = TelemetryClient(settings)
            telemetry.start()
        else:
            logger.info("TELEMETRY_URL not set; stats reporting disabled")
        return cls(feeds, publisher, store, telemetry, settings)

    def start(self) -> None:
        """Start one thread per feed worker."""
        for worker in self.workers:
            thread = threading.Thread(
                target=worker.run,
                name=f"feed-{worker.data_key}",
                daemon=False,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d feed reader threads", len(self._threads))

    def request_stop(self) -> None:
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def wait(self, interval: float = HEALTH_CHECK_INTERVAL_SECONDS) -> None:
        """Block until a stop is requested, logging worker stats periodically."""
        while not self._stop_event.wait(interval):
            dead = [t.name for t in self._threads if not t.is_alive()]
            if dead:
                logger.error("Feed threads exited unexpectedly: %s", dead)
            for worker in self.workers:
                logger.debug("Worker stats: %s", worker.get_stats())

    def shutdown(self, timeout: float = THREAD_JOIN_TIMEOUT_SECONDS) -> None:
        """Stop workers between files, wait for their threads, close collaborators."""
        logger.info("Shutting down feed reader")
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Thread %s still finishing its current file", thread.name)

        for resource in (self._publisher, self._store, self._telemetry):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.error("Error closing %s: %s", type(resource).__name__, e)
        logger.info("Shutdown complete")

    def get_stats(self) -> list[dict[str, Any]]:
        return [worker.get_stats() for worker in self.workers]


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feedreader",
        description="Read delimited feed files from watched folders and publish their records.",
    )
    parser.add_argument("--feeds-file", help="JSON feed configuration file (overrides FEEDS_FILE)")
    parser.add_argument("--env-file", help="dotenv file to load before reading settings")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides LOG_LEVEL)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    if args.env_file:
        load_dotenv(args.env_file, override=True)
    else:
        load_dotenv()
    if args.feeds_file:
        os.environ["FEEDS_FILE"] = args.feeds_file
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level

    try:
        settings = get_settings()
    except Exception as e:
        configure_logging(args.log_level)
        logger.critical("Invalid settings: %s", e)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.LOG_LEVEL)

    try:
        app = FeedReaderApp.from_settings(settings)
    except ConfigurationError as e:
        logger.critical("%s", e)
        return EXIT_CONFIG_ERROR
    except Exception as e:
        logger.critical("Failed to initialize feed reader: %s", e, exc_info=True)
        return EXIT_STARTUP_FAILURE

    def _handle_shutdown_signal(signum: int, frame: Any) -> None:
        logger.info("Received %s, stopping after in-flight files", signal.Signals(signum).name)
        app.request_stop()

    signal.signal(signal.SIGTERM, _handle_shutdown_signal)
    signal.signal(signal.SIGINT, _handle_shutdown_signal)

    app.start()
    logger.info("Successfully started feed reader")
    try:
        app.wait()
    finally:
        app.shutdown()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
