"""
Feed Reader - Telemetry Client

Operational statistics sink. Reports are aggregated in memory per
(service_name, kind) and flushed to the statistics endpoint every
REPORT_STATS_INTERVAL_MS by a background thread, so report() never blocks a
feed worker on the network. A flush that fails keeps its aggregates so they go
out with the next one.

Shared by every feed worker in the process.

Usage:
    telemetry = TelemetryClient(settings)
    telemetry.start()
    ...
    telemetry.close()  # stops the thread and sends what is left
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from feedreader.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceStats:
    """Aggregated outcomes for one (service, kind) pair since the last flush."""

    service_name: str
    kind: str
    successes: int = 0
    failures: int = 0
    total_duration_ms: int = 0
    max_duration_ms: int = 0

    def add(self, success: bool, duration_ms: int) -> None:
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)

    def merge(self, other: "ServiceStats") -> None:
        self.successes += other.successes
        self.failures += other.failures
        self.total_duration_ms += other.total_duration_ms
        self.max_duration_ms = max(self.max_duration_ms, other.max_duration_ms)


class TelemetryClient:
    """Batches operation outcomes and posts them to the statistics endpoint."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        if not settings.TELEMETRY_URL:
            raise ValueError("Telemetry URL required: set TELEMETRY_URL")
        self._application = settings.APPLICATION_NAME
        self._module = settings.MODULE_NAME
        self._interval_seconds = settings.REPORT_STATS_INTERVAL_MS / 1000.0
        self._client = httpx.Client(
            base_url=settings.TELEMETRY_URL.rstrip("/"),
            headers={
                "X-API-Key": settings.TELEMETRY_API_KEY,
                "Content-Type": "application/json",
            },
            timeout=5.0,
        )
        self._lock = threading.Lock()
        self._pending: dict[tuple[str, str], ServiceStats] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background flush thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Telemetry flush thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._flush_loop,
            name="telemetry-flush",
            daemon=True,
        )
        self._thread.start()
        logger.info("Started telemetry flush thread (interval=%.1fs)", self._interval_seconds)

    def _flush_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval_seconds):
            try:
                self.flush()
            except httpx.HTTPError as e:
                logger.warning("Statistics flush failed, keeping aggregates: %s", e)

    def report(self, service_name: str, kind: str, success: bool, duration_ms: int) -> None:
        with self._lock:
            key = (service_name, kind)
            stats = self._pending.get(key)
            if stats is None:
                stats = self._pending[key] = ServiceStats(service_name, kind)
            stats.add(success, duration_ms)

    def flush(self) -> int:
        """Post pending aggregates. Returns the number of services sent."""
        with self._lock:
            batch = self._pending
            self._pending = {}

        if not batch:
            return 0

        body: dict[str, Any] = {
            "application": self._application,
            "module": self._module,
            "statistics": [asdict(stats) for stats in batch.values()],
        }
        try:
            response = self._client.post("/report_statistics", json=body)
            response.raise_for_status()
        except httpx.HTTPError:
            self._restore(batch)
            raise

        logger.debug("Flushed statistics for %d services", len(batch))
        return len(batch)

    def _restore(self, batch: dict[tuple[str, str], ServiceStats]) -> None:
        with self._lock:
            for key, stats in batch.items():
                current = self._pending.get(key)
                if current is None:
                    self._pending[key] = stats
                else:
                    current.merge(stats)

    def close(self) -> None:
        """Stop the flush thread, send what is left and close the HTTP client."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=10.0)
            self._thread = None
        try:
            self.flush()
        except httpx.HTTPError as e:
            logger.warning("Final statistics flush failed: %s", e)
        finally:
            self._client.close()
