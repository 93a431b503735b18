"""
Feed Reader - Stats Reporter

Best-effort success/failure and latency reporting for file-level and
record-level operations. Failures of the telemetry sink are logged and never
reach the data path.
"""

from __future__ import annotations

import logging
import time

from feedreader.clients.protocols import TelemetrySink

logger = logging.getLogger(__name__)

RESOURCE_FILES = "files"
RESOURCE_RECORDS = "records"
SERVICE_KIND = "SERVICE"


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.monotonic() start mark."""
    return int((time.monotonic() - start) * 1000)


class StatsReporter:
    """Reports stats for one feed under "<data_key>_<resource>" service names."""

    def __init__(self, sink: TelemetrySink | None, data_key: str) -> None:
        self._sink = sink
        self._data_key = data_key

    def service_name(self, resource: str) -> str:
        return f"{self._data_key}_{resource}"

    def report(self, start: float, resource: str, successful: bool) -> None:
        duration_ms = elapsed_ms(start)
        service_name = self.service_name(resource)
        if self._sink is None:
            logger.debug(
                "Telemetry disabled: %s successful=%s took=%dms", service_name, successful, duration_ms
            )
            return

        report_start = time.monotonic()
        try:
            self._sink.report(service_name, SERVICE_KIND, successful, duration_ms)
            logger.debug(
                "Reported stats service=%s successful=%s duration=%dms (took %dms)",
                service_name,
                successful,
                duration_ms,
                elapsed_ms(report_start),
            )
        except Exception as e:
            logger.error(
                "Error reporting stats service=%s successful=%s (took %dms): %s",
                service_name,
                successful,
                elapsed_ms(report_start),
                e,
            )

    def file_processed(self, start: float, successful: bool) -> None:
        self.report(start, RESOURCE_FILES, successful)

    def record_published(self, start: float, successful: bool) -> None:
        self.report(start, RESOURCE_RECORDS, successful)
