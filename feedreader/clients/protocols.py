"""Contracts the feed workers consume from their collaborators."""

from __future__ import annotations

from typing import Any, Mapping, Protocol


class QueuePublisher(Protocol):
    def publish(self, payload: Mapping[str, Any], topic: str, partition_key: str) -> None:
        """Publish one payload; raise on failure."""
        ...


class TTLStore(Protocol):
    def get(self, key: str) -> Any | None:
        """Return the live value for key, or None."""
        ...

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Replace the value for key, expiring ttl_seconds from now."""
        ...


class TelemetrySink(Protocol):
    def report(self, service_name: str, kind: str, success: bool, duration_ms: int) -> None:
        """Record one operation outcome."""
        ...
