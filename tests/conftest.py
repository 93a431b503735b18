"""
tests/conftest.py

Shared fixtures for the feed reader test suite.

Collaborators are replaced with in-process fakes:
  - RecordingPublisher: captures every publish, optionally failing on demand
  - RecordingTelemetry: captures every stats report
  - InMemoryTTLStore:  the real process-local dedup store
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Mapping

import pytest

from feedreader.clients.cache import InMemoryTTLStore
from feedreader.core.config import FeedConfiguration, reset_settings


class RecordingPublisher:
    """Queue publisher fake that records (payload, topic, key) tuples."""

    def __init__(self, fail_when: Callable[[Mapping[str, Any]], bool] | None = None) -> None:
        self.published: list[tuple[dict[str, Any], str, str]] = []
        self.failed: list[dict[str, Any]] = []
        self._fail_when = fail_when

    def publish(self, payload: Mapping[str, Any], topic: str, partition_key: str) -> None:
        if self._fail_when is not None and self._fail_when(payload):
            self.failed.append(dict(payload))
            raise RuntimeError("queue unavailable")
        self.published.append((dict(payload), topic, partition_key))

    def on_topic(self, topic: str) -> list[dict[str, Any]]:
        return [payload for payload, t, _ in self.published if t == topic]


class RecordingTelemetry:
    """Telemetry sink fake that records (service_name, kind, success, duration_ms)."""

    def __init__(self) -> None:
        self.reports: list[tuple[str, str, bool, int]] = []

    def report(self, service_name: str, kind: str, success: bool, duration_ms: int) -> None:
        self.reports.append((service_name, kind, success, duration_ms))

    def outcomes(self, service_name: str) -> list[bool]:
        return [success for name, _, success, _ in self.reports if name == service_name]


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def watch_folder(tmp_path: Path) -> Path:
    folder = tmp_path / "incoming"
    folder.mkdir()
    return folder


@pytest.fixture
def make_feed(watch_folder: Path) -> Callable[..., FeedConfiguration]:
    def _make(**overrides: Any) -> FeedConfiguration:
        values: dict[str, Any] = {"folder": str(watch_folder), "data_key": "msc_voice"}
        values.update(overrides)
        return FeedConfiguration(**values)

    return _make


@pytest.fixture
def write_file(watch_folder: Path) -> Callable[..., Path]:
    """Write a feed file; `age` seconds pushes its mtime into the past."""

    def _write(name: str, content: str, age: float = 0.0) -> Path:
        path = watch_folder / name
        path.write_text(content, encoding="latin-1")
        if age:
            stat = path.stat()
            os.utime(path, (stat.st_atime - age, stat.st_mtime - age))
        return path

    return _write


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def store() -> InMemoryTTLStore:
    return InMemoryTTLStore()
