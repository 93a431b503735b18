import threading
import time

import httpx
import pytest

from feedreader.clients import telemetry_client as telemetry_module
from feedreader.clients.telemetry_client import ServiceStats, TelemetryClient
from feedreader.core.config import Settings

TELEMETRY_URL = "https://stats.example.com/"


def build_response(error: Exception | None = None):
    class DummyResponse:
        status_code = 200

        def raise_for_status(self) -> None:
            if error:
                raise error

    return DummyResponse()


def install_fake_client(monkeypatch, handler=None, interval_ms=60_000):
    created = {}
    posted = []

    class FakeClient:
        def __init__(self, base_url, headers, timeout):
            self.base_url = base_url
            self.headers = headers
            self.timeout = timeout
            self.closed = False
            created["client"] = self

        def post(self, path, json=None):
            posted.append((path, json))
            if handler is not None:
                return handler(path, json)
            return build_response()

        def close(self):
            self.closed = True

    monkeypatch.setattr(telemetry_module.httpx, "Client", FakeClient)
    settings = Settings(
        TELEMETRY_URL=TELEMETRY_URL,
        TELEMETRY_API_KEY="stats-key",
        REPORT_STATS_INTERVAL_MS=interval_ms,
    )
    return TelemetryClient(settings), created, posted


def wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_requires_telemetry_url():
    with pytest.raises(ValueError):
        TelemetryClient(Settings(TELEMETRY_URL=""))


def test_client_configuration(monkeypatch):
    _, created, _ = install_fake_client(monkeypatch)

    fake = created["client"]
    assert fake.base_url == "https://stats.example.com"
    assert fake.headers["X-API-Key"] == "stats-key"


def test_reports_aggregate_until_flushed(monkeypatch):
    client, _, posted = install_fake_client(monkeypatch)

    client.report("msc_voice_records", "SERVICE", True, 3)
    client.report("msc_voice_records", "SERVICE", False, 9)
    client.report("msc_voice_records", "SERVICE", True, 5)
    client.report("msc_voice_files", "SERVICE", True, 120)
    assert posted == []

    assert client.flush() == 2

    path, body = posted[0]
    assert path == "/report_statistics"
    assert body["application"] == "feed-reader"
    assert body["module"] == "file-reader"
    by_name = {s["service_name"]: s for s in body["statistics"]}
    assert by_name["msc_voice_records"]["successes"] == 2
    assert by_name["msc_voice_records"]["failures"] == 1
    assert by_name["msc_voice_records"]["total_duration_ms"] == 17
    assert by_name["msc_voice_records"]["max_duration_ms"] == 9
    assert by_name["msc_voice_files"]["kind"] == "SERVICE"


def test_report_does_not_wait_on_a_hung_endpoint(monkeypatch):
    release = threading.Event()

    def handler(path, json):
        release.wait(5.0)
        return build_response()

    client, _, posted = install_fake_client(monkeypatch, handler, interval_ms=100)
    client.start()
    try:
        client.report("msc_voice_records", "SERVICE", True, 1)
        assert wait_for(lambda: len(posted) == 1)

        started = time.monotonic()
        client.report("msc_voice_records", "SERVICE", True, 1)
        assert time.monotonic() - started < 0.5
    finally:
        release.set()
        client.close()


def test_background_thread_flushes_every_interval(monkeypatch):
    client, _, posted = install_fake_client(monkeypatch, interval_ms=100)
    client.start()
    try:
        client.report("msc_voice_files", "SERVICE", True, 10)
        assert wait_for(lambda: len(posted) == 1)
    finally:
        client.close()

    assert posted[0][1]["statistics"][0]["successes"] == 1


def test_flush_with_nothing_pending_sends_nothing(monkeypatch):
    client, _, posted = install_fake_client(monkeypatch)

    assert client.flush() == 0
    assert posted == []


def test_failed_flush_keeps_aggregates(monkeypatch):
    request = httpx.Request("POST", "https://stats.example.com/report_statistics")
    failures = [httpx.ConnectError("connection refused", request=request)]

    def handler(path, json):
        if failures:
            raise failures.pop()
        return build_response()

    client, _, posted = install_fake_client(monkeypatch, handler)
    client.report("msc_voice_files", "SERVICE", True, 10)

    with pytest.raises(httpx.HTTPError):
        client.flush()

    client.report("msc_voice_files", "SERVICE", False, 20)
    assert client.flush() == 1

    stats = posted[-1][1]["statistics"]
    assert stats == [
        {
            "service_name": "msc_voice_files",
            "kind": "SERVICE",
            "successes": 1,
            "failures": 1,
            "total_duration_ms": 30,
            "max_duration_ms": 20,
        }
    ]


def test_close_stops_thread_flushes_and_closes(monkeypatch):
    client, created, posted = install_fake_client(monkeypatch)
    client.start()
    client.report("msc_voice_files", "SERVICE", True, 1)

    client.close()

    assert len(posted) == 1
    assert created["client"].closed is True
    assert not any(t.name == "telemetry-flush" and t.is_alive() for t in threading.enumerate())


def test_close_survives_failed_flush(monkeypatch):
    def handler(path, json):
        request = httpx.Request("POST", path)
        response = httpx.Response(503, request=request)
        return build_response(httpx.HTTPStatusError("503", request=request, response=response))

    client, created, _ = install_fake_client(monkeypatch, handler)
    client.report("msc_voice_files", "SERVICE", True, 1)

    client.close()

    assert created["client"].closed is True


def test_service_stats_merge():
    a = ServiceStats("x", "SERVICE", successes=1, total_duration_ms=5, max_duration_ms=5)
    b = ServiceStats("x", "SERVICE", failures=2, total_duration_ms=7, max_duration_ms=6)

    a.merge(b)

    assert (a.successes, a.failures, a.total_duration_ms, a.max_duration_ms) == (1, 2, 12, 6)
