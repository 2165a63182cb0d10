from __future__ import annotations

import json
import logging

import structlog
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from weavenet.common import observability


class RecordingProvider(TracerProvider):
    def __init__(self, flush_result: bool = True) -> None:
        super().__init__()
        self.flush_result = flush_result
        self.flush_calls: list[int] = []

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        self.flush_calls.append(timeout_millis)
        return self.flush_result


def test_configure_logging_emits_json(caplog, monkeypatch):
    monkeypatch.setattr(observability, "_logging_configured", False)

    observability.configure_logging("weavenet.test", "INFO", command="setup")
    logger = structlog.get_logger("weavenet.test.logger")

    with caplog.at_level(logging.INFO):
        logger.info("structured-event", bridge="weave")

    record = caplog.records[-1]
    payload = json.loads(record.message)
    assert payload["message"] == "structured-event"
    assert payload["bridge"] == "weave"
    assert payload["service"] == "weavenet.test"
    assert payload["command"] == "setup"


def test_configure_logging_quiets_library_loggers(monkeypatch):
    monkeypatch.setattr(observability, "_logging_configured", False)

    observability.configure_logging("weavenet.test", "DEBUG")

    assert logging.getLogger("pyroute2").level == logging.WARNING
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_log_level_falls_back_to_info():
    assert observability._log_level("debug") == logging.DEBUG
    assert observability._log_level("nonsense") == logging.INFO
    assert observability._log_level(None) == logging.INFO
    assert observability._log_level(logging.WARNING) == logging.WARNING


def test_parse_otlp_headers():
    value = "authorization=Bearer token, custom=abc,broken"
    headers = observability.parse_otlp_headers(value)
    assert headers == {"authorization": "Bearer token", "custom": "abc"}


def test_configure_tracing_installs_sdk_provider(monkeypatch):
    monkeypatch.setattr(observability, "_tracer_configured", False)

    provider = observability.configure_tracing("weavenet.obs", None, None, 1.0, command="launch")

    assert isinstance(trace.get_tracer_provider(), TracerProvider)
    assert provider is trace.get_tracer_provider()


def test_flush_tracing_flushes_sdk_provider(monkeypatch):
    provider = RecordingProvider()
    monkeypatch.setattr(observability.trace, "get_tracer_provider", lambda: provider)

    assert observability.flush_tracing(1000) is True
    assert provider.flush_calls == [1000]


def test_flush_tracing_reports_timeout(monkeypatch):
    provider = RecordingProvider(flush_result=False)
    monkeypatch.setattr(observability.trace, "get_tracer_provider", lambda: provider)

    assert observability.flush_tracing() is False


def test_flush_tracing_without_sdk_provider(monkeypatch):
    monkeypatch.setattr(observability.trace, "get_tracer_provider", lambda: trace.NoOpTracerProvider())

    assert observability.flush_tracing() is True
