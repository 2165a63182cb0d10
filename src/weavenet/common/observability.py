"""Logging and tracing setup for the short-lived weave commands and the helper daemon."""

from __future__ import annotations

import logging
import sys
from typing import Dict, Optional

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from structlog.contextvars import bind_contextvars

# Libraries that log every netlink message or HTTP request at DEBUG/INFO.
CHATTY_LOGGERS = ("pyroute2", "docker", "urllib3")

_logging_configured = False
_tracer_configured = False


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(service_name: str, level: str | int | None = None, *, command: Optional[str] = None) -> None:
    """JSON logs on stderr; stdout carries command output (container ids, status bodies)."""

    global _logging_configured
    numeric_level = _log_level(level)
    if not _logging_configured:
        logging.basicConfig(level=numeric_level, format="%(message)s", stream=sys.stderr)
        _logging_configured = True
    else:
        logging.getLogger().setLevel(numeric_level)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    context = {"service": service_name}
    if command:
        context["command"] = command
    bind_contextvars(**context)


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    if not headers:
        return {}
    result: Dict[str, str] = {}
    for item in headers.split(","):
        key, _, value = item.partition("=")
        if key.strip() and value.strip():
            result[key.strip()] = value.strip()
    return result


def configure_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
    *,
    command: Optional[str] = None,
) -> Optional[TracerProvider]:
    """Install an SDK tracer provider; spans are exported only when ``endpoint`` is set.

    Returns the active SDK provider, or ``None`` if another kind of provider
    was installed before us.
    """

    global _tracer_configured
    current = trace.get_tracer_provider()
    if _tracer_configured or isinstance(current, TracerProvider):
        _tracer_configured = True
        return current if isinstance(current, TracerProvider) else None

    attributes = {"service.name": service_name, "service.namespace": "weave"}
    if command:
        attributes["weave.command"] = command
    ratio = max(0.0, min(1.0, sampler_ratio))
    provider = TracerProvider(resource=Resource.create(attributes), sampler=TraceIdRatioBased(ratio))
    if endpoint:
        exporter = OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _tracer_configured = True
    return provider


def flush_tracing(timeout_millis: int = 5000) -> bool:
    """Push queued spans out before the process exits.

    Commands finish well inside the batch processor's export interval, so
    without this their spans are dropped.
    """

    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        return True
    flushed = provider.force_flush(timeout_millis)
    if not flushed:
        structlog.get_logger("weavenet.observability").warning(
            "Timed out flushing spans", timeout_millis=timeout_millis
        )
    return flushed
