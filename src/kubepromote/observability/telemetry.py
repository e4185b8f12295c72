"""OpenTelemetry spans around pipeline stages.

Tracing is on by default and exported to the console; set
``KUBEPROMOTE_DISABLE_TRACING=1`` to replace every span with a no-op.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

DISABLE_TRACING_ENV = "KUBEPROMOTE_DISABLE_TRACING"

_configured = False


class _NoOpSpan:
    def set_attribute(self, key: str, value: Any) -> None:
        return None

    def record_exception(self, exc: BaseException) -> None:
        return None

    def set_status(self, status: Any) -> None:
        return None


def tracing_disabled() -> bool:
    return os.getenv(DISABLE_TRACING_ENV) == "1"


def setup_tracing(service_name: str, exporter: Any | None = None) -> None:
    """Install a tracer provider once per process.

    ``OTEL_SERVICE_NAME`` overrides ``service_name``; ``exporter`` defaults to
    the console exporter.
    """
    global _configured
    if _configured:
        return
    if tracing_disabled():
        logger.info("tracing.disabled", extra={"extra": {"service": service_name}})
        return
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    name = os.getenv("OTEL_SERVICE_NAME", "").strip() or service_name
    provider = TracerProvider(resource=Resource.create({"service.name": name}))
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _configured = True
    logger.info("tracing.configured", extra={"extra": {"service": name}})


@contextmanager
def stage_span(tracer_name: str, span_name: str, **attributes: Any) -> Iterator[Any]:
    """Run the block inside a span; exceptions are recorded and re-raised."""
    if tracing_disabled():
        yield _NoOpSpan()
        return
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    tracer = trace.get_tracer(tracer_name)
    with tracer.start_as_current_span(
        span_name, record_exception=False, set_status_on_exception=False
    ) as current:
        for key, value in attributes.items():
            if value is not None:
                current.set_attribute(key, value)
        try:
            yield current
        except Exception as exc:
            current.record_exception(exc)
            current.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
