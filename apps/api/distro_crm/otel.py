"""Tracing setup for the API process and the refresh worker.

One ``TracerProvider`` is installed per process. Exporters are attached by
``configure_tracing`` (OTLP over HTTP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is
set, console when ``OTEL_CONSOLE_EXPORTER=true``) or, in tests, by
``attach_inmemory_exporter``.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from distro_crm.context import get_correlation_id

CORRELATION_ATTRIBUTE = "correlation_id"

_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider(service_name: str) -> TracerProvider:
    global _provider
    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": service_name,
                    "service.namespace": "distro-crm",
                    "service.version": os.getenv("APP_VERSION", "0.1.0"),
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(service_name: str, *, enabled: bool) -> TracerProvider | None:
    global _exporters_attached
    if not enabled:
        return None

    provider = _tracer_provider(service_name)
    if _exporters_attached:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def attach_inmemory_exporter(service_name: str = "distro-crm") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def refresh_span(tracer: trace.Tracer, *, run_id: str, trigger: str) -> Iterator[trace.Span]:
    """Span around one summary refresh, tagged with the run and the request that caused it."""
    with tracer.start_as_current_span("principal_activity.refresh") as span:
        span.set_attribute("refresh.run_id", run_id)
        span.set_attribute("refresh.trigger", trigger)
        correlation_id = get_correlation_id()
        if correlation_id:
            span.set_attribute(CORRELATION_ATTRIBUTE, correlation_id)
        yield span


def request_span_hook(span: trace.Span | None, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == b"x-correlation-id" and value:
            span.set_attribute(CORRELATION_ATTRIBUTE, value.decode("latin-1"))
            return
