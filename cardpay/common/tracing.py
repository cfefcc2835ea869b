"""OpenTelemetry wiring: provider setup, FastAPI spans, outbound gateway spans."""

from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind

from cardpay.common.config import settings


tracer = trace.get_tracer("cardpay")


def setup_tracing(service_name: str, endpoint: str | None = None) -> None:
    """Register a tracer provider exporting over OTLP/HTTP."""

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint or settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


@contextmanager
def gateway_span(method: str, endpoint: str) -> Iterator[trace.Span]:
    """Client span around one gateway call; no-op until `setup_tracing` runs."""

    name = "pagsmile." + endpoint.strip("/").replace("/", ".")
    with tracer.start_as_current_span(name, kind=SpanKind.CLIENT) as span:
        span.set_attribute("http.request.method", method)
        span.set_attribute("pagsmile.endpoint", endpoint)
        yield span
