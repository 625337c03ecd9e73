from __future__ import annotations

from fastapi import FastAPI

from ..settings import Settings
from .logging import get_logger


def configure_otel(settings: Settings) -> bool:
    """
    Optional OpenTelemetry setup.

    - If OTEL is disabled, do nothing.
    - Without an OTLP endpoint, spans go to the console exporter (useful in dev).
    """
    if not settings.otel_enabled:
        return False

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    log = get_logger("otel")

    service_name = str(settings.otel_service_name or "proposalhub-backend").strip()
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    endpoint = str(settings.otel_exporter_otlp_endpoint or "").strip()
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        log.info("otel_configured", exporter="otlp_http", endpoint=endpoint)
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        log.info("otel_configured", exporter="console")

    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI, settings: Settings) -> None:
    """
    Wire instrumentation for inbound HTTP (FastAPI) and outbound HTTP (httpx).
    """
    if not settings.otel_enabled:
        return

    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    log = get_logger("otel")
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    HTTPXClientInstrumentor().instrument()
    log.info("otel_instrumented", targets=["fastapi", "httpx"])
