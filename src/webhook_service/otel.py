"""Tracing for webhook-service.

Off unless ``otel_exporter_endpoint`` is configured. When enabled, every
inbound request gets a server span and each outbound delivery is wrapped in
a ``webhook.deliver`` span by the dispatcher.
"""
from __future__ import annotations

import structlog
from aiohttp import web

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

_provider: TracerProvider | None = None


def _traces_url(endpoint: str) -> str:
    return f"{endpoint.rstrip('/')}/v1/traces"


def _build_provider(endpoint: str) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {SERVICE_NAME: settings.app_name, DEPLOYMENT_ENVIRONMENT: settings.env}
        )
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=_traces_url(endpoint))))
    return provider


def setup_otel(app: web.Application) -> None:
    global _provider

    if settings.otel_exporter_endpoint is None:
        logger.info("tracing disabled", reason="otel_exporter_endpoint not set")
        return

    endpoint = str(settings.otel_exporter_endpoint)
    _provider = _build_provider(endpoint)
    trace.set_tracer_provider(_provider)
    AioHttpServerInstrumentor().instrument()
    app.on_cleanup.append(shutdown_otel)
    logger.info("tracing enabled", traces_url=_traces_url(endpoint), service=settings.app_name)


async def shutdown_otel(_app: web.Application) -> None:
    """Flush buffered spans before the process exits."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.info("tracing shut down")


def get_tracer(name: str = __name__) -> trace.Tracer:
    """No-op tracer until ``setup_otel`` installs a provider."""
    return trace.get_tracer(name)
