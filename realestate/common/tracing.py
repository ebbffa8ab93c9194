import logging

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Tracer

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_INSTRUMENTED_APPS: set[int] = set()
_HTTPX_INSTRUMENTED = False
_SERVICE_NAMESPACE = "realestate"


def _create_exporter(settings: ServiceSettings) -> SpanExporter | None:
    if settings.tracing_endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=settings.tracing_endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=settings.tracing_endpoint)


def _build_resource(settings: ServiceSettings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.app_name,
            "service.namespace": _SERVICE_NAMESPACE,
            "deployment.environment": settings.environment,
        }
    )


def _ensure_provider(settings: ServiceSettings) -> trace.TracerProvider:
    current_provider = trace.get_tracer_provider()
    if isinstance(current_provider, TracerProvider):
        return current_provider

    # Honour the sampling decision of upstream callers that already started a trace.
    sampler = ParentBased(TraceIdRatioBased(settings.tracing_sample_rate))
    provider = TracerProvider(resource=_build_resource(settings), sampler=sampler)
    exporter = _create_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        _LOGGER.warning(
            "Tracing is enabled for %s but no OTLP endpoint is configured; spans will not be exported.",
            settings.app_name,
        )
    trace.set_tracer_provider(provider)
    return trace.get_tracer_provider()


def _instrument_httpx(provider: trace.TracerProvider) -> None:
    global _HTTPX_INSTRUMENTED
    if _HTTPX_INSTRUMENTED:
        return
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    _HTTPX_INSTRUMENTED = True


def _instrument_app(app: FastAPI, provider: trace.TracerProvider, excluded_urls: str) -> None:
    app_id = id(app)
    if app_id in _INSTRUMENTED_APPS:
        return
    FastAPIInstrumentor().instrument_app(app, tracer_provider=provider, excluded_urls=excluded_urls)
    _INSTRUMENTED_APPS.add(app_id)


def get_tracer(name: str) -> Tracer:
    """Return a tracer from the globally configured provider.

    Spans started before tracing is configured are no-ops, so services may
    create their module level tracers at import time.
    """

    return trace.get_tracer(name)


def configure_tracing(app: FastAPI, settings: ServiceSettings) -> None:
    """Configure OpenTelemetry tracing when enabled in settings."""

    if not settings.enable_tracing:
        return

    provider = _ensure_provider(settings)
    _instrument_app(app, provider, settings.tracing_excluded_urls)
    # Outgoing mail provider calls join the trace of the request that caused them.
    _instrument_httpx(provider)


def flush_tracing(timeout_millis: int = 5000) -> bool:
    """Export spans still buffered by the SDK provider; used on shutdown."""

    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        return True
    return provider.force_flush(timeout_millis)
