"""Prometheus metrics and optional OpenTelemetry tracing for the quota API."""

from __future__ import annotations

import time

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..core.config import Settings
from .metrics import HTTP_LATENCY, HTTP_REQUESTS, QUOTA_DECISIONS, STORE_LATENCY, count_decision

__all__ = [
    "QUOTA_DECISIONS",
    "STORE_LATENCY",
    "RequestMetricsMiddleware",
    "configure_tracing",
    "count_decision",
    "otlp_headers",
    "setup_prometheus",
]

_tracer_provider = None


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Count requests per route template so hashed ids never become labels."""

    def __init__(self, app, *, skip_prefix: str) -> None:
        super().__init__(app)
        self._skip_prefix = skip_prefix

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        started = time.perf_counter()
        response = await call_next(request)
        route = getattr(request.scope.get("route"), "path", None) or "unmatched"
        if route.startswith(self._skip_prefix):
            return response
        HTTP_REQUESTS.labels(request.method, route, str(response.status_code)).inc()
        HTTP_LATENCY.labels(request.method, route).observe(time.perf_counter() - started)
        return response


def setup_prometheus(app: FastAPI, settings: Settings) -> None:
    """Serve the default registry and start counting requests."""

    metrics_path = settings.prometheus_metrics_path
    app.add_middleware(RequestMetricsMiddleware, skip_prefix=metrics_path)

    async def scrape() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.add_api_route(metrics_path, scrape, methods=["GET"], include_in_schema=False)


def configure_tracing(app: FastAPI, settings: Settings) -> None:
    """Export FastAPI spans over OTLP/HTTP when an endpoint is configured.

    The tracer provider is process-wide; apps created later reuse it.
    """

    global _tracer_provider
    if not settings.otel_exporter_otlp_endpoint:
        return

    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    if _tracer_provider is None:
        _tracer_provider = _build_tracer_provider(settings)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=_tracer_provider)


def _build_tracer_provider(settings: Settings):
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from .. import __version__

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name or "canquota",
                "service.version": __version__,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                headers=otlp_headers(settings.otel_exporter_otlp_headers),
            )
        )
    )
    trace.set_tracer_provider(provider)
    return provider


def otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse `key=value,key2=value2` into a header mapping."""

    pairs = (part.split("=", 1) for part in (raw or "").split(",") if "=" in part)
    return {key.strip(): value.strip() for key, value in pairs if key.strip()}
