import logging
import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

# OpenTelemetry
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from shared.config import settings

_tracer_provider: TracerProvider | None = None


def add_otel_ids(logger, log_method, event_dict):
    """Stamp the active trace and span ids on the event so logs join up with traces."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def configure_logging():
    level = logging.getLevelName(settings.LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_tracing(app: FastAPI, service_name: str):
    """Export spans over OTLP gRPC. Skipped entirely when no collector is configured."""
    global _tracer_provider

    if not settings.OTLP_ENDPOINT:
        return

    # Both sub-apps run in one process and share the first provider
    if _tracer_provider is None:
        _tracer_provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        _tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True))
        )
        trace.set_tracer_provider(_tracer_provider)

        # Stripe SDK calls go out over httpx
        HTTPXClientInstrumentor().instrument()

    FastAPIInstrumentor.instrument_app(app)


def configure_metrics(app: FastAPI):
    # Request latency and status codes per route, exposed at /metrics
    Instrumentator().instrument(app).expose(app)


def setup_observability(app: FastAPI, service_name: str):
    """
    Bootstraps Logging, Tracing, and Metrics for a FastAPI app.
    Called by each sub-app at import time.
    """
    configure_logging()
    configure_tracing(app, service_name)
    configure_metrics(app)
