# telemetry.py — OpenTelemetry tracing for the Todoria API and jobs
"""
Tracing is opt-in: set OTEL_EXPORTER_OTLP_ENDPOINT and install the
`otel` extra. Without either, every helper here is a no-op so the API,
the cron jobs and the test suite run unchanged.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("todoria.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "todoria-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

_provider = None


def setup_telemetry(app=None, engine=None):
    """Register an OTLP tracer provider and instrument FastAPI, SQLAlchemy and HTTPX.

    Returns the provider, or None when tracing stays disabled.
    """
    global _provider
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None
    if _provider is not None:
        return _provider

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT is set but the otel extra is not installed")
        return None

    provider = TracerProvider(resource=Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    else:
        SQLAlchemyInstrumentor().instrument(tracer_provider=provider)

    # Outbound calls from the client SDK
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)

    _provider = provider
    logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT}")
    return provider


@contextmanager
def job_span(job_name: str, **attributes):
    """Wrap a cron job run in a span when tracing is enabled"""
    if _provider is None:
        yield None
        return

    from opentelemetry import trace
    tracer = trace.get_tracer("todoria.jobs", SERVICE_VERSION)
    with tracer.start_as_current_span(f"job.{job_name}") as span:
        for key, value in attributes.items():
            span.set_attribute(f"todoria.job.{key}", value)
        yield span
