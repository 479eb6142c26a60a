"""
OpenTelemetry tracing setup.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from extraction_queue import __version__
from extraction_queue.config import get_settings

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing() -> Tracer:
    """
    Set up OpenTelemetry tracing.

    With ``otel_enabled`` off, no provider is installed and the returned
    tracer is the API's no-op tracer.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = get_settings()

    if settings.otel_enabled:
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=settings.otel_exporter_otlp_endpoint,
                    insecure=True,
                )
            )
        )
        trace.set_tracer_provider(provider)
        logger.info(
            "Tracing enabled",
            extra={"otlp_endpoint": settings.otel_exporter_otlp_endpoint},
        )

    _tracer = trace.get_tracer(settings.otel_service_name)
    return _tracer


def set_job_attributes(span: Span, job: Any, **extra: Any) -> None:
    """
    Tag a span with the job it is about.

    Attributes are namespaced under ``job.`` so they do not collide with the
    HTTP and database attributes of the instrumented spans around them.
    """
    span.set_attribute("job.id", str(job.id))
    span.set_attribute("job.type", job.type)
    span.set_attribute("job.attempts", job.attempts)
    if job.group_key is not None:
        span.set_attribute("job.group_key", job.group_key)
    for key, value in extra.items():
        span.set_attribute(f"job.{key}", value)


def instrument_fastapi(app: Any) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: The FastAPI application instance.
    """
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument SQLAlchemy engine with OpenTelemetry.

    Args:
        engine: The synchronous SQLAlchemy engine behind the async one.
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    """
    Get the tracer instance, setting tracing up on first use.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer
    if _tracer is None:
        _tracer = setup_tracing()
    return _tracer
