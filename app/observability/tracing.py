"""
Distributed Tracing with OpenTelemetry.

Spans cover the webhook request (FastAPI instrumentation), the reward pipeline
(``trace_operation``) and each SQL statement (SQLAlchemy instrumentation).
Everything is a no-op unless ``tracing_enabled`` is set.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from app.config import settings

TRACER_NAME = "app.rewards"

_provider_installed = False


def setup_tracing() -> bool:
    """
    Install an OTLP-exporting tracer provider once per process.

    Returns True if tracing is active.
    """
    global _provider_installed
    if not settings.tracing_enabled:
        return False
    if _provider_installed:
        return True

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)
    _provider_installed = True
    return True


def instrument_fastapi(app: Any) -> None:
    """Trace every webhook request. Call after the app is created."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace statements on an async engine."""
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """
    Set attributes on a span. None values are skipped; enums and other
    non-primitive values are stringified.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            span.set_attribute(key, value)
        else:
            span.set_attribute(key, str(getattr(value, "value", value)))


def set_span_error(span: Span, error: BaseException) -> None:
    """Mark span as failed, tagging the domain error class."""
    span.set_attribute("error.type", type(error).__name__)
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a current span, so database spans nest under it.

    Usage:
        with trace_operation("reward_callback", platform="admob") as span:
            outcome = await service.grant_reward(payload, platform)
            span.set_attribute("transaction_id", outcome.transaction_id)
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        operation_name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        add_span_attributes(span, **attributes)
        try:
            yield span
        except BaseException as exc:
            set_span_error(span, exc)
            raise
