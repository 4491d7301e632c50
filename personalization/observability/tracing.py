import os
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor

from personalization.config import SERVICE_NAME
from personalization.logging import setup_logging

logger = setup_logging("tracing.log")


@contextmanager
def gateway_span(
    gateway: str,
    operation: str,
    **attributes: Any,
):
    """
    Create an OpenTelemetry span around a collaborator call.

    Usage:
        with gateway_span("behavior", "get_events", subject_id=sid) as span:
            response = await client.get(...)
            span.set_attribute("http.status_code", response.status_code)

    Args:
        gateway: Collaborator name (e.g., "behavior", "products")
        operation: Gateway operation name (e.g., "get_events")
        **attributes: Additional span attributes, prefixed with "gateway."

    Yields:
        The active span, so callers can attach result attributes
    """
    tracer = trace.get_tracer(SERVICE_NAME)
    with tracer.start_as_current_span(
        f"{gateway}.{operation}",
        kind=trace.SpanKind.CLIENT,
    ) as span:
        span.set_attribute("peer.service", gateway)
        span.set_attribute("gateway.operation", operation)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"gateway.{key}", value)
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def setup_tracing(app, service_name: str = SERVICE_NAME):
    """
    setup opentelemetry tracing with an otlp exporter.
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception as e:
        # collector not reachable: keep tracing in-process only
        logger.warning(f"Tracing export disabled (collector not available): {e}")

    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)
    RedisInstrumentor().instrument()

    return trace.get_tracer(service_name)
