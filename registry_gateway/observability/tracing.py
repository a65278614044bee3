"""
Tracing Utility

OpenTelemetry-based tracing for registry submissions. Configured from
Settings; failures while configuring or recording spans are logged and
never interrupt a submission.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

from registry_gateway.config import settings

logger = logging.getLogger(__name__)

# Global tracer provider
_tracer_provider: Optional[TracerProvider] = None
_tracing_configured = False


def configure_tracing(
    enabled: Optional[bool] = None,
    exporter: Optional[str] = None,
    service_name: Optional[str] = None,
) -> None:
    """
    Configure OpenTelemetry tracing.

    Arguments default to the TRACING_ENABLED, TRACING_EXPORTER and
    TRACING_SERVICE_NAME settings. Supported exporters are ``console`` and
    ``none`` (spans are recorded but not exported).

    Safe Failure: If configuration fails, tracing is disabled but the gateway
    keeps working.
    """
    global _tracer_provider, _tracing_configured

    if _tracing_configured:
        return

    enabled = settings.TRACING_ENABLED if enabled is None else enabled
    exporter = (exporter or settings.TRACING_EXPORTER).lower()
    service_name = service_name or settings.TRACING_SERVICE_NAME

    try:
        if not enabled:
            logger.info("Tracing is disabled via TRACING_ENABLED=false")
            _tracing_configured = True
            return

        provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))

        if exporter == "console":
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("Console tracing configured")
        elif exporter == "none":
            logger.info("Tracing exporter set to 'none' - no spans will be exported")
        else:
            logger.warning(f"Unknown exporter type: {exporter}. Tracing disabled.")
            _tracing_configured = True
            return

        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        _tracing_configured = True
        logger.info(f"Tracing configured successfully (service: {service_name})")

    except Exception as e:
        logger.error(f"Failed to configure tracing: {e}. Tracing will be disabled.")
        _tracer_provider = None
        _tracing_configured = True


def is_tracing_enabled() -> bool:
    return _tracer_provider is not None


def get_tracer(component: str) -> Tracer:
    """
    Get a tracer for the given component.

    Returns a no-op tracer if tracing is disabled.
    """
    if not _tracing_configured:
        configure_tracing()

    return trace.get_tracer(component)


@contextmanager
def trace_span(
    tracer: Tracer,
    span_name: str,
    attributes: Optional[dict] = None,
    set_status_on_exception: bool = True,
):
    """
    Context manager for creating a traced span.

    Yields None when tracing is disabled. Exceptions raised inside the block
    are recorded on the span and re-raised.

    Example:
        with trace_span(tracer, "registry.submit", {"payload.bytes": 42}) as span:
            add_span_attributes(span, {"result": "ok"})
    """
    if not is_tracing_enabled():
        yield None
        return

    with tracer.start_as_current_span(
        span_name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            add_span_attributes(span, attributes)

        try:
            yield span
        except Exception as e:
            if set_status_on_exception:
                set_span_error(span, e)
            raise


def set_span_error(span, error: Exception) -> None:
    """Mark a span as errored with exception details."""
    if span is None or not is_tracing_enabled():
        return

    try:
        span.set_status(Status(StatusCode.ERROR, str(error)))
        span.record_exception(error)
    except Exception as e:
        logger.error(f"Error setting span error: {e}")


def add_span_attributes(span, attributes: dict) -> None:
    """Add attributes to a span safely."""
    if span is None or not is_tracing_enabled():
        return

    try:
        for key, value in attributes.items():
            span.set_attribute(key, value)
    except Exception as e:
        logger.error(f"Error adding span attributes: {e}")
