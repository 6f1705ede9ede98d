from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from kisan.telemetry.logging import get_logger

_configured = False


def configure_tracing(service_name: str, endpoint: str | None, environment: str = "local") -> bool:
    """Install an OTLP/HTTP span exporter. Returns False when tracing stays disabled."""
    global _configured
    if _configured:
        return True
    if not endpoint:
        return False

    resource = Resource.create({SERVICE_NAME: service_name, "deployment.environment": environment})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    get_logger(__name__).info(
        "tracing.enabled",
        endpoint=endpoint,
        service_name=service_name,
        environment=environment,
    )
    _configured = True
    return True


def get_tracer(name: str) -> trace.Tracer:
    # No-op tracer until configure_tracing installs a provider.
    return trace.get_tracer(name)


__all__ = ["configure_tracing", "get_tracer"]
