"""OpenTelemetry tracing for sweep ticks and inbound messages.

Spans are only exported when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set; without
it the global no-op provider stays in place.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

TRACER_NAME = "trip_dispatcher"

# OTel allows the global provider to be set once per process.
_provider: TracerProvider | None = None


def init_telemetry(service_name: str) -> trace.Tracer:
    global _provider

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set; spans are not exported")
    elif _provider is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        _provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(_provider)
        logger.info("Exporting spans for %s to %s", service_name, endpoint)
    return get_tracer()


def shutdown_telemetry() -> None:
    """Flush spans still buffered by the exporter."""
    if _provider is not None:
        _provider.force_flush()


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)
