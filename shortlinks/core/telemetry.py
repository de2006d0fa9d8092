"""OpenTelemetry instrumentation for the mapping store."""

import logging
from contextlib import suppress
from typing import Dict, Optional, Tuple, Union

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter as OTLPGrpcMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as OTLPGrpcSpanExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter as OTLPHttpMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTLPHttpSpanExporter
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import (
    ParentBasedTraceIdRatio,
    TraceIdRatioBased,
)

from shortlinks.core.config import Settings, settings

logger = logging.getLogger(__name__)

# Global providers can be installed once per process
_providers: Tuple[Optional[TracerProvider], Optional[MeterProvider]] = (None, None)


def setup_telemetry(config: Settings = settings) -> Tuple[Optional[TracerProvider], Optional[MeterProvider]]:
    """Initialize OpenTelemetry tracing and metrics providers from ``config``.

    Later calls return the providers installed by the first enabled call.
    """
    global _providers

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry instrumentation is disabled")
        return None, None

    if _providers[0] is not None:
        return _providers

    try:
        resource = Resource.create({
            "service.name": config.OTEL_SERVICE_NAME,
            "service.version": config.APP_VERSION,
            "deployment.environment": config.ENVIRONMENT.value,
            **_parse_resource_attributes(config.OTEL_RESOURCE_ATTRIBUTES)
        })

        _providers = (_setup_tracing(resource, config), _setup_metrics(resource, config))
        return _providers
    except Exception as e:
        logger.error(f"Failed to initialize OpenTelemetry: {e}")
        return None, None


def instrument_storage(db_engine=None, redis_enabled: bool = False, config: Settings = settings) -> None:
    """Instrument the SQLAlchemy engine and the Redis client library."""
    if not config.OTEL_ENABLED:
        return

    if db_engine is not None:
        with suppress(Exception):
            SQLAlchemyInstrumentor().instrument(
                engine=db_engine.sync_engine,
                tracer_provider=trace.get_tracer_provider(),
                meter_provider=metrics.get_meter_provider()
            )
            logger.info("SQLAlchemy instrumentation enabled")

    if redis_enabled:
        with suppress(Exception):
            RedisInstrumentor().instrument(
                tracer_provider=trace.get_tracer_provider()
            )
            logger.info("Redis instrumentation enabled")


def _setup_tracing(resource: Resource, config: Settings) -> TracerProvider:
    """Set up tracing with the provided resource."""
    tracer_provider = TracerProvider(
        resource=resource,
        sampler=_create_sampler(
            config.OTEL_TRACES_SAMPLER,
            float(config.OTEL_TRACES_SAMPLER_ARG)
        )
    )
    trace.set_tracer_provider(tracer_provider)

    if config.OTEL_EXPORTER_OTLP_PROTOCOL.lower() == "grpc":
        otlp_exporter = OTLPGrpcSpanExporter(
            endpoint=config.OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
    else:
        otlp_exporter = OTLPHttpSpanExporter(
            endpoint=config.OTEL_EXPORTER_OTLP_ENDPOINT
        )

    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    logger.info(f"OpenTelemetry tracer configured with {config.OTEL_EXPORTER_OTLP_PROTOCOL} exporter")

    return tracer_provider


def _setup_metrics(resource: Resource, config: Settings) -> MeterProvider:
    """Set up metrics with the provided resource."""
    if config.OTEL_EXPORTER_OTLP_PROTOCOL.lower() == "grpc":
        metric_exporter = OTLPGrpcMetricExporter(
            endpoint=config.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT,
            insecure=True
        )
    else:
        metric_exporter = OTLPHttpMetricExporter(
            endpoint=config.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT
        )

    reader = PeriodicExportingMetricReader(
        metric_exporter,
        export_interval_millis=config.OTEL_METRICS_EXPORT_INTERVAL_MILLIS
    )

    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    logger.info(f"OpenTelemetry metrics configured with {config.OTEL_EXPORTER_OTLP_PROTOCOL} exporter")

    return meter_provider


def _create_sampler(sampler_type: str, sampler_arg: float) -> Union[ParentBasedTraceIdRatio, TraceIdRatioBased]:
    """Create a sampler based on configuration."""
    if sampler_type.lower() == "parentbased_traceidratio":
        return ParentBasedTraceIdRatio(sampler_arg)
    return TraceIdRatioBased(sampler_arg)


def _parse_resource_attributes(attributes_str: str) -> Dict[str, str]:
    """Parse resource attributes from ``key=value,key=value`` format."""
    if not attributes_str:
        return {}

    attributes = {}
    for pair in attributes_str.split(","):
        with suppress(ValueError):
            key, value = pair.strip().split("=", 1)
            attributes[key] = value

    return attributes


def get_tracer(name: str = None) -> trace.Tracer:
    """Get a tracer for creating spans."""
    return trace.get_tracer(name or settings.OTEL_SERVICE_NAME)


def get_meter(name: str = None) -> metrics.Meter:
    """Get a meter for creating metrics."""
    return metrics.get_meter(name or settings.OTEL_SERVICE_NAME)


class AllocationMetrics:
    """Counters describing short code allocation.

    Instruments are created against whatever meter provider is active; with
    telemetry disabled they are no-ops.
    """

    def __init__(self, meter: Optional[metrics.Meter] = None):
        meter = meter or get_meter(f"{settings.OTEL_SERVICE_NAME}.allocation")
        self.created = meter.create_counter(
            name="shortlinks.mappings.created",
            description="Number of new mappings persisted",
            unit="1"
        )
        self.reused = meter.create_counter(
            name="shortlinks.mappings.reused",
            description="Shorten calls answered with an existing mapping",
            unit="1"
        )
        self.collisions = meter.create_counter(
            name="shortlinks.allocation.collisions",
            description="Candidate codes rejected by the short_code constraint",
            unit="1"
        )
        self.exhausted = meter.create_counter(
            name="shortlinks.allocation.exhausted",
            description="Shorten calls that ran out of candidate codes",
            unit="1"
        )
