"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "camp-booking-engine"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Booking metrics
RESERVATIONS = Counter(
    'booking_reservations_total',
    'Reservation attempts by outcome',
    ['pool_kind', 'outcome'],
    registry=REGISTRY
)

CANCELLATIONS = Counter(
    'booking_cancellations_total',
    'Booking entries cancelled, by status before cancellation',
    ['previous_status'],
    registry=REGISTRY
)

OFFERS_CREATED = Counter(
    'claim_offers_created_total',
    'Claim offers made to the head of a waitlist',
    registry=REGISTRY
)

OFFERS_CLAIMED = Counter(
    'claim_offers_claimed_total',
    'Claim offers converted into confirmed bookings',
    registry=REGISTRY
)

OFFERS_EXPIRED = Counter(
    'claim_offers_expired_total',
    'Claim offers that lapsed unclaimed',
    registry=REGISTRY
)

NOTIFICATION_FAILURES = Counter(
    'notification_failures_total',
    'Booking events the notifier failed to deliver',
    ['event_kind'],
    registry=REGISTRY
)

CONFLICT_RETRIES = Counter(
    'pool_conflict_retries_total',
    'Pool transactions retried after a transient database conflict',
    ['operation'],
    registry=REGISTRY
)

OCCUPANCY_DRIFT = Counter(
    'pool_occupancy_drift_total',
    'Audits that found stored occupancy differing from the confirmed count',
    registry=REGISTRY
)

POOL_OCCUPANCY = Gauge(
    'pool_occupancy',
    'Confirmed bookings held against a pool',
    ['pool_id'],
    registry=REGISTRY
)

POOL_WAITLIST_LENGTH = Gauge(
    'pool_waitlist_length',
    'Waitlisted entries queued on a pool',
    ['pool_id'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            # request_id is bound here by RequestIDMiddleware
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource(app_name: str) -> Resource:
    return Resource.create({
        "service.name": app_name,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource(app_name))

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(app_name), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine=None):
    """Instrument SQLAlchemy with OpenTelemetry."""
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    else:
        SQLAlchemyInstrumentor().instrument()


def get_tracer(name: str):
    """Tracer for engine spans; a no-op until setup_tracing installs a provider."""
    return trace.get_tracer(name)


class MetricsCollector:
    """Collector for booking engine metrics."""

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record a finished HTTP request."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_reservation(pool_kind: str, outcome: str):
        """Record a reservation outcome (confirmed, waitlisted, rejected, duplicate)."""
        RESERVATIONS.labels(pool_kind=pool_kind, outcome=outcome).inc()

    @staticmethod
    def record_cancellation(previous_status: str):
        CANCELLATIONS.labels(previous_status=previous_status).inc()

    @staticmethod
    def record_offer_created():
        OFFERS_CREATED.inc()

    @staticmethod
    def record_offer_claimed():
        OFFERS_CLAIMED.inc()

    @staticmethod
    def record_offer_expired(count: int = 1):
        OFFERS_EXPIRED.inc(count)

    @staticmethod
    def record_notification_failure(event_kind: str):
        NOTIFICATION_FAILURES.labels(event_kind=event_kind).inc()

    @staticmethod
    def record_conflict_retry(operation: str):
        CONFLICT_RETRIES.labels(operation=operation).inc()

    @staticmethod
    def record_occupancy_drift():
        OCCUPANCY_DRIFT.inc()

    @staticmethod
    def set_pool_gauges(pool_id: int, occupancy: int, waitlist_length: int):
        """Set occupancy and waitlist gauges for a pool."""
        POOL_OCCUPANCY.labels(pool_id=str(pool_id)).set(occupancy)
        POOL_WAITLIST_LENGTH.labels(pool_id=str(pool_id)).set(waitlist_length)

    @staticmethod
    def clear_pool_gauges(pool_id: int):
        """Drop the gauges of a deleted pool."""
        for gauge in (POOL_OCCUPANCY, POOL_WAITLIST_LENGTH):
            try:
                gauge.remove(str(pool_id))
            except KeyError:
                pass


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with booking context."""

    def __init__(self, logger):
        self.logger = logger

    def info(self, message: str, **kwargs):
        """Log info message with context."""
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with context."""
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with context."""
        self.logger.error(message, **kwargs)

    def with_context(self, **kwargs) -> "StructuredLogger":
        """Add context to logger."""
        return StructuredLogger(self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(structlog.get_logger(name))
