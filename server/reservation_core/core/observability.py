"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

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
import structlog

from .config import settings

SERVICE_NAME = "reservation-core"

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

# Business metrics
HOLDS_RESERVED = Counter(
    'reservation_holds_reserved_total',
    'Reservation tokens issued',
    ['kind'],
    registry=REGISTRY
)

HOLDS_REJECTED = Counter(
    'reservation_holds_rejected_total',
    'Reservation attempts rejected for insufficient capacity',
    ['kind'],
    registry=REGISTRY
)

HOLDS_RELEASED = Counter(
    'reservation_holds_released_total',
    'Reservation tokens released',
    ['reason'],
    registry=REGISTRY
)

HOLDS_EXPIRED = Counter(
    'reservation_holds_expired_total',
    'Reservation tokens expired by the sweep',
    registry=REGISTRY
)

BOOKINGS_CREATED = Counter(
    'bookings_created_total',
    'Bookings created in pending payment state',
    ['kind'],
    registry=REGISTRY
)

BOOKINGS_CONFIRMED = Counter(
    'bookings_confirmed_total',
    'Bookings confirmed after verified payment',
    ['provider'],
    registry=REGISTRY
)

PAYMENTS_FAILED = Counter(
    'payments_failed_total',
    'Payments that failed verification',
    ['provider', 'reason'],
    registry=REGISTRY
)

BOOKINGS_CANCELLED = Counter(
    'bookings_cancelled_total',
    'Bookings cancelled',
    ['path'],
    registry=REGISTRY
)

CANCELLATION_REQUESTS = Counter(
    'cancellation_requests_total',
    'Cancellation requests by outcome',
    ['outcome'],
    registry=REGISTRY
)

COMPENSATION_FAILURES = Counter(
    'reservation_compensation_failures_total',
    'Reservation tokens that could not be released after a failed booking write',
    registry=REGISTRY
)

PENDING_REVIEWS = Gauge(
    'cancellation_requests_pending',
    'Cancellation requests awaiting staff review',
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


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())
    trace.set_tracer_provider(provider)

    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_hold_reserved(kind: str):
        HOLDS_RESERVED.labels(kind=kind).inc()

    @staticmethod
    def record_hold_rejected(kind: str):
        HOLDS_REJECTED.labels(kind=kind).inc()

    @staticmethod
    def record_hold_released(reason: str):
        HOLDS_RELEASED.labels(reason=reason).inc()

    @staticmethod
    def record_holds_expired(count: int):
        HOLDS_EXPIRED.inc(count)

    @staticmethod
    def record_booking_created(kind: str):
        BOOKINGS_CREATED.labels(kind=kind).inc()

    @staticmethod
    def record_booking_confirmed(provider: str):
        BOOKINGS_CONFIRMED.labels(provider=provider).inc()

    @staticmethod
    def record_payment_failed(provider: str, reason: str):
        PAYMENTS_FAILED.labels(provider=provider, reason=reason).inc()

    @staticmethod
    def record_booking_cancelled(path: str):
        BOOKINGS_CANCELLED.labels(path=path).inc()

    @staticmethod
    def record_cancellation_request(outcome: str):
        CANCELLATION_REQUESTS.labels(outcome=outcome).inc()

    @staticmethod
    def record_compensation_failure():
        """Record a reservation token left behind by a failed compensation."""
        COMPENSATION_FAILURES.inc()

    @staticmethod
    def set_pending_reviews(count: int):
        PENDING_REVIEWS.set(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, name: str, logger=None):
        self.logger = logger if logger is not None else structlog.get_logger(name)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log an operational alert that needs a human."""
        self.logger.critical(message, **kwargs)

    def with_context(self, **kwargs):
        """Add context to logger."""
        return StructuredLogger("", logger=self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
