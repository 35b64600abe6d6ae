"""
OpenTelemetry bootstrap for WSGI applications

This module reads the SigNoz settings and wraps a WSGI application with
OpenTelemetry instrumentation. Traces, metrics and logs are exported over
OTLP/HTTP and/or to the console, depending on the settings.
"""

import logging
import os
import sys
import uuid

# OpenTelemetry imports
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader, ConsoleMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION, SERVICE_INSTANCE_ID, HOST_NAME
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, SimpleLogRecordProcessor, ConsoleLogExporter
from opentelemetry._logs import set_logger_provider

# Instrumentation
from opentelemetry.instrumentation.wsgi import OpenTelemetryMiddleware
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.instrumentation.system_metrics import SystemMetricsInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

from . import __version__
from .settings import DEFAULT_CORRELATION_HEADER, load_settings

# Try to import PyMySQL instrumentation
try:
    from opentelemetry.instrumentation.pymysql import PyMySQLInstrumentor
    HAS_PYMYSQL = True
except ImportError:
    HAS_PYMYSQL = False

logger = logging.getLogger(__name__)

METRIC_EXPORT_INTERVAL_MILLIS = 30000

CORRELATION_ENVIRON_KEY = "signoz.correlation_id"
ATTR_CORRELATION_ID = "correlation.id"

# Telemetry installed by use_signoz(), one per process
_telemetry = None


class SignozTelemetry:
    """Providers installed for the process, kept so they can be flushed on shutdown."""

    def __init__(self, settings, resource, tracer_provider=None, meter_provider=None,
                 logger_provider=None, log_handler=None):
        self.settings = settings
        self.resource = resource
        self.tracer_provider = tracer_provider
        self.meter_provider = meter_provider
        self.logger_provider = logger_provider
        self.log_handler = log_handler
        self.instrumentors = []
        # Root logger level to restore on shutdown, None when left untouched
        self.previous_root_level = None

    @property
    def service_name(self):
        return self.resource.attributes.get(SERVICE_NAME)

    def shutdown(self):
        """Undo instrumentation, detach the log handler and flush every provider.

        Each step is attempted even when an earlier one fails.
        """
        for instrumentor in reversed(self.instrumentors):
            try:
                instrumentor.uninstrument()
            except Exception:
                logger.exception("Failed to uninstrument %s", type(instrumentor).__name__)
        self.instrumentors = []

        root_logger = logging.getLogger()
        if self.log_handler is not None:
            root_logger.removeHandler(self.log_handler)
            self.log_handler = None
        if self.previous_root_level is not None:
            root_logger.setLevel(self.previous_root_level)
            self.previous_root_level = None

        for provider in (self.tracer_provider, self.meter_provider, self.logger_provider):
            if provider is None:
                continue
            try:
                provider.shutdown()
            except Exception:
                logger.exception("Failed to shut down %s", type(provider).__name__)


def get_host_name():
    return os.environ.get("HOSTNAME", os.uname().nodename)


def get_default_application_name():
    """Name of the running program, used when no service name is configured."""
    program = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    name = os.path.splitext(program)[0]
    return name or "python-app"


def build_resource(settings, application_name):
    host_name = get_host_name()
    return Resource.create({
        SERVICE_NAME: settings.resolve_service_name(application_name),
        SERVICE_VERSION: settings.service_version or __version__,
        SERVICE_INSTANCE_ID: host_name,
        HOST_NAME: host_name,
    })


def configure_tracing(settings, resource):
    """Create a tracer provider with the exporters enabled in settings."""
    tracer_provider = TracerProvider(resource=resource, sampler=ALWAYS_ON)

    if settings.should_export_otlp:
        trace_exporter = OTLPSpanExporter(endpoint=settings.otlp_url("traces"))
        tracer_provider.add_span_processor(BatchSpanProcessor(trace_exporter))

    if settings.use_console_export:
        tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    return tracer_provider


def configure_metrics(settings, resource):
    """Create a meter provider with one periodic reader per enabled exporter."""
    metric_readers = []

    if settings.should_export_otlp:
        metric_exporter = OTLPMetricExporter(endpoint=settings.otlp_url("metrics"))
        metric_readers.append(PeriodicExportingMetricReader(
            metric_exporter,
            export_interval_millis=METRIC_EXPORT_INTERVAL_MILLIS,
        ))

    if settings.use_console_export:
        metric_readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=METRIC_EXPORT_INTERVAL_MILLIS,
        ))

    return MeterProvider(resource=resource, metric_readers=metric_readers)


def configure_logging(settings, resource):
    """Create a logger provider and the handler that feeds Python logs into it."""
    logger_provider = LoggerProvider(resource=resource)

    if settings.should_export_otlp:
        log_exporter = OTLPLogExporter(endpoint=settings.otlp_url("logs"))
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(log_exporter))

    if settings.use_console_export:
        logger_provider.add_log_record_processor(SimpleLogRecordProcessor(ConsoleLogExporter()))

    handler = LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
    return logger_provider, handler


def instrument_libraries(tracer_provider=None, meter_provider=None):
    """Turn on automatic instrumentation for outgoing HTTP, SQL and the runtime.

    Returns the instrumentors that were turned on, so they can be undone.
    """
    instrumentors = []

    if tracer_provider is not None or meter_provider is not None:
        requests_instrumentor = RequestsInstrumentor()
        requests_instrumentor.instrument(tracer_provider=tracer_provider, meter_provider=meter_provider)
        instrumentors.append(requests_instrumentor)

    if tracer_provider is not None and HAS_PYMYSQL:
        pymysql_instrumentor = PyMySQLInstrumentor()
        pymysql_instrumentor.instrument(tracer_provider=tracer_provider)
        instrumentors.append(pymysql_instrumentor)

    if meter_provider is not None:
        system_instrumentor = SystemMetricsInstrumentor()
        system_instrumentor.instrument(meter_provider=meter_provider)
        instrumentors.append(system_instrumentor)

    return instrumentors


def setup_telemetry(settings, application_name=None):
    """Install global providers and instrumentation according to settings."""
    resource = build_resource(settings, application_name or get_default_application_name())
    telemetry = SignozTelemetry(settings, resource)

    # === TRACES ===
    if settings.export_traces:
        telemetry.tracer_provider = configure_tracing(settings, resource)
        trace.set_tracer_provider(telemetry.tracer_provider)

    # === METRICS ===
    if settings.export_metrics:
        telemetry.meter_provider = configure_metrics(settings, resource)
        metrics.set_meter_provider(telemetry.meter_provider)

    # === LOGS ===
    if settings.export_logs:
        telemetry.logger_provider, telemetry.log_handler = configure_logging(settings, resource)
        set_logger_provider(telemetry.logger_provider)
        root_logger = logging.getLogger()
        root_logger.addHandler(telemetry.log_handler)
        if root_logger.level > logging.INFO or root_logger.level == logging.NOTSET:
            telemetry.previous_root_level = root_logger.level
            root_logger.setLevel(logging.INFO)
        logging_instrumentor = LoggingInstrumentor()
        logging_instrumentor.instrument(set_logging_format=True)
        telemetry.instrumentors.append(logging_instrumentor)

    # === INSTRUMENTATION ===
    telemetry.instrumentors.extend(instrument_libraries(telemetry.tracer_provider, telemetry.meter_provider))

    return telemetry


def get_telemetry():
    """Telemetry installed by use_signoz(), or None."""
    return _telemetry


def is_tracing_enabled():
    return _telemetry is not None and _telemetry.tracer_provider is not None


def shutdown_telemetry():
    """Flush and forget the process telemetry. Safe to call when nothing is installed."""
    global _telemetry
    if _telemetry is None:
        return
    telemetry, _telemetry = _telemetry, None
    telemetry.shutdown()


class CorrelationIdMiddleware:
    """
    WSGI middleware that propagates a correlation id header.

    The id from the request header (or a fresh one) is stored in the environ,
    set on the current server span and echoed on the response.
    """

    def __init__(self, app, header=DEFAULT_CORRELATION_HEADER):
        self.app = app
        self.header = header
        self._environ_key = "HTTP_" + header.upper().replace("-", "_")

    def __call__(self, environ, start_response):
        correlation_id = environ.get(self._environ_key) or uuid.uuid4().hex
        environ[CORRELATION_ENVIRON_KEY] = correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute(ATTR_CORRELATION_ID, correlation_id)

        header_name = self.header.lower()

        def correlated_start_response(status, response_headers, exc_info=None):
            if not any(name.lower() == header_name for name, _ in response_headers):
                response_headers = list(response_headers) + [(self.header, correlation_id)]
            return start_response(status, response_headers, exc_info)

        return self.app(environ, correlated_start_response)


def use_signoz(application, settings=None, application_name=None):
    """
    Wire a WSGI application into SigNoz.

    Returns the application unchanged when telemetry is disabled, otherwise the
    application wrapped with server-span and correlation id middleware.
    """
    global _telemetry

    if settings is None:
        settings = load_settings()

    if not settings.enabled:
        logger.debug("SigNoz telemetry disabled")
        return application

    if _telemetry is None:
        _telemetry = setup_telemetry(settings, application_name)
    else:
        logger.warning("SigNoz telemetry already initialized, reusing providers for %s", _telemetry.service_name)

    wrapped = CorrelationIdMiddleware(application, header=settings.correlation_header)
    wrapped = OpenTelemetryMiddleware(
        wrapped,
        tracer_provider=_telemetry.tracer_provider,
        meter_provider=_telemetry.meter_provider,
    )

    logger.info("OpenTelemetry instrumentation initialized for %s", _telemetry.service_name)
    return wrapped
