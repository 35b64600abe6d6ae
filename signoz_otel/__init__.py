"""
SigNoz OTel - OpenTelemetry bootstrap for Python web applications

This package wires a WSGI application into SigNoz (or any OTLP backend):
- Traces, metrics and logs exported over OTLP/HTTP or to the console
- Automatic instrumentation for HTTP requests, outgoing HTTP, PyMySQL and the runtime
- Correlation id header propagation
- TelemetryScope for manually traced units of work (background jobs, handlers)

Everything is driven by SignozSettings (SIGNOZ_* env vars or a "Signoz" config section).
"""

__version__ = "0.1.0"

from .settings import SignozSettings, load_settings
from .app import (
    CorrelationIdMiddleware,
    SignozTelemetry,
    get_telemetry,
    is_tracing_enabled,
    shutdown_telemetry,
    use_signoz,
)
from .scope import ResourceCollection, TelemetryScope, start_scope

__all__ = [
    "CorrelationIdMiddleware",
    "ResourceCollection",
    "SignozSettings",
    "SignozTelemetry",
    "TelemetryScope",
    "get_telemetry",
    "is_tracing_enabled",
    "load_settings",
    "shutdown_telemetry",
    "start_scope",
    "use_signoz",
]
