"""
Manual instrumentation scope for units of work

Wraps a background job, message handler or any other unit of work in a span:

    with start_scope("invoices.sync", db_session) as scope:
        try:
            sync_invoices()
        except UpstreamTimeout as exc:
            scope.record_failure("timeout", exc)

Releasing the scope finalizes the span exactly once (OK unless a failure was
recorded) and then closes the owned resources in the order they were added.
Telemetry never fails the unit of work: errors raised while touching the span
or closing a resource are logged and swallowed.
"""

import logging
from typing import Any, Iterable, List, Optional, Union

from opentelemetry import context as otel_context, trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from .app import is_tracing_enabled

logger = logging.getLogger(__name__)

TRACER_NAME = "signoz_otel"


def _is_releasable(resource: Any) -> bool:
    return callable(getattr(resource, "close", None)) or callable(resource)


def _describe(failure: Any) -> str:
    try:
        description = str(failure)
    except Exception:
        logger.debug("Failed to format failure of type %s", type(failure).__name__, exc_info=True)
        description = ""
    return description or type(failure).__name__


def _release_resource(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if callable(close):
        close()
    else:
        resource()


class ResourceCollection:
    """Ordered group of resources released together.

    A resource is anything with a ``close()`` method or a zero-argument
    callable. ``release()`` closes them in insertion order and keeps going when
    one of them fails.
    """

    def __init__(self, resources: Optional[Iterable[Any]] = None):
        self._resources: List[Any] = []
        self._released = False
        if resources is not None:
            self.add(*resources)

    def add(self, *resources: Any) -> None:
        if self._released:
            raise RuntimeError("resource collection already released")
        for resource in resources:
            if not _is_releasable(resource):
                raise TypeError(f"{resource!r} has no close() method and is not callable")
        self._resources.extend(resources)

    @property
    def released(self) -> bool:
        return self._released

    def __len__(self) -> int:
        return len(self._resources)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        for resource in self._resources:
            try:
                _release_resource(resource)
            except Exception:
                logger.exception("Failed to release %r", resource)

    close = release


class TelemetryScope:
    """Span plus owned resources for one unit of work.

    ``span`` may be None when tracing is disabled; the scope then only releases
    its resources. Use it as a context manager so ``release()`` runs on every
    exit path. Not synchronized: ``succeeded`` only ever moves to False, so
    concurrent ``record_failure`` calls agree on the outcome.
    """

    def __init__(self, resources: Union[ResourceCollection, Iterable[Any], None] = None,
                 span: Optional[Span] = None):
        if isinstance(resources, ResourceCollection):
            self._resources = resources
        else:
            self._resources = ResourceCollection(resources)
        self._span = span
        self._succeeded = True
        self._released = False

    @property
    def span(self) -> Optional[Span]:
        return self._span

    @property
    def succeeded(self) -> bool:
        return self._succeeded

    @property
    def released(self) -> bool:
        return self._released

    def record_failure(self, failure: Union[str, BaseException], exc: Optional[BaseException] = None) -> None:
        """Mark the unit of work as failed.

        Args:
            failure: Failure message, or the exception itself
            exc: Exception attached to the span when ``failure`` is a message
        """
        self._succeeded = False

        description = _describe(failure)
        if isinstance(failure, BaseException) and exc is None:
            exc = failure

        if self._span is None:
            return
        if self._released:
            logger.debug("Failure recorded after scope release, span not updated: %s", description)
            return

        try:
            self._span.set_status(Status(StatusCode.ERROR, description))
            if exc is not None:
                self._span.record_exception(exc)
            else:
                self._span.add_event("exception", {"exception.message": description})
        except Exception:
            logger.warning("Failed to record failure on span", exc_info=True)

    def release(self) -> None:
        """Finalize the span and release owned resources. Runs once; never raises."""
        if self._released:
            return
        self._released = True

        if self._span is not None:
            if self._succeeded:
                try:
                    self._span.set_status(Status(StatusCode.OK))
                except Exception:
                    logger.warning("Failed to set span status", exc_info=True)
            try:
                self._span.end()
            except Exception:
                logger.exception("Failed to end span")

        self._resources.release()

    def __enter__(self) -> "TelemetryScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            if exc_val is not None and self._succeeded:
                self.record_failure(exc_val)
        finally:
            self.release()
        return False


def start_scope(
    name: str,
    *resources: Any,
    tracer: Optional[Tracer] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Optional[dict] = None,
    context: Optional[Context] = None,
) -> TelemetryScope:
    """Start a span named ``name`` and return a scope owning it and ``resources``.

    The span becomes the current span until the scope is released. Without an
    explicit tracer, a span is only started when use_signoz() installed a
    tracer provider.
    """
    owned = ResourceCollection(resources)

    if tracer is None:
        if not is_tracing_enabled():
            return TelemetryScope(owned)
        tracer = trace.get_tracer(TRACER_NAME)

    try:
        span = tracer.start_span(name, context=context, kind=kind, attributes=attributes)
    except Exception:
        logger.warning("Failed to start span %s, running without tracing", name, exc_info=True)
        return TelemetryScope(owned)

    token = otel_context.attach(trace.set_span_in_context(span, context))

    # The span stops being current before the caller's resources are closed
    return TelemetryScope(ResourceCollection([lambda: otel_context.detach(token), owned]), span)
