"""
Shared fixtures: an isolated tracer backed by an in-memory exporter and
resources that record when they are closed.
"""

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


class RecordingResource:
    """Resource that appends its name to a shared log when closed."""

    def __init__(self, name, log, fail=False):
        self.name = name
        self.log = log
        self.fail = fail
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        self.log.append(self.name)
        if self.fail:
            raise RuntimeError(f"{self.name} failed to close")

    def __repr__(self):
        return f"RecordingResource({self.name!r})"


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(tracer_provider):
    return tracer_provider.get_tracer("tests")


@pytest.fixture
def release_log():
    return []


@pytest.fixture
def make_resource(release_log):
    def factory(name, fail=False):
        return RecordingResource(name, release_log, fail=fail)

    return factory
