"""
Unit tests for pipeline tracing.

Spans go to an in-memory exporter on a private provider, so the global
tracer provider is never touched.
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from ragrelay.core import tracing
from ragrelay.core.errors import ClassificationParseError


@pytest.fixture
def exporter(monkeypatch):
    span_exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("test"))
    return span_exporter


class TestPipelineSpan:
    def test_span_is_named_after_stage(self, exporter):
        with tracing.pipeline_span("embedding", "C1"):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "rag.embedding"
        assert span.attributes["rag.stage"] == "embedding"
        assert span.attributes["rag.conversation_id"] == "C1"
        assert span.status.status_code == StatusCode.UNSET

    def test_failure_marks_span_and_propagates(self, exporter):
        with pytest.raises(ClassificationParseError):
            with tracing.pipeline_span("classifying", "C1"):
                raise ClassificationParseError("bad json", raw_text="not json")

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "ClassificationParseError"
        assert [event.name for event in span.events] == ["exception"]


def test_trace_id_is_none_outside_a_span():
    assert tracing.get_trace_id_from_context() is None


def test_trace_id_is_hex_inside_a_span(exporter):
    with tracing.pipeline_span("searching_similar", "C1"):
        trace_id = tracing.get_trace_id_from_context()

    assert trace_id is not None
    assert len(trace_id) == 32
    int(trace_id, 16)
