from __future__ import annotations

import asyncio

from conftest import TracingHarness, make_engine_class, simple_workflow

from n8n_otel_tracing.mapping.root_span import looks_like_http_root


def _run_under_http_span(h, name="POST", attributes=None):
    engine_cls = make_engine_class()
    h.instrumentor.instrument_engine(engine_cls)
    tracer = h.provider.get_tracer("test-http-server")
    attributes = {"http.method": "POST"} if attributes is None else attributes
    with tracer.start_as_current_span(name, attributes=attributes):
        asyncio.run(engine_cls(execution_id="77").process_run_execution_data(simple_workflow()))


def test_http_root_span_is_renamed():
    h = TracingHarness()
    _run_under_http_span(h)

    root = h.by_name("n8n.workflow.request")[0]
    assert root.attributes["n8n.http.original_name"] == "POST"
    assert root.attributes["n8n.trace.naming"] == "constant"
    assert root.attributes["n8n.workflow.id"] == "wf-1"
    assert root.attributes["n8n.execution.id"] == "77"
    assert root.attributes["http.method"] == "POST"
    wf_span = h.by_name("n8n.workflow.execute")[0]
    assert wf_span.parent.span_id == root.context.span_id
    assert h.by_name("POST") == []


def test_root_rename_follows_dynamic_naming():
    h = TracingHarness(TRACING_DYNAMIC_WORKFLOW_TRACE_NAME=True)
    _run_under_http_span(h)
    names = [s.name for s in h.spans()]
    assert names.count("wf-1-Invoice-Flow-77") == 2


def test_existing_attributes_are_not_overwritten():
    h = TracingHarness()
    _run_under_http_span(h, attributes={"http.method": "POST", "n8n.workflow.id": "from-server"})
    root = h.by_name("n8n.workflow.request")[0]
    assert root.attributes["n8n.workflow.id"] == "from-server"


def test_only_workflow_spans_skips_rename():
    h = TracingHarness(TRACING_ONLY_WORKFLOW_SPANS=True)
    _run_under_http_span(h)
    assert h.by_name("POST")
    assert h.by_name("n8n.workflow.request") == []


def test_non_http_parent_is_left_alone():
    h = TracingHarness()
    _run_under_http_span(h, name="queue.consume", attributes={})
    assert h.by_name("queue.consume")


def test_looks_like_http_root():
    class Fake:
        def __init__(self, name, attributes):
            self.name = name
            self.attributes = attributes

    assert looks_like_http_root(Fake("GET", {}))
    assert looks_like_http_root(Fake("handler", {"http.request.method": "PUT"}))
    assert not looks_like_http_root(Fake("GET /users", {}))
    assert not looks_like_http_root(object())
