from __future__ import annotations

from conftest import make_settings

from n8n_otel_tracing.mapping.naming import (
    MAX_PATTERN_NAME_LEN,
    MAX_SEGMENT_LEN,
    build_node_span_name,
    build_root_request_span_name,
    build_workflow_span_name,
    sanitize_segment,
    workflow_naming_mode,
)
from n8n_otel_tracing.models.engine import NamingContext

CTX = NamingContext(workflow_id="wf-1", workflow_name="Invoice Flow", execution_id="42", session_id="42")


def test_sanitize_segment():
    assert sanitize_segment("My Workflow!! v2") == "My-Workflow---v2"
    assert sanitize_segment("  spaced   out ") == "spaced-out"
    assert sanitize_segment("") == "unknown"
    assert sanitize_segment(None, "wf") == "wf"
    assert len(sanitize_segment("x" * 500)) == MAX_SEGMENT_LEN


def test_workflow_name_defaults_to_constant():
    settings = make_settings()
    assert workflow_naming_mode(settings) == "constant"
    assert build_workflow_span_name(CTX, settings) == "n8n.workflow.execute"


def test_dynamic_workflow_name():
    settings = make_settings(TRACING_DYNAMIC_WORKFLOW_TRACE_NAME=True)
    assert build_workflow_span_name(CTX, settings) == "wf-1-Invoice-Flow-42"
    empty = NamingContext()
    assert build_workflow_span_name(empty, settings) == "wf-workflow-exec"


def test_pattern_overrides_dynamic():
    settings = make_settings(
        TRACING_DYNAMIC_WORKFLOW_TRACE_NAME=True,
        TRACING_WORKFLOW_SPAN_NAME_PATTERN="n8n.{workflowName}.{sessionId}",
    )
    assert workflow_naming_mode(settings) == "pattern"
    assert build_workflow_span_name(CTX, settings) == "n8n.Invoice-Flow.42"


def test_pattern_length_is_capped():
    settings = make_settings(TRACING_WORKFLOW_SPAN_NAME_PATTERN="{workflowName}" * 5)
    ctx = NamingContext(workflow_name="n" * 100)
    assert len(build_workflow_span_name(ctx, settings)) == MAX_PATTERN_NAME_LEN


def test_blank_pattern_is_ignored():
    settings = make_settings(TRACING_WORKFLOW_SPAN_NAME_PATTERN="  ")
    assert settings.TRACING_WORKFLOW_SPAN_NAME_PATTERN is None
    assert build_workflow_span_name(CTX, settings) == "n8n.workflow.execute"


def test_root_request_name():
    assert build_root_request_span_name(CTX, make_settings()) == "n8n.workflow.request"
    dynamic = make_settings(TRACING_DYNAMIC_WORKFLOW_TRACE_NAME=True)
    assert build_root_request_span_name(CTX, dynamic) == "wf-1-Invoice-Flow-42"


def test_node_span_names():
    assert build_node_span_name("Chat Model", "generation", make_settings()) == "Chat Model"
    assert build_node_span_name(None, None, make_settings()) == "unknown-node"
    typed = make_settings(TRACING_USE_NODE_NAME_SPAN=False, TRACING_LANGFUSE_TYPE_IN_NODE_SPAN_NAME=True)
    assert build_node_span_name("Chat Model", "generation", typed) == "n8n.node.generation.execute"
    assert build_node_span_name("Widget", None, typed) == "n8n.node.execute"
    plain = make_settings(TRACING_USE_NODE_NAME_SPAN=False)
    assert build_node_span_name("Chat Model", "generation", plain) == "n8n.node.execute"
