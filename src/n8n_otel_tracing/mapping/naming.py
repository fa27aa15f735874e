"""Span naming policy for workflow and node spans.

Trace backends aggregate by span name, so every distinct name becomes a
separate row in latency and error views. The default names are therefore
constant (``n8n.workflow.execute`` / ``n8n.node.execute``). Operators may opt
into more readable names:

Workflow spans (first match wins):
    1. ``TRACING_WORKFLOW_SPAN_NAME_PATTERN`` with ``{workflowId}``,
       ``{workflowName}``, ``{executionId}`` and ``{sessionId}`` placeholders;
    2. ``TRACING_DYNAMIC_WORKFLOW_TRACE_NAME``:
       ``<workflowId>-<workflowName>-<executionId>``;
    3. the constant ``n8n.workflow.execute``.

Node spans (first match wins):
    1. ``TRACING_USE_NODE_NAME_SPAN``: the raw node name;
    2. ``TRACING_LANGFUSE_TYPE_IN_NODE_SPAN_NAME`` with a classification:
       ``n8n.node.<type>.execute``;
    3. the constant ``n8n.node.execute``.

Every substituted value goes through `sanitize_segment`, which restricts it
to ``[A-Za-z0-9._-]`` and caps its length.
"""
from __future__ import annotations

import re
from typing import Optional

from ..config import Settings
from ..models.engine import NamingContext

__all__ = [
    "sanitize_segment",
    "build_workflow_span_name",
    "build_node_span_name",
    "build_root_request_span_name",
    "workflow_naming_mode",
    "WORKFLOW_SPAN_NAME",
    "NODE_SPAN_NAME",
    "ROOT_REQUEST_SPAN_NAME",
]

WORKFLOW_SPAN_NAME = "n8n.workflow.execute"
NODE_SPAN_NAME = "n8n.node.execute"
ROOT_REQUEST_SPAN_NAME = "n8n.workflow.request"
UNKNOWN_NODE_NAME = "unknown-node"

MAX_SEGMENT_LEN = 80
MAX_PATTERN_NAME_LEN = 180

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_segment(value: object, default: str = "unknown", max_len: int = MAX_SEGMENT_LEN) -> str:
    """Make ``value`` safe for use inside a span name.

    Trims, replaces whitespace runs and every character outside
    ``[A-Za-z0-9._-]`` with ``-`` and caps the length. Empty results fall back
    to ``default``.

    >>> sanitize_segment("My Workflow!! v2")
    'My-Workflow---v2'
    """
    if value is None or value == "":
        return default
    text = _WHITESPACE_RE.sub("-", str(value).strip())
    text = _UNSAFE_RE.sub("-", text)[:max_len]
    return text or default


def workflow_naming_mode(settings: Settings) -> str:
    """Return which workflow naming rule applies: pattern, dynamic or constant."""
    if settings.TRACING_WORKFLOW_SPAN_NAME_PATTERN and settings.TRACING_WORKFLOW_SPAN_NAME_PATTERN.strip():
        return "pattern"
    if settings.TRACING_DYNAMIC_WORKFLOW_TRACE_NAME:
        return "dynamic"
    return "constant"


def _dynamic_name(ctx: NamingContext) -> str:
    return "-".join(
        (
            sanitize_segment(ctx.workflow_id, "wf"),
            sanitize_segment(ctx.workflow_name, "workflow"),
            sanitize_segment(ctx.execution_id, "exec"),
        )
    )


def _pattern_name(pattern: str, ctx: NamingContext) -> str:
    name = (
        pattern.replace("{workflowId}", sanitize_segment(ctx.workflow_id, "wf"))
        .replace("{workflowName}", sanitize_segment(ctx.workflow_name, "workflow"))
        .replace("{executionId}", sanitize_segment(ctx.execution_id, "exec"))
        .replace("{sessionId}", sanitize_segment(ctx.session_id, "sess"))
    )[:MAX_PATTERN_NAME_LEN]
    return name or WORKFLOW_SPAN_NAME


def build_workflow_span_name(ctx: NamingContext, settings: Settings) -> str:
    """Compute the workflow span name (see module docstring for precedence)."""
    mode = workflow_naming_mode(settings)
    if mode == "pattern":
        return _pattern_name(settings.TRACING_WORKFLOW_SPAN_NAME_PATTERN or "", ctx)
    if mode == "dynamic":
        return _dynamic_name(ctx)
    return WORKFLOW_SPAN_NAME


def build_root_request_span_name(ctx: NamingContext, settings: Settings) -> str:
    """Name given to an inbound-request root span that wraps a workflow run.

    Follows the workflow rules, except that the constant form is
    ``n8n.workflow.request`` to keep request roots distinguishable.
    """
    if workflow_naming_mode(settings) == "constant":
        return ROOT_REQUEST_SPAN_NAME
    return build_workflow_span_name(ctx, settings)


def build_node_span_name(
    node_name: Optional[str], observation_type: Optional[str], settings: Settings
) -> str:
    """Compute the node span name (see module docstring for precedence)."""
    if settings.TRACING_USE_NODE_NAME_SPAN:
        return node_name or UNKNOWN_NODE_NAME
    if settings.TRACING_LANGFUSE_TYPE_IN_NODE_SPAN_NAME and observation_type:
        return f"n8n.node.{sanitize_segment(observation_type, 'span')}.execute"
    return NODE_SPAN_NAME
