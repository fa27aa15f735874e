"""Rename inbound-request root spans to reflect the workflow they run.

With auto-instrumentation enabled, a webhook-triggered execution runs inside
the HTTP server span opened by the web framework instrumentation. That span
becomes the trace root and is named after the HTTP verb (``POST``), so the
Langfuse trace list shows a column of identical ``POST`` entries. When a
workflow run starts under such a span it is renamed per the naming policy and
receives the workflow attributes it does not already carry.

Best effort only: a missing, non-recording or non-HTTP parent is left alone,
and failures are logged at debug level.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context

from ..config import Settings
from ..models.engine import NamingContext
from .naming import build_root_request_span_name, workflow_naming_mode

logger = logging.getLogger(__name__)

__all__ = ["looks_like_http_root", "rename_http_root_span"]

HTTP_METHOD_ATTRIBUTES = ("http.method", "http.request.method")
_HTTP_VERB_RE = re.compile(r"^(GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)$", re.IGNORECASE)


def _span_attributes(span: Any) -> Mapping[str, Any]:
    return getattr(span, "attributes", None) or {}


def looks_like_http_root(span: Any) -> bool:
    """True for spans named after a bare HTTP verb or carrying an HTTP method attribute."""
    attributes = _span_attributes(span)
    if any(attributes.get(key) for key in HTTP_METHOD_ATTRIBUTES):
        return True
    return bool(_HTTP_VERB_RE.match(getattr(span, "name", None) or ""))


def rename_http_root_span(
    ctx: NamingContext,
    workflow_attributes: Mapping[str, Any],
    settings: Settings,
    parent_context: Optional[Context] = None,
) -> bool:
    """Rename the active HTTP span and copy workflow attributes onto it.

    Existing attributes on the parent are never overwritten. The original name
    is kept in ``n8n.http.original_name``.

    Returns:
        True if a span was renamed.
    """
    parent = trace.get_current_span(parent_context)
    if parent is None or not parent.is_recording():
        return False
    if not looks_like_http_root(parent):
        return False
    original_name = getattr(parent, "name", None)
    try:
        parent.update_name(build_root_request_span_name(ctx, settings))
        existing = _span_attributes(parent)
        for key, value in workflow_attributes.items():
            if key not in existing:
                parent.set_attribute(key, value)
        if original_name:
            parent.set_attribute("n8n.http.original_name", original_name)
        parent.set_attribute("n8n.trace.naming", workflow_naming_mode(settings))
    except Exception:
        logger.debug("[Tracing] Failed to rename HTTP root span", exc_info=True)
        return False
    return True
