"""Input/output capture for workflow and node spans.

Langfuse renders ``langfuse.observation.input`` / ``langfuse.observation.output``
(and the ``gen_ai.prompt`` / ``gen_ai.completion`` mirrors) as the payload of an
observation. This module extracts a bounded, serializable snapshot of what a
node was asked to do and what it produced:

* `extract_node_input` looks for prompt-like parameters first and falls back
  to short primitive parameters.
* `extract_node_output` picks a primary value from the first result item plus
  the first `MAX_OUTPUT_ITEMS` items.
* `safe_json_dumps` never raises; `truncate_io` caps the serialized length and
  marks the cut so consumers can tell a value was truncated.

Base64 payloads (documents, images) are replaced by a small placeholder before
serialization; they carry no value in a trace and dominate its size.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..models.engine import field

logger = logging.getLogger(__name__)

__all__ = [
    "INPUT_CANDIDATE_KEYS",
    "OUTPUT_PRIMARY_KEYS",
    "MAX_OUTPUT_ITEMS",
    "safe_json_dumps",
    "truncate_io",
    "is_truncated",
    "extract_node_input",
    "extract_node_output",
    "extract_output_json",
    "redact_binary",
]

INPUT_CANDIDATE_KEYS = (
    "text",
    "prompt",
    "input",
    "query",
    "question",
    "messages",
    "systemMessage",
    "systemPrompt",
    "instructions",
    "url",
)
OUTPUT_PRIMARY_KEYS = ("output", "completion", "text", "result", "response")
MAX_OUTPUT_ITEMS = 10
MAX_FALLBACK_PARAM_CHARS = 400

_TRUNCATION_SUFFIX_RE = re.compile(r"\.\.\.\[truncated (\d+) chars\]\Z")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]{200,}={0,2}$")
_MAX_REDACT_DEPTH = 25


def safe_json_dumps(value: Any) -> str:
    """Serialize ``value`` to compact JSON; on failure describe the failure.

    Non-JSON leaves (datetimes, custom objects) are serialized with ``str``.
    Circular structures or failing ``__str__`` implementations produce
    ``{"_serializationError": "..."}`` instead of an exception.
    """
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    except Exception as e:
        try:
            return json.dumps({"_serializationError": str(e)})
        except Exception:
            return '{"_serializationError":"unserializable"}'


def is_truncated(text: str, limit: int) -> bool:
    """Return True if ``text`` is exactly the output of `truncate_io` at ``limit``."""
    match = _TRUNCATION_SUFFIX_RE.search(text)
    return bool(match) and match.start() == limit


def truncate_io(value: Any, limit: int) -> str:
    """Cap ``value`` at ``limit`` characters, appending ``...[truncated N chars]``.

    Strings of length <= ``limit`` are returned unchanged; ``limit`` <= 0
    disables truncation. A string already produced by this function for the
    same ``limit`` is returned as is, so truncation is idempotent.
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    if limit <= 0 or len(text) <= limit:
        return text
    if is_truncated(text, limit):
        return text
    return f"{text[:limit]}...[truncated {len(text) - limit} chars]"


def _likely_binary(value: str) -> bool:
    if len(value) < 200:
        return False
    if not (_BASE64_RE.match(value) or value.startswith("/9j/")):
        return False
    return len(set(value[:120])) >= 4


def redact_binary(obj: Any, depth: int = 0) -> Any:
    """Replace base64 blobs with ``{"_binary": true, "_omitted_len": N}``."""
    if depth > _MAX_REDACT_DEPTH:
        return obj
    if isinstance(obj, str):
        if _likely_binary(obj):
            return {"_binary": True, "note": "binary omitted", "_omitted_len": len(obj)}
        return obj
    if isinstance(obj, Mapping):
        return {k: redact_binary(v, depth + 1) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact_binary(v, depth + 1) for v in obj]
    return obj


def extract_node_input(node: Any) -> Optional[Dict[str, Any]]:
    """Extract the prompt-like parameters of a node.

    Candidate keys are looked up on ``parameters`` and ``parameters.options``
    (the latter emitted as ``options.<key>``). Without any candidate, short
    string parameters and numbers/booleans are included instead.

    Returns:
        The extracted mapping, or None when nothing qualifies.
    """
    if node is None or isinstance(node, (str, int, float, bool)):
        return None
    params = field(node, "parameters") or {}
    if not isinstance(params, Mapping):
        return None
    out: Dict[str, Any] = {}
    options = params.get("options")
    for key in INPUT_CANDIDATE_KEYS:
        if params.get(key) is not None:
            out[key] = params[key]
        if isinstance(options, Mapping) and options.get(key) is not None:
            out[f"options.{key}"] = options[key]
    if not out:
        for k, v in params.items():
            if isinstance(v, str) and len(v) < MAX_FALLBACK_PARAM_CHARS:
                out[k] = v
            elif isinstance(v, (int, float, bool)):
                out[k] = v
    return out or None


def extract_output_json(result: Any, run_index: int) -> Optional[List[Any]]:
    """Return the ``json`` payload of every item produced for ``run_index``."""
    data = field(result, "data")
    if not isinstance(data, (list, tuple)) or not 0 <= run_index < len(data):
        return None
    output_data = data[run_index]
    if not output_data:
        return None
    return [field(item, "json") for item in output_data]


def extract_node_output(result: Any, run_index: int) -> Optional[Dict[str, Any]]:
    """Build ``{"primary": ..., "items": [...]}`` from a node result.

    ``primary`` is the first truthy value among `OUTPUT_PRIMARY_KEYS` on the
    first item; ``items`` holds at most `MAX_OUTPUT_ITEMS` items verbatim.
    Returns None when the run produced no items.
    """
    try:
        json_items = extract_output_json(result, run_index)
        if not json_items:
            return None
        first = json_items[0]
        primary = None
        if isinstance(first, Mapping):
            for key in OUTPUT_PRIMARY_KEYS:
                if first.get(key):
                    primary = first[key]
                    break
        return {"primary": primary, "items": json_items[:MAX_OUTPUT_ITEMS]}
    except Exception as e:
        logger.debug("Failed to extract node output", exc_info=True)
        return {"_error": str(e)}
