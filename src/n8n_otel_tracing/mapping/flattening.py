"""Flatten nested engine objects into OpenTelemetry span attributes.

OTel attribute values must be scalars (or homogeneous scalar sequences), while
engine objects such as workflow settings or node definitions are arbitrarily
nested. `flatten_attributes` walks them and emits an insertion-ordered mapping
of dotted keys to scalar values.

Rules:
    * Mappings (and pydantic models / plain objects) are walked, keys joined
      with ``.``.
    * Sequences of scalars are terminal and serialized as compact JSON
      (``[1,2]``); sequences holding containers are walked by index.
    * Scalar leaves (str, int, float, bool) are kept; every other leaf is
      serialized to its string form, never dropped (``None`` -> ``null``).
    * A container already present on the current path is emitted as
      ``[Circular]``; anything deeper than `MAX_DEPTH` is serialized whole.

The function is total: it never raises.

Examples:
    >>> flatten_attributes({"a": {"b": 1, "c": [1, 2]}})
    {'a.b': 1, 'a.c': '[1,2]'}
    >>> flatten_attributes({"retry": True}, "n8n.workflow.settings")
    {'n8n.workflow.settings.retry': True}
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

__all__ = ["flatten_attributes", "MAX_DEPTH", "CIRCULAR"]

MAX_DEPTH = 10
CIRCULAR = "[Circular]"
SCALAR_TYPES = (str, bool, int, float)


def _canonical(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    except Exception:
        try:
            return repr(value)
        except Exception:
            return f"<{type(value).__name__}>"


def _children(value: Any) -> Iterable[Tuple[str, Any]] | None:
    """Return (key, child) pairs for walkable containers, else None."""
    if isinstance(value, Mapping):
        return [(str(k), v) for k, v in value.items()]
    if isinstance(value, (list, tuple)):
        if all(isinstance(v, SCALAR_TYPES) or v is None for v in value):
            return None
        return [(str(i), v) for i, v in enumerate(value)]
    if isinstance(value, BaseModel):
        return list(value.__dict__.items())
    if hasattr(value, "__dict__") and not isinstance(value, type) and not callable(value):
        return [(k, v) for k, v in vars(value).items() if not k.startswith("_")]
    return None


def flatten_attributes(record: Any, key_prefix: str = "", delimiter: str = ".") -> Dict[str, Any]:
    """Flatten ``record`` into ``{dotted.key: scalar}``.

    Args:
        record: Nested mapping / sequence / object to flatten.
        key_prefix: Prefix for every emitted key (joined with ``delimiter``).
        delimiter: Key separator.

    Returns:
        Insertion-ordered flat mapping. Empty when ``record`` is empty or None.
    """
    out: Dict[str, Any] = {}

    def _key(path: str) -> str:
        if key_prefix and path:
            return f"{key_prefix}{delimiter}{path}"
        return key_prefix or path

    def _walk(value: Any, path: str, depth: int, on_path: frozenset[int]) -> None:
        try:
            if isinstance(value, SCALAR_TYPES):
                out[_key(path)] = value
                return
            if value is None:
                out[_key(path)] = "null"
                return
            if id(value) in on_path:
                out[_key(path)] = CIRCULAR
                return
            children = _children(value) if depth < MAX_DEPTH else None
            if children is None:
                out[_key(path)] = _canonical(value)
                return
            children = list(children)
            if not children:
                if path:
                    out[_key(path)] = _canonical(value)
                return
            seen = on_path | {id(value)}
            for child_key, child in children:
                child_path = f"{path}{delimiter}{child_key}" if path else child_key
                _walk(child, child_path, depth + 1, seen)
        except Exception:
            logger.debug("Failed to flatten attribute %s", path, exc_info=True)

    if record is None:
        return out
    _walk(record, "", 0, frozenset())
    return out
