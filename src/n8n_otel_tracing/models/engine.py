"""Accessors and small models for the objects handed over by the workflow engine.

The engine passes its own objects to the intercepted methods: workflows, nodes,
additional execution data and results. Depending on the engine build these are
plain dicts (deserialized n8n JSON) or attribute-bearing objects, and field
names may be camelCase (n8n JSON) or snake_case (Python engines). The helpers
here read both shapes without ever raising, so a surprising engine object
degrades to missing attributes instead of a failed business call.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel

__all__ = [
    "field",
    "nested_field",
    "resolve_execution_id",
    "derive_session_id",
    "ExecutionIdentity",
    "NamingContext",
]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or object, trying camelCase and snake_case.

    Returns ``default`` when the field is absent or ``None``.
    """
    if obj is None:
        return default
    for candidate in dict.fromkeys((name, _snake(name), _camel(name))):
        try:
            if isinstance(obj, Mapping):
                value = obj.get(candidate)
            else:
                value = getattr(obj, candidate, None)
        except Exception:
            value = None
        if value is not None:
            return value
    return default


def nested_field(obj: Any, *path: str, default: Any = None) -> Any:
    """Follow ``path`` through mappings/objects using `field` at each hop."""
    current = obj
    for name in path:
        current = field(current, name)
        if current is None:
            return default
    return current


def resolve_execution_id(engine: Any, additional_data: Any = None) -> str:
    """Locate the execution id; its location varies across engine versions."""
    for candidate in (
        field(additional_data, "executionId"),
        field(engine, "executionId"),
        nested_field(engine, "workflowExecuteAdditionalData", "executionId"),
        nested_field(engine, "additionalData", "executionId"),
    ):
        if candidate not in (None, ""):
            return str(candidate)
    return "unknown"


def derive_session_id(execution_id: Optional[str]) -> str:
    """Each execution is treated as its own session."""
    return execution_id or "unknown"


class ExecutionIdentity(BaseModel):
    """Identity of one workflow execution as seen by the interception layer."""

    workflow_id: str = ""
    workflow_name: str = ""
    execution_id: str = "unknown"
    session_id: str = "unknown"


class NamingContext(BaseModel):
    """Inputs of the span naming policy."""

    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    execution_id: Optional[str] = None
    session_id: Optional[str] = None
