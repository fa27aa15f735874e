"""Flattening of nested engine objects into span attributes."""
from __future__ import annotations

from pydantic import BaseModel

from n8n_otel_tracing.mapping.flattening import CIRCULAR, MAX_DEPTH, flatten_attributes


def test_nested_mapping_uses_dot_notation():
    out = flatten_attributes({"retry": {"max": 3, "backoff": 1.5}, "enabled": True}, "n8n.workflow.settings")
    assert out == {
        "n8n.workflow.settings.retry.max": 3,
        "n8n.workflow.settings.retry.backoff": 1.5,
        "n8n.workflow.settings.enabled": True,
    }


def test_scalar_lists_are_serialized():
    assert flatten_attributes({"tags": ["a", "b"], "ids": [1, None]}) == {
        "tags": '["a","b"]',
        "ids": "[1,null]",
    }


def test_lists_of_objects_are_indexed():
    out = flatten_attributes({"nodes": [{"name": "A"}, {"name": "B"}]})
    assert out == {"nodes.0.name": "A", "nodes.1.name": "B"}


def test_none_becomes_null_string():
    assert flatten_attributes({"missing": None}) == {"missing": "null"}


def test_empty_containers():
    assert flatten_attributes({}) == {}
    assert flatten_attributes(None) == {}
    assert flatten_attributes({"params": {}}) == {"params": "{}"}


def test_cycle_is_marked_not_recursed():
    node = {"name": "Loop"}
    node["self"] = node
    out = flatten_attributes(node, "n8n.node")
    assert out == {"n8n.node.name": "Loop", "n8n.node.self": CIRCULAR}


def test_shared_reference_is_not_a_cycle():
    shared = {"v": 1}
    out = flatten_attributes({"a": shared, "b": shared})
    assert out == {"a.v": 1, "b.v": 1}


def test_depth_limit_serializes_remainder():
    record = leaf = {}
    for _ in range(MAX_DEPTH + 2):
        leaf["x"] = {}
        leaf = leaf["x"]
    leaf["end"] = 1
    out = flatten_attributes(record)
    assert len(out) == 1
    (key, value), = out.items()
    assert key == ".".join(["x"] * MAX_DEPTH)
    assert value.endswith('{"end":1}}}')


def test_pydantic_and_plain_objects():
    class Credentials(BaseModel):
        name: str = "openai"

    class Node:
        def __init__(self):
            self.name = "Chat"
            self._private = "hidden"
            self.credentials = Credentials()

    assert flatten_attributes(Node()) == {"name": "Chat", "credentials.name": "openai"}


def test_unserializable_leaf_is_stringified():
    class Opaque:
        __slots__ = ()

        def __repr__(self):
            return "<opaque>"

    out = flatten_attributes({"v": Opaque()})
    assert out == {"v": '"<opaque>"'}
