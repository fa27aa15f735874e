import asyncio
import sys
import threading
from pathlib import Path

import pytest
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# Ensure `src` is on sys.path for tests when not installed editable.
SRC = Path(__file__).resolve().parent.parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from n8n_otel_tracing import init_guard  # noqa: E402
from n8n_otel_tracing.config import Settings  # noqa: E402
from n8n_otel_tracing.instrumentation import N8nInstrumentor  # noqa: E402


class CountingProcessor(SpanProcessor):
    """Counts span starts and ends to detect leaked spans."""

    def __init__(self):
        self._lock = threading.Lock()
        self.started = 0
        self.ended = 0

    def on_start(self, span, parent_context=None):
        with self._lock:
            self.started += 1

    def on_end(self, span):
        with self._lock:
            self.ended += 1


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def make_engine_class():
    """Build a fresh n8n-like engine class (instrumentation mutates the class)."""

    class FakeWorkflowExecute:
        def __init__(self, execution_id="exec-1", user_id="user-1", node_delay=0.0):
            self.additional_data = {"executionId": execution_id, "userId": user_id}
            self.node_delay = node_delay

        async def process_run_execution_data(self, workflow):
            nodes = workflow.get("nodes", [])
            results = await asyncio.gather(
                *(
                    self.run_node(workflow, {"node": node}, {}, 0, self.additional_data, "manual")
                    for node in nodes
                ),
                return_exceptions=True,
            )
            run_data = {}
            error = None
            for node, res in zip(nodes, results):
                if isinstance(res, BaseException):
                    error = {"message": str(res)}
                else:
                    run_data[node["name"]] = res["data"][0]
            result_data = {"runData": run_data}
            if error:
                result_data["error"] = error
            return {"data": {"resultData": result_data}}

        async def run_node(
            self,
            workflow,
            execution_data,
            run_execution_data,
            run_index,
            additional_data,
            mode,
            abort_signal=None,
        ):
            node = execution_data["node"]
            await asyncio.sleep(self.node_delay)
            if node.get("fail"):
                raise RuntimeError(f"node {node['name']} failed")
            return {"data": [[{"json": {"output": f"{node['name']} done"}}]]}

    return FakeWorkflowExecute


class TracingHarness:
    def __init__(self, **settings_overrides):
        self.exporter = InMemorySpanExporter()
        self.counter = CountingProcessor()
        self.provider = TracerProvider()
        self.provider.add_span_processor(self.counter)
        self.provider.add_span_processor(SimpleSpanProcessor(self.exporter))
        self.settings = make_settings(**settings_overrides)
        self.instrumentor = N8nInstrumentor(self.settings, tracer_provider=self.provider)

    def spans(self):
        return list(self.exporter.get_finished_spans())

    def by_name(self, name):
        return [s for s in self.spans() if s.name == name]


@pytest.fixture
def harness():
    return TracingHarness()


@pytest.fixture
def engine_cls():
    return make_engine_class()


@pytest.fixture
def reset_init_guard():
    init_guard._reset_for_tests()
    yield
    init_guard._reset_for_tests()


def simple_workflow(**extra):
    workflow = {
        "id": "wf-1",
        "name": "Invoice Flow",
        "settings": {"executionOrder": "v1", "retry": {"max": 3}},
        "nodes": [
            {
                "name": "Chat Model",
                "type": "@n8n/n8n-nodes-langchain.lmChatOpenAi",
                "parameters": {"prompt": "Summarize the invoice"},
            },
            {"name": "If", "type": "n8n-nodes-base.if", "category": "Core Nodes", "parameters": {}},
        ],
    }
    workflow.update(extra)
    return workflow
