"""Interception layer: wrap the workflow engine's run methods with spans.

The engine is never modified or subclassed. `N8nInstrumentor.instrument_engine`
replaces the two entry points on the engine class with ``wrapt`` function
wrappers that keep the original signatures:

* the workflow-level run method (``process_run_execution_data``) gets a
  workflow span that stays current for the whole execution, so node spans
  opened inside it become its children;
* the node-level run method (``run_node``) gets one child span per node run,
  enriched with the observation type and captured input/output.

Per call the wrapper goes PRE-CALL -> SPAN-OPEN -> original method ->
ON-SETTLE (success | error) -> SPAN-CLOSE. The original method may return a
coroutine, an ``asyncio.Future`` or a plain value, and may raise synchronously;
in every case the span is ended exactly once and the caller receives the
original result or exception unchanged.

Parent context is captured when the wrapper is *called*, not when the returned
coroutine first runs. Node runs scheduled concurrently (``asyncio.gather``)
from inside one execution therefore always parent to that execution's span,
and concurrent executions never share spans: the active span lives in
``contextvars``-backed OpenTelemetry context, never in shared mutable state.

Instrumentation-internal failures (attribute building, classification,
capture, naming) are logged and only reduce telemetry; they never reach the
engine's caller.
"""
from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import wrapt
from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, TracerProvider

from .config import Settings, get_settings
from .mapping.flattening import flatten_attributes
from .mapping.io_capture import (
    extract_node_input,
    extract_node_output,
    extract_output_json,
    redact_binary,
    safe_json_dumps,
    truncate_io,
)
from .mapping.naming import build_node_span_name, build_workflow_span_name
from .mapping.root_span import rename_http_root_span
from .models.engine import (
    ExecutionIdentity,
    NamingContext,
    derive_session_id,
    field,
    nested_field,
    resolve_execution_id,
)
from .observation_mapper import classify, is_ai_node

logger = logging.getLogger(__name__)

__all__ = ["N8nInstrumentor", "WorkflowExecutionError", "INSTRUMENTATION_NAME"]

LOGPREFIX = "[Tracing]"
INSTRUMENTATION_NAME = "n8n-instrumentation"
INSTRUMENTATION_VERSION = "1.0.0"
_CLASS_MARKER = "__n8n_otel_instrumented__"

NODE_ARGUMENTS = (
    "workflow",
    "execution_data",
    "run_execution_data",
    "run_index",
    "additional_data",
    "mode",
    "abort_signal",
)


class WorkflowExecutionError(Exception):
    """Stand-in exception for an error reported inside a workflow result payload."""


def _bind(args: Tuple[Any, ...], kwargs: Dict[str, Any], names: Tuple[str, ...]) -> Dict[str, Any]:
    bound = dict(zip(names, args))
    for name in names:
        if name in kwargs:
            bound[name] = kwargs[name]
    return bound


def _as_exception(error: Any) -> BaseException:
    if isinstance(error, BaseException):
        return error
    message = field(error, "message") if not isinstance(error, str) else error
    return WorkflowExecutionError(str(message or error))


def _status_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class N8nInstrumentor:
    """Installs and removes the tracing wrappers on workflow engine classes.

    Args:
        settings: Tracing configuration; defaults to `get_settings()`. The
            instance keeps this reference and never re-reads the environment.
        tracer_provider: Provider for the instrumentation tracer; defaults to
            the global provider.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tracer_provider: Optional[TracerProvider] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._tracer = trace.get_tracer(
            INSTRUMENTATION_NAME, INSTRUMENTATION_VERSION, tracer_provider=tracer_provider
        )
        self._wrapped: Dict[type, Tuple[str, ...]] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------
    def instrument_engine(
        self,
        engine_cls: type,
        workflow_method: Optional[str] = None,
        node_method: Optional[str] = None,
    ) -> bool:
        """Wrap the workflow and node run methods of ``engine_cls`` in place.

        Returns:
            True if at least one method was wrapped; False when the class was
            already instrumented or exposes neither method.
        """
        if getattr(engine_cls, _CLASS_MARKER, False):
            logger.info("%s: %s already instrumented, skipping", LOGPREFIX, engine_cls.__name__)
            return False
        workflow_method = workflow_method or self._settings.TRACING_WORKFLOW_METHOD
        node_method = node_method or self._settings.TRACING_NODE_METHOD
        wrapped = []
        for name, wrapper in (
            (workflow_method, self._wrap_workflow_run),
            (node_method, self._wrap_node_run),
        ):
            if not callable(getattr(engine_cls, name, None)):
                logger.warning(
                    "%s: %s has no method %s; not instrumented", LOGPREFIX, engine_cls.__name__, name
                )
                continue
            wrapt.wrap_function_wrapper(engine_cls, name, wrapper)
            wrapped.append(name)
        if not wrapped:
            return False
        setattr(engine_cls, _CLASS_MARKER, True)
        self._wrapped[engine_cls] = tuple(wrapped)
        logger.info("%s: Instrumented %s.%s", LOGPREFIX, engine_cls.__name__, "/".join(wrapped))
        return True

    def uninstrument_engine(self, engine_cls: type) -> None:
        """Restore the original methods of a class wrapped by this instrumentor."""
        for name in self._wrapped.pop(engine_cls, ()):
            current = engine_cls.__dict__.get(name)
            original = getattr(current, "__wrapped__", None)
            if original is not None:
                setattr(engine_cls, name, original)
        if engine_cls.__dict__.get(_CLASS_MARKER):
            delattr(engine_cls, _CLASS_MARKER)

    # ------------------------------------------------------------------
    # Span lifecycle shared by both wrappers
    # ------------------------------------------------------------------
    def _record_error(self, span: Span, error: BaseException, attributes: Optional[Dict[str, Any]] = None) -> None:
        try:
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, _status_message(error)))
            for key, value in (attributes or {}).items():
                span.set_attribute(key, value)
        except Exception:
            logger.debug("%s: Failed to record error on span", LOGPREFIX, exc_info=True)

    def _settle_success(self, span: Span, on_result: Callable[[Span, Any], None], result: Any) -> None:
        try:
            on_result(span, result)
        except Exception:
            logger.debug("%s: Failed to enrich span with result", LOGPREFIX, exc_info=True)

    def _run_in_span(
        self,
        span: Span,
        wrapped: Callable[..., Any],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        on_result: Callable[[Span, Any], None],
        error_attributes: Optional[Dict[str, Any]] = None,
    ) -> Any:
        span_context = trace.set_span_in_context(span)
        token = otel_context.attach(span_context)
        try:
            outcome = wrapped(*args, **kwargs)
        except BaseException as error:
            self._record_error(span, error, error_attributes)
            span.end()
            raise
        finally:
            otel_context.detach(token)

        if isinstance(outcome, asyncio.Future):
            outcome.add_done_callback(
                functools.partial(self._settle_future, span, on_result, error_attributes)
            )
            return outcome
        if inspect.isawaitable(outcome):
            return self._await_in_span(outcome, span, span_context, on_result, error_attributes)
        self._settle_success(span, on_result, outcome)
        span.end()
        return outcome

    async def _await_in_span(
        self,
        awaitable: Any,
        span: Span,
        span_context: otel_context.Context,
        on_result: Callable[[Span, Any], None],
        error_attributes: Optional[Dict[str, Any]],
    ) -> Any:
        token = otel_context.attach(span_context)
        try:
            result = await awaitable
        except BaseException as error:
            self._record_error(span, error, error_attributes)
            raise
        else:
            self._settle_success(span, on_result, result)
            return result
        finally:
            otel_context.detach(token)
            span.end()

    def _settle_future(
        self,
        span: Span,
        on_result: Callable[[Span, Any], None],
        error_attributes: Optional[Dict[str, Any]],
        future: asyncio.Future,
    ) -> None:
        try:
            if future.cancelled():
                self._record_error(span, asyncio.CancelledError(), error_attributes)
            elif future.exception() is not None:
                self._record_error(span, future.exception(), error_attributes)
            else:
                self._settle_success(span, on_result, future.result())
        finally:
            span.end()

    # ------------------------------------------------------------------
    # Workflow level
    # ------------------------------------------------------------------
    def _workflow_identity(self, instance: Any, workflow: Any) -> ExecutionIdentity:
        execution_id = resolve_execution_id(instance)
        return ExecutionIdentity(
            workflow_id=str(field(workflow, "id", "")),
            workflow_name=str(field(workflow, "name", "")),
            execution_id=execution_id,
            session_id=derive_session_id(execution_id),
        )

    def _workflow_attributes(self, identity: ExecutionIdentity, workflow: Any) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "n8n.workflow.id": identity.workflow_id,
            "n8n.workflow.name": identity.workflow_name,
            "n8n.execution.id": identity.execution_id,
            "n8n.session.id": identity.session_id,
        }
        attributes.update(flatten_attributes(field(workflow, "settings") or {}, "n8n.workflow.settings"))
        return attributes

    def _wrap_workflow_run(self, wrapped: Callable[..., Any], instance: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
        settings = self._settings
        try:
            workflow = args[0] if args else kwargs.get("workflow")
            identity = self._workflow_identity(instance, workflow)
            attributes = self._workflow_attributes(identity, workflow)
            naming_ctx = NamingContext(
                workflow_id=identity.workflow_id,
                workflow_name=identity.workflow_name,
                execution_id=identity.execution_id,
                session_id=identity.session_id,
            )
            if not settings.TRACING_ONLY_WORKFLOW_SPANS:
                rename_http_root_span(naming_ctx, attributes, settings)
            span_name = build_workflow_span_name(naming_ctx, settings)
            span = self._tracer.start_span(span_name, kind=SpanKind.INTERNAL, attributes=attributes)
        except Exception:
            logger.warning("%s: Failed to open workflow span; running untraced", LOGPREFIX, exc_info=True)
            return wrapped(*args, **kwargs)

        try:
            span.set_attribute("session.id", identity.session_id)
            if identity.workflow_name:
                span.set_attribute("langfuse.trace.name", identity.workflow_name)
            if settings.TRACING_CAPTURE_INPUT_OUTPUT:
                span.set_attribute(
                    "langfuse.trace.input",
                    safe_json_dumps(
                        {"workflowId": identity.workflow_id, "workflowName": identity.workflow_name}
                    ),
                )
        except Exception:
            logger.debug("%s: Failed to set workflow trace attributes", LOGPREFIX, exc_info=True)

        if settings.debug:
            logger.debug(
                "%s: starting n8n workflow span workflowId=%s executionId=%s spanName=%s",
                LOGPREFIX,
                identity.workflow_id,
                identity.execution_id,
                span_name,
            )
        return self._run_in_span(span, wrapped, args, kwargs, self._on_workflow_result)

    def _on_workflow_result(self, span: Span, result: Any) -> None:
        result_data = nested_field(result, "data", "resultData")
        error = field(result_data, "error")
        if error:
            self._record_error(span, _as_exception(error))
        if self._settings.TRACING_CAPTURE_INPUT_OUTPUT:
            run_data = field(result_data, "runData")
            if run_data:
                span.set_attribute(
                    "langfuse.trace.output",
                    truncate_io(safe_json_dumps(redact_binary(run_data)), self._settings.TRACING_MAX_IO_CHARS),
                )

    # ------------------------------------------------------------------
    # Node level
    # ------------------------------------------------------------------
    def _node_attributes(self, bound: Dict[str, Any], node: Any) -> Dict[str, Any]:
        additional_data = bound.get("additional_data")
        execution_id = str(field(additional_data, "executionId") or "unknown")
        attributes: Dict[str, Any] = {
            "n8n.workflow.id": str(field(bound.get("workflow"), "id", "unknown")),
            "n8n.execution.id": execution_id,
            "n8n.session.id": derive_session_id(execution_id),
            "n8n.user.id": str(field(additional_data, "userId", "unknown")),
            "n8n.node.name": str(field(node, "name") or "unknown"),
        }
        attributes.update(flatten_attributes(node or {}, "n8n.node"))
        return attributes

    def _wrap_node_run(self, wrapped: Callable[..., Any], instance: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
        if instance is None:
            logger.warning("%s: WorkflowExecute context is undefined", LOGPREFIX)
            return wrapped(*args, **kwargs)
        settings = self._settings
        try:
            bound = _bind(args, kwargs, NODE_ARGUMENTS)
            node = field(bound.get("execution_data"), "node")
            run_index = bound.get("run_index") or 0
            attributes = self._node_attributes(bound, node)
            node_name = field(node, "name")
            node_type = field(node, "type")
            observation_type = None
            if settings.TRACING_MAP_LANGFUSE_OBSERVATION_TYPES:
                observation_type = classify(node_type, attributes)
                if observation_type:
                    attributes["langfuse.observation.type"] = observation_type
                    attributes["n8n.langfuse.observation.type"] = observation_type
            attributes["n8n.node.is_ai"] = is_ai_node(node_type, field(node, "category"))
            attributes["session.id"] = attributes["n8n.session.id"]
            if attributes["n8n.user.id"] != "unknown":
                attributes["user.id"] = attributes["n8n.user.id"]
            span_name = build_node_span_name(node_name, observation_type, settings)
            span = self._tracer.start_span(span_name, kind=SpanKind.INTERNAL, attributes=attributes)
        except Exception:
            logger.warning("%s: Failed to open node span; running untraced", LOGPREFIX, exc_info=True)
            return wrapped(*args, **kwargs)

        if settings.debug:
            logger.debug("%s Executing node: %s", LOGPREFIX, node_name)

        if settings.TRACING_CAPTURE_INPUT_OUTPUT:
            try:
                input_obj = extract_node_input(node)
                if input_obj:
                    input_str = truncate_io(
                        safe_json_dumps(redact_binary(input_obj)), settings.TRACING_MAX_IO_CHARS
                    )
                    span.set_attribute("langfuse.observation.input", input_str)
                    span.set_attribute("gen_ai.prompt", input_str)
            except Exception:
                logger.debug("%s: Failed to capture node input", LOGPREFIX, exc_info=True)

        return self._run_in_span(
            span,
            wrapped,
            args,
            kwargs,
            functools.partial(self._on_node_result, run_index=run_index),
            error_attributes={"n8n.node.status": "error"},
        )

    def _on_node_result(self, span: Span, result: Any, run_index: int) -> None:
        limit = self._settings.TRACING_MAX_IO_CHARS
        json_items = extract_output_json(result, run_index)
        if json_items is not None:
            span.set_attribute(
                "n8n.node.output_json", truncate_io(safe_json_dumps(redact_binary(json_items)), limit)
            )
        if self._settings.TRACING_CAPTURE_INPUT_OUTPUT:
            extracted = extract_node_output(result, run_index)
            if extracted:
                output_str = truncate_io(safe_json_dumps(redact_binary(extracted)), limit)
                span.set_attribute("langfuse.observation.output", output_str)
                span.set_attribute("gen_ai.completion", output_str)
