"""OpenTelemetry SDK setup: tracer provider, OTLP export and process hooks.

This module owns everything between the spans produced by the interception
layer and the trace sink:

- Creation of the global tracer provider with a batch span processor and an
  OTLP/HTTP exporter. When no explicit OTLP endpoint is configured but
  Langfuse credentials are, the Langfuse OTLP endpoint and Basic auth header
  are derived from them.
- Optional OTLP log export (opt-in) through an OpenTelemetry logging handler.
- Loading of installed auto-instrumentations (HTTP clients, web frameworks),
  minus the ones disabled by configuration.
- Process hooks: an uncaught exception is recorded on the active span and the
  provider is flushed within a bounded time before the interpreter exits.

A sink misconfiguration disables export only; the provider is still installed
so spans are constructed and context propagation keeps working.
"""
from __future__ import annotations

import atexit
import base64
import logging
import os
import socket
import sys
import threading
from importlib.metadata import entry_points
from typing import Any, List, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import ProcessResourceDetector, Resource, get_aggregated_resources
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from .config import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "resolve_langfuse_endpoint",
    "setup_tracer_provider",
    "setup_log_export",
    "load_auto_instrumentations",
    "install_exit_hooks",
    "shutdown",
]

LOGPREFIX = "[Tracing]"
INSTRUMENTOR_ENTRY_POINT_GROUP = "opentelemetry_instrumentor"

_provider: Optional[TracerProvider] = None


def resolve_langfuse_endpoint(settings: Settings) -> Optional[str]:
    """Derive the Langfuse OTLP trace endpoint from ``LANGFUSE_HOST``.

    Langfuse base host (e.g. https://cloud.langfuse.com) expects
    /api/public/otel/v1/traces. Users may already provide a partial or full
    path; normalize minimally.
    """
    base = settings.LANGFUSE_HOST.rstrip("/") if settings.LANGFUSE_HOST else ""
    if not base:
        return None
    if base.endswith("/api/public/otel/v1/traces"):
        return base
    if base.endswith("/api/public/otel"):
        return base + "/v1/traces"
    return base + "/api/public/otel/v1/traces"


def _build_exporter(settings: Settings) -> OTLPSpanExporter:
    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        # The exporter reads the OTEL_EXPORTER_OTLP_* variables (endpoint,
        # headers, timeout) itself.
        logger.info("%s: OTLP Endpoint: %s", LOGPREFIX, settings.OTEL_EXPORTER_OTLP_ENDPOINT)
        return OTLPSpanExporter()
    endpoint = resolve_langfuse_endpoint(settings)
    if endpoint and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        auth_raw = f"{settings.LANGFUSE_PUBLIC_KEY}:{settings.LANGFUSE_SECRET_KEY}".encode()
        auth_b64 = base64.b64encode(auth_raw).decode()
        logger.info("%s: OTLP Endpoint: %s (Langfuse)", LOGPREFIX, endpoint)
        return OTLPSpanExporter(
            endpoint=endpoint,
            headers={"Authorization": f"Basic {auth_b64}"},
            timeout=settings.OTEL_EXPORTER_OTLP_TIMEOUT,
        )
    if endpoint:
        logger.warning("%s: Missing Langfuse keys; using OTLP environment defaults", LOGPREFIX)
    logger.info("%s: OTLP Endpoint: default", LOGPREFIX)
    return OTLPSpanExporter()


def _build_resource(settings: Settings) -> Resource:
    initial = Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "host.name": socket.gethostname(),
            "telemetry.auto.version": "n8n-otel-tracing",
        }
    )
    return get_aggregated_resources([ProcessResourceDetector()], initial_resource=initial)


def setup_tracer_provider(settings: Settings) -> TracerProvider:
    """Create, register and return the global tracer provider."""
    global _provider
    # Exit shutdown is registered by install_exit_hooks.
    provider = TracerProvider(resource=_build_resource(settings), shutdown_on_exit=False)
    try:
        provider.add_span_processor(BatchSpanProcessor(_build_exporter(settings)))
    except Exception:
        logger.error(
            "%s: Failed to configure OTLP exporter; spans will not be exported",
            LOGPREFIX,
            exc_info=True,
        )
    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info(
        "%s: OTLP Timeout: %ss",
        LOGPREFIX,
        os.environ.get("OTEL_EXPORTER_OTLP_TIMEOUT", settings.OTEL_EXPORTER_OTLP_TIMEOUT),
    )
    if settings.debug:
        logger.debug(
            "%s: OTLP Headers configured: %s",
            LOGPREFIX,
            "Yes" if os.environ.get("OTEL_EXPORTER_OTLP_HEADERS") else "No",
        )
    return provider


def setup_log_export(settings: Settings) -> bool:
    """Attach an OTLP logging handler to the root logger when logs are opted in."""
    if not settings.otel_logs_enabled:
        logger.info("%s: OTEL logs exporter disabled", LOGPREFIX)
        return False
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import SimpleLogRecordProcessor

    logger_provider = LoggerProvider(resource=_build_resource(settings))
    logger_provider.add_log_record_processor(SimpleLogRecordProcessor(OTLPLogExporter()))
    set_logger_provider(logger_provider)
    logging.getLogger().addHandler(LoggingHandler(logger_provider=logger_provider))
    logger.info("%s: OTEL logs exporter enabled", LOGPREFIX)
    return True


def load_auto_instrumentations(settings: Settings, provider: TracerProvider) -> List[str]:
    """Instrument every installed OpenTelemetry instrumentor not disabled by config.

    Returns:
        Names of the instrumentors that were activated.
    """
    disabled = set(settings.TRACING_DISABLED_INSTRUMENTATIONS)
    disabled.update(
        name.strip()
        for name in os.environ.get("OTEL_PYTHON_DISABLED_INSTRUMENTATIONS", "").split(",")
        if name.strip()
    )
    activated: List[str] = []
    for ep in entry_points(group=INSTRUMENTOR_ENTRY_POINT_GROUP):
        if ep.name in disabled:
            logger.debug("%s: Instrumentation %s disabled", LOGPREFIX, ep.name)
            continue
        try:
            ep.load()().instrument(tracer_provider=provider)
            activated.append(ep.name)
        except Exception:
            logger.warning("%s: Failed to load instrumentation %s", LOGPREFIX, ep.name, exc_info=True)
    logger.info(
        "%s: Auto-instrumentations enabled: %s", LOGPREFIX, ", ".join(activated) or "none installed"
    )
    return activated


def install_exit_hooks(provider: Any, settings: Settings) -> None:
    """Record uncaught exceptions on the active span and flush before exit."""
    previous_hook = sys.excepthook
    previous_thread_hook = threading.excepthook
    flush_timeout = max(0, settings.TRACING_EXIT_FLUSH_TIMEOUT_MS)

    def _excepthook(exc_type: Any, exc: BaseException, tb: Any) -> None:
        logger.error("Uncaught Exception", exc_info=(exc_type, exc, tb))
        span = trace.get_current_span()
        if span.is_recording():
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
        try:
            provider.force_flush(timeout_millis=flush_timeout)
        except Exception:
            logger.error("Error flushing telemetry data", exc_info=True)
        previous_hook(exc_type, exc, tb)

    def _thread_excepthook(args: Any) -> None:
        logger.error(
            "Uncaught exception in thread %s",
            getattr(args.thread, "name", "unknown"),
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        previous_thread_hook(args)

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook
    atexit.register(shutdown)


def shutdown() -> None:  # pragma: no cover - simple shutdown hook
    """Flush any buffered spans and shut down the provider installed here."""
    if _provider is None:
        return
    try:
        _provider.shutdown()
    except Exception:
        logger.debug("Error during tracer provider shutdown", exc_info=True)
