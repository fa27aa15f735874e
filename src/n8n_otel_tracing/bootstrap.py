"""One-call startup of the tracing layer inside the engine's process.

`bootstrap` is what the CLI ``run`` command (or a site hook) calls before the
engine starts:

1. normalize the ``OTEL_*`` environment;
2. load the settings once and configure logging;
3. under the init guard: install the tracer provider, exit hooks, optional
   log export and auto-instrumentations, then wrap the configured engine class.

Every failure is contained: bootstrap returns False and the engine runs
untraced.
"""
from __future__ import annotations

import importlib
import logging
from typing import Optional

from pydantic import ValidationError

from .config import Settings, get_settings
from .environment import normalize_otel_environment
from .init_guard import try_initialize
from .instrumentation import N8nInstrumentor
from .telemetry import (
    install_exit_hooks,
    load_auto_instrumentations,
    setup_log_export,
    setup_tracer_provider,
)

logger = logging.getLogger(__name__)

__all__ = ["bootstrap", "configure_logging", "import_engine_target", "get_instrumentor"]

LOGPREFIX = "[Tracing]"

_instrumentor: Optional[N8nInstrumentor] = None


def get_instrumentor() -> Optional[N8nInstrumentor]:
    """Return the instrumentor installed by `bootstrap`, if any."""
    return _instrumentor


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.TRACING_LOG_LEVEL.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level)
    logging.getLogger("n8n_otel_tracing").setLevel(level)


def import_engine_target(target: str) -> Optional[type]:
    """Import ``module:Class`` (or ``module.Class``); None when unavailable."""
    module_name, sep, attr = target.partition(":")
    if not sep:
        module_name, _, attr = target.rpartition(".")
    if not module_name or not attr:
        logger.error("%s: Invalid engine target %r (expected module:Class)", LOGPREFIX, target)
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        logger.error("%s: Engine module %s not importable; engine not instrumented", LOGPREFIX, module_name)
        return None
    engine_cls = getattr(module, attr, None)
    if not isinstance(engine_cls, type):
        logger.error("%s: %s has no class %s; engine not instrumented", LOGPREFIX, module_name, attr)
        return None
    return engine_cls


def _setup(settings: Settings, engine_cls: Optional[type]) -> None:
    global _instrumentor
    logger.info("%s: Starting n8n OpenTelemetry instrumentation", LOGPREFIX)
    provider = setup_tracer_provider(settings)
    install_exit_hooks(provider, settings)
    try:
        setup_log_export(settings)
    except Exception:
        logger.warning("%s: Failed to enable OTEL log export", LOGPREFIX, exc_info=True)
    if settings.TRACING_ONLY_WORKFLOW_SPANS:
        logger.info(
            "%s: TRACING_ONLY_WORKFLOW_SPANS=true -> auto-instrumentations DISABLED (no HTTP/DB spans)",
            LOGPREFIX,
        )
    else:
        load_auto_instrumentations(settings, provider)

    logger.info("%s: Setting up n8n telemetry", LOGPREFIX)
    _instrumentor = N8nInstrumentor(settings, tracer_provider=provider)
    target = engine_cls or import_engine_target(settings.TRACING_ENGINE_TARGET)
    if target is not None:
        _instrumentor.instrument_engine(target)
    logger.info("%s: OpenTelemetry SDK started successfully", LOGPREFIX)


def bootstrap(settings: Optional[Settings] = None, engine_cls: Optional[type] = None) -> bool:
    """Install tracing once per process.

    Args:
        settings: Explicit settings; loaded from the environment by default.
        engine_cls: Engine class to wrap instead of ``TRACING_ENGINE_TARGET``.

    Returns:
        True if this call installed the instrumentation.
    """
    normalize_otel_environment()
    if settings is None:
        try:
            settings = get_settings()
        except ValidationError:
            logging.basicConfig()
            logger.error("%s: Invalid tracing configuration; tracing disabled", LOGPREFIX, exc_info=True)
            return False
    configure_logging(settings)
    if settings.OTEL_SDK_DISABLED:
        logger.info("%s: OTEL_SDK_DISABLED=true, instrumentation skipped", LOGPREFIX)
        return False
    return try_initialize(lambda: _setup(settings, engine_cls))
