"""Process-wide, once-only initialization of the tracing layer.

The host engine may import this package several times in one process (once
through a site hook, again through a different import path or a reloaded
module) and worker processes inherit the parent's environment. Each
installation patches the engine's entry points again, which yields duplicated
spans, so initialization is guarded by three independent markers:

* ``_STATE`` – the in-memory state object of this module instance;
* ``__N8N_TRACING_INITIALIZED`` – an environment variable, visible to any
  copy of the module and inherited by forked / spawned workers;
* ``sys.__n8n_otel_sdk_started__`` – an attribute on the interpreter-wide
  ``sys`` module, which survives ``importlib.reload`` and duplicate module
  objects (``src.init_guard`` vs ``n8n_otel_tracing.init_guard``).

Lifecycle: ``pending`` -> ``initialized`` (setup succeeded) or ``failed``
(setup raised; instrumentation stays disabled). The state never returns to
``pending`` outside of tests.
"""
from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Callable

logger = logging.getLogger(__name__)

__all__ = ["try_initialize", "is_initialized", "ENV_MARKER", "SYS_MARKER"]

LOGPREFIX = "[Tracing]"
ENV_MARKER = "__N8N_TRACING_INITIALIZED"
SYS_MARKER = "__n8n_otel_sdk_started__"


class _InitState:
    """In-memory half of the initialization markers."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.status = "pending"

    def already_initialized(self) -> bool:
        return (
            self.status != "pending"
            or os.environ.get(ENV_MARKER) == "true"
            or bool(getattr(sys, SYS_MARKER, False))
        )

    def mark(self) -> None:
        self.status = "initialized"
        os.environ[ENV_MARKER] = "true"
        setattr(sys, SYS_MARKER, True)


_STATE = _InitState()


def is_initialized() -> bool:
    """Return True once any copy of the module has claimed initialization."""
    return _STATE.already_initialized()


def try_initialize(setup: Callable[[], None]) -> bool:
    """Run ``setup`` exactly once per process.

    Markers are set before ``setup`` runs so that a re-entrant import triggered
    by the setup itself is also treated as a duplicate.

    Returns:
        True when this call performed the initialization, False when it was
        already done elsewhere or when ``setup`` raised. Never raises.
    """
    with _STATE.lock:
        if _STATE.already_initialized():
            logger.info(
                "%s: Already initialized in this process (PID: %s), skipping duplicate initialization",
                LOGPREFIX,
                os.getpid(),
            )
            return False
        _STATE.mark()
        logger.info(
            "%s: First initialization in process (PID: %s, PPID: %s)",
            LOGPREFIX,
            os.getpid(),
            os.getppid(),
        )
        try:
            setup()
        except Exception:
            _STATE.status = "failed"
            logger.error(
                "%s: Failed to set up OpenTelemetry instrumentation; tracing disabled",
                LOGPREFIX,
                exc_info=True,
            )
            return False
        return True


def _reset_for_tests() -> None:
    """Clear every marker. Only meant for the test-suite."""
    _STATE.status = "pending"
    os.environ.pop(ENV_MARKER, None)
    if hasattr(sys, SYS_MARKER):
        delattr(sys, SYS_MARKER)
