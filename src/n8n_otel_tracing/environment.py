"""Normalization of OpenTelemetry environment variables.

Container runtimes frequently inject values wrapped in quotes
(``OTEL_EXPORTER_OTLP_HEADERS="Authorization=Basic abc"`` arrives with the
quotes intact). The OTLP exporters read these variables verbatim, so a quoted
endpoint or header silently breaks export. `normalize_otel_environment` strips
one layer of surrounding quotes from every ``OTEL_*`` value and applies the
export timeout defaults used by this project.
"""
from __future__ import annotations

import logging
import os
from typing import MutableMapping, Optional

logger = logging.getLogger(__name__)

__all__ = ["normalize_otel_environment", "strip_surrounding_quotes", "OTEL_PREFIX"]

LOGPREFIX = "[Tracing]"
OTEL_PREFIX = "OTEL_"

# The Python OTLP exporters read OTEL_EXPORTER_OTLP_TIMEOUT in seconds while
# the batch span processor reads OTEL_BSP_EXPORT_TIMEOUT in milliseconds.
DEFAULT_OTLP_TIMEOUT_SECONDS = "30"
DEFAULT_BSP_EXPORT_TIMEOUT_MILLIS = "30000"


def strip_surrounding_quotes(value: str) -> str:
    """Remove one leading and one trailing quote character, if present."""
    if value[:1] in ("'", '"'):
        value = value[1:]
    if value[-1:] in ("'", '"'):
        value = value[:-1]
    return value


def normalize_otel_environment(
    env: Optional[MutableMapping[str, str]] = None, *, debug: bool = False
) -> None:
    """Strip quotes from all ``OTEL_*`` variables and apply timeout defaults.

    The mapping is mutated in place. A failure while processing one key is
    logged and skipped; the remaining keys are still normalized.

    Args:
        env: Mapping to normalize; defaults to ``os.environ``.
        debug: Log every processed key/value pair.
    """
    if env is None:
        env = os.environ
    logger.info("%s: Processing OTEL environment variables", LOGPREFIX)
    for key in list(env.keys()):
        if not key.startswith(OTEL_PREFIX):
            continue
        try:
            clean = strip_surrounding_quotes(env[key])
            env[key] = clean
            if debug:
                logger.debug("%s: Processed %s=%s", LOGPREFIX, key, clean)
        except Exception as e:
            logger.warning("%s: Error processing %s: %s", LOGPREFIX, key, e)

    if not env.get("OTEL_EXPORTER_OTLP_TIMEOUT") and not env.get(
        "OTEL_EXPORTER_OTLP_TRACES_TIMEOUT"
    ):
        env["OTEL_EXPORTER_OTLP_TIMEOUT"] = DEFAULT_OTLP_TIMEOUT_SECONDS
        logger.info("%s: Set default OTLP timeout to 30 seconds", LOGPREFIX)

    if not env.get("OTEL_BSP_EXPORT_TIMEOUT"):
        env["OTEL_BSP_EXPORT_TIMEOUT"] = DEFAULT_BSP_EXPORT_TIMEOUT_MILLIS
        logger.info("%s: Set default batch export timeout to 30 seconds", LOGPREFIX)
