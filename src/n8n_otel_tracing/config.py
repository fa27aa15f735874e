"""Tracing configuration management using Pydantic Settings.

This module defines the `Settings` class, which loads the tracing toggles from
environment variables and a `.env` file. It centralizes every tunable of the
instrumentation layer: auto-instrumentation scope, input/output capture,
observation type classification and span naming policy, plus the handful of
OpenTelemetry exporter values the bootstrap needs to read itself.

The `get_settings` function provides a cached, singleton instance of the
configuration. The instrumentation reads it once during bootstrap and never
mutates it afterwards.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict as _SettingsConfigDict

from .environment import strip_surrounding_quotes

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}

_BOOL_FIELDS = (
    "TRACING_ONLY_WORKFLOW_SPANS",
    "TRACING_MAP_LANGFUSE_OBSERVATION_TYPES",
    "TRACING_LANGFUSE_TYPE_IN_NODE_SPAN_NAME",
    "TRACING_USE_NODE_NAME_SPAN",
    "TRACING_DYNAMIC_WORKFLOW_TRACE_NAME",
    "TRACING_CAPTURE_INPUT_OUTPUT",
    "OTEL_SDK_DISABLED",
    "N8N_OTEL_EXPORT_LOGS",
)

_INT_FIELDS = (
    "TRACING_MAX_IO_CHARS",
    "TRACING_EXIT_FLUSH_TIMEOUT_MS",
    "OTEL_EXPORTER_OTLP_TIMEOUT",
)

_STR_FIELDS = (
    "TRACING_ENGINE_TARGET",
    "TRACING_WORKFLOW_METHOD",
    "TRACING_NODE_METHOD",
    "OTEL_SERVICE_NAME",
    "LANGFUSE_HOST",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
)


def _strip_quotes(value: str) -> str:
    return strip_surrounding_quotes(value.strip()).strip()


class Settings(BaseSettings):
    """Defines all tracing configuration parameters.

    Boolean toggles are parsed leniently: ``true/1/yes/on`` and
    ``false/0/no/off`` are recognised case-insensitively and anything else
    falls back to the field default, so a typo in the container environment
    never prevents the host engine from starting. Integer values get the same
    treatment, and surrounding quotes are stripped from every value.
    """

    model_config = _SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging
    TRACING_LOG_LEVEL: str = Field(default="info", description="Tracing log level")

    # ---------------- Instrumentation scope -----------------
    TRACING_ONLY_WORKFLOW_SPANS: bool = Field(
        default=False,
        description=(
            "If true, disable auto-instrumentations and emit only the workflow + node spans. "
            "The HTTP root span rename is skipped as well."
        ),
    )
    TRACING_DISABLED_INSTRUMENTATIONS: Any = Field(
        default_factory=lambda: ["psycopg", "psycopg2", "asyncpg", "sqlite3", "logging"],
        description=(
            "Comma-separated opentelemetry_instrumentor entry point names never loaded "
            "by the bootstrap (database drivers are noisy for workflow traces)."
        ),
    )

    # ---------------- Observation types & naming -----------------
    TRACING_MAP_LANGFUSE_OBSERVATION_TYPES: bool = Field(
        default=True,
        description="Add langfuse.observation.type attributes derived from the node type",
    )
    TRACING_LANGFUSE_TYPE_IN_NODE_SPAN_NAME: bool = Field(
        default=False,
        description="Incorporate observation type into node span name: n8n.node.<type>.execute",
    )
    TRACING_USE_NODE_NAME_SPAN: bool = Field(
        default=True,
        description="Use the actual n8n node name as span name (higher cardinality, more readable)",
    )
    TRACING_DYNAMIC_WORKFLOW_TRACE_NAME: bool = Field(
        default=False,
        description="Name workflow spans <workflowId>-<workflowName>-<executionId>",
    )
    TRACING_WORKFLOW_SPAN_NAME_PATTERN: Optional[str] = Field(
        default=None,
        description=(
            "Explicit workflow span name pattern; overrides the dynamic flag. Placeholders: "
            "{workflowId} {workflowName} {executionId} {sessionId}"
        ),
    )

    # ---------------- Input / output capture -----------------
    TRACING_CAPTURE_INPUT_OUTPUT: bool = Field(
        default=True,
        description="Capture workflow & node input/output content for Langfuse enrichment",
    )
    TRACING_MAX_IO_CHARS: int = Field(
        default=12000,
        description="Max characters of serialized input/output before truncation (<=0 disables)",
    )

    # ---------------- Engine target -----------------
    TRACING_ENGINE_TARGET: str = Field(
        default="n8n_core:WorkflowExecute",
        description="Import path 'module:Class' of the workflow engine to instrument at bootstrap",
    )
    TRACING_WORKFLOW_METHOD: str = Field(
        default="process_run_execution_data",
        description="Name of the engine's workflow-level run method",
    )
    TRACING_NODE_METHOD: str = Field(
        default="run_node", description="Name of the engine's node-level run method"
    )
    TRACING_EXIT_FLUSH_TIMEOUT_MS: int = Field(
        default=5000,
        description="Upper bound for the span flush attempted on an uncaught exception",
    )

    # ---------------- OpenTelemetry / Langfuse -----------------
    OTEL_SERVICE_NAME: str = Field(default="n8n", description="Resource service.name")
    OTEL_SDK_DISABLED: bool = Field(
        default=False, description="If true, run the target without instrumentation"
    )
    OTEL_EXPORTER_OTLP_ENDPOINT: Optional[str] = Field(
        default=None, description="Override OTLP endpoint (otherwise derived from LANGFUSE_HOST)"
    )
    OTEL_EXPORTER_OTLP_TIMEOUT: int = Field(
        default=30, description="Timeout (seconds) for OTLP HTTP export requests"
    )
    OTEL_LOGS_EXPORTER: str = Field(default="", description="Set to 'otlp' to export logs")
    N8N_OTEL_EXPORT_LOGS: bool = Field(
        default=False, description="Export logs via OTLP when OTEL_LOGS_EXPORTER is unset"
    )
    LANGFUSE_HOST: str = Field(default="", description="Base URL for Langfuse host")
    LANGFUSE_PUBLIC_KEY: str = Field(default="", description="Langfuse public key")
    LANGFUSE_SECRET_KEY: str = Field(default="", description="Langfuse secret key")

    @field_validator(*_BOOL_FIELDS, mode="before")
    @classmethod
    def parse_lenient_bool(cls, v: Any, info: Any) -> Any:
        """Map recognised truthy/falsy strings to bools, others to the default."""
        if isinstance(v, bool):
            return v
        text = _strip_quotes(str(v)).lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        return cls.model_fields[info.field_name].default

    @field_validator(*_INT_FIELDS, mode="before")
    @classmethod
    def parse_lenient_int(cls, v: Any, info: Any) -> Any:
        """Parse quoted or padded integers; unparsable values use the default."""
        if isinstance(v, int) and not isinstance(v, bool):
            return v
        try:
            return int(_strip_quotes(str(v)))
        except ValueError:
            return cls.model_fields[info.field_name].default

    @field_validator(*_STR_FIELDS, mode="before")
    @classmethod
    def strip_str(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _strip_quotes(v)
        return v

    @field_validator("OTEL_EXPORTER_OTLP_ENDPOINT", mode="before")
    @classmethod
    def normalize_endpoint(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return _strip_quotes(str(v)) or None

    @field_validator("TRACING_DISABLED_INSTRUMENTATIONS", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated string into list of stripped strings.

        Supports both direct list input (from code/tests) and comma-separated
        string input (from environment variables). Empty strings result in
        empty list.
        """
        if isinstance(v, list):
            return [s.strip() for s in v if s.strip()]
        if isinstance(v, str):
            if not v.strip():
                return []
            return [s.strip() for s in _strip_quotes(v).split(",") if s.strip()]
        return []

    @field_validator("TRACING_WORKFLOW_SPAN_NAME_PATTERN", mode="before")
    @classmethod
    def normalize_pattern(cls, v: Any) -> Optional[str]:
        """Trim quotes/whitespace; blank patterns mean "no pattern"."""
        if v is None:
            return None
        trimmed = _strip_quotes(str(v))
        return trimmed or None

    @field_validator("TRACING_LOG_LEVEL", "OTEL_LOGS_EXPORTER", mode="before")
    @classmethod
    def normalize_lower(cls, v: Any) -> str:
        return _strip_quotes(str(v or "")).lower()

    @property
    def debug(self) -> bool:
        return self.TRACING_LOG_LEVEL == "debug"

    @property
    def otel_logs_enabled(self) -> bool:
        """Logs are opt-in: OTEL_LOGS_EXPORTER=otlp, else the custom toggle."""
        if self.OTEL_LOGS_EXPORTER in ("otlp", "otlp_http", "otlp-http"):
            return True
        return self.N8N_OTEL_EXPORT_LOGS


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # pragma: no cover - trivial
    """Return a cached, singleton instance of the tracing settings."""
    return Settings()
