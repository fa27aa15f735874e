"""Package initialization for n8n-otel-tracing.

Non-invasive OpenTelemetry instrumentation for n8n-style workflow engines:
the engine's workflow and node entry points are wrapped in place and each
execution produces a workflow span with one child span per node run,
annotated for Langfuse.
"""

__all__ = []
