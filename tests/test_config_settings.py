from __future__ import annotations

import pytest

from conftest import make_settings


def test_defaults():
    s = make_settings()
    assert s.TRACING_ONLY_WORKFLOW_SPANS is False
    assert s.TRACING_MAP_LANGFUSE_OBSERVATION_TYPES is True
    assert s.TRACING_USE_NODE_NAME_SPAN is True
    assert s.TRACING_CAPTURE_INPUT_OUTPUT is True
    assert s.TRACING_MAX_IO_CHARS == 12000
    assert s.TRACING_WORKFLOW_SPAN_NAME_PATTERN is None
    assert "psycopg" in s.TRACING_DISABLED_INSTRUMENTATIONS


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("true", True),
        ("TRUE", True),
        ("1", True),
        ("yes", True),
        ("on", True),
        ('"true"', True),
        ("false", False),
        ("0", False),
        ("No", False),
        ("off", False),
    ],
)
def test_lenient_bool_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("TRACING_ONLY_WORKFLOW_SPANS", raw)
    assert make_settings().TRACING_ONLY_WORKFLOW_SPANS is expected


def test_unrecognised_bool_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("TRACING_CAPTURE_INPUT_OUTPUT", "maybe")
    monkeypatch.setenv("TRACING_ONLY_WORKFLOW_SPANS", "definitely")
    s = make_settings()
    assert s.TRACING_CAPTURE_INPUT_OUTPUT is True
    assert s.TRACING_ONLY_WORKFLOW_SPANS is False


def test_comma_separated_instrumentations(monkeypatch):
    monkeypatch.setenv("TRACING_DISABLED_INSTRUMENTATIONS", " redis, ,requests ")
    assert make_settings().TRACING_DISABLED_INSTRUMENTATIONS == ["redis", "requests"]
    monkeypatch.setenv("TRACING_DISABLED_INSTRUMENTATIONS", "")
    assert make_settings().TRACING_DISABLED_INSTRUMENTATIONS == []


def test_log_level_and_logs_exporter(monkeypatch):
    monkeypatch.setenv("TRACING_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("OTEL_LOGS_EXPORTER", '"OTLP"')
    s = make_settings()
    assert s.debug is True
    assert s.otel_logs_enabled is True


def test_logs_export_opt_in():
    assert make_settings().otel_logs_enabled is False
    assert make_settings(N8N_OTEL_EXPORT_LOGS="yes").otel_logs_enabled is True


def test_env_file_is_read(tmp_path):
    from n8n_otel_tracing.config import Settings

    env_file = tmp_path / ".env"
    env_file.write_text("TRACING_MAX_IO_CHARS=500\nTRACING_WORKFLOW_SPAN_NAME_PATTERN='wf.{workflowId}'\n")
    s = Settings(_env_file=str(env_file))
    assert s.TRACING_MAX_IO_CHARS == 500
    assert s.TRACING_WORKFLOW_SPAN_NAME_PATTERN == "wf.{workflowId}"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2048", 2048),
        ('"2048"', 2048),
        (" '0' ", 0),
        ("-1", -1),
        ("12k", 12000),
        ("", 12000),
        ("1.5", 12000),
    ],
)
def test_lenient_int_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("TRACING_MAX_IO_CHARS", raw)
    assert make_settings().TRACING_MAX_IO_CHARS == expected


def test_malformed_int_only_resets_that_field(monkeypatch):
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_TIMEOUT", "thirty")
    monkeypatch.setenv("TRACING_EXIT_FLUSH_TIMEOUT_MS", '"250"')
    s = make_settings()
    assert s.OTEL_EXPORTER_OTLP_TIMEOUT == 30
    assert s.TRACING_EXIT_FLUSH_TIMEOUT_MS == 250


def test_quotes_stripped_from_string_values(monkeypatch):
    monkeypatch.setenv("OTEL_SERVICE_NAME", '"my-n8n"')
    monkeypatch.setenv("LANGFUSE_HOST", "'https://cloud.langfuse.com'")
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", '""')
    s = make_settings()
    assert s.OTEL_SERVICE_NAME == "my-n8n"
    assert s.LANGFUSE_HOST == "https://cloud.langfuse.com"
    assert s.OTEL_EXPORTER_OTLP_ENDPOINT is None
