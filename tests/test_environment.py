from __future__ import annotations

import logging
import os

from n8n_otel_tracing.environment import normalize_otel_environment, strip_surrounding_quotes


def test_strip_surrounding_quotes():
    assert strip_surrounding_quotes('"http://collector:4318"') == "http://collector:4318"
    assert strip_surrounding_quotes("'abc'") == "abc"
    assert strip_surrounding_quotes('"unbalanced') == "unbalanced"
    assert strip_surrounding_quotes('""x""') == '"x"'
    assert strip_surrounding_quotes("plain") == "plain"
    assert strip_surrounding_quotes("") == ""


def test_only_otel_keys_are_normalized():
    env = {
        "OTEL_EXPORTER_OTLP_ENDPOINT": '"http://collector:4318"',
        "OTEL_EXPORTER_OTLP_HEADERS": "'Authorization=Basic abc'",
        "LANGFUSE_HOST": '"https://cloud.langfuse.com"',
    }
    normalize_otel_environment(env)
    assert env["OTEL_EXPORTER_OTLP_ENDPOINT"] == "http://collector:4318"
    assert env["OTEL_EXPORTER_OTLP_HEADERS"] == "Authorization=Basic abc"
    assert env["LANGFUSE_HOST"] == '"https://cloud.langfuse.com"'


def test_timeout_defaults_applied():
    env = {}
    normalize_otel_environment(env)
    assert env == {"OTEL_EXPORTER_OTLP_TIMEOUT": "30", "OTEL_BSP_EXPORT_TIMEOUT": "30000"}


def test_explicit_timeouts_kept():
    env = {"OTEL_EXPORTER_OTLP_TRACES_TIMEOUT": "10", "OTEL_BSP_EXPORT_TIMEOUT": '"5000"'}
    normalize_otel_environment(env)
    assert "OTEL_EXPORTER_OTLP_TIMEOUT" not in env
    assert env["OTEL_BSP_EXPORT_TIMEOUT"] == "5000"


def test_failing_key_is_logged_and_skipped(caplog):
    class FlakyEnv(dict):
        def __setitem__(self, key, value):
            if key == "OTEL_BROKEN":
                raise OSError("read-only")
            super().__setitem__(key, value)

    env = FlakyEnv({"OTEL_BROKEN": '"x"', "OTEL_SERVICE_NAME": '"n8n"'})
    with caplog.at_level(logging.WARNING, logger="n8n_otel_tracing"):
        normalize_otel_environment(env)
    assert env["OTEL_SERVICE_NAME"] == "n8n"
    assert "Error processing OTEL_BROKEN" in caplog.text


def test_default_target_is_os_environ(monkeypatch):
    monkeypatch.setenv("OTEL_SERVICE_NAME", "'n8n-worker'")
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TIMEOUT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_TIMEOUT", raising=False)
    monkeypatch.delenv("OTEL_BSP_EXPORT_TIMEOUT", raising=False)
    normalize_otel_environment()
    assert os.environ["OTEL_SERVICE_NAME"] == "n8n-worker"
    assert os.environ["OTEL_EXPORTER_OTLP_TIMEOUT"] == "30"
