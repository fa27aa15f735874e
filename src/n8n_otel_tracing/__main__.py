"""Main CLI entry point for n8n-otel-tracing.

This module provides a command-line interface using Typer:

1.  ``run TARGET [ARGS...]`` installs tracing into the current interpreter and
    then executes TARGET (a module name or a ``.py`` path) as ``__main__``,
    the way the container entrypoint preloads the tracing bootstrap before
    starting the engine. With ``OTEL_SDK_DISABLED=true`` the target runs
    untraced.
2.  ``classify NODE_TYPE`` prints the Langfuse observation type of a node type.
3.  ``show-config`` prints the effective tracing configuration.
"""
from __future__ import annotations

import json
import logging
import runpy
import sys
from typing import List, Optional

import typer
from pydantic import ValidationError

# Load .env file if present (before any config access)
try:
    from dotenv import find_dotenv, load_dotenv

    env_file = find_dotenv(usecwd=True) or find_dotenv()
    if env_file:
        load_dotenv(env_file)
        logging.debug("Loaded environment from %s", env_file)
except Exception:
    pass

from .bootstrap import bootstrap
from .config import get_settings
from .environment import normalize_otel_environment
from .observation_mapper import DEFAULT_OBSERVATION_TYPE, classify as classify_node

app = typer.Typer(help="n8n OpenTelemetry tracing CLI")


@app.callback()
def main() -> None:  # pragma: no cover - simple callback
    """n8n OpenTelemetry tracing."""


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
    help="Install tracing, then run TARGET (module or .py file) with ARGS.",
)
def run(
    target: str = typer.Argument(..., help="Module name or path of a Python script"),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to TARGET"),
) -> None:
    normalize_otel_environment()
    try:
        settings = get_settings()
    except ValidationError as e:
        typer.echo(f"Invalid tracing configuration, starting target untraced: {e}", err=True)
    else:
        if settings.OTEL_SDK_DISABLED:
            typer.echo("OpenTelemetry disabled, starting target normally...")
        else:
            typer.echo("Starting target with OpenTelemetry instrumentation...")
            bootstrap(settings)
    sys.argv = [target, *(args or [])]
    if target.endswith(".py"):
        runpy.run_path(target, run_name="__main__")
    else:
        runpy.run_module(target, run_name="__main__", alter_sys=True)


@app.command(help="Print the Langfuse observation type for an n8n node type.")
def classify(
    node_type: str = typer.Argument(..., help="Node type, e.g. LmChatOpenAi"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Node category hint"),
) -> None:
    observation_type = classify_node(node_type, {"category": category} if category else None)
    typer.echo(observation_type or DEFAULT_OBSERVATION_TYPE)


@app.command("show-config", help="Print the effective tracing configuration as JSON.")
def show_config() -> None:
    normalize_otel_environment()
    settings = get_settings()
    data = settings.model_dump(exclude={"LANGFUSE_SECRET_KEY"})
    typer.echo(json.dumps(data, indent=2, default=str, sort_keys=True))


if __name__ == "__main__":  # pragma: no cover
    app()
