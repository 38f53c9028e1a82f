"""CLI entry point for Gatehouse."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import click

from gatehouse import __version__
from gatehouse.config import (
    Config,
    ConfigError,
    RuntimeInjection,
    load_config,
    resolve,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(config: Config, *, to_file: bool) -> None:
    """Route logs to stderr, or to a file while the TUI owns the terminal."""
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    handler: logging.Handler
    if to_file:
        log_dir = config.log_path
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_dir / "gatehouse.log", encoding="utf-8")
        except OSError as e:
            click.echo(f"Warning: cannot open log file in {log_dir}: {e}", err=True)
            handler = logging.NullHandler()
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler], force=True)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="gatehouse")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to gatehouse.toml settings file.",
)
@click.option(
    "--firebase-config",
    "firebase_config",
    default=None,
    help="Backend web config as a JSON string (used when the env has no api key).",
)
@click.option(
    "--namespace",
    default=None,
    help="Namespace id used when the environment sets none.",
)
@click.option(
    "--auth-token",
    default=None,
    help="One-time custom token to sign in with at startup.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    firebase_config: str | None,
    namespace: str | None,
    auth_token: str | None,
) -> None:
    """Gatehouse: sign in and keep a profile in sync.

    When invoked without a subcommand, launches the interactive TUI.
    Without backend credentials it runs in demo mode.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    ctx.obj["config"] = config
    ctx.obj["injection"] = RuntimeInjection(
        config_json=firebase_config,
        namespace=namespace,
        initial_auth_token=auth_token,
    )

    if ctx.invoked_subcommand is None:
        _launch_tui(config, ctx.obj["injection"])


def _launch_tui(config: Config, injection: RuntimeInjection) -> None:
    """Launch the Gatehouse TUI."""
    from gatehouse.controller import build_controller
    from gatehouse.service import ServiceContext
    from gatehouse.tui.app import GatehouseApp

    _configure_logging(config, to_file=True)
    context = ServiceContext(config)
    controller = build_controller(config, context, os.environ, injection)
    app = GatehouseApp(controller, context=context)
    app.run()


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the resolved backend configuration."""
    config: Config = ctx.obj["config"]
    injection: RuntimeInjection = ctx.obj["injection"]
    _configure_logging(config, to_file=False)

    resolved = resolve(
        os.environ,
        injection.config_json,
        injection.namespace,
        prefix=config.session.env_prefix,
    )
    creds = resolved.credentials
    payload = {
        "mode": "live" if resolved.available else "demo",
        "namespace": resolved.namespace,
        "credentials": None if creds is None else {
            "api_key": f"***{creds.api_key[-4:]}",
            "project_id": creds.project_id,
            "auth_domain": creds.auth_domain,
            "app_id": creds.app_id,
        },
        "initial_auth_token": bool(injection.initial_auth_token),
    }

    if as_json:
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"Mode:      {payload['mode']}")
    click.echo(f"Namespace: {payload['namespace']}")
    if creds is None:
        click.echo("Backend:   not configured (demo mode)")
        return
    click.echo(f"Project:   {creds.project_id or '-'}")
    click.echo(f"API key:   {payload['credentials']['api_key']}")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
