"""
bendctl — CLI entrypoint.

Usage:
    python -m bendctl.main --help
    bendctl packages fetch
    bendctl -p test packages switch v0.4.68-nightly
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click

from bendctl import __version__
from bendctl.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="bendctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to config.yml (default: $BENDCTL_CONFIG or <home>/config.yml).",
)
@click.option(
    "--profile",
    "-p",
    "profile_name",
    default=None,
    help="Profile to operate on (default: $BENDCTL_PROFILE or 'default').",
)
@click.option(
    "--home",
    type=click.Path(file_okay=False),
    default=None,
    envvar="BENDCTL_HOME",
    help="Directory holding all profiles (default: ~/.bendctl).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    profile_name: str | None,
    home: str | None,
) -> None:
    """bendctl — fetch, list and switch databend releases."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("BENDCTL_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("BENDCTL_LOG_FILE"),
        log_file_level=os.environ.get("BENDCTL_LOG_FILE_LEVEL"),
    )

    from bendctl.core.config.loader import find_config_file, load_config, resolve_profile
    from bendctl.core.errors import ConfigError

    try:
        path = Path(config_path) if config_path else find_config_file(
            Path(home) if home else None
        )
        ctx.obj["config_path"] = path
        ctx.obj["config"] = load_config(path)
        ctx.obj["profile"] = resolve_profile(profile_name, home)
    except ConfigError as e:
        click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)


# ── Register sub-command groups from bendctl/ui/cli/ ──────────────

from bendctl.ui.cli.packages import packages  # noqa: E402

cli.add_command(packages)


if __name__ == "__main__":
    cli()
