"""
CLI commands for release management.

Thin wrappers over ``bendctl.core.use_cases.packages``.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import Profile

EXIT_INTERRUPTED = 130


def _context(ctx: click.Context) -> tuple[CtlConfig, Profile]:
    """Config and profile resolved by the root group."""
    return ctx.obj["config"], ctx.obj["profile"]


def _echo_lines(result: Any) -> None:
    for line in result.lines:
        if line.ok:
            click.secho(f"✅ {line.message}", fg="green")
        else:
            click.secho(f"❌ {line.message}", fg="red")


def _emit_json(result: Any) -> None:
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.ok:
        sys.exit(1)


class _DownloadBar:
    """Adapts the fetcher's progress callback to ``click.progressbar``."""

    def __init__(self, enabled: bool) -> None:
        self._enabled = enabled
        self._bar: Any = None
        self._seen = 0

    def __call__(self, downloaded: int, total: int) -> None:
        if not self._enabled or total <= 0:
            return
        if self._bar is None:
            self._bar = click.progressbar(length=total, label="   Downloading", file=sys.stderr)
            self._bar.__enter__()
        self._bar.update(downloaded - self._seen)
        self._seen = downloaded

    def close(self) -> None:
        if self._bar is not None:
            self._bar.__exit__(None, None, None)
            self._bar = None


@click.group()
def packages() -> None:
    """Packages — fetch, list and switch databend releases."""


# ── Act ─────────────────────────────────────────────────────────


@packages.command()
@click.argument("tag", required=False, default="latest")
@click.option(
    "--keep-download/--prune-download",
    "keep_download",
    default=None,
    help="Keep the downloaded archive after unpacking (default: from config).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def fetch(ctx: click.Context, tag: str, keep_download: bool | None, as_json: bool) -> None:
    """Download and install a release (default: latest).

    Examples:

        bendctl packages fetch

        bendctl -p test packages fetch v0.4.69-nightly
    """
    from bendctl.core.use_cases.packages import fetch_version

    config, profile = _context(ctx)
    bar = _DownloadBar(enabled=not as_json and not ctx.obj.get("quiet"))

    try:
        result = fetch_version(config, profile, tag, progress=bar, keep_download=keep_download)
    except KeyboardInterrupt:
        bar.close()
        click.secho("\n❌ Interrupted — nothing was recorded", fg="red", err=True)
        sys.exit(EXIT_INTERRUPTED)
    bar.close()

    if as_json:
        _emit_json(result)
        return

    _echo_lines(result)
    if not result.ok:
        sys.exit(1)


@packages.command()
@click.argument("tag")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def switch(ctx: click.Context, tag: str, as_json: bool) -> None:
    """Make an installed release the current one."""
    from bendctl.core.use_cases.packages import switch_version

    config, profile = _context(ctx)
    try:
        result = switch_version(config, profile, tag)
    except KeyboardInterrupt:
        click.secho("\n❌ Interrupted", fg="red", err=True)
        sys.exit(EXIT_INTERRUPTED)

    if as_json:
        _emit_json(result)
        return

    _echo_lines(result)
    if not result.ok:
        sys.exit(1)


@packages.command()
@click.argument("tag")
@click.pass_context
def remove(ctx: click.Context, tag: str) -> None:
    """Uninstall a release that is not current."""
    from bendctl.core.use_cases.packages import remove_version

    config, profile = _context(ctx)
    result = remove_version(config, profile, tag)
    _echo_lines(result)
    if not result.ok:
        sys.exit(1)


# ── Observe ─────────────────────────────────────────────────────


@packages.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_packages(ctx: click.Context, as_json: bool) -> None:
    """List installed releases, most recent first."""
    from bendctl.core.use_cases.packages import list_versions

    config, profile = _context(ctx)
    result = list_versions(config, profile)

    if as_json:
        _emit_json(result)
        return

    if not result.ok:
        _echo_lines(result)
        sys.exit(1)

    if not result.rows:
        click.secho(f"⚠️  No versions installed in profile '{profile.name}'", fg="yellow")
        return

    width = max(len("Version"), *(len(r.version) for r in result.rows))
    path_width = max(len("Path"), *(len(r.path) for r in result.rows))
    click.secho(f"   {'Version':<{width}}  {'Path':<{path_width}}  Current", bold=True)
    for row in result.rows:
        current = "true" if row.current else "false"
        line = f"   {row.version:<{width}}  {row.path:<{path_width}}  {current}"
        if row.current:
            click.secho(line, fg="green")
        else:
            click.echo(line)


@packages.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def current(ctx: click.Context, as_json: bool) -> None:
    """Show the current release."""
    from bendctl.core.use_cases.packages import current_version

    config, profile = _context(ctx)
    result = current_version(config, profile)

    if as_json:
        _emit_json(result)
        return

    if not result.ok:
        _echo_lines(result)
        sys.exit(1)

    if result.row is None:
        click.secho(f"⚠️  No current version in profile '{profile.name}'", fg="yellow")
        return
    click.echo(result.row.version)
    if ctx.obj.get("verbose"):
        click.echo(f"   {result.row.path}")


@packages.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(ctx: click.Context, as_json: bool) -> None:
    """Check the profile's index, tree and current pointer agree."""
    from bendctl.core.use_cases.packages import verify_store

    config, profile = _context(ctx)
    result = verify_store(config, profile)

    if as_json:
        _emit_json(result)
        return

    report = result.report
    if report is None:
        _echo_lines(result)
        sys.exit(1)

    if report.healthy:
        click.secho(f"✅ Profile '{profile.name}' is consistent ({report.versions} versions)", fg="green")
    else:
        click.secho(f"❌ Profile '{profile.name}' is inconsistent:", fg="red", bold=True)
        for problem in report.problems:
            click.echo(f"   • {problem}")

    leftovers = report.orphans + report.staging
    if leftovers:
        click.secho("⚠️  Unrecorded directories under bin/:", fg="yellow")
        for name in leftovers:
            click.echo(f"   • {name}")

    if not result.ok:
        click.echo("   Run 'bendctl packages repair' to fix.")
        sys.exit(1)


@packages.command()
@click.pass_context
def repair(ctx: click.Context) -> None:
    """Repair an inconsistent profile (drops broken records, rewrites the pointer)."""
    from bendctl.core.use_cases.packages import repair_store_state

    config, profile = _context(ctx)
    result = repair_store_state(config, profile)

    if not result.ok:
        _echo_lines(result)
        sys.exit(1)
    if not result.actions:
        click.secho("✅ Nothing to repair", fg="green")
        return
    _echo_lines(result)


@packages.command()
@click.option("-n", "limit", default=20, show_default=True, type=click.IntRange(min=1),
              help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent operations on this profile."""
    from bendctl.core.use_cases.packages import history as load_history

    _, profile = _context(ctx)
    entries = load_history(profile, limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No operations recorded yet.")
        return

    status_color = {"ok": "green", "noop": "white", "failed": "red", "interrupted": "yellow"}
    for e in entries:
        tag = f" {e.tag}" if e.tag else ""
        click.echo(f"   {e.timestamp}  {e.operation}{tag} — ", nl=False)
        click.secho(e.status, fg=status_color.get(e.status, "white"), nl=False)
        click.echo(f" ({e.duration_ms}ms)" + (f"  {e.message}" if e.message else ""))
