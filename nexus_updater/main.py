"""
Nexus Updater — CLI entrypoint.

Usage:
    nexus-updater                     pick applications interactively
    nexus-updater fldigi,flmsg        check and update the named apps
    nexus-updater -f direwolf         rebuild even if up to date
    nexus-updater -s                  update the updater itself
    nexus-updater -l                  list installable applications
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from nexus_updater import __version__
from nexus_updater.core.models.run import OutcomeStatus
from nexus_updater.core.observability.logging_config import setup_logging

_ICONS = {
    OutcomeStatus.UP_TO_DATE: ("✅", "green"),
    OutcomeStatus.INSTALLED: ("✅", "green"),
    OutcomeStatus.UPDATED: ("✅", "green"),
    OutcomeStatus.SKIPPED: ("⏭️ ", "yellow"),
    OutcomeStatus.FAILED: ("❌", "red"),
}


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("apps", required=False, default="")
@click.version_option(version=__version__, prog_name="nexus-updater")
@click.option("--force-reinstall", "-f", "force", is_flag=True,
              help="Rebuild and reinstall even when up to date.")
@click.option("--self-update", "-s", "self_update", is_flag=True,
              help="Check for a newer updater first.")
@click.option("--list", "-l", "list_apps", is_flag=True, help="List installable applications.")
@click.option("--dry-run", is_flag=True, help="Check versions only; change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Show every step.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to updater.yml (default: auto-detect).",
)
def cli(
    apps: str,
    force: bool,
    self_update: bool,
    list_apps: bool,
    dry_run: bool,
    as_json: bool,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Install and update ham radio applications on a Nexus Pi.

    APPS is a comma separated list of application names.
    """
    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet or as_json:
        level = "ERROR"
    else:
        level = None
    setup_logging(level=level)

    from nexus_updater.core.config.catalog_loader import load_catalog
    from nexus_updater.core.config.loader import ConfigError, load_settings

    try:
        settings = load_settings(Path(config_path) if config_path else None)
        catalog = load_catalog(settings.catalog_path)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if list_apps:
        _print_list(catalog, as_json, verbose)
        return

    from nexus_updater.core.context import RunContext
    from nexus_updater.core.engine.cleanup import ExitGuard
    from nexus_updater.core.models.run import RunRequest
    from nexus_updater.core.use_cases.update import run_update

    guard = ExitGuard()
    guard.install()
    try:
        if not apps:
            ctx = RunContext.create(settings, catalog, guard=guard)
            if self_update:
                # never show the picker from an outdated updater
                request = RunRequest(self_update_check=True, dry_run=dry_run)
                result = run_update(ctx, request)
                if result.report.self_updated or result.error:
                    _finish(result, as_json)
                self_update = False
            apps = _pick(ctx)
            if not apps:
                click.echo("Update Cancelled")
                return

        request = RunRequest.from_csv(
            apps, force=force, self_update_check=self_update, dry_run=dry_run,
        )
        ctx = RunContext.create(settings, catalog, guard=guard, request=request)
        result = run_update(ctx, request)
        _finish(result, as_json, quiet)
    finally:
        guard.run()
        guard.uninstall()


def _pick(ctx) -> str:
    from nexus_updater.core.use_cases.catalog import application_status
    from nexus_updater.ui.cli.picker import pick_applications

    return ",".join(pick_applications(application_status(ctx)))


def _print_list(catalog, as_json: bool, verbose: bool = False) -> None:
    from nexus_updater.core.use_cases.catalog import list_applications

    entries = list_applications(catalog)
    if as_json:
        click.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return
    click.secho("\nApplications:", fg="cyan", bold=True)
    for entry in entries:
        click.echo(f"{entry.id:>22}: {entry.description}")
        if verbose and entry.help_url:
            click.echo(f"{'':>24}{entry.help_url}")
    click.echo()


def _finish(result, as_json: bool, quiet: bool = False) -> None:
    """Print the run summary and exit with the run's code."""
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.self_update is not None and result.self_update.message and not quiet:
        click.secho(f"🔄 {result.self_update.message}",
                    fg="yellow" if result.self_update.updated else "white")
    if result.report.self_updated:
        sys.exit(0)

    if not quiet and result.report.outcomes:
        click.echo()
    for outcome in result.report.outcomes:
        icon, color = _ICONS[outcome.status]
        if quiet and not outcome.failed:
            continue
        click.secho(f"{icon} {outcome.id}: ", fg=color, nl=False)
        click.echo(outcome.message or outcome.status.value)
        for warning in outcome.warnings:
            click.secho(f"   ⚠️  {warning}", fg="yellow")

    if result.exit_code != 0:
        _failure_banner(result)
    sys.exit(result.exit_code)


def _failure_banner(result) -> None:
    click.echo(err=True)
    click.secho("═" * 60, fg="red", err=True)
    if result.error:
        click.secho(f"❌ {result.error}", fg="red", bold=True, err=True)
    for outcome in result.report.failures:
        if outcome.fatal:
            where = f" at {outcome.stage}" if outcome.stage else ""
            click.secho(f"❌ {outcome.id} FAILED{where}: {outcome.message}",
                        fg="red", bold=True, err=True)
    if result.report.halted:
        click.secho("   Remaining applications were not processed.", fg="red", err=True)
    click.secho("═" * 60, fg="red", err=True)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
