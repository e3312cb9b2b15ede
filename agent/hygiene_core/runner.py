"""
Command-line entry points.

  install         place tracker, register logon task, seed store (--uninstall, --what-if)
  track           stamp the current logon (what the logon task runs)
  reconcile       remove stale profiles (--days-threshold, --exclude-users, --dry-run)
  validate        install consistency check (exit 0 compliant / 1 not / 2 error)
  count-profiles  profile-count detector (exit 0 within / 1 exceeded / 2 error)
"""

import json
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings, setup_logging, safe_print, log
from .constants import (
    AGENT_VERSION, DEFAULT_DAYS_THRESHOLD, DEFAULT_PROFILE_THRESHOLD,
    MIN_DAYS_THRESHOLD, MAX_DAYS_THRESHOLD,
)
from .detector import check_profile_count
from .disk import human_size
from .installer import Installer, is_admin
from .platform_win import WindowsHost
from .reconciler import Reconciler
from .reporting import send_report
from .store import open_store
from .tracker import LogonTracker
from .validator import InstallValidator

app = typer.Typer(help=f"Fleet hygiene agent v{AGENT_VERSION}: track logons, remove stale profiles.",
                  add_completion=False)
console = Console()


def _context(component):
    settings = load_settings()
    setup_logging(component, settings)
    return settings, open_store(settings), WindowsHost()


# ─── install ─────────────────────────────────────────────────────

@app.command()
def install(
    uninstall: bool = typer.Option(False, "--uninstall", help="Remove task, tracker and store."),
    what_if: bool = typer.Option(False, "--what-if", "--dry-run", help="Report actions without making them."),
):
    """Install (or uninstall) the logon tracker. Always exits 0; errors go to the log."""
    try:
        settings, store, host = _context("installer")
        if not is_admin() and not what_if:
            log.warning("Not running elevated — registry and Task Scheduler writes will likely fail")
        installer = Installer(store, host, settings)
        report = installer.uninstall(dry_run=what_if) if uninstall else installer.install(dry_run=what_if)

        table = Table(title=("Uninstall" if uninstall else "Install") + (" (WhatIf)" if what_if else ""))
        table.add_column("Step")
        table.add_column("Result")
        table.add_column("Detail", overflow="fold")
        for action in report.actions:
            table.add_row(action.step, "[green]ok[/green]" if action.ok else "[red]failed[/red]", action.detail)
        console.print(table)
    except Exception as e:
        log.error("Installer error: %s", e, exc_info=True)
        safe_print(f"Installer error: {e}")
    raise typer.Exit(0)


# ─── track ───────────────────────────────────────────────────────

@app.command()
def track():
    """Record the current user's logon. Never fails the logon."""
    try:
        settings, store, host = _context("tracker")
        LogonTracker(store, host, settings).run()
    except Exception as e:
        log.error("Tracker error: %s", e, exc_info=True)
    raise typer.Exit(0)


# ─── reconcile ───────────────────────────────────────────────────

def _print_reconcile(report):
    s = report.summary
    table = Table(title="Stale profiles" + (" (dry run)" if s.dry_run else ""))
    table.add_column("User")
    table.add_column("SID", overflow="fold")
    table.add_column("Inactive", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Outcome")
    table.add_column("Steps", overflow="fold")
    for c in report.candidates:
        steps = ", ".join(f"{st.step}={st.status.value}" for st in c.steps)
        table.add_row(c.username or "?", c.identity, f"{c.days_inactive}d",
                      human_size(c.size_bytes), c.outcome.value, steps)
    console.print(table)

    for skipped in report.skipped:
        console.print(f"[yellow]skipped[/yellow] {skipped.username} ({skipped.identity}): {skipped.reason}")

    console.print(
        f"Scanned {s.scanned} | stale {s.stale} | removed {s.removed} | partial {s.partial} | "
        f"reclaimed {human_size(s.reclaimed_bytes)} | {s.elapsed_seconds:.1f}s"
    )


@app.command()
def reconcile(
    days_threshold: int = typer.Option(DEFAULT_DAYS_THRESHOLD, "--days-threshold",
                                       min=MIN_DAYS_THRESHOLD, max=MAX_DAYS_THRESHOLD,
                                       help="Days without a logon before a profile is stale."),
    exclude_users: Optional[List[str]] = typer.Option(None, "--exclude-users",
                                                      help="Extra usernames to keep (repeatable)."),
    dry_run: bool = typer.Option(False, "--dry-run", "--what-if", help="Report without deleting."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
):
    """Remove profiles whose last recorded logon is older than the threshold."""
    try:
        settings, store, host = _context("reconciler")
        report = Reconciler(store, host, settings).run(
            days_threshold=days_threshold,
            exclude_users=tuple(exclude_users or ()),
            dry_run=dry_run,
        )
    except Exception as e:
        log.error("Reconciliation failed: %s", e, exc_info=True)
        safe_print(f"Reconciliation failed: {e}")
        raise typer.Exit(1)

    if as_json:
        safe_print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_reconcile(report)

    try:
        send_report(settings, "reconcile", report.to_dict())
    except Exception as e:
        log.warning("Report upload error: %s", e)
    raise typer.Exit(0)


# ─── validate ────────────────────────────────────────────────────

@app.command()
def validate(as_json: bool = typer.Option(False, "--json", help="Print the report as JSON.")):
    """Check that store, tracker and logon task are installed and coherent."""
    try:
        settings, store, host = _context("validator")
        report = InstallValidator(store, host, settings).run()
    except Exception as e:
        log.error("Validation error: %s", e, exc_info=True)
        safe_print(f"Validation error: {e}")
        raise typer.Exit(2)

    if as_json:
        safe_print(json.dumps(report.to_dict(), indent=2))
    else:
        for c in report.checks:
            mark = "PASS" if c.passed else ("FAIL" if c.mandatory else "WARN")
            safe_print(f"[{mark}] {c.name}: {c.detail}")
        if report.compliant:
            safe_print("Compliant")
        else:
            safe_print("Non-compliant. Failed checks: " + ", ".join(report.failed))

    try:
        send_report(settings, "validate", report.to_dict())
    except Exception as e:
        log.warning("Report upload error: %s", e)
    raise typer.Exit(0 if report.compliant else 1)


# ─── count-profiles ──────────────────────────────────────────────

@app.command("count-profiles")
def count_profiles(
    profile_threshold: Optional[int] = typer.Option(None, "--profile-threshold",
                                                    help=f"Maximum profiles before flagging (default {DEFAULT_PROFILE_THRESHOLD})."),
):
    """Exit 1 when the machine has more profiles than the threshold."""
    try:
        settings = load_settings()
        setup_logging("detector", settings)
        threshold = settings.profile_threshold if profile_threshold is None else profile_threshold
        result = check_profile_count(WindowsHost(), threshold)
    except Exception as e:
        log.error("Profile count failed: %s", e, exc_info=True)
        safe_print(f"Profile count failed: {e}")
        raise typer.Exit(2)

    safe_print(result.message)
    raise typer.Exit(1 if result.exceeded else 0)


def main():
    app()
