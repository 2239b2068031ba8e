"""CLI for the bugflow tracker.

Convention-based: discovers .bugflow/ by walking up from cwd. Workflow commands
log ``--actor`` in for the duration of the command.

Usage:
    bugflow init                                         # Initialize .bugflow/ in cwd
    bugflow register alice --role user                   # Register a member
    bugflow --actor alice submit "Crash on save"         # USER files a report
    bugflow --actor ana confirm 0                        # SYSTEM_ANALYST confirms
    bugflow --actor ana invalidate 0 --note "..."        # SYSTEM_ANALYST invalidates
    bugflow --actor dev start 0                          # DEVELOPER starts work
    bugflow --actor dev stop 0                           # DEVELOPER backs out
    bugflow --actor dev fix 0 --resolution fixed --note "..."
    bugflow --actor qa approve 0                         # QUALITY_ASSURANCE verifies
    bugflow --actor qa reject 0                          # QUALITY_ASSURANCE reopens
    bugflow list                                         # All reports
    bugflow show 0                                       # One report
    bugflow assignments                                  # Who works on what
"""

from __future__ import annotations

import json as json_mod
from collections.abc import Callable
from pathlib import Path

import click

from bugflow import __version__
from bugflow.cli_common import acting_as, fail, get_tracker
from bugflow.core import (
    BUGFLOW_DIR_NAME,
    DB_FILENAME,
    default_config,
    read_config,
    write_config,
)
from bugflow.errors import BugflowError
from bugflow.identity import ROLES
from bugflow.logging import setup_logging
from bugflow.report import RESOLUTIONS, UNRESOLVED, Report
from bugflow.store import SQLiteStore
from bugflow.workflow import WorkflowEngine

_RESOLUTION_CHOICES = [r for r in RESOLUTIONS if r != UNRESOLVED]


def _echo_report(report: Report, as_json: bool) -> None:
    if as_json:
        click.echo(json_mod.dumps(report.to_dict(), indent=2, default=str))
        return
    line = f"#{report.id} [{report.state}] {report.description}"
    if report.resolution != UNRESOLVED:
        line += f" ({report.resolution}: {report.resolution_note})"
    click.echo(line)


def _run_workflow(
    ctx: click.Context,
    as_json: bool,
    operation: Callable[[WorkflowEngine, str], Report],
) -> None:
    """Authenticate the actor, run one engine operation, and print the result."""
    try:
        with acting_as(ctx) as (tracker, actor):
            report = operation(tracker.engine, actor)
    except BugflowError as e:
        fail(str(e), as_json=as_json)
    _echo_report(report, as_json)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="bugflow")
@click.option("--actor", envvar="BUGFLOW_ACTOR", default=None, help="Username performing the command")
@click.option("--password", envvar="BUGFLOW_PASSWORD", default=None, help="Actor password (prompted if omitted)")
@click.pass_context
def cli(ctx: click.Context, actor: str | None, password: str | None) -> None:
    """Bugflow: role-gated defect report tracker."""
    ctx.ensure_object(dict)
    ctx.obj["actor"] = actor
    ctx.obj["password"] = password


@cli.command()
def init() -> None:
    """Initialize .bugflow/ in the current directory."""
    cwd = Path.cwd()
    bugflow_dir = cwd / BUGFLOW_DIR_NAME

    if bugflow_dir.exists():
        click.echo(f"{BUGFLOW_DIR_NAME}/ already exists in {cwd}")
        if read_config(bugflow_dir).get("persistence", True):
            with SQLiteStore(bugflow_dir / DB_FILENAME) as store:
                try:
                    store.initialize()
                except BugflowError as e:
                    fail(str(e))
        return

    bugflow_dir.mkdir()
    write_config(bugflow_dir, default_config())
    setup_logging(bugflow_dir)
    with SQLiteStore(bugflow_dir / DB_FILENAME) as store:
        store.initialize()

    click.echo(f"Initialized {BUGFLOW_DIR_NAME}/ in {cwd}")
    click.echo(f"  Database: {bugflow_dir / DB_FILENAME}")
    click.echo("\nNext: bugflow register <username> --role <role>")


@cli.command()
@click.argument("username")
@click.option("--role", type=click.Choice(ROLES), required=True, help="Member role")
@click.option("--new-password", prompt="Password", hide_input=True, confirmation_prompt=True, help="Password for the new member")
def register(username: str, role: str, new_password: str) -> None:
    """Register a new member."""
    with get_tracker() as tracker:
        try:
            tracker.members.register(username, new_password, role)
        except BugflowError as e:
            fail(str(e))
    click.echo(f"Registered {username.strip()} as {role}")


@cli.command()
@click.argument("description")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def submit(ctx: click.Context, description: str, as_json: bool) -> None:
    """Submit a new report (user)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.submit_report(actor, description))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def confirm(ctx: click.Context, report_id: int, as_json: bool) -> None:
    """Confirm an unconfirmed report (system analyst)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.confirm(actor, report_id))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--note", required=True, help="Why the report is invalid")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def invalidate(ctx: click.Context, report_id: int, note: str, as_json: bool) -> None:
    """Resolve a confirmed report as invalid (system analyst)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.invalidate(actor, report_id, note))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def start(ctx: click.Context, report_id: int, as_json: bool) -> None:
    """Start development on a confirmed report (developer)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.start_development(actor, report_id))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stop(ctx: click.Context, report_id: int, as_json: bool) -> None:
    """Stop development and hand the report back (developer)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.stop_development(actor, report_id))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--resolution", type=click.Choice(_RESOLUTION_CHOICES), default="fixed", help="Resolution (default: fixed)")
@click.option("--note", required=True, help="What was done")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fix(ctx: click.Context, report_id: int, resolution: str, note: str, as_json: bool) -> None:
    """Mark the report you are working on as resolved (developer)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.mark_fixed(actor, report_id, resolution, note))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def approve(ctx: click.Context, report_id: int, as_json: bool) -> None:
    """Verify a resolved report (quality assurance)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.approve_fix(actor, report_id))


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def reject(ctx: click.Context, report_id: int, as_json: bool) -> None:
    """Reject a fix and reopen the report (quality assurance)."""
    _run_workflow(ctx, as_json, lambda engine, actor: engine.reject_fix(actor, report_id))


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_reports(as_json: bool) -> None:
    """List every report in id order."""
    with get_tracker() as tracker:
        reports = tracker.engine.reports()
    if as_json:
        click.echo(json_mod.dumps([r.to_dict() for r in reports.values()], indent=2, default=str))
        return
    if not reports:
        click.echo("No reports.")
        return
    for report in reports.values():
        _echo_report(report, as_json=False)


@cli.command()
@click.argument("report_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(report_id: int, as_json: bool) -> None:
    """Show report details and the transitions available from its state."""
    with get_tracker() as tracker:
        try:
            report = tracker.engine.get_report(report_id)
        except BugflowError as e:
            fail(str(e), as_json=as_json)
        owner = tracker.engine.owner_of(report_id)

    if as_json:
        data = {**report.to_dict(), "assignee": owner, "transitions": report.valid_transitions()}
        click.echo(json_mod.dumps(data, indent=2, default=str))
        return

    click.echo(f"ID:         {report.id}")
    click.echo(f"State:      {report.state}")
    click.echo(f"Resolution: {report.resolution}")
    if report.resolution_note:
        click.echo(f"Note:       {report.resolution_note}")
    if owner:
        click.echo(f"Assignee:   {owner}")
    click.echo(f"Created:    {report.created_at}")
    click.echo(f"Updated:    {report.updated_at}")
    click.echo(f"\n--- Description ---\n{report.description}")
    transitions = report.valid_transitions()
    if transitions:
        click.echo("\n--- Next ---")
        for t in transitions:
            click.echo(f"  {t['operation']:<15} -> {t['to']}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def assignments(as_json: bool) -> None:
    """Show which developer is working on which report."""
    with get_tracker() as tracker:
        table = tracker.engine.assignments()
    if as_json:
        click.echo(json_mod.dumps(table, indent=2))
        return
    if not table:
        click.echo("No reports in progress.")
        return
    for developer, report_id in sorted(table.items()):
        click.echo(f"  {developer:<20} #{report_id}")

