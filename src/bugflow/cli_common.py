"""Shared CLI helpers extracted from cli.py.

Provides ``get_tracker()``, ``acting_as()`` and ``fail()`` so every command
discovers the project, authenticates its actor, and reports errors the same way.
"""

from __future__ import annotations

import contextlib
import json as json_mod
import sys
from collections.abc import Iterator
from typing import NoReturn

import click

from bugflow.core import BUGFLOW_DIR_NAME, Tracker, find_bugflow_root
from bugflow.errors import StorageError, ValidationError
from bugflow.logging import setup_logging
from bugflow.validation import normalize_username


def fail(message: str, *, as_json: bool = False) -> NoReturn:
    """Print an error (stderr, or a JSON object on stdout) and exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def get_tracker() -> Tracker:
    """Discover .bugflow/ and return a Tracker restored from its snapshot."""
    try:
        bugflow_dir = find_bugflow_root()
    except FileNotFoundError:
        click.echo(f"No {BUGFLOW_DIR_NAME}/ found. Run 'bugflow init' first.", err=True)
        sys.exit(1)
    setup_logging(bugflow_dir)
    try:
        return Tracker.from_dir(bugflow_dir)
    except StorageError as e:
        fail(str(e))


@contextlib.contextmanager
def acting_as(ctx: click.Context) -> Iterator[tuple[Tracker, str]]:
    """Open the tracker and log the ``--actor`` in for the duration of one command."""
    actor = ctx.obj.get("actor")
    if not actor:
        msg = "No actor given. Pass --actor or set BUGFLOW_ACTOR."
        raise ValidationError(msg)
    cleaned = normalize_username(actor)
    password = ctx.obj.get("password")
    if password is None:
        password = click.prompt(f"Password for {cleaned}", hide_input=True)

    with get_tracker() as tracker:
        tracker.members.login(cleaned, password)
        try:
            yield tracker, cleaned
        finally:
            tracker.members.logout(cleaned)
