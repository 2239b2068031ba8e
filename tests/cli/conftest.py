"""Fixtures for CLI interface tests."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from bugflow.cli import cli
from bugflow.core import BUGFLOW_DIR_NAME, read_config, write_config

Invoke = Callable[..., Result]


@pytest.fixture
def cli_in_project(tmp_path: Path, cli_runner: CliRunner) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize a bugflow project in tmp_path and return (runner, project_root)."""
    original_cwd = os.getcwd()
    os.chdir(str(tmp_path))
    result = cli_runner.invoke(cli, ["init"])
    assert result.exit_code == 0
    bugflow_dir = tmp_path / BUGFLOW_DIR_NAME
    config = read_config(bugflow_dir)
    config["hash_time_cost"] = 1
    config["hash_memory_cost"] = 32
    write_config(bugflow_dir, config)
    yield cli_runner, tmp_path
    os.chdir(original_cwd)


@pytest.fixture
def staffed_project(cli_in_project: tuple[CliRunner, Path]) -> tuple[CliRunner, Path]:
    """Project with one member per role (plus a second developer), password ``pw``."""
    runner, root = cli_in_project
    for username, role in [
        ("u1", "user"),
        ("analyst", "system_analyst"),
        ("dev", "developer"),
        ("dev2", "developer"),
        ("qa", "quality_assurance"),
    ]:
        result = runner.invoke(cli, ["register", username, "--role", role, "--new-password", "pw"])
        assert result.exit_code == 0, result.output
    return runner, root


@pytest.fixture
def act(staffed_project: tuple[CliRunner, Path]) -> Invoke:
    """Run a command as a member: ``act("dev", "start", "0")``."""
    runner, _ = staffed_project

    def _invoke(actor: str, *args: str) -> Result:
        return runner.invoke(cli, ["--actor", actor, "--password", "pw", *args])

    return _invoke


@pytest.fixture
def as_json() -> Callable[[Result], object]:
    """Parse a command's JSON output."""

    def _parse(result: Result) -> object:
        return json.loads(result.output)

    return _parse
