"""Shared pytest fixtures for bugflow tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from bugflow.core import BUGFLOW_DIR_NAME, DB_FILENAME, default_config, write_config
from argon2 import PasswordHasher

from bugflow.identity import DEVELOPER, QUALITY_ASSURANCE, SYSTEM_ANALYST, USER, MemberDirectory, make_hasher
from bugflow.store import SQLiteStore
from bugflow.workflow import WorkflowEngine

# Argon2 at production cost makes the suite crawl; correctness does not depend on it.
TEST_HASH_TIME_COST = 1
TEST_HASH_MEMORY_COST = 32
PASSWORD = "s3cret"

STAFF = {
    "u1": USER,
    "analyst": SYSTEM_ANALYST,
    "dev": DEVELOPER,
    "dev2": DEVELOPER,
    "qa": QUALITY_ASSURANCE,
}


@pytest.fixture(autouse=True)
def _reset_bugflow_logger() -> Generator[None, None, None]:
    """Drop file handlers that setup_logging() attached during a test."""
    yield
    logger = logging.getLogger("bugflow")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def hasher() -> PasswordHasher:
    """Argon2 hasher at the lowest accepted cost."""
    return make_hasher(time_cost=TEST_HASH_TIME_COST, memory_cost=TEST_HASH_MEMORY_COST)


@pytest.fixture
def members(hasher: PasswordHasher) -> MemberDirectory:
    """Empty in-memory member directory."""
    return MemberDirectory(hasher=hasher)


@pytest.fixture
def engine(members: MemberDirectory) -> WorkflowEngine:
    """Engine without persistence and without any members."""
    return WorkflowEngine(members)


@pytest.fixture
def staffed_engine(members: MemberDirectory, engine: WorkflowEngine) -> WorkflowEngine:
    """Engine whose directory has one logged-in member per role (two developers).

    Members: u1 (user), analyst (system_analyst), dev and dev2 (developer),
    qa (quality_assurance). All share the password ``PASSWORD``.
    """
    for username, role in STAFF.items():
        members.register(username, PASSWORD, role)
        members.login(username, PASSWORD)
    return engine


@pytest.fixture
def store(tmp_path: Path) -> Generator[SQLiteStore, None, None]:
    """Fresh, initialized SQLiteStore for each test."""
    s = SQLiteStore(tmp_path / "bugflow.db")
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def bugflow_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a bugflow project (.bugflow/ with config + db).

    Returns the project root (parent of .bugflow/).
    """
    bugflow_dir = tmp_path / BUGFLOW_DIR_NAME
    bugflow_dir.mkdir()
    config = default_config()
    config["hash_time_cost"] = TEST_HASH_TIME_COST
    config["hash_memory_cost"] = TEST_HASH_MEMORY_COST
    write_config(bugflow_dir, config)

    with SQLiteStore(bugflow_dir / DB_FILENAME) as s:
        s.initialize()

    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def password() -> str:
    """Password shared by every member that ``staffed_engine`` registers."""
    return PASSWORD
