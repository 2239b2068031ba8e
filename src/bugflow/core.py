"""Project discovery, configuration, and the assembled tracker.

Convention-based discovery: each project has a `.bugflow/` directory containing
`bugflow.db` (SQLite snapshot + members), `config.json`, and `bugflow.log`.
``Tracker`` wires the member directory, the store, and the workflow engine
together the way the CLI needs them.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from argon2 import PasswordHasher

from bugflow.identity import DEFAULT_HASH_MEMORY_COST, DEFAULT_HASH_TIME_COST, MemberDirectory, make_hasher
from bugflow.store import SQLiteStore
from bugflow.types.core import ProjectConfig
from bugflow.workflow import WorkflowEngine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

BUGFLOW_DIR_NAME = ".bugflow"
DB_FILENAME = "bugflow.db"
CONFIG_FILENAME = "config.json"


def find_bugflow_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .bugflow/ directory.

    Returns the .bugflow/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / BUGFLOW_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {BUGFLOW_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def default_config() -> ProjectConfig:
    return ProjectConfig(
        version=1,
        persistence=True,
        hash_time_cost=DEFAULT_HASH_TIME_COST,
        hash_memory_cost=DEFAULT_HASH_MEMORY_COST,
    )


def read_config(bugflow_dir: Path) -> ProjectConfig:
    """Read .bugflow/config.json. Returns defaults if missing or corrupt."""
    defaults = default_config()
    config_path = bugflow_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        loaded = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(loaded, dict):
        logger.warning("Config file %s contains non-dict JSON, using defaults", config_path)
        return defaults
    result: ProjectConfig = {**defaults, **loaded}  # type: ignore[typeddict-item]
    return result


def write_config(bugflow_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .bugflow/config.json."""
    config_path = bugflow_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class Tracker:
    """A member directory and workflow engine sharing one optional store."""

    def __init__(
        self,
        *,
        store: SQLiteStore | None = None,
        hasher: PasswordHasher | None = None,
    ) -> None:
        self.store = store
        if store is not None:
            store.initialize()
        self.members = MemberDirectory(store=store, hasher=hasher)
        self.engine = WorkflowEngine(self.members, store=store)

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> Tracker:
        """Create a Tracker by discovering .bugflow/ from project_path (or cwd)."""
        bugflow_dir = find_bugflow_root(project_path)
        return cls.from_dir(bugflow_dir)

    @classmethod
    def from_dir(cls, bugflow_dir: Path) -> Tracker:
        config = read_config(bugflow_dir)
        store = SQLiteStore(bugflow_dir / DB_FILENAME) if config.get("persistence", True) else None
        hasher = make_hasher(
            time_cost=config.get("hash_time_cost", DEFAULT_HASH_TIME_COST),
            memory_cost=config.get("hash_memory_cost", DEFAULT_HASH_MEMORY_COST),
        )
        return cls(store=store, hasher=hasher)

    def __enter__(self) -> Tracker:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
