"""SQLite persistence for engine snapshots and registered members.

The engine hands over its whole state (reports + assignment table) after each
successful mutation; a snapshot replaces the previous one inside a single
transaction. ``restore()`` reads it back and re-validates every invariant, so a
hand-edited or half-written database surfaces as ``StorageError`` rather than
as an inconsistent engine.

Convention: the database lives at ``.bugflow/bugflow.db``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from bugflow.errors import BugflowError, SnapshotNotFoundError, StorageError
from bugflow.report import IN_PROGRESS, Report, _now_iso
from bugflow.types.core import MemberRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS reports (
    id              INTEGER PRIMARY KEY,
    description     TEXT NOT NULL,
    state           TEXT NOT NULL DEFAULT 'unconfirmed',
    resolution      TEXT NOT NULL DEFAULT 'unresolved',
    resolution_note TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,

    CHECK (id >= 0),
    CHECK (state IN ('unconfirmed', 'confirmed', 'in_progress', 'resolved', 'verified')),
    CHECK (resolution IN ('unresolved', 'fixed', 'duplicate', 'wontfix', 'worksforme', 'invalid'))
);

CREATE TABLE IF NOT EXISTS assignments (
    developer  TEXT PRIMARY KEY,
    report_id  INTEGER NOT NULL UNIQUE REFERENCES reports(id)
);

CREATE TABLE IF NOT EXISTS members (
    username      TEXT PRIMARY KEY,
    role          TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    created_at    TEXT NOT NULL,

    CHECK (role IN ('system_analyst', 'quality_assurance', 'developer', 'user'))
);

-- Single-row marker: present once the engine has checkpointed at least once.
CREATE TABLE IF NOT EXISTS snapshot_meta (
    id            INTEGER PRIMARY KEY CHECK (id = 1),
    taken_at      TEXT NOT NULL,
    report_count  INTEGER NOT NULL
);
"""

CURRENT_SCHEMA_VERSION = 1


class SnapshotStore(Protocol):
    """Checkpoint/restore contract the workflow engine consumes."""

    def snapshot(self, reports: Mapping[int, Report], assignments: Mapping[str, int]) -> None: ...

    def restore(self) -> tuple[dict[int, Report], dict[str, int]]: ...


class SQLiteStore:
    """Direct SQLite storage. Implements ``SnapshotStore`` and ``MemberStore``."""

    def __init__(self, db_path: str | Path, *, check_same_thread: bool = True) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database; refuse databases from a newer version."""
        try:
            current_version: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
            if current_version == 0:
                self.conn.executescript(SCHEMA_SQL)
                self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
                self.conn.commit()
            elif current_version > CURRENT_SCHEMA_VERSION:
                msg = (
                    f"Database schema v{current_version} is newer than this version of bugflow "
                    f"(expects v{CURRENT_SCHEMA_VERSION}). Downgrade is not supported."
                )
                raise StorageError(msg)
        except sqlite3.Error as exc:
            msg = f"Cannot initialize {self.db_path}: {exc}"
            raise StorageError(msg) from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- Snapshots -----------------------------------------------------------

    def snapshot(self, reports: Mapping[int, Report], assignments: Mapping[str, int]) -> None:
        """Replace the stored state with *reports* and *assignments*."""
        try:
            self.conn.execute("DELETE FROM assignments")
            self.conn.execute("DELETE FROM reports")
            self.conn.executemany(
                "INSERT INTO reports (id, description, state, resolution, resolution_note, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (r.id, r.description, r.state, r.resolution, r.resolution_note, r.created_at, r.updated_at)
                    for r in reports.values()
                ],
            )
            self.conn.executemany(
                "INSERT INTO assignments (developer, report_id) VALUES (?, ?)",
                list(assignments.items()),
            )
            self.conn.execute(
                "INSERT OR REPLACE INTO snapshot_meta (id, taken_at, report_count) VALUES (1, ?, ?)",
                (_now_iso(), len(reports)),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            if self._conn is not None:
                self._conn.rollback()
            msg = f"Failed to save snapshot to {self.db_path}: {exc}"
            raise StorageError(msg) from exc
        logger.debug("Saved snapshot: %d reports, %d assignments", len(reports), len(assignments))

    def restore(self) -> tuple[dict[int, Report], dict[str, int]]:
        """Load the last snapshot.

        Raises:
            SnapshotNotFoundError: nothing has been saved yet.
            StorageError: the stored data cannot be read or violates an invariant.
        """
        try:
            meta = self.conn.execute("SELECT report_count FROM snapshot_meta WHERE id = 1").fetchone()
            if meta is None:
                raise SnapshotNotFoundError(str(self.db_path))
            report_rows = self.conn.execute("SELECT * FROM reports ORDER BY id").fetchall()
            assignment_rows = self.conn.execute("SELECT developer, report_id FROM assignments").fetchall()
        except sqlite3.Error as exc:
            msg = f"Failed to read snapshot from {self.db_path}: {exc}"
            raise StorageError(msg) from exc

        reports: dict[int, Report] = {}
        try:
            for row in report_rows:
                report = Report.from_dict(dict(row))
                reports[report.id] = report
        except BugflowError as exc:
            msg = f"Corrupt report in {self.db_path}: {exc}"
            raise StorageError(msg) from exc

        if list(reports) != list(range(len(reports))):
            msg = f"Corrupt snapshot in {self.db_path}: report ids are not sequential from 0"
            raise StorageError(msg)
        if meta["report_count"] != len(reports):
            msg = f"Corrupt snapshot in {self.db_path}: expected {meta['report_count']} reports, found {len(reports)}"
            raise StorageError(msg)

        assignments: dict[str, int] = {}
        for row in assignment_rows:
            target = reports.get(row["report_id"])
            if target is None or target.state != IN_PROGRESS:
                msg = f"Corrupt snapshot in {self.db_path}: '{row['developer']}' is assigned to report {row['report_id']}, which is not in progress"
                raise StorageError(msg)
            assignments[row["developer"]] = row["report_id"]

        logger.debug("Restored snapshot: %d reports, %d assignments", len(reports), len(assignments))
        return reports, assignments

    # -- Members -------------------------------------------------------------

    def save_member(self, record: MemberRecord) -> None:
        try:
            self.conn.execute(
                "INSERT INTO members (username, role, password_hash, created_at) VALUES (?, ?, ?, ?)",
                (record["username"], record["role"], record["password_hash"], _now_iso()),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            if self._conn is not None:
                self._conn.rollback()
            msg = f"Failed to save member '{record['username']}': {exc}"
            raise StorageError(msg) from exc

    def load_members(self) -> list[MemberRecord]:
        try:
            rows = self.conn.execute("SELECT username, role, password_hash FROM members ORDER BY username").fetchall()
        except sqlite3.Error as exc:
            msg = f"Failed to load members from {self.db_path}: {exc}"
            raise StorageError(msg) from exc
        return [MemberRecord(username=r["username"], role=r["role"], password_hash=r["password_hash"]) for r in rows]
