"""WorkflowEngine: role-gated lifecycle operations over the report collection.

Every operation follows the same contract:

1. **authorize**: the actor is logged in and holds the operation's role;
2. **locate**: the target report exists (and, for developers, the
   assignment table agrees with what they are doing);
3. **apply**: one named Report transition, then the assignment update;
4. **checkpoint**: hand the new state to the snapshot store, if any.

All checks run before the first write. If the checkpoint itself fails, the
in-memory changes are rolled back before the StorageError propagates, so a
failed operation always leaves both the reports and the assignment table
exactly as they were and can simply be retried.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from dataclasses import replace as _dc_replace

from bugflow.errors import (
    DeveloperAlreadyAssignedError,
    InvalidReportIdError,
    NotAssignedError,
    NotLoggedInError,
    ReportNotFoundError,
    RoleNotPermittedError,
    SnapshotNotFoundError,
    StorageError,
)
from bugflow.identity import DEVELOPER, QUALITY_ASSURANCE, SYSTEM_ANALYST, USER, IdentityProvider, Role
from bugflow.report import INVALID, Report
from bugflow.store import SnapshotStore
from bugflow.validation import normalize_username

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Owns the reports and the developer → report assignment table.

    Single-writer: every public method holds one re-entrant lock for its full
    duration because operations read and write both structures together.
    """

    def __init__(self, identity: IdentityProvider, *, store: SnapshotStore | None = None) -> None:
        self._identity = identity
        self._store = store
        self._lock = threading.RLock()
        self._reports: dict[int, Report] = {}
        self._assignments: dict[str, int] = {}
        if store is not None:
            self._restore(store)

    def _restore(self, store: SnapshotStore) -> None:
        """Load the last snapshot; fall back to an empty engine on any failure."""
        try:
            reports, assignments = store.restore()
        except SnapshotNotFoundError:
            logger.debug("No snapshot found, starting with an empty tracker")
            return
        except StorageError as exc:
            logger.warning("Could not restore snapshot, starting with an empty tracker: %s", exc, extra={"error": str(exc)})
            return
        self._reports = reports
        self._assignments = assignments
        logger.info("Restored %d reports, %d assignments", len(reports), len(assignments))

    # -- Query surface -------------------------------------------------------

    @property
    def report_count(self) -> int:
        with self._lock:
            return len(self._reports)

    def reports(self) -> dict[int, Report]:
        """Copies of every report, in id order. Mutating them does not affect the engine."""
        with self._lock:
            return {rid: _dc_replace(r) for rid, r in self._reports.items()}

    def get_report(self, report_id: int) -> Report:
        with self._lock:
            return _dc_replace(self._locate(report_id))

    def assignments(self) -> dict[str, int]:
        with self._lock:
            return dict(self._assignments)

    def assignment_of(self, developer: str) -> int | None:
        with self._lock:
            return self._assignments.get(developer)

    def owner_of(self, report_id: int) -> str | None:
        """The developer working on *report_id*, or None."""
        with self._lock:
            return self._owner_of_locked(report_id)

    # -- Operations ----------------------------------------------------------

    def submit_report(self, actor: str, description: str) -> Report:
        """A USER files a new report; it gets the next sequential id."""
        with self._operation("submit_report", actor, USER) as actor:
            report = Report.create(len(self._reports), description)
            self._reports[report.id] = report
            return self._finish("submit_report", actor, report)

    def confirm(self, actor: str, report_id: int) -> Report:
        with self._operation("confirm", actor, SYSTEM_ANALYST) as actor:
            report = self._locate(report_id)
            report.confirm()
            return self._finish("confirm", actor, report)

    def invalidate(self, actor: str, report_id: int, note: str) -> Report:
        """An analyst closes a report as not-a-bug.

        Invalidating a report that is in progress also releases the developer
        working on it, who is then free to start another report.
        """
        with self._operation("invalidate", actor, SYSTEM_ANALYST) as actor:
            report = self._locate(report_id)
            owner = self._owner_of_locked(report_id)
            report.resolve(INVALID, note)
            if owner is not None:
                del self._assignments[owner]
                logger.info(
                    "Released '%s' from invalidated report %d",
                    owner,
                    report_id,
                    extra={"actor": actor, "operation": "invalidate", "report_id": report_id},
                )
            return self._finish("invalidate", actor, report)

    def start_development(self, actor: str, report_id: int) -> Report:
        with self._operation("start_development", actor, DEVELOPER) as actor:
            report = self._locate(report_id)
            current = self._assignments.get(actor)
            if current is not None:
                raise DeveloperAlreadyAssignedError(actor, current)
            report.start_progress()
            self._assignments[actor] = report.id
            return self._finish("start_development", actor, report)

    def stop_development(self, actor: str, report_id: int) -> Report:
        with self._operation("stop_development", actor, DEVELOPER) as actor:
            report = self._locate(report_id)
            self._require_assignment(actor, report_id)
            report.stop_progress()
            del self._assignments[actor]
            return self._finish("stop_development", actor, report)

    def mark_fixed(self, actor: str, report_id: int, resolution: str, note: str) -> Report:
        """The assigned developer resolves the report and is released from it."""
        with self._operation("mark_fixed", actor, DEVELOPER) as actor:
            report = self._locate(report_id)
            self._require_assignment(actor, report_id)
            report.resolve(resolution, note)
            del self._assignments[actor]
            return self._finish("mark_fixed", actor, report)

    def approve_fix(self, actor: str, report_id: int) -> Report:
        with self._operation("approve_fix", actor, QUALITY_ASSURANCE) as actor:
            report = self._locate(report_id)
            report.verify()
            return self._finish("approve_fix", actor, report)

    def reject_fix(self, actor: str, report_id: int) -> Report:
        """QA sends a resolved report back to ``confirmed``, clearing its resolution."""
        with self._operation("reject_fix", actor, QUALITY_ASSURANCE) as actor:
            report = self._locate(report_id)
            report.reopen()
            return self._finish("reject_fix", actor, report)

    # -- Internal ------------------------------------------------------------

    @contextlib.contextmanager
    def _operation(self, operation: str, actor: str, required: Role) -> Iterator[str]:
        """Hold the lock, authorize *actor*, and yield their normalized name.

        If the body raises, including a failed checkpoint, the reports and the
        assignment table are put back as they were before the operation.
        """
        with self._lock:
            username = self._authorize(actor, required, operation)
            reports = {rid: _dc_replace(r) for rid, r in self._reports.items()}
            assignments = dict(self._assignments)
            try:
                yield username
            except BaseException:
                self._reports = reports
                self._assignments = assignments
                raise

    def _authorize(self, actor: str, required: Role, operation: str) -> str:
        username = normalize_username(actor)
        if not self._identity.is_authenticated(username):
            logger.debug("Denied %s: '%s' not logged in", operation, username)
            raise NotLoggedInError(username)
        role = self._identity.role_of(username)
        if role != required:
            logger.debug("Denied %s: '%s' has role '%s'", operation, username, role)
            raise RoleNotPermittedError(username, role, required, operation)
        return username

    def _locate(self, report_id: int) -> Report:
        if isinstance(report_id, bool) or not isinstance(report_id, int) or report_id < 0:
            raise InvalidReportIdError(report_id)
        report = self._reports.get(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    def _owner_of_locked(self, report_id: int) -> str | None:
        return next((dev for dev, rid in self._assignments.items() if rid == report_id), None)

    def _require_assignment(self, actor: str, report_id: int) -> None:
        current = self._assignments.get(actor)
        if current != report_id:
            raise NotAssignedError(actor, report_id, current)

    def _finish(self, operation: str, actor: str, report: Report) -> Report:
        logger.info(
            "%s report %d -> %s",
            operation,
            report.id,
            report.state,
            extra={"actor": actor, "operation": operation, "report_id": report.id},
        )
        self._checkpoint()
        return _dc_replace(report)

    def _checkpoint(self) -> None:
        """Persist the current state; a StorageError makes the caller roll back."""
        if self._store is None:
            return
        self._store.snapshot(self._reports, self._assignments)
