"""The per-report lifecycle state machine.

A report starts ``unconfirmed``, is confirmed by an analyst, worked on by a
developer, resolved with an outcome, and finally verified by QA. The edges are
fixed and listed in ``TRANSITIONS``; resolving is a separate operation because
it carries data (the resolution and a note).

Two edges lead back to ``confirmed`` and look alike from outside:
``stop_progress`` (a developer backs out) and ``reopen`` (QA rejects a fix).
Both clear any resolution, so a reopened report never carries a stale outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from bugflow.errors import (
    EmptyDescriptionError,
    EmptyNoteError,
    IllegalTransitionError,
    InvalidReportIdError,
    ReportFinalizedError,
    UnresolvedNotAllowedError,
    ValidationError,
)
from bugflow.types.core import ISOTimestamp, ReportDict, TransitionInfo
from bugflow.validation import is_blank

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constrained-string Literal types
# ---------------------------------------------------------------------------

State = Literal["unconfirmed", "confirmed", "in_progress", "resolved", "verified"]
Resolution = Literal["unresolved", "fixed", "duplicate", "wontfix", "worksforme", "invalid"]

UNCONFIRMED: State = "unconfirmed"
CONFIRMED: State = "confirmed"
IN_PROGRESS: State = "in_progress"
RESOLVED: State = "resolved"
VERIFIED: State = "verified"

UNRESOLVED: Resolution = "unresolved"
FIXED: Resolution = "fixed"
DUPLICATE: Resolution = "duplicate"
WONTFIX: Resolution = "wontfix"
WORKSFORME: Resolution = "worksforme"
INVALID: Resolution = "invalid"

# Tuples keep declaration order for display; frozensets back membership checks.
STATES: tuple[State, ...] = (UNCONFIRMED, CONFIRMED, IN_PROGRESS, RESOLVED, VERIFIED)
RESOLUTIONS: tuple[Resolution, ...] = (UNRESOLVED, FIXED, DUPLICATE, WONTFIX, WORKSFORME, INVALID)
VALID_STATES: frozenset[str] = frozenset(STATES)
VALID_RESOLUTIONS: frozenset[str] = frozenset(RESOLUTIONS)

# States in which a resolution other than UNRESOLVED is attached.
RESOLVED_STATES: frozenset[str] = frozenset({RESOLVED, VERIFIED})
# States from which resolve() is accepted: the analyst invalidation path
# resolves straight from CONFIRMED, the developer fix path from IN_PROGRESS.
RESOLVABLE_STATES: frozenset[str] = frozenset({CONFIRMED, IN_PROGRESS})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionDefinition:
    """A lifecycle edge and the named Report operation that walks it."""

    from_state: State
    to_state: State
    operation: str


TRANSITIONS: tuple[TransitionDefinition, ...] = (
    TransitionDefinition(UNCONFIRMED, CONFIRMED, "confirm"),
    TransitionDefinition(CONFIRMED, IN_PROGRESS, "start_progress"),
    TransitionDefinition(IN_PROGRESS, CONFIRMED, "stop_progress"),
    TransitionDefinition(RESOLVED, CONFIRMED, "reopen"),
    TransitionDefinition(RESOLVED, VERIFIED, "verify"),
)

_TRANSITION_MAP: dict[tuple[str, str], TransitionDefinition] = {(t.from_state, t.to_state): t for t in TRANSITIONS}


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class Report:
    """One tracked defect.

    ``id`` and ``description`` are fixed at creation. ``state``, ``resolution``
    and ``resolution_note`` change only through the transition operations
    below; construction validates that the three are mutually consistent.
    """

    id: int
    description: str
    state: State = UNCONFIRMED
    resolution: Resolution = UNRESOLVED
    resolution_note: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id < 0:
            raise InvalidReportIdError(self.id)
        if is_blank(self.description):
            raise EmptyDescriptionError
        if self.state not in VALID_STATES:
            msg = f"Invalid state '{self.state}'. Valid states: {', '.join(STATES)}"
            raise ValidationError(msg)
        if self.resolution not in VALID_RESOLUTIONS:
            msg = f"Invalid resolution '{self.resolution}'. Valid resolutions: {', '.join(RESOLUTIONS)}"
            raise ValidationError(msg)
        if (self.state in RESOLVED_STATES) != (self.resolution != UNRESOLVED):
            msg = f"Report {self.id}: resolution '{self.resolution}' is inconsistent with state '{self.state}'"
            raise ValidationError(msg)
        has_note = not is_blank(self.resolution_note)
        if has_note != (self.resolution != UNRESOLVED):
            msg = f"Report {self.id}: a resolution note is required exactly when the report is resolved"
            raise ValidationError(msg)
        if not self.created_at:
            self.created_at = _now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(cls, report_id: int, description: str) -> Report:
        """Create a fresh ``unconfirmed`` / ``unresolved`` report."""
        now = _now_iso()
        return cls(id=report_id, description=description, created_at=now, updated_at=now)

    @property
    def is_final(self) -> bool:
        return self.state == VERIFIED

    # -- Transitions ---------------------------------------------------------

    def transition(self, target: str) -> None:
        """Move to *target* along one of the edges in ``TRANSITIONS``.

        Dispatches to the named operation for the edge so the side effects of
        each edge (resolution reset on the way back to ``confirmed``) always run.

        Raises:
            ValidationError: *target* is not a known state.
            ReportFinalizedError: the report is already verified.
            IllegalTransitionError: the edge is not in the lifecycle.
        """
        if target not in VALID_STATES:
            msg = f"Invalid state '{target}'. Valid states: {', '.join(STATES)}"
            raise ValidationError(msg)
        self._guard_not_final()
        definition = _TRANSITION_MAP.get((self.state, target))
        if definition is None:
            raise IllegalTransitionError(self.id, self.state, target)
        getattr(self, definition.operation)()

    def confirm(self) -> None:
        self._require_edge(UNCONFIRMED, CONFIRMED)
        self._enter_confirmed()

    def start_progress(self) -> None:
        self._require_edge(CONFIRMED, IN_PROGRESS)
        self.state = IN_PROGRESS
        self._touch()

    def stop_progress(self) -> None:
        """Developer backs out; the report is available to be picked up again."""
        self._require_edge(IN_PROGRESS, CONFIRMED)
        self._enter_confirmed()

    def reopen(self) -> None:
        """QA rejects the resolution; the prior outcome is discarded."""
        self._require_edge(RESOLVED, CONFIRMED)
        self._enter_confirmed()

    def verify(self) -> None:
        self._require_edge(RESOLVED, VERIFIED)
        self.state = VERIFIED
        self._touch()

    def resolve(self, resolution: str, note: str) -> None:
        """Attach an outcome and move to ``resolved``.

        Accepted from ``confirmed`` (analyst invalidation) and ``in_progress``
        (developer fix). Nothing is modified when any check fails.
        """
        if resolution not in VALID_RESOLUTIONS:
            msg = f"Invalid resolution '{resolution}'. Valid resolutions: {', '.join(RESOLUTIONS)}"
            raise ValidationError(msg)
        self._guard_not_final()
        if resolution == UNRESOLVED:
            raise UnresolvedNotAllowedError
        if is_blank(note):
            raise EmptyNoteError
        if self.state not in RESOLVABLE_STATES:
            raise IllegalTransitionError(self.id, self.state, RESOLVED)
        self.state = RESOLVED
        self.resolution = resolution  # type: ignore[assignment]  # checked against VALID_RESOLUTIONS above
        self.resolution_note = note
        self._touch()

    # -- Queries -------------------------------------------------------------

    def valid_transitions(self) -> list[TransitionInfo]:
        """Edges available from the current state, including ``resolve``."""
        if self.is_final:
            return []
        options = [
            TransitionInfo(**{"from": t.from_state, "to": t.to_state, "operation": t.operation})
            for t in TRANSITIONS
            if t.from_state == self.state
        ]
        if self.state in RESOLVABLE_STATES:
            options.append(TransitionInfo(**{"from": self.state, "to": RESOLVED, "operation": "resolve"}))
        return options

    def to_dict(self) -> ReportDict:
        return ReportDict(
            id=self.id,
            description=self.description,
            state=self.state,
            resolution=self.resolution,
            resolution_note=self.resolution_note,
            created_at=ISOTimestamp(self.created_at),
            updated_at=ISOTimestamp(self.updated_at),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | ReportDict) -> Report:
        """Rebuild a report from ``to_dict()`` output, re-checking every invariant."""
        return cls(
            id=data["id"],
            description=data["description"],
            state=data["state"],
            resolution=data["resolution"],
            resolution_note=data.get("resolution_note") or "",
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
        )

    # -- Internal ------------------------------------------------------------

    def _guard_not_final(self) -> None:
        if self.state == VERIFIED:
            raise ReportFinalizedError(self.id)

    def _require_edge(self, from_state: State, to_state: State) -> None:
        self._guard_not_final()
        if self.state != from_state:
            raise IllegalTransitionError(self.id, self.state, to_state)

    def _enter_confirmed(self) -> None:
        self.state = CONFIRMED
        if self.resolution != UNRESOLVED:
            logger.debug("Report %d reopened, discarding resolution '%s'", self.id, self.resolution)
        self.resolution = UNRESOLVED
        self.resolution_note = ""
        self._touch()

    def _touch(self) -> None:
        self.updated_at = _now_iso()
