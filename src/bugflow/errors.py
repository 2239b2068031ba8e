"""Exception taxonomy for bugflow.

Every failure raised by the report state machine, the workflow engine, and
their collaborators derives from ``BugflowError``. The category classes also
derive from the builtin a caller would naturally catch for that concern, so
``except ValueError`` keeps working for bad input and illegal transitions.
"""

from __future__ import annotations


class BugflowError(Exception):
    """Root of all bugflow errors."""


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ValidationError(BugflowError, ValueError):
    """Malformed input: empty strings, negative ids, unknown enum values."""


class AuthorizationError(BugflowError, PermissionError):
    """The actor is not authenticated or does not hold the required role."""


class NotFoundError(BugflowError, LookupError):
    """An unknown report, user, or snapshot."""


class StateError(BugflowError, ValueError):
    """The requested operation is not legal in the current state."""


class DuplicateError(BugflowError, ValueError):
    """Something that must be unique already exists."""


class StorageError(BugflowError):
    """The persistence collaborator failed to save or load."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidReportIdError(ValidationError):
    def __init__(self, report_id: object) -> None:
        self.report_id = report_id
        super().__init__(f"Report id must be a non-negative integer, got {report_id!r}")


class EmptyDescriptionError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Report description cannot be empty")


class EmptyNoteError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Resolution note cannot be empty")


class UnresolvedNotAllowedError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Cannot resolve a report as 'unresolved'; pick an actual resolution")


class InvalidUsernameError(ValidationError):
    def __init__(self, username: object, reason: str) -> None:
        self.username = username
        self.reason = reason
        super().__init__(f"Invalid username {username!r}: {reason}")


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class NotLoggedInError(AuthorizationError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"User '{username}' is not logged in")


class AuthenticationFailedError(AuthorizationError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Authentication failed for '{username}'")


class RoleNotPermittedError(AuthorizationError):
    """Raised when an authenticated actor lacks the role an operation requires."""

    def __init__(self, username: str, role: str, required: str, operation: str) -> None:
        self.username = username
        self.role = role
        self.required = required
        self.operation = operation
        super().__init__(f"'{username}' has role '{role}'; {operation} requires role '{required}'")


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class ReportNotFoundError(NotFoundError):
    def __init__(self, report_id: int) -> None:
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}")


class UnknownUserError(NotFoundError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Unknown user: {username}")


class SnapshotNotFoundError(NotFoundError):
    def __init__(self, location: str) -> None:
        self.location = location
        super().__init__(f"No snapshot saved in {location}")


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class IllegalTransitionError(StateError):
    """Raised when a report is asked to move along an edge its lifecycle does not define."""

    def __init__(self, report_id: int, from_state: str, to_state: str) -> None:
        self.report_id = report_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Report {report_id}: transition '{from_state}' -> '{to_state}' is not allowed. "
            f"Use valid_transitions() to see available transitions."
        )


class ReportFinalizedError(StateError):
    def __init__(self, report_id: int) -> None:
        self.report_id = report_id
        super().__init__(f"Report {report_id} is verified and can no longer change")


class DeveloperAlreadyAssignedError(StateError):
    def __init__(self, username: str, current_report_id: int) -> None:
        self.username = username
        self.current_report_id = current_report_id
        super().__init__(
            f"Developer '{username}' is already working on report {current_report_id}; "
            f"stop or fix it before starting another"
        )


class NotAssignedError(StateError):
    def __init__(self, username: str, report_id: int, current_report_id: int | None) -> None:
        self.username = username
        self.report_id = report_id
        self.current_report_id = current_report_id
        where = "nothing" if current_report_id is None else f"report {current_report_id}"
        super().__init__(f"Developer '{username}' is not working on report {report_id} (assigned to {where})")


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------


class DuplicateUserError(DuplicateError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"User '{username}' is already registered")
