"""Tests for WorkflowEngine: role gating, assignments, and the report lifecycle."""

from __future__ import annotations

import threading

import pytest

from bugflow.errors import (
    AuthorizationError,
    DeveloperAlreadyAssignedError,
    EmptyDescriptionError,
    IllegalTransitionError,
    InvalidReportIdError,
    InvalidUsernameError,
    NotAssignedError,
    NotLoggedInError,
    ReportFinalizedError,
    ReportNotFoundError,
    RoleNotPermittedError,
    UnknownUserError,
    ValidationError,
)
from bugflow.identity import MemberDirectory
from bugflow.report import CONFIRMED, FIXED, IN_PROGRESS, INVALID, RESOLVED, UNCONFIRMED, UNRESOLVED, VERIFIED
from bugflow.workflow import WorkflowEngine


@pytest.fixture
def confirmed(staffed_engine: WorkflowEngine) -> int:
    """Id of a report that has been submitted and confirmed."""
    report = staffed_engine.submit_report("u1", "Crash on save")
    staffed_engine.confirm("analyst", report.id)
    return report.id


@pytest.fixture
def in_progress(staffed_engine: WorkflowEngine, confirmed: int) -> int:
    """Id of a report that ``dev`` is working on."""
    staffed_engine.start_development("dev", confirmed)
    return confirmed


@pytest.fixture
def resolved(staffed_engine: WorkflowEngine, in_progress: int) -> int:
    """Id of a report ``dev`` has marked fixed."""
    staffed_engine.mark_fixed("dev", in_progress, FIXED, "patched")
    return in_progress


class TestSubmit:
    def test_sequential_ids(self, staffed_engine: WorkflowEngine) -> None:
        ids = [staffed_engine.submit_report("u1", f"bug {n}").id for n in range(3)]
        assert ids == [0, 1, 2]
        assert staffed_engine.report_count == 3

    def test_new_report_state(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        assert report.state == UNCONFIRMED
        assert report.resolution == UNRESOLVED
        assert report.description == "Crash on save"

    def test_blank_description(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(EmptyDescriptionError):
            staffed_engine.submit_report("u1", "   ")
        assert staffed_engine.report_count == 0

    def test_failed_submit_does_not_consume_id(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(EmptyDescriptionError):
            staffed_engine.submit_report("u1", "")
        assert staffed_engine.submit_report("u1", "real").id == 0

    @pytest.mark.parametrize("actor", ["analyst", "dev", "qa"])
    def test_only_users_submit(self, staffed_engine: WorkflowEngine, actor: str) -> None:
        with pytest.raises(RoleNotPermittedError):
            staffed_engine.submit_report(actor, "Crash on save")
        assert staffed_engine.report_count == 0


class TestAuthorization:
    def test_not_logged_in(self, staffed_engine: WorkflowEngine, members: MemberDirectory) -> None:
        members.logout("u1")
        with pytest.raises(NotLoggedInError):
            staffed_engine.submit_report("u1", "Crash on save")

    def test_unregistered_actor_is_not_logged_in(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(NotLoggedInError):
            staffed_engine.submit_report("mallory", "Crash on save")

    def test_empty_actor(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(ValidationError):
            staffed_engine.submit_report("", "Crash on save")

    def test_actor_is_normalized(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        staffed_engine.stop_development(" dev ", in_progress)
        assert staffed_engine.assignments() == {}
        staffed_engine.start_development("dev\t", in_progress)
        assert staffed_engine.assignments() == {"dev": in_progress}

    @pytest.mark.parametrize("actor", ["two words", "-dev", None])
    def test_malformed_actor(self, staffed_engine: WorkflowEngine, actor: object) -> None:
        with pytest.raises(InvalidUsernameError):
            staffed_engine.submit_report(actor, "Crash on save")  # type: ignore[arg-type]
        assert staffed_engine.report_count == 0

    def test_authorization_checked_before_input(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(RoleNotPermittedError):
            staffed_engine.submit_report("dev", "")

    def test_authorization_checked_before_lookup(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(RoleNotPermittedError):
            staffed_engine.confirm("u1", 99)

    def test_role_error_details(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        with pytest.raises(RoleNotPermittedError) as exc_info:
            staffed_engine.approve_fix("dev", confirmed)
        err = exc_info.value
        assert err.username == "dev"
        assert err.role == "developer"
        assert err.required == "quality_assurance"
        assert err.operation == "approve_fix"

    def test_authorization_errors_are_permission_errors(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(PermissionError):
            staffed_engine.submit_report("qa", "x")

    @pytest.mark.parametrize(
        ("actor", "operation"),
        [
            ("u1", lambda e, a, rid: e.start_development(a, rid)),
            ("analyst", lambda e, a, rid: e.start_development(a, rid)),
            ("qa", lambda e, a, rid: e.invalidate(a, rid, "nope")),
            ("dev", lambda e, a, rid: e.invalidate(a, rid, "nope")),
            ("u1", lambda e, a, rid: e.reject_fix(a, rid)),
        ],
    )
    def test_wrong_role_leaves_report_unchanged(self, staffed_engine: WorkflowEngine, confirmed: int, actor: str, operation) -> None:
        with pytest.raises(AuthorizationError):
            operation(staffed_engine, actor, confirmed)
        assert staffed_engine.get_report(confirmed).state == CONFIRMED
        assert staffed_engine.assignments() == {}


class TestLookup:
    def test_unknown_report(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(ReportNotFoundError):
            staffed_engine.confirm("analyst", 0)

    def test_negative_id(self, staffed_engine: WorkflowEngine) -> None:
        with pytest.raises(InvalidReportIdError):
            staffed_engine.confirm("analyst", -1)

    def test_get_report_unknown(self, engine: WorkflowEngine) -> None:
        with pytest.raises(ReportNotFoundError):
            engine.get_report(5)

    def test_not_found_is_lookup_error(self, engine: WorkflowEngine) -> None:
        with pytest.raises(LookupError):
            engine.get_report(5)


class TestAnalyst:
    def test_confirm(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        result = staffed_engine.confirm("analyst", report.id)
        assert result.state == CONFIRMED

    def test_confirm_twice(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        with pytest.raises(IllegalTransitionError):
            staffed_engine.confirm("analyst", confirmed)

    def test_invalidate(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        result = staffed_engine.invalidate("analyst", confirmed, "works as designed")
        assert result.state == RESOLVED
        assert result.resolution == INVALID
        assert result.resolution_note == "works as designed"

    def test_invalidate_unconfirmed(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        with pytest.raises(IllegalTransitionError):
            staffed_engine.invalidate("analyst", report.id, "nope")

    def test_invalidate_needs_note(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        with pytest.raises(ValidationError):
            staffed_engine.invalidate("analyst", confirmed, "")
        report = staffed_engine.get_report(confirmed)
        assert report.state == CONFIRMED
        assert report.resolution == UNRESOLVED

    def test_invalidate_in_progress_releases_developer(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        result = staffed_engine.invalidate("analyst", in_progress, "duplicate of a known issue")
        assert result.state == RESOLVED
        assert result.resolution == INVALID
        assert staffed_engine.assignments() == {}
        assert staffed_engine.assignment_of("dev") is None
        assert staffed_engine.owner_of(in_progress) is None

    def test_released_developer_can_start_another(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        other = staffed_engine.submit_report("u1", "Typo in footer")
        staffed_engine.confirm("analyst", other.id)
        staffed_engine.invalidate("analyst", in_progress, "not a bug")
        assert staffed_engine.start_development("dev", other.id).state == IN_PROGRESS
        assert staffed_engine.assignments() == {"dev": other.id}

    def test_reopened_invalid_report_has_one_owner(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        staffed_engine.invalidate("analyst", in_progress, "not a bug")
        staffed_engine.reject_fix("qa", in_progress)
        staffed_engine.start_development("dev2", in_progress)
        assert staffed_engine.assignments() == {"dev2": in_progress}
        with pytest.raises(NotAssignedError):
            staffed_engine.mark_fixed("dev", in_progress, FIXED, "patched")

    def test_failed_invalidate_keeps_assignment(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(ValidationError):
            staffed_engine.invalidate("analyst", in_progress, "  ")
        assert staffed_engine.assignments() == {"dev": in_progress}
        assert staffed_engine.get_report(in_progress).state == IN_PROGRESS


class TestDeveloper:
    def test_start_assigns(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        result = staffed_engine.start_development("dev", confirmed)
        assert result.state == IN_PROGRESS
        assert staffed_engine.assignments() == {"dev": confirmed}
        assert staffed_engine.assignment_of("dev") == confirmed

    def test_start_unconfirmed(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        with pytest.raises(IllegalTransitionError):
            staffed_engine.start_development("dev", report.id)
        assert staffed_engine.assignments() == {}

    def test_one_report_at_a_time(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        second = staffed_engine.submit_report("u1", "Another bug")
        staffed_engine.confirm("analyst", second.id)
        with pytest.raises(DeveloperAlreadyAssignedError, match=f"already working on report {in_progress}"):
            staffed_engine.start_development("dev", second.id)
        assert staffed_engine.get_report(second.id).state == CONFIRMED
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_same_report_twice(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(DeveloperAlreadyAssignedError):
            staffed_engine.start_development("dev", in_progress)

    def test_second_developer_cannot_take_taken_report(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(IllegalTransitionError):
            staffed_engine.start_development("dev2", in_progress)
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_stop(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        result = staffed_engine.stop_development("dev", in_progress)
        assert result.state == CONFIRMED
        assert staffed_engine.assignments() == {}
        assert staffed_engine.assignment_of("dev") is None

    def test_stop_then_someone_else_starts(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        staffed_engine.stop_development("dev", in_progress)
        staffed_engine.start_development("dev2", in_progress)
        assert staffed_engine.assignments() == {"dev2": in_progress}

    def test_stop_by_other_developer(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(NotAssignedError) as exc_info:
            staffed_engine.stop_development("dev2", in_progress)
        assert exc_info.value.current_report_id is None
        assert staffed_engine.get_report(in_progress).state == IN_PROGRESS
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_fix(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        result = staffed_engine.mark_fixed("dev", in_progress, FIXED, "patched")
        assert result.state == RESOLVED
        assert result.resolution == FIXED
        assert staffed_engine.assignments() == {}

    def test_fix_by_other_developer(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(NotAssignedError):
            staffed_engine.mark_fixed("dev2", in_progress, FIXED, "patched")
        assert staffed_engine.get_report(in_progress).state == IN_PROGRESS

    def test_fix_empty_note(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(ValidationError):
            staffed_engine.mark_fixed("dev", in_progress, FIXED, "")
        report = staffed_engine.get_report(in_progress)
        assert report.state == IN_PROGRESS
        assert report.resolution == UNRESOLVED
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_fix_as_unresolved(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(ValidationError):
            staffed_engine.mark_fixed("dev", in_progress, UNRESOLVED, "patched")
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_free_after_fix(self, staffed_engine: WorkflowEngine, resolved: int) -> None:
        second = staffed_engine.submit_report("u1", "Another bug")
        staffed_engine.confirm("analyst", second.id)
        staffed_engine.start_development("dev", second.id)
        assert staffed_engine.assignments() == {"dev": second.id}


class TestQualityAssurance:
    def test_approve(self, staffed_engine: WorkflowEngine, resolved: int) -> None:
        result = staffed_engine.approve_fix("qa", resolved)
        assert result.state == VERIFIED
        assert result.resolution == FIXED

    def test_approve_unresolved(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        with pytest.raises(IllegalTransitionError):
            staffed_engine.approve_fix("qa", in_progress)

    def test_reject(self, staffed_engine: WorkflowEngine, resolved: int) -> None:
        result = staffed_engine.reject_fix("qa", resolved)
        assert result.state == CONFIRMED
        assert result.resolution == UNRESOLVED
        assert result.resolution_note == ""

    def test_reject_then_fix_again(self, staffed_engine: WorkflowEngine, resolved: int) -> None:
        staffed_engine.reject_fix("qa", resolved)
        staffed_engine.start_development("dev2", resolved)
        staffed_engine.mark_fixed("dev2", resolved, FIXED, "really patched")
        final = staffed_engine.approve_fix("qa", resolved)
        assert final.state == VERIFIED
        assert final.resolution_note == "really patched"

    def test_verified_is_final(self, staffed_engine: WorkflowEngine, resolved: int) -> None:
        staffed_engine.approve_fix("qa", resolved)
        with pytest.raises(ReportFinalizedError):
            staffed_engine.reject_fix("qa", resolved)
        with pytest.raises(ReportFinalizedError):
            staffed_engine.confirm("analyst", resolved)
        assert staffed_engine.get_report(resolved).state == VERIFIED


class TestScenarios:
    def test_full_lifecycle(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        staffed_engine.confirm("analyst", report.id)
        staffed_engine.start_development("dev", report.id)
        staffed_engine.mark_fixed("dev", report.id, FIXED, "patched")
        final = staffed_engine.approve_fix("qa", report.id)
        assert final.state == VERIFIED
        assert final.resolution == FIXED
        assert staffed_engine.assignments() == {}

    def test_user_cannot_confirm(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        with pytest.raises(AuthorizationError):
            staffed_engine.confirm("u1", report.id)
        assert staffed_engine.get_report(report.id).state == UNCONFIRMED

    def test_two_developers_two_reports(self, staffed_engine: WorkflowEngine) -> None:
        a = staffed_engine.submit_report("u1", "bug a").id
        b = staffed_engine.submit_report("u1", "bug b").id
        staffed_engine.confirm("analyst", a)
        staffed_engine.confirm("analyst", b)
        staffed_engine.start_development("dev", a)
        staffed_engine.start_development("dev2", b)
        assert staffed_engine.assignments() == {"dev": a, "dev2": b}
        staffed_engine.mark_fixed("dev2", b, FIXED, "done")
        assert staffed_engine.assignments() == {"dev": a}


class TestQuerySurface:
    def test_reports_are_copies(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        snapshot = staffed_engine.reports()
        snapshot[confirmed].state = VERIFIED  # type: ignore[assignment]
        del snapshot[confirmed]
        assert staffed_engine.get_report(confirmed).state == CONFIRMED
        assert staffed_engine.report_count == 1

    def test_returned_report_is_copy(self, staffed_engine: WorkflowEngine) -> None:
        report = staffed_engine.submit_report("u1", "Crash on save")
        report.state = VERIFIED  # type: ignore[assignment]
        assert staffed_engine.get_report(report.id).state == UNCONFIRMED

    def test_owner_of(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        assert staffed_engine.owner_of(in_progress) == "dev"
        staffed_engine.stop_development("dev", in_progress)
        assert staffed_engine.owner_of(in_progress) is None
        assert staffed_engine.owner_of(99) is None

    def test_assignments_is_copy(self, staffed_engine: WorkflowEngine, in_progress: int) -> None:
        table = staffed_engine.assignments()
        table.clear()
        assert staffed_engine.assignments() == {"dev": in_progress}

    def test_reports_in_id_order(self, staffed_engine: WorkflowEngine) -> None:
        for n in range(4):
            staffed_engine.submit_report("u1", f"bug {n}")
        assert list(staffed_engine.reports()) == [0, 1, 2, 3]


class TestIdentityProviderContract:
    def test_custom_provider(self) -> None:
        class AlwaysUser:
            def role_of(self, username: str) -> str:
                return "user"

            def is_authenticated(self, username: str) -> bool:
                return True

        engine = WorkflowEngine(AlwaysUser())  # type: ignore[arg-type]
        assert engine.submit_report("anyone", "x").id == 0

    def test_unknown_role_lookup_propagates(self) -> None:
        class LoggedInStranger:
            def role_of(self, username: str) -> str:
                raise UnknownUserError(username)

            def is_authenticated(self, username: str) -> bool:
                return True

        engine = WorkflowEngine(LoggedInStranger())  # type: ignore[arg-type]
        with pytest.raises(UnknownUserError):
            engine.submit_report("ghost", "x")


class TestConcurrency:
    def test_parallel_submits_get_unique_ids(self, staffed_engine: WorkflowEngine) -> None:
        barrier = threading.Barrier(8)
        ids: list[int] = []
        ids_lock = threading.Lock()

        def submit() -> None:
            barrier.wait()
            for _ in range(10):
                rid = staffed_engine.submit_report("u1", "bug").id
                with ids_lock:
                    ids.append(rid)

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(ids) == list(range(80))

    def test_parallel_starts_one_winner(self, staffed_engine: WorkflowEngine, confirmed: int) -> None:
        barrier = threading.Barrier(2)
        errors: list[Exception] = []

        def start(dev: str) -> None:
            barrier.wait()
            try:
                staffed_engine.start_development(dev, confirmed)
            except IllegalTransitionError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=start, args=(d,)) for d in ("dev", "dev2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 1
        assert len(staffed_engine.assignments()) == 1
