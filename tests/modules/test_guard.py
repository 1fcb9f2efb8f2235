"""
Tests for the Status Transition Guard and the lifecycle workflow tables.

Covers:
- Workflow table structure (states, terminal states, one transition per key)
- Single- and two-stage approval targets
- Rejection of transitions missing from the tables
- Role and campus authorization per action
- Report transitions
"""

from uuid import uuid4

import pytest

from expense_kernel.domain.actor import Actor, Role
from expense_kernel.domain.dtos import ExpenseStatus, ReportStatus
from expense_kernel.exceptions import (
    InvalidReportTransitionError,
    InvalidStageError,
    InvalidTransitionError,
    NothingToPayError,
    PermissionDeniedError,
)
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.guard import ACTION_AUTHORITY, StatusTransitionGuard
from expense_modules.expense.workflows import (
    EXPENSE_REPORT_WORKFLOW,
    EXPENSE_REQUEST_WORKFLOW,
    REPORTABLE_STATES,
)

S = ExpenseStatus
R = ReportStatus


@pytest.fixture
def single_stage():
    return StatusTransitionGuard(ExpenseConfig())


@pytest.fixture
def two_stage():
    return StatusTransitionGuard(ExpenseConfig(require_two_stage_approval=True))


class TestWorkflowTables:

    @pytest.mark.parametrize("workflow", [EXPENSE_REQUEST_WORKFLOW, EXPENSE_REPORT_WORKFLOW])
    def test_transitions_reference_declared_states(self, workflow):
        for t in workflow.transitions:
            assert t.from_state in workflow.states
            assert t.to_state in workflow.states
        assert workflow.initial_state in workflow.states

    @pytest.mark.parametrize("workflow", [EXPENSE_REQUEST_WORKFLOW, EXPENSE_REPORT_WORKFLOW])
    def test_one_transition_per_state_and_action(self, workflow):
        keys = [(t.from_state, t.action) for t in workflow.transitions]
        assert len(keys) == len(set(keys))

    @pytest.mark.parametrize("workflow", [EXPENSE_REQUEST_WORKFLOW, EXPENSE_REPORT_WORKFLOW])
    def test_terminal_states_have_no_exits(self, workflow):
        for state in workflow.terminal_states:
            assert workflow.actions_from(state) == ()

    def test_closed_request_is_terminal(self):
        assert EXPENSE_REQUEST_WORKFLOW.terminal_states == (S.CLOSED.value,)

    def test_partially_approved_can_only_close(self):
        assert EXPENSE_REQUEST_WORKFLOW.actions_from(S.PARTIALLY_APPROVED.value) == ("close",)

    def test_reports_start_after_payment(self):
        assert REPORTABLE_STATES == {S.PAID.value, S.EXPENSE_REPORT_REQUESTED.value}


class TestApprovalTransition:

    @pytest.mark.parametrize("stage", [1, 2])
    def test_single_stage_any_stage_approves(self, single_stage, stage):
        t = single_stage.approval_transition(uuid4(), S.SUBMITTED, stage)
        assert t.to_state == S.APPROVED.value

    def test_two_stage_first_stage_stays_submitted(self, two_stage):
        t = two_stage.approval_transition(uuid4(), S.SUBMITTED, 1)
        assert t.action == "approve_stage"
        assert t.to_state == S.SUBMITTED.value

    def test_two_stage_second_stage_approves(self, two_stage):
        t = two_stage.approval_transition(uuid4(), S.SUBMITTED, 2)
        assert t.to_state == S.APPROVED.value

    @pytest.mark.parametrize("current", [S.APPROVED, S.DENIED])
    def test_two_stage_first_stage_correction_keeps_status(self, two_stage, current):
        t = two_stage.approval_transition(uuid4(), current, 1)
        assert t.action == "approve_stage"
        assert t.from_state == t.to_state == current.value

    @pytest.mark.parametrize("current", [S.APPROVED, S.DENIED])
    def test_redecision_allowed(self, single_stage, current):
        t = single_stage.approval_transition(uuid4(), current, 1)
        assert t.from_state == current.value

    @pytest.mark.parametrize("current", [S.PAID, S.CLOSED, S.CHANGE_REQUESTED])
    def test_approval_rejected_elsewhere(self, single_stage, current):
        with pytest.raises(InvalidTransitionError) as exc_info:
            single_stage.approval_transition(uuid4(), current, 1)
        assert exc_info.value.from_status == current.value
        assert exc_info.value.action == "approve"

    @pytest.mark.parametrize("stage", [0, 3])
    def test_invalid_stage(self, single_stage, stage):
        with pytest.raises(InvalidStageError):
            single_stage.approval_transition(uuid4(), S.SUBMITTED, stage)


class TestTransitionChecks:

    @pytest.mark.parametrize(
        "current, action, target",
        [
            (S.SUBMITTED, "deny", S.DENIED),
            (S.SUBMITTED, "mark_partially_approved", S.PARTIALLY_APPROVED),
            (S.SUBMITTED, "request_change", S.CHANGE_REQUESTED),
            (S.APPROVED, "request_change", S.CHANGE_REQUESTED),
            (S.DENIED, "admin_request_change", S.CHANGE_REQUESTED),
            (S.CHANGE_REQUESTED, "resubmit", S.SUBMITTED),
            (S.APPROVED, "undo_decision", S.SUBMITTED),
            (S.DENIED, "undo_decision", S.SUBMITTED),
            (S.APPROVED, "mark_paid", S.PAID),
            (S.PAID, "request_report", S.EXPENSE_REPORT_REQUESTED),
            (S.EXPENSE_REPORT_REQUESTED, "close", S.CLOSED),
        ],
    )
    def test_legal(self, single_stage, current, action, target):
        assert single_stage.check(uuid4(), current, action).to_state == target.value

    @pytest.mark.parametrize(
        "current, action",
        [
            (S.APPROVED, "deny"),
            (S.DENIED, "request_change"),
            (S.SUBMITTED, "mark_paid"),
            (S.PAID, "mark_paid"),
            (S.SUBMITTED, "undo_decision"),
            (S.SUBMITTED, "close"),
            (S.APPROVED, "mark_partially_approved"),
            (S.CLOSED, "resubmit"),
        ],
    )
    def test_illegal(self, single_stage, current, action):
        with pytest.raises(InvalidTransitionError):
            single_stage.check(uuid4(), current, action)

    def test_rejection_is_logged(self, single_stage, captured_logs):
        with pytest.raises(InvalidTransitionError):
            single_stage.check(uuid4(), S.CLOSED, "approve")
        assert any(r["message"] == "transition_rejected" for r in captured_logs())

    def test_payable_requires_positive_amount(self, single_stage):
        single_stage.require_payable(uuid4(), 1)
        with pytest.raises(NothingToPayError):
            single_stage.require_payable(uuid4(), 0)

    def test_after_payment(self, single_stage):
        assert single_stage.after_payment(report_required=False) is None
        follow_up = single_stage.after_payment(report_required=True)
        assert follow_up.to_state == S.EXPENSE_REPORT_REQUESTED.value


class TestReportTransitions:

    @pytest.mark.parametrize(
        "current, action, target",
        [
            (R.PENDING, "approve", R.APPROVED),
            (R.PENDING, "deny", R.DENIED),
            (R.APPROVED, "request_change", R.CHANGE_REQUESTED),
            (R.CHANGE_REQUESTED, "resubmit", R.PENDING),
            (R.APPROVED, "close", R.CLOSED),
        ],
    )
    def test_legal(self, single_stage, current, action, target):
        assert single_stage.check_report(uuid4(), current, action).to_state == target.value

    @pytest.mark.parametrize(
        "current, action",
        [(R.DENIED, "approve"), (R.CLOSED, "close"), (R.PENDING, "resubmit")],
    )
    def test_illegal(self, single_stage, current, action):
        with pytest.raises(InvalidReportTransitionError):
            single_stage.check_report(uuid4(), current, action)


class TestAuthorization:

    @pytest.fixture
    def requester(self):
        return Actor(id=uuid4(), role=Role.LEADER, campus="North")

    def test_every_action_has_a_reason(self):
        assert all(reason for _, reason in ACTION_AUTHORITY.values())

    @pytest.mark.parametrize(
        "action",
        [
            "approve", "deny", "close", "mark_paid", "item_decision", "review_report",
            "update_status", "update_metadata",
        ],
    )
    def test_admin_only_actions(self, single_stage, requester, action):
        admin = Actor(id=uuid4(), role=Role.ADMIN)
        single_stage.authorize(admin, action, requester.id)
        with pytest.raises(PermissionDeniedError) as exc_info:
            single_stage.authorize(requester, action, requester.id)
        assert exc_info.value.action == action

    def test_pastor_cannot_approve(self, single_stage, requester):
        pastor = Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="North")
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(pastor, "approve", requester.id)

    def test_only_requester_requests_change(self, single_stage, requester):
        single_stage.authorize(requester, "request_change", requester.id)
        admin = Actor(id=uuid4(), role=Role.ADMIN)
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(admin, "request_change", requester.id)

    def test_resubmit_by_requester_or_admin(self, single_stage, requester):
        single_stage.authorize(requester, "resubmit", requester.id)
        single_stage.authorize(Actor(id=uuid4(), role=Role.ADMIN), "resubmit", requester.id)
        stranger = Actor(id=uuid4(), role=Role.LEADER)
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(stranger, "resubmit", requester.id)

    def test_report_by_requester_or_pastor(self, single_stage, requester):
        pastor = Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="South")
        single_stage.authorize(requester, "submit_report", requester.id)
        single_stage.authorize(pastor, "submit_report", requester.id)
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(
                Actor(id=uuid4(), role=Role.LEADER), "submit_report", requester.id,
            )

    def test_pastor_remark_is_campus_scoped(self, single_stage, requester):
        north = Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="North")
        south = Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="South")
        single_stage.authorize(north, "pastor_remark", requester.id, "North")
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(south, "pastor_remark", requester.id, "North")
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(
                Actor(id=uuid4(), role=Role.ADMIN), "pastor_remark", requester.id, "North",
            )

    def test_notes_by_requester_admin_or_campus_pastor(self, single_stage, requester):
        for author in (
            requester,
            Actor(id=uuid4(), role=Role.ADMIN),
            Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="North"),
        ):
            single_stage.authorize(author, "add_note", requester.id, "North")
        for outsider in (
            Actor(id=uuid4(), role=Role.LEADER, campus="North"),
            Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="South"),
        ):
            with pytest.raises(PermissionDeniedError):
                single_stage.authorize(outsider, "add_note", requester.id, "North")

    def test_notes_readable_from_pastor_rank(self, single_stage, requester):
        single_stage.authorize(requester, "view_notes", requester.id)
        single_stage.authorize(
            Actor(id=uuid4(), role=Role.CAMPUS_PASTOR, campus="South"),
            "view_notes", requester.id,
        )
        with pytest.raises(PermissionDeniedError):
            single_stage.authorize(
                Actor(id=uuid4(), role=Role.LEADER), "view_notes", requester.id,
            )
