"""
Status Transition Guard (``expense_modules.expense.guard``).

Responsibility
--------------
Decides whether an action is legal for an expense request (or report) in
its current status, which status it leads to, and whether the acting user
may perform it.  Consults the fixed workflow tables and the explicit
``ExpenseConfig`` (single- vs two-stage approval).

Architecture position
---------------------
**Modules layer** -- pure decision logic, zero I/O.  Called by the module
services before any write; never writes itself.

Invariants enforced
-------------------
* Only transitions declared in ``EXPENSE_REQUEST_WORKFLOW`` /
  ``EXPENSE_REPORT_WORKFLOW`` are legal.
* Approval at the final stage (stage 2 under two-stage policy, any stage
  otherwise) leads to APPROVED; an intermediate stage keeps the current
  status.
* Stage must be 1 or 2.
* Payment requires a positive aggregated approved amount.

Failure modes
-------------
* ``InvalidTransitionError`` / ``InvalidReportTransitionError`` when no
  transition exists for (status, action).
* ``InvalidStageError`` for a stage outside 1..2.
* ``PermissionDeniedError`` when the actor's role or campus is wrong.
* ``NothingToPayError`` when the approved amount is zero.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from expense_kernel.domain.actor import (
    Actor,
    can_add_note,
    can_add_pastor_remark,
    can_approve,
    can_mark_paid,
    can_view_all,
)
from expense_kernel.domain.dtos import ExpenseStatus, ReportStatus
from expense_kernel.domain.workflow import Transition
from expense_kernel.exceptions import (
    InvalidReportTransitionError,
    InvalidStageError,
    InvalidTransitionError,
    NothingToPayError,
    PermissionDeniedError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.services.approval_recorder import VALID_STAGES
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.workflows import (
    EXPENSE_REPORT_WORKFLOW,
    EXPENSE_REQUEST_WORKFLOW,
)

logger = get_logger("modules.expense.guard")


# (actor, requester_id, campus) -> allowed
_Authority = Callable[[Actor, UUID, str | None], bool]


def _approver(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return can_approve(actor)


def _requester(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return actor.id == requester_id


def _requester_or_approver(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return actor.id == requester_id or can_approve(actor)


def _requester_or_viewer(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return actor.id == requester_id or can_view_all(actor)


def _payer(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return can_mark_paid(actor)


def _campus_pastor(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return can_add_pastor_remark(actor, campus)


def _note_author(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    return can_add_note(actor, requester_id, campus)


ACTION_AUTHORITY: dict[str, tuple[_Authority, str]] = {
    "approve": (_approver, "only administrators can approve expenses"),
    "deny": (_approver, "only administrators can deny expenses"),
    "admin_request_change": (_approver, "only administrators can request changes"),
    "undo_decision": (_approver, "only administrators can undo decisions"),
    "close": (_approver, "only administrators can close expenses"),
    "item_decision": (_approver, "only administrators can decide on items"),
    "mark_paid": (_payer, "only administrators can mark expenses as paid"),
    "request_change": (_requester, "only the requester can request changes"),
    "resubmit": (
        _requester_or_approver,
        "only the requester or an administrator can edit the expense",
    ),
    "submit_report": (
        _requester_or_viewer,
        "only the requester or a campus pastor or administrator can report",
    ),
    "review_report": (_approver, "only administrators can review reports"),
    "pastor_remark": (
        _campus_pastor,
        "only a campus pastor of the expense's campus can add remarks",
    ),
    "add_note": (
        _note_author,
        "only the requester, an administrator or a campus pastor of the campus can add notes",
    ),
    "view_notes": (
        _requester_or_viewer,
        "only the requester or a campus pastor or administrator can read notes",
    ),
    "update_status": (_approver, "only administrators can update expense status"),
    "update_metadata": (_approver, "only administrators can tag expenses"),
}


class StatusTransitionGuard:
    """Validates lifecycle transitions against the workflow tables."""

    def __init__(self, config: ExpenseConfig) -> None:
        self._config = config

    @property
    def config(self) -> ExpenseConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorize(
        self,
        actor: Actor,
        action: str,
        requester_id: UUID,
        campus: str | None = None,
    ) -> None:
        """Raise PermissionDeniedError unless ``actor`` may perform ``action``."""
        predicate, reason = ACTION_AUTHORITY[action]
        if not predicate(actor, requester_id, campus):
            logger.warning(
                "permission_denied",
                extra={
                    "actor_id": str(actor.id),
                    "role": actor.role.value,
                    "action": action,
                },
            )
            raise PermissionDeniedError(actor.id, action, reason)

    # -------------------------------------------------------------------------
    # Expense request transitions
    # -------------------------------------------------------------------------

    def check(
        self,
        expense_id: UUID,
        current: ExpenseStatus,
        action: str,
    ) -> Transition:
        """Return the transition for (current, action) or raise."""
        transition = EXPENSE_REQUEST_WORKFLOW.find(current.value, action)
        if transition is None:
            logger.info(
                "transition_rejected",
                extra={
                    "expense_id": str(expense_id),
                    "from_status": current.value,
                    "action": action,
                },
            )
            raise InvalidTransitionError(expense_id, current.value, action)
        return transition

    def is_final_stage(self, stage: int) -> bool:
        if stage not in VALID_STAGES:
            raise InvalidStageError(stage)
        if self._config.require_two_stage_approval:
            return stage == self._config.final_stage
        return True

    def approval_transition(
        self,
        expense_id: UUID,
        current: ExpenseStatus,
        stage: int,
    ) -> Transition:
        """Transition taken by approving ``stage`` from ``current``."""
        action = "approve" if self.is_final_stage(stage) else "approve_stage"
        return self.check(expense_id, current, action)

    def require_payable(self, expense_id: UUID, approved_amount_cents: int) -> None:
        if approved_amount_cents <= 0:
            raise NothingToPayError(expense_id, "approved amount is zero")

    def after_payment(self, report_required: bool) -> Transition | None:
        """Follow-up transition once a request is PAID, if any."""
        if not report_required:
            return None
        return EXPENSE_REQUEST_WORKFLOW.find(
            ExpenseStatus.PAID.value, "request_report",
        )

    # -------------------------------------------------------------------------
    # Report transitions
    # -------------------------------------------------------------------------

    def check_report(
        self,
        report_id: UUID,
        current: ReportStatus,
        action: str,
    ) -> Transition:
        transition = EXPENSE_REPORT_WORKFLOW.find(current.value, action)
        if transition is None:
            logger.info(
                "report_transition_rejected",
                extra={
                    "report_id": str(report_id),
                    "from_status": current.value,
                    "action": action,
                },
            )
            raise InvalidReportTransitionError(report_id, current.value, action)
        return transition
