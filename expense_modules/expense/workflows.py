"""Expense Lifecycle Workflows.

State machines for expense requests and their post-payment reports.
The tables are fixed; the transition guard looks transitions up here.
"""

from expense_kernel.domain.dtos import ExpenseStatus, ReportStatus
from expense_kernel.domain.workflow import Guard, Transition, Workflow
from expense_kernel.logging_config import get_logger

logger = get_logger("modules.expense.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

FINAL_STAGE_APPROVED = Guard(
    name="final_stage_approved",
    description="Approval recorded at the final required stage",
)

INTERMEDIATE_STAGE_APPROVED = Guard(
    name="intermediate_stage_approved",
    description="Stage 1 approved under a two-stage policy",
)

REQUESTER_ONLY = Guard(
    name="requester_only",
    description="Actor is the request's requester",
)

APPROVER_ROLE = Guard(
    name="approver_role",
    description="Actor holds the approver role",
)

REQUESTER_OR_APPROVER = Guard(
    name="requester_or_approver",
    description="Actor is the requester or holds the approver role",
)

NON_ZERO_APPROVED_AMOUNT = Guard(
    name="non_zero_approved_amount",
    description="Approval aggregation yields an approved amount above zero",
)

REPORT_REQUIRED = Guard(
    name="report_required",
    description="The request is flagged as requiring a post-payment report",
)

logger.info(
    "expense_workflow_guards_defined",
    extra={
        "guards": [
            FINAL_STAGE_APPROVED.name,
            INTERMEDIATE_STAGE_APPROVED.name,
            REQUESTER_ONLY.name,
            APPROVER_ROLE.name,
            REQUESTER_OR_APPROVER.name,
            NON_ZERO_APPROVED_AMOUNT.name,
            REPORT_REQUIRED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Expense request lifecycle
# -----------------------------------------------------------------------------

_S = ExpenseStatus

_REDECIDABLE = (_S.SUBMITTED, _S.APPROVED, _S.DENIED)
_CLOSABLE = (
    _S.APPROVED,
    _S.PARTIALLY_APPROVED,
    _S.PAID,
    _S.EXPENSE_REPORT_REQUESTED,
)

EXPENSE_REQUEST_WORKFLOW = Workflow(
    name="expense_request",
    description="Expense request from submission through approval, payment and close",
    initial_state=_S.SUBMITTED.value,
    states=tuple(s.value for s in ExpenseStatus),
    transitions=(
        *(
            Transition(s.value, _S.APPROVED.value, "approve", guard=FINAL_STAGE_APPROVED)
            for s in _REDECIDABLE
        ),
        # A non-final stage approval records a decision without moving the request.
        *(
            Transition(s.value, s.value, "approve_stage", guard=INTERMEDIATE_STAGE_APPROVED)
            for s in _REDECIDABLE
        ),
        Transition(_S.SUBMITTED.value, _S.DENIED.value, "deny", guard=APPROVER_ROLE),
        Transition(
            _S.SUBMITTED.value, _S.PARTIALLY_APPROVED.value, "mark_partially_approved",
            guard=APPROVER_ROLE,
        ),
        *(
            Transition(s.value, _S.CHANGE_REQUESTED.value, "request_change", guard=REQUESTER_ONLY)
            for s in (_S.SUBMITTED, _S.APPROVED)
        ),
        *(
            Transition(
                s.value, _S.CHANGE_REQUESTED.value, "admin_request_change",
                guard=APPROVER_ROLE,
            )
            for s in _REDECIDABLE
        ),
        *(
            Transition(s.value, _S.SUBMITTED.value, "resubmit", guard=REQUESTER_OR_APPROVER)
            for s in (_S.SUBMITTED, _S.CHANGE_REQUESTED)
        ),
        *(
            Transition(s.value, _S.SUBMITTED.value, "undo_decision", guard=APPROVER_ROLE)
            for s in (_S.APPROVED, _S.DENIED)
        ),
        Transition(
            _S.APPROVED.value, _S.PAID.value, "mark_paid",
            guard=NON_ZERO_APPROVED_AMOUNT,
        ),
        Transition(
            _S.PAID.value, _S.EXPENSE_REPORT_REQUESTED.value, "request_report",
            guard=REPORT_REQUIRED,
        ),
        *(
            Transition(s.value, _S.CLOSED.value, "close", guard=APPROVER_ROLE)
            for s in _CLOSABLE
        ),
    ),
    terminal_states=(_S.CLOSED.value,),
)

# States in which item-level decisions may be recorded.
ITEM_DECISION_STATES: frozenset[str] = frozenset({_S.SUBMITTED.value})
ITEM_UNDO_STATES: frozenset[str] = frozenset(s.value for s in _REDECIDABLE)

# States in which a post-payment report may be started.
REPORTABLE_STATES: frozenset[str] = frozenset(
    {_S.PAID.value, _S.EXPENSE_REPORT_REQUESTED.value}
)

# States from which a repeat payment (overage) may be made.
REPAYABLE_STATES: frozenset[str] = REPORTABLE_STATES


# -----------------------------------------------------------------------------
# Report lifecycle
# -----------------------------------------------------------------------------

_R = ReportStatus

EXPENSE_REPORT_WORKFLOW = Workflow(
    name="expense_report",
    description="Post-payment report review",
    initial_state=_R.PENDING.value,
    states=tuple(s.value for s in ReportStatus),
    transitions=(
        Transition(_R.PENDING.value, _R.APPROVED.value, "approve", guard=APPROVER_ROLE),
        Transition(_R.PENDING.value, _R.DENIED.value, "deny", guard=APPROVER_ROLE),
        Transition(
            _R.PENDING.value, _R.CHANGE_REQUESTED.value, "request_change",
            guard=APPROVER_ROLE,
        ),
        Transition(
            _R.APPROVED.value, _R.CHANGE_REQUESTED.value, "request_change",
            guard=APPROVER_ROLE,
        ),
        Transition(
            _R.CHANGE_REQUESTED.value, _R.PENDING.value, "resubmit",
            guard=REQUESTER_OR_APPROVER,
        ),
        Transition(_R.PENDING.value, _R.CLOSED.value, "close", guard=APPROVER_ROLE),
        Transition(_R.APPROVED.value, _R.CLOSED.value, "close", guard=APPROVER_ROLE),
    ),
    terminal_states=(_R.CLOSED.value, _R.DENIED.value),
)

logger.info(
    "expense_workflows_registered",
    extra={
        "workflows": [EXPENSE_REQUEST_WORKFLOW.name, EXPENSE_REPORT_WORKFLOW.name],
        "transition_count": (
            len(EXPENSE_REQUEST_WORKFLOW.transitions)
            + len(EXPENSE_REPORT_WORKFLOW.transitions)
        ),
    },
)
