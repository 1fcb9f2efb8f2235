"""
Module: expense_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel.domain, expense_kernel.exceptions and
    expense_kernel.logging_config.  MUST NOT import expense_modules.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Callers pass
      in snapshots of the current decisions.
    - Integer cents throughout; floats are never used for money.

Usage:
    from expense_engines import compute_approved_amount, reconcile
"""

from expense_engines.aggregation import (
    AggregationInput,
    ApprovalBaseline,
    BaselineItem,
    ItemDecision,
    ItemizedRequest,
    ItemSnapshot,
    LumpSumRequest,
    PlannedItemApproval,
    approval_baseline,
    compute_approved_amount,
    compute_overage,
    from_expense,
    item_contribution,
    plan_full_approval,
)
from expense_engines.reconciliation import (
    AttachmentRef,
    ReconciledLine,
    ReconciliationResult,
    ReportLine,
    ReportSubmission,
    reconcile,
)

__all__ = [
    "AggregationInput",
    "ApprovalBaseline",
    "AttachmentRef",
    "BaselineItem",
    "ItemDecision",
    "ItemSnapshot",
    "ItemizedRequest",
    "LumpSumRequest",
    "PlannedItemApproval",
    "ReconciledLine",
    "ReconciliationResult",
    "ReportLine",
    "ReportSubmission",
    "approval_baseline",
    "compute_approved_amount",
    "compute_overage",
    "from_expense",
    "item_contribution",
    "plan_full_approval",
    "reconcile",
]
