"""
expense_engines.aggregation -- Approved-amount aggregation for expense requests.

Responsibility:
    Derive a request's approved amount from its current decisions, build
    the approved baseline a post-payment report is reconciled against, and
    plan the item decisions implied by approving a whole request.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel.domain and sibling engine modules.
    Consumed by the expense module services and by read-side reporting.

Invariants enforced:
    - Re-derivable: results depend only on the decisions passed in; no
      cached state.  A stored paid-amount snapshot is never an input.
    - Lump-sum requests are approved or not as a whole: the approved
      amount is the requested amount once any stage approval exists.
    - Itemized requests: each item contributes its *first* APPROVED
      decision (its approved amount, or the item amount when unset);
      items without one contribute zero.

Failure modes:
    - ValueError from ``compute_overage`` on negative inputs.

Audit relevance:
    The approved amount drives payment (mark-paid stamps it) and close
    (stamped if never paid).  ``ApprovalBaseline`` is copied onto report
    reconciliation rows so later item edits do not rewrite history.

Usage:
    from expense_engines.aggregation import (
        ItemDecision, ItemSnapshot, ItemizedRequest, compute_approved_amount,
    )

    request = ItemizedRequest(items=(
        ItemSnapshot(item_a, "Chairs", 10000,
                     (ItemDecision(admin, ItemDecisionStatus.APPROVED, 8000),)),
        ItemSnapshot(item_b, "Tables", 5000,
                     (ItemDecision(admin, ItemDecisionStatus.APPROVED),)),
    ))
    compute_approved_amount(request)  # 13000
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from expense_kernel.domain.dtos import (
    ExpenseRequest,
    ItemDecisionStatus,
    StageDecision,
)
from expense_kernel.logging_config import get_logger
from expense_engines.tracer import traced_engine

logger = get_logger("engines.aggregation")


# =============================================================================
# Inputs: tagged variant at the aggregation boundary
# =============================================================================


@dataclass(frozen=True)
class ItemDecision:
    """One approver's current decision on an item."""

    approver_id: UUID
    status: ItemDecisionStatus
    approved_amount_cents: int | None = None


@dataclass(frozen=True)
class ItemSnapshot:
    """An item with its decisions in first-recorded order."""

    item_id: UUID
    description: str
    amount_cents: int
    decisions: tuple[ItemDecision, ...] = ()


@dataclass(frozen=True)
class LumpSumRequest:
    """A request without line items; approved or not as a whole."""

    requested_amount_cents: int
    has_approval: bool


@dataclass(frozen=True)
class ItemizedRequest:
    """A request priced by line items."""

    items: tuple[ItemSnapshot, ...]


AggregationInput = LumpSumRequest | ItemizedRequest


def from_expense(expense: ExpenseRequest) -> AggregationInput:
    """Build the aggregation variant from an expense DTO."""
    if not expense.items:
        return LumpSumRequest(
            requested_amount_cents=expense.amount_cents,
            has_approval=any(
                a.decision is StageDecision.APPROVED for a in expense.stage_approvals
            ),
        )
    return ItemizedRequest(
        items=tuple(
            ItemSnapshot(
                item_id=item.id,
                description=item.description,
                amount_cents=item.amount_cents,
                decisions=tuple(
                    ItemDecision(
                        approver_id=a.approver_id,
                        status=a.status,
                        approved_amount_cents=a.approved_amount_cents,
                    )
                    for a in item.approvals
                ),
            )
            for item in expense.items
        )
    )


# =============================================================================
# Aggregation
# =============================================================================


def item_contribution(item: ItemSnapshot) -> int:
    """Approved contribution of one item (first APPROVED decision wins)."""
    for decision in item.decisions:
        if decision.status is ItemDecisionStatus.APPROVED:
            if decision.approved_amount_cents is not None:
                return decision.approved_amount_cents
            return item.amount_cents
    return 0


@traced_engine("aggregation", "1.0", fingerprint_fields=("request",))
def compute_approved_amount(request: AggregationInput) -> int:
    """Approved amount in cents for either request shape."""
    if isinstance(request, LumpSumRequest):
        return request.requested_amount_cents if request.has_approval else 0
    return sum(item_contribution(item) for item in request.items)


@dataclass(frozen=True)
class BaselineItem:
    item_id: UUID
    description: str
    approved_amount_cents: int


@dataclass(frozen=True)
class ApprovalBaseline:
    """What a report is reconciled against.

    ``items`` is empty for a lump-sum baseline; whole-report rules apply.
    """

    total_approved_cents: int
    items: tuple[BaselineItem, ...] = ()

    @property
    def is_itemized(self) -> bool:
        return bool(self.items)

    def item(self, item_id: UUID) -> BaselineItem | None:
        for baseline_item in self.items:
            if baseline_item.item_id == item_id:
                return baseline_item
        return None


def approval_baseline(request: AggregationInput) -> ApprovalBaseline:
    """Baseline of approved amounts at the time a report is started.

    Itemized: items with a positive approved contribution.
    """
    if isinstance(request, LumpSumRequest):
        return ApprovalBaseline(total_approved_cents=compute_approved_amount(request))

    items = tuple(
        BaselineItem(
            item_id=item.item_id,
            description=item.description,
            approved_amount_cents=contribution,
        )
        for item in request.items
        if (contribution := item_contribution(item)) > 0
    )
    return ApprovalBaseline(
        total_approved_cents=sum(i.approved_amount_cents for i in items),
        items=items,
    )


# =============================================================================
# Whole-request approval planning
# =============================================================================


@dataclass(frozen=True)
class PlannedItemApproval:
    """A full-amount approval to record for one item."""

    item_id: UUID
    amount_cents: int
    previous_status: ItemDecisionStatus | None


def plan_full_approval(
    request: AggregationInput,
    approver_id: UUID,
    preserve_denials: bool = False,
) -> tuple[PlannedItemApproval, ...]:
    """Item approvals implied by approving the whole request.

    Items with no decision from ``approver_id`` get a full-amount approval.
    Items whose decision from the approver is not APPROVED are upgraded to
    full amount, except DENIED when ``preserve_denials`` is set.  Items the
    approver already approved (in full or in part) are left alone.
    """
    if isinstance(request, LumpSumRequest):
        return ()

    planned: list[PlannedItemApproval] = []
    for item in request.items:
        own = next(
            (d for d in item.decisions if d.approver_id == approver_id),
            None,
        )
        if own is not None and own.status is ItemDecisionStatus.APPROVED:
            continue
        if (
            own is not None
            and preserve_denials
            and own.status is ItemDecisionStatus.DENIED
        ):
            continue
        planned.append(
            PlannedItemApproval(
                item_id=item.item_id,
                amount_cents=item.amount_cents,
                previous_status=own.status if own is not None else None,
            )
        )

    logger.debug(
        "full_approval_planned",
        extra={
            "approver_id": str(approver_id),
            "item_count": len(request.items),
            "planned_count": len(planned),
        },
    )
    return tuple(planned)


# =============================================================================
# Payment
# =============================================================================


def compute_overage(
    paid_cents: int,
    reported_cents: int,
    donation_cents: int | None = None,
) -> int:
    """Additional amount owed when reported spend exceeds what was paid.

    A donation offsets the overage; the result is never negative.
    """
    donation = donation_cents or 0
    if paid_cents < 0 or reported_cents < 0 or donation < 0:
        raise ValueError("paid, reported and donation amounts must be non-negative")
    return max(0, reported_cents - paid_cents - donation)
