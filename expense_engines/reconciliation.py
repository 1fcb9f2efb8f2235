"""
expense_engines.reconciliation -- Post-payment report reconciliation.

Responsibility:
    Validate a report submission against the approved baseline (actual
    amounts, attachment sufficiency, refund-receipt rules) and compute the
    reconciliation difference: actual spend minus approved baseline.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by ``expense_modules.expense.report_service`` before any row
    is written.

Invariants enforced:
    - Itemized baseline: every baseline item has >= 1 non-refund
      attachment scoped to it; an item whose actual is below its approved
      amount also has >= 1 refund receipt scoped to it.
    - Lump-sum baseline: the report has >= 1 non-refund attachment; a
      negative whole-report difference also needs >= 1 refund receipt.
    - Overspend never requires extra evidence; it is surfaced as
      additional_payment_needed with the overage amount.
    - An omitted actual amount defaults to the approved amount.

Failure modes:
    - MissingItemAttachmentError naming the first item without a receipt.
    - MissingRefundReceiptError naming the item (or the report) short of
      a refund receipt.
    - InsufficientAttachmentsError for a lump-sum report without receipts.
    - UnknownReportItemError for a line outside the baseline.
    - InvalidAmountError for a negative actual amount.

Audit relevance:
    The result is persisted verbatim as reconciliation rows; the
    difference is what a re-payment or refund acts on.

Usage:
    baseline = approval_baseline(from_expense(expense))
    result = reconcile(baseline, ReportSubmission(
        attachments=(AttachmentRef(None), AttachmentRef(None, is_refund_receipt=True)),
        total_actual_cents=45000,
    ))
    result.difference_cents  # -5000 for a 50000 lump-sum baseline
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from expense_kernel.exceptions import (
    InsufficientAttachmentsError,
    InvalidAmountError,
    MissingItemAttachmentError,
    MissingRefundReceiptError,
    UnknownReportItemError,
)
from expense_kernel.logging_config import get_logger
from expense_engines.aggregation import ApprovalBaseline
from expense_engines.tracer import traced_engine

logger = get_logger("engines.reconciliation")


@dataclass(frozen=True)
class AttachmentRef:
    """Attachment metadata relevant to sufficiency rules."""

    item_id: UUID | None
    is_refund_receipt: bool = False


@dataclass(frozen=True)
class ReportLine:
    """Submitted actual spend for one baseline item."""

    item_id: UUID
    actual_amount_cents: int | None = None


@dataclass(frozen=True)
class ReportSubmission:
    attachments: tuple[AttachmentRef, ...] = ()
    lines: tuple[ReportLine, ...] = ()
    # Lump-sum only; itemized totals are the sum of line actuals.
    total_actual_cents: int | None = None


@dataclass(frozen=True)
class ReconciledLine:
    item_id: UUID
    description: str
    approved_amount_cents: int
    actual_amount_cents: int

    @property
    def difference_cents(self) -> int:
        return self.actual_amount_cents - self.approved_amount_cents


@dataclass(frozen=True)
class ReconciliationResult:
    total_approved_cents: int
    total_actual_cents: int
    difference_cents: int
    lines: tuple[ReconciledLine, ...] = ()
    additional_payment_needed: bool = False
    additional_payment_cents: int = 0
    refund_due_cents: int = 0


def _check_actual(amount: int | None, item_id: UUID | None = None) -> None:
    if amount is not None and amount < 0:
        field = f"actual_amount_cents[{item_id}]" if item_id else "total_actual_cents"
        raise InvalidAmountError(field, amount, "actual amount cannot be negative")


def _reconcile_itemized(
    baseline: ApprovalBaseline,
    submission: ReportSubmission,
) -> tuple[ReconciledLine, ...]:
    submitted: dict[UUID, int | None] = {}
    for line in submission.lines:
        if baseline.item(line.item_id) is None:
            raise UnknownReportItemError(line.item_id)
        _check_actual(line.actual_amount_cents, line.item_id)
        submitted[line.item_id] = line.actual_amount_cents

    lines: list[ReconciledLine] = []
    for item in baseline.items:
        actual = submitted.get(item.item_id)
        reconciled = ReconciledLine(
            item_id=item.item_id,
            description=item.description,
            approved_amount_cents=item.approved_amount_cents,
            actual_amount_cents=(
                actual if actual is not None else item.approved_amount_cents
            ),
        )

        scoped = [a for a in submission.attachments if a.item_id == item.item_id]
        if not any(not a.is_refund_receipt for a in scoped):
            raise MissingItemAttachmentError(item.item_id, item.description)
        if reconciled.difference_cents < 0 and not any(
            a.is_refund_receipt for a in scoped
        ):
            raise MissingRefundReceiptError(
                -reconciled.difference_cents, item_id=item.item_id,
            )
        lines.append(reconciled)
    return tuple(lines)


def _check_lump_sum_attachments(
    submission: ReportSubmission,
    difference_cents: int,
) -> None:
    receipts = [
        a for a in submission.attachments
        if a.item_id is None and not a.is_refund_receipt
    ]
    if not receipts:
        raise InsufficientAttachmentsError(required=1, provided=0)
    if difference_cents < 0 and not any(
        a.item_id is None and a.is_refund_receipt for a in submission.attachments
    ):
        raise MissingRefundReceiptError(-difference_cents)


@traced_engine("reconciliation", "1.0", fingerprint_fields=("baseline", "submission"))
def reconcile(
    baseline: ApprovalBaseline,
    submission: ReportSubmission,
) -> ReconciliationResult:
    """Validate a report submission and compute its reconciliation.

    Raises before returning if any attachment rule fails; the caller
    persists nothing in that case.
    """
    if baseline.is_itemized:
        lines = _reconcile_itemized(baseline, submission)
        total_actual = sum(line.actual_amount_cents for line in lines)
    else:
        if submission.lines:
            raise UnknownReportItemError(submission.lines[0].item_id)
        _check_actual(submission.total_actual_cents)
        lines = ()
        total_actual = (
            submission.total_actual_cents
            if submission.total_actual_cents is not None
            else baseline.total_approved_cents
        )
        _check_lump_sum_attachments(
            submission, total_actual - baseline.total_approved_cents,
        )

    difference = total_actual - baseline.total_approved_cents
    result = ReconciliationResult(
        total_approved_cents=baseline.total_approved_cents,
        total_actual_cents=total_actual,
        difference_cents=difference,
        lines=lines,
        additional_payment_needed=difference > 0,
        additional_payment_cents=max(difference, 0),
        refund_due_cents=max(-difference, 0),
    )

    logger.info(
        "report_reconciled",
        extra={
            "itemized": baseline.is_itemized,
            "total_approved_cents": result.total_approved_cents,
            "total_actual_cents": result.total_actual_cents,
            "difference_cents": result.difference_cents,
            "attachment_count": len(submission.attachments),
        },
    )
    return result
