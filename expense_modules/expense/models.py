"""
Expense Lifecycle Domain Models.

The nouns the services accept and return: drafts submitted by users and
the outcomes of lifecycle operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from expense_kernel.domain.dtos import (
    ExpenseReport,
    ExpenseRequest,
    ExpenseStatus,
    ItemApproval,
    StatusEvent,
)
from expense_kernel.logging_config import get_logger
from expense_engines.reconciliation import ReconciliationResult

logger = get_logger("modules.expense.models")


# -----------------------------------------------------------------------------
# Inputs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemDraft:
    """A line item as submitted.

    ``amount_cents`` defaults to quantity times unit price.  ``id`` names an
    existing item to keep when new items are appended to an approved request.
    """
    description: str
    unit_price_cents: int
    quantity: int = 1
    amount_cents: int | None = None
    category: str | None = None
    id: UUID | None = None

    @property
    def line_amount_cents(self) -> int:
        if self.amount_cents is not None:
            return self.amount_cents
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class ExpenseDraft:
    """A new or edited expense request."""
    title: str
    amount_cents: int
    description: str | None = None
    team: str | None = None
    campus: str | None = None
    urgency: int | None = None
    category: str | None = None
    event_date: date | None = None
    event_name: str | None = None
    full_event_budget_cents: int | None = None
    items: tuple[ItemDraft, ...] = ()
    report_required: bool | None = None


@dataclass(frozen=True)
class AttachmentDraft:
    """Evidence file metadata; ``item_id`` None means a general receipt."""
    filename: str
    url: str
    item_id: UUID | None = None
    is_refund_receipt: bool = False
    mime_type: str | None = None
    size_bytes: int | None = None


@dataclass(frozen=True)
class ReportItemDraft:
    """Actual spend for one approved item; None means as approved."""
    item_id: UUID
    actual_amount_cents: int | None = None


@dataclass(frozen=True)
class ReportDraft:
    title: str
    content: str | None = None
    report_date: date | None = None
    attachments: tuple[AttachmentDraft, ...] = ()
    items: tuple[ReportItemDraft, ...] = ()
    # Lump-sum only.
    total_actual_cents: int | None = None
    donation_cents: int | None = None


# -----------------------------------------------------------------------------
# Outcomes
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DispatchReport:
    """What happened to the notifications of one operation."""
    sent: int = 0
    failed: int = 0
    errors: tuple[str, ...] = ()

    @property
    def all_delivered(self) -> bool:
        return self.failed == 0


@dataclass(frozen=True)
class ExpenseOutcome:
    """Result of a committed expense-request operation."""
    expense: ExpenseRequest
    approved_amount_cents: int
    events: tuple[StatusEvent, ...] = ()
    auto_approved_item_ids: tuple[UUID, ...] = ()
    notifications: DispatchReport = field(default_factory=DispatchReport)

    @property
    def status(self) -> ExpenseStatus:
        return self.expense.status


@dataclass(frozen=True)
class ItemDecisionOutcome:
    """Result of an item-level decision (or its undo)."""
    expense_id: UUID
    item_id: UUID
    decision: ItemApproval | None
    approved_amount_cents: int


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of recording a payment or a repeat payment for an overage."""
    expense: ExpenseRequest
    amount_paid_cents: int
    is_repayment: bool
    events: tuple[StatusEvent, ...] = ()
    notifications: DispatchReport = field(default_factory=DispatchReport)


@dataclass(frozen=True)
class ReportOutcome:
    """Result of a committed report operation."""
    report: ExpenseReport
    reconciliation: ReconciliationResult | None = None
    expense_closed: bool = False
    notifications: DispatchReport = field(default_factory=DispatchReport)
