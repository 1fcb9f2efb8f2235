"""
Frozen domain DTOs for persisted expense entities.

ORM models convert to these via ``to_dto()``; services return them so
callers never hold live ORM instances outside a transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class ExpenseStatus(str, Enum):
    """Lifecycle status of an expense request."""

    SUBMITTED = "SUBMITTED"
    CHANGE_REQUESTED = "CHANGE_REQUESTED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    # Set by an administrator for mixed item decisions; can only be closed.
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    PAID = "PAID"
    EXPENSE_REPORT_REQUESTED = "EXPENSE_REPORT_REQUESTED"
    CLOSED = "CLOSED"


class ItemDecisionStatus(str, Enum):
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    CHANGE_REQUESTED = "CHANGE_REQUESTED"


class StageDecision(str, Enum):
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class ReportStatus(str, Enum):
    """Lifecycle status of a post-payment expense report."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    CHANGE_REQUESTED = "CHANGE_REQUESTED"
    CLOSED = "CLOSED"


class ReportDecision(str, Enum):
    APPROVED = "APPROVED"
    DENIED = "DENIED"


@dataclass(frozen=True)
class ItemApproval:
    id: UUID
    item_id: UUID
    approver_id: UUID
    status: ItemDecisionStatus
    approved_amount_cents: int | None
    comment: str | None
    decided_at: datetime


@dataclass(frozen=True)
class ExpenseItem:
    id: UUID
    expense_id: UUID
    description: str
    category: str | None
    quantity: int
    unit_price_cents: int
    amount_cents: int
    approvals: tuple[ItemApproval, ...] = ()


@dataclass(frozen=True)
class StageApproval:
    id: UUID
    expense_id: UUID
    stage: int
    approver_id: UUID
    decision: StageDecision
    comment: str | None
    decided_at: datetime


@dataclass(frozen=True)
class ExpenseRequest:
    """Snapshot of an expense request with its items and stage decisions."""

    id: UUID
    title: str
    description: str | None
    amount_cents: int
    status: ExpenseStatus
    requester_id: UUID
    team: str | None
    campus: str | None
    urgency: int
    category: str | None
    event_date: date | None
    event_name: str | None
    full_event_budget_cents: int | None
    paid_amount_cents: int | None
    paid_at: datetime | None
    paid_by_id: UUID | None
    payment_date: date | None
    report_required: bool
    items: tuple[ExpenseItem, ...] = ()
    stage_approvals: tuple[StageApproval, ...] = ()
    account: str | None = None
    expense_type: str | None = None
    destination_account: str | None = None

    @property
    def is_itemized(self) -> bool:
        return bool(self.items)


@dataclass(frozen=True)
class StatusEvent:
    """One immutable audit-trail row."""

    id: UUID
    expense_id: UUID
    from_status: ExpenseStatus | None
    to_status: ExpenseStatus
    actor_id: UUID
    reason: str | None
    created_at: datetime


@dataclass(frozen=True)
class ApprovedReportItem:
    id: UUID
    report_id: UUID
    expense_item_id: UUID | None
    description: str
    approved_amount_cents: int
    actual_amount_cents: int

    @property
    def difference_cents(self) -> int:
        return self.actual_amount_cents - self.approved_amount_cents


@dataclass(frozen=True)
class ReportAttachment:
    id: UUID
    report_id: UUID
    item_id: UUID | None
    filename: str
    url: str
    mime_type: str | None
    size_bytes: int | None
    is_refund_receipt: bool


@dataclass(frozen=True)
class ReportApproval:
    id: UUID
    report_id: UUID
    approver_id: UUID
    decision: ReportDecision
    comment: str | None
    decided_at: datetime


@dataclass(frozen=True)
class ExpenseReport:
    id: UUID
    expense_id: UUID
    author_id: UUID
    title: str
    content: str | None
    report_date: date | None
    total_approved_cents: int
    total_reported_cents: int
    donation_cents: int | None
    status: ReportStatus
    items: tuple[ApprovedReportItem, ...] = ()
    attachments: tuple[ReportAttachment, ...] = ()
    approvals: tuple[ReportApproval, ...] = ()


@dataclass(frozen=True)
class PastorRemark:
    id: UUID
    expense_id: UUID
    pastor_id: UUID
    content: str


@dataclass(frozen=True)
class ExpenseNote:
    id: UUID
    expense_id: UUID
    author_id: UUID
    content: str
    created_at: datetime


@dataclass(frozen=True)
class ReportNote:
    id: UUID
    report_id: UUID
    author_id: UUID
    content: str
    created_at: datetime
