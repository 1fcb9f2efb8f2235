"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for expense requests, their line items,
    notes and campus-pastor remarks.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/dtos.py and sibling models.

Invariants enforced:
    - Status limited to the lifecycle vocabulary (check constraint).
    - Requested amount positive; item quantity positive; item prices and
      amounts non-negative (check constraints).
    - One remark per (expense, pastor): UNIQUE constraint backs the upsert.

Failure modes:
    - IntegrityError on a second remark row for the same pastor (callers
      go through the upsert path instead).

Audit relevance:
    Requests are never hard-deleted.  Status history lives in
    status_events (see models/status_event.py); this row only holds the
    current status and the paid-amount snapshot.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TrackedBase, UUIDString
from expense_kernel.domain.dtos import (
    ExpenseItem,
    ExpenseNote,
    ExpenseRequest,
    ExpenseStatus,
    PastorRemark,
)
from expense_kernel.models.approval import ItemApprovalModel, StageApprovalModel

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ExpenseStatus)


class ExpenseRequestModel(TrackedBase):
    """Persistent expense request.

    Contract:
        ``status`` is only changed through the expense module service, which
        consults the transition guard and writes a StatusEvent for every
        change.  ``paid_amount_cents`` is a snapshot taken at payment or
        close time and must be recomputed, not trusted, after items change.
    """

    __tablename__ = "expense_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_expense_requests_valid_status",
        ),
        CheckConstraint(
            "amount_cents > 0",
            name="ck_expense_requests_positive_amount",
        ),
        Index("ix_expense_requests_status", "status"),
        Index("ix_expense_requests_requester", "requester_id", "created_at"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_cents: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=ExpenseStatus.SUBMITTED.value,
    )
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    team: Mapped[str | None] = mapped_column(String(100), nullable=True)
    campus: Mapped[str | None] = mapped_column(String(100), nullable=True)
    urgency: Mapped[int] = mapped_column(nullable=False, default=2)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    event_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    full_event_budget_cents: Mapped[int | None] = mapped_column(nullable=True)
    paid_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    report_required: Mapped[bool] = mapped_column(nullable=False, default=True)

    # Administrative bookkeeping tags
    account: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expense_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_account: Mapped[str | None] = mapped_column(String(100), nullable=True)

    items: Mapped[list["ExpenseItemModel"]] = relationship(
        "ExpenseItemModel",
        back_populates="expense",
        order_by="ExpenseItemModel.position",
        lazy="selectin",
    )
    stage_approvals: Mapped[list[StageApprovalModel]] = relationship(
        StageApprovalModel,
        order_by=StageApprovalModel.stage,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ExpenseRequest {self.id} status={self.status} amount={self.amount_cents}>"

    @property
    def status_enum(self) -> ExpenseStatus:
        return ExpenseStatus(self.status)

    def to_dto(self) -> ExpenseRequest:
        """Convert ORM model to frozen domain DTO."""
        return ExpenseRequest(
            id=self.id,
            title=self.title,
            description=self.description,
            amount_cents=self.amount_cents,
            status=ExpenseStatus(self.status),
            requester_id=self.requester_id,
            team=self.team,
            campus=self.campus,
            urgency=self.urgency,
            category=self.category,
            event_date=self.event_date,
            event_name=self.event_name,
            full_event_budget_cents=self.full_event_budget_cents,
            paid_amount_cents=self.paid_amount_cents,
            paid_at=self.paid_at,
            paid_by_id=self.paid_by_id,
            payment_date=self.payment_date,
            report_required=self.report_required,
            items=tuple(item.to_dto() for item in self.items),
            stage_approvals=tuple(a.to_dto() for a in self.stage_approvals),
            account=self.account,
            expense_type=self.expense_type,
            destination_account=self.destination_account,
        )


class ExpenseItemModel(Base):
    """A priced line within one expense request.

    ``amount_cents`` is validated against quantity x unit price by the
    caller; storage does not derive it.
    """

    __tablename__ = "expense_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_expense_items_positive_quantity"),
        CheckConstraint(
            "unit_price_cents >= 0",
            name="ck_expense_items_non_negative_price",
        ),
        CheckConstraint(
            "amount_cents >= 0",
            name="ck_expense_items_non_negative_amount",
        ),
        Index("ix_expense_items_expense", "expense_id", "position"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    unit_price_cents: Mapped[int] = mapped_column(nullable=False)
    amount_cents: Mapped[int] = mapped_column(nullable=False)

    expense: Mapped["ExpenseRequestModel"] = relationship(
        "ExpenseRequestModel", back_populates="items",
    )
    approvals: Mapped[list[ItemApprovalModel]] = relationship(
        ItemApprovalModel,
        order_by=[ItemApprovalModel.sequence, ItemApprovalModel.recorded_at],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ExpenseItem {self.id} '{self.description}' amount={self.amount_cents}>"

    def to_dto(self) -> ExpenseItem:
        return ExpenseItem(
            id=self.id,
            expense_id=self.expense_id,
            description=self.description,
            category=self.category,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            amount_cents=self.amount_cents,
            approvals=tuple(a.to_dto() for a in self.approvals),
        )


class ExpenseNoteModel(Base):
    """Free-text note on a request, from its requester, an administrator or
    a campus pastor.  Administrative change requests are recorded here too."""

    __tablename__ = "expense_notes"

    __table_args__ = (
        Index("ix_expense_notes_expense", "expense_id", "created_at"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ExpenseNote:
        return ExpenseNote(
            id=self.id,
            expense_id=self.expense_id,
            author_id=self.author_id,
            content=self.content,
            created_at=self.created_at,
        )


class PastorRemarkModel(TrackedBase):
    """A campus pastor's remark on a request.  One per (expense, pastor)."""

    __tablename__ = "pastor_remarks"

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "pastor_id",
            name="uq_pastor_remarks_expense_pastor",
        ),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    pastor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    def to_dto(self) -> PastorRemark:
        return PastorRemark(
            id=self.id,
            expense_id=self.expense_id,
            pastor_id=self.pastor_id,
            content=self.content,
        )
