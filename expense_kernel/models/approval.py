"""
Module: expense_kernel.models.approval
Responsibility: ORM persistence for stage approvals and per-item approvals.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py only.

Invariants enforced:
    - UNIQUE(expense_id, stage): a second decision at the same stage
      replaces the first (upsert-as-correction, no duplicate rows).
    - UNIQUE(item_id, approver_id): each approver holds at most one
      decision per item; independent approvers keep independent rows.
    - Stage limited to 1 or 2; approved amounts non-negative.

Failure modes:
    - IntegrityError if a writer bypasses the recorder's upsert path and
      inserts a duplicate key.

Audit relevance:
    These rows hold the *current* decision per key.  The net effect of
    each decision on the request status is captured separately in the
    append-only status_events table.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.dtos import (
    ItemApproval,
    ItemDecisionStatus,
    StageApproval,
    StageDecision,
)


class StageApprovalModel(Base):
    """One approver's decision for one numbered stage of a request."""

    __tablename__ = "stage_approvals"

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "stage",
            name="uq_stage_approvals_expense_stage",
        ),
        CheckConstraint("stage IN (1, 2)", name="ck_stage_approvals_stage"),
        CheckConstraint(
            "decision IN ('APPROVED', 'DENIED')",
            name="ck_stage_approvals_decision",
        ),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    stage: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StageApproval expense={self.expense_id} stage={self.stage} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> StageApproval:
        """Convert ORM model to frozen domain DTO."""
        return StageApproval(
            id=self.id,
            expense_id=self.expense_id,
            stage=self.stage,
            approver_id=self.approver_id,
            decision=StageDecision(self.decision),
            comment=self.comment,
            decided_at=self.decided_at,
        )


class ItemApprovalModel(Base):
    """One approver's decision on one expense item.

    ``sequence`` is assigned on first insert and kept across upserts, so
    "first approved decision per item" is stable when approvers correct
    their decisions.  ``recorded_at`` is likewise first-insert time;
    ``decided_at`` moves with every correction.
    """

    __tablename__ = "item_approvals"

    __table_args__ = (
        UniqueConstraint(
            "item_id", "approver_id",
            name="uq_item_approvals_item_approver",
        ),
        CheckConstraint(
            "status IN ('APPROVED', 'DENIED', 'CHANGE_REQUESTED')",
            name="ck_item_approvals_status",
        ),
        CheckConstraint(
            "approved_amount_cents IS NULL OR approved_amount_cents >= 0",
            name="ck_item_approvals_non_negative_amount",
        ),
        Index("ix_item_approvals_item", "item_id", "sequence"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_items.id"), nullable=False,
    )
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    approved_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(nullable=False, default=1)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ItemApproval item={self.item_id} approver={self.approver_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ItemApproval:
        """Convert ORM model to frozen domain DTO."""
        return ItemApproval(
            id=self.id,
            item_id=self.item_id,
            approver_id=self.approver_id,
            status=ItemDecisionStatus(self.status),
            approved_amount_cents=self.approved_amount_cents,
            comment=self.comment,
            decided_at=self.decided_at,
        )
