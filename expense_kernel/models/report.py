"""
Module: expense_kernel.models.report
Responsibility: ORM persistence for post-payment expense reports, their
    per-item reconciliation rows, evidence attachments, report decisions
    and notes.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py only.

Invariants enforced:
    - Report status limited to the report lifecycle vocabulary.
    - UNIQUE(report_id, approver_id) on report decisions (upsert).
    - Reconciliation amounts are non-negative.

Failure modes:
    - IntegrityError on duplicate report decision inserted outside the
      recorder's upsert path.

Audit relevance:
    Attachments, reconciliation rows and report decisions are replaced
    wholesale on resubmission, inside one transaction owned by the report
    service.  Attachments are metadata only; the files live elsewhere.
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
    ApprovedReportItem,
    ExpenseReport,
    ReportApproval,
    ReportAttachment,
    ReportDecision,
    ReportNote,
    ReportStatus,
)

_REPORT_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ReportStatus)


class ApprovedReportItemModel(Base):
    """Per-item reconciliation row: approved baseline vs actual spend."""

    __tablename__ = "approved_report_items"

    __table_args__ = (
        CheckConstraint(
            "approved_amount_cents >= 0 AND actual_amount_cents >= 0",
            name="ck_approved_report_items_non_negative",
        ),
        Index("ix_approved_report_items_report", "report_id"),
    )

    report_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_reports.id"), nullable=False,
    )
    expense_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("expense_items.id"), nullable=True,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    approved_amount_cents: Mapped[int] = mapped_column(nullable=False)
    actual_amount_cents: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self) -> ApprovedReportItem:
        return ApprovedReportItem(
            id=self.id,
            report_id=self.report_id,
            expense_item_id=self.expense_item_id,
            description=self.description,
            approved_amount_cents=self.approved_amount_cents,
            actual_amount_cents=self.actual_amount_cents,
        )


class ReportAttachmentModel(Base):
    """Evidence file metadata, optionally scoped to one expense item."""

    __tablename__ = "report_attachments"

    __table_args__ = (
        Index("ix_report_attachments_report", "report_id", "item_id"),
    )

    report_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_reports.id"), nullable=False,
    )
    item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("expense_items.id"), nullable=True,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    filename: Mapped[str] = mapped_column(String(300), nullable=False)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(nullable=True)
    is_refund_receipt: Mapped[bool] = mapped_column(nullable=False, default=False)

    def to_dto(self) -> ReportAttachment:
        return ReportAttachment(
            id=self.id,
            report_id=self.report_id,
            item_id=self.item_id,
            filename=self.filename,
            url=self.url,
            mime_type=self.mime_type,
            size_bytes=self.size_bytes,
            is_refund_receipt=self.is_refund_receipt,
        )


class ReportApprovalModel(Base):
    """One approver's decision on a report.  One per (report, approver)."""

    __tablename__ = "report_approvals"

    __table_args__ = (
        UniqueConstraint(
            "report_id", "approver_id",
            name="uq_report_approvals_report_approver",
        ),
        CheckConstraint(
            "decision IN ('APPROVED', 'DENIED')",
            name="ck_report_approvals_decision",
        ),
    )

    report_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_reports.id"), nullable=False,
    )
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ReportApproval:
        return ReportApproval(
            id=self.id,
            report_id=self.report_id,
            approver_id=self.approver_id,
            decision=ReportDecision(self.decision),
            comment=self.comment,
            decided_at=self.decided_at,
        )


class ExpenseReportModel(TrackedBase):
    """Persistent post-payment report for one expense request."""

    __tablename__ = "expense_reports"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_REPORT_STATUS_VALUES})",
            name="ck_expense_reports_valid_status",
        ),
        CheckConstraint(
            "total_reported_cents >= 0 AND total_approved_cents >= 0",
            name="ck_expense_reports_non_negative_total",
        ),
        Index("ix_expense_reports_expense_status", "expense_id", "status"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    report_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_approved_cents: Mapped[int] = mapped_column(nullable=False)
    total_reported_cents: Mapped[int] = mapped_column(nullable=False)
    donation_cents: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReportStatus.PENDING.value,
    )

    items: Mapped[list[ApprovedReportItemModel]] = relationship(
        ApprovedReportItemModel,
        order_by=ApprovedReportItemModel.position,
        lazy="selectin",
    )
    attachments: Mapped[list[ReportAttachmentModel]] = relationship(
        ReportAttachmentModel,
        order_by=ReportAttachmentModel.position,
        lazy="selectin",
    )
    approvals: Mapped[list[ReportApprovalModel]] = relationship(
        ReportApprovalModel,
        order_by=ReportApprovalModel.decided_at,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ExpenseReport {self.id} expense={self.expense_id} status={self.status}>"

    @property
    def status_enum(self) -> ReportStatus:
        return ReportStatus(self.status)

    def to_dto(self) -> ExpenseReport:
        """Convert ORM model to frozen domain DTO."""
        return ExpenseReport(
            id=self.id,
            expense_id=self.expense_id,
            author_id=self.author_id,
            title=self.title,
            content=self.content,
            report_date=self.report_date,
            total_approved_cents=self.total_approved_cents,
            total_reported_cents=self.total_reported_cents,
            donation_cents=self.donation_cents,
            status=ReportStatus(self.status),
            items=tuple(i.to_dto() for i in self.items),
            attachments=tuple(a.to_dto() for a in self.attachments),
            approvals=tuple(a.to_dto() for a in self.approvals),
        )


class ReportNoteModel(Base):
    """Free-text note on a report.  Kept across resubmissions."""

    __tablename__ = "report_notes"

    __table_args__ = (
        Index("ix_report_notes_report", "report_id", "created_at"),
    )

    report_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_reports.id"), nullable=False,
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ReportNote:
        return ReportNote(
            id=self.id,
            report_id=self.report_id,
            author_id=self.author_id,
            content=self.content,
            created_at=self.created_at,
        )
