"""
Module: expense_kernel.models.status_event
Responsibility: ORM persistence for the append-only audit trail of expense
    status transitions.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/dtos.py and exceptions.py only.

Invariants enforced:
    - Append-only: ORM listeners reject UPDATE and DELETE on StatusEvent.
    - to_status is always a lifecycle status; from_status is NULL only for
      the creation event.

Failure modes:
    - ImmutabilityViolationError on any attempt to modify or delete a row
      through the ORM.

Audit relevance:
    This table is the paper trail.  "Has this request ever been approved"
    is answered by an aggregate query over to_status here, never by the
    current status column.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.dtos import ExpenseStatus, StatusEvent
from expense_kernel.exceptions import ImmutabilityViolationError


class StatusEventModel(Base):
    """Persistent status transition record.  Append-only."""

    __tablename__ = "status_events"

    __table_args__ = (
        Index("ix_status_events_expense", "expense_id", "created_at", "sequence"),
        Index("ix_status_events_expense_to_status", "expense_id", "to_status"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_requests.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StatusEvent expense={self.expense_id} "
            f"{self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> StatusEvent:
        """Convert ORM model to frozen domain DTO."""
        return StatusEvent(
            id=self.id,
            expense_id=self.expense_id,
            from_status=ExpenseStatus(self.from_status) if self.from_status else None,
            to_status=ExpenseStatus(self.to_status),
            actor_id=self.actor_id,
            reason=self.reason,
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(StatusEventModel, "before_update")
def prevent_status_event_update(mapper, connection, target):
    """Prevent updates to status event records."""
    raise ImmutabilityViolationError(
        entity_type="StatusEvent",
        entity_id=str(target.id),
        reason="Status events are immutable -- cannot modify",
    )


@event.listens_for(StatusEventModel, "before_delete")
def prevent_status_event_delete(mapper, connection, target):
    """Prevent deletion of status event records."""
    raise ImmutabilityViolationError(
        entity_type="StatusEvent",
        entity_id=str(target.id),
        reason="Status events are immutable -- cannot delete",
    )
