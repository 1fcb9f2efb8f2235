"""
expense_kernel.services.audit_trail -- Append-only status history.

Responsibility:
    Appends one StatusEvent per status transition (or status-preserving
    decision) and answers history questions from that trail.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Flushes only.  The calling module service owns commit/rollback.

Invariants enforced:
    - Rows are only ever inserted; the model rejects UPDATE and DELETE.
    - Events of one request are totally ordered by ``sequence``.

Failure modes:
    - ImmutabilityViolationError if any caller tries to mutate a row.

Audit relevance:
    Every transition carries actor, reason and a clock-stamped timestamp.
    ``has_reached`` answers "was this request ever approved" from the
    trail itself, independent of the request's current status.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import ExpenseStatus, StatusEvent
from expense_kernel.logging_config import get_logger
from expense_kernel.models.status_event import StatusEventModel

logger = get_logger("kernel.audit_trail")


class AuditTrailWriter:
    """Writes and reads StatusEvent rows."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def record_transition(
        self,
        expense_id: UUID,
        from_status: ExpenseStatus | None,
        to_status: ExpenseStatus,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StatusEvent:
        """Append one StatusEvent.  ``from_status`` is None only at creation."""
        last = self._session.execute(
            select(func.max(StatusEventModel.sequence)).where(
                StatusEventModel.expense_id == expense_id,
            )
        ).scalar_one()

        row = StatusEventModel(
            expense_id=expense_id,
            sequence=(last or 0) + 1,
            from_status=from_status.value if from_status is not None else None,
            to_status=to_status.value,
            actor_id=actor_id,
            reason=reason,
            created_at=self._clock.now(),
        )
        self._session.add(row)
        self._session.flush()

        logger.info(
            "status_transition_recorded",
            extra={
                "expense_id": str(expense_id),
                "from_status": row.from_status,
                "to_status": row.to_status,
                "actor_id": str(actor_id),
                "sequence": row.sequence,
            },
        )
        return row.to_dto()

    def history(self, expense_id: UUID) -> tuple[StatusEvent, ...]:
        """All events for a request, oldest first."""
        rows = self._session.execute(
            select(StatusEventModel)
            .where(StatusEventModel.expense_id == expense_id)
            .order_by(StatusEventModel.sequence)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def transition_counts(self, expense_id: UUID) -> dict[ExpenseStatus, int]:
        """Number of times the request entered each status."""
        rows = self._session.execute(
            select(StatusEventModel.to_status, func.count(StatusEventModel.id))
            .where(StatusEventModel.expense_id == expense_id)
            .group_by(StatusEventModel.to_status)
        ).all()
        return {ExpenseStatus(status): count for status, count in rows}

    def has_reached(self, expense_id: UUID, status: ExpenseStatus) -> bool:
        """True if any event for the request transitioned into ``status``."""
        count = self._session.execute(
            select(func.count(StatusEventModel.id)).where(
                StatusEventModel.expense_id == expense_id,
                StatusEventModel.to_status == status.value,
            )
        ).scalar_one()
        return count > 0
