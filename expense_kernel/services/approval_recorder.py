"""
expense_kernel.services.approval_recorder -- Idempotent decision recording.

Responsibility:
    Records one approver's decision for a stage of a request, for a line
    item, or for a post-payment report.  Each decision is keyed; repeating
    a call with the same key updates the existing row instead of adding a
    second one (upsert-as-correction).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Flushes only.  The calling module service owns commit/rollback.

Invariants enforced:
    - Stage decisions keyed on (expense, stage); stage must be 1 or 2.
    - Item decisions keyed on (item, approver); amounts non-negative.
    - Report decisions keyed on (report, approver).
    - Last writer for a key wins; no optimistic locking.

Failure modes:
    - InvalidStageError for a stage outside 1..2.
    - InvalidAmountError for a negative approved amount.

Audit relevance:
    Rows here are the current decision per key.  Status changes caused by
    a decision are recorded separately by the audit trail writer.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import (
    ItemApproval,
    ItemDecisionStatus,
    ReportApproval,
    ReportDecision,
    StageApproval,
    StageDecision,
)
from expense_kernel.exceptions import InvalidAmountError, InvalidStageError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval import ItemApprovalModel, StageApprovalModel
from expense_kernel.models.report import ReportApprovalModel

logger = get_logger("kernel.approval_recorder")

VALID_STAGES: frozenset[int] = frozenset({1, 2})


class ApprovalRecorder:
    """Keyed upserts for stage, item and report decisions."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # =========================================================================
    # Stage decisions
    # =========================================================================

    def record_stage_decision(
        self,
        expense_id: UUID,
        stage: int,
        approver_id: UUID,
        decision: StageDecision,
        comment: str | None = None,
    ) -> StageApproval:
        """Insert or replace the decision for (expense, stage)."""
        if stage not in VALID_STAGES:
            raise InvalidStageError(stage)

        now = self._clock.now()
        row = self._session.execute(
            select(StageApprovalModel).where(
                StageApprovalModel.expense_id == expense_id,
                StageApprovalModel.stage == stage,
            )
        ).scalar_one_or_none()

        corrected = row is not None
        if row is None:
            row = StageApprovalModel(expense_id=expense_id, stage=stage)
            self._session.add(row)
        row.approver_id = approver_id
        row.decision = decision.value
        row.comment = comment
        row.decided_at = now
        self._session.flush()

        logger.info(
            "stage_decision_recorded",
            extra={
                "expense_id": str(expense_id),
                "stage": stage,
                "approver_id": str(approver_id),
                "decision": decision.value,
                "corrected": corrected,
            },
        )
        return row.to_dto()

    def clear_stage_decisions(
        self,
        expense_id: UUID,
        stages: Iterable[int] = (1, 2),
    ) -> int:
        """Delete stage decisions for the given stages.  Returns rows removed."""
        result = self._session.execute(
            delete(StageApprovalModel).where(
                StageApprovalModel.expense_id == expense_id,
                StageApprovalModel.stage.in_(tuple(stages)),
            )
        )
        logger.info(
            "stage_decisions_cleared",
            extra={"expense_id": str(expense_id), "removed": result.rowcount},
        )
        return result.rowcount

    def stage_decisions(self, expense_id: UUID) -> tuple[StageApproval, ...]:
        rows = self._session.execute(
            select(StageApprovalModel)
            .where(StageApprovalModel.expense_id == expense_id)
            .order_by(StageApprovalModel.stage)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    # =========================================================================
    # Item decisions
    # =========================================================================

    def record_item_decision(
        self,
        item_id: UUID,
        approver_id: UUID,
        status: ItemDecisionStatus,
        approved_amount_cents: int | None = None,
        comment: str | None = None,
    ) -> ItemApproval:
        """Insert or replace the decision for (item, approver).

        ``approved_amount_cents`` of None means "the item's own amount" when
        the status is APPROVED.
        """
        if approved_amount_cents is not None and approved_amount_cents < 0:
            raise InvalidAmountError(
                "approved_amount_cents",
                approved_amount_cents,
                "approved amount cannot be negative",
            )

        now = self._clock.now()
        row = self._session.execute(
            select(ItemApprovalModel).where(
                ItemApprovalModel.item_id == item_id,
                ItemApprovalModel.approver_id == approver_id,
            )
        ).scalar_one_or_none()

        corrected = row is not None
        if row is None:
            # Sequence is fixed at first insert so correction keeps ordering.
            last = self._session.execute(
                select(func.max(ItemApprovalModel.sequence)).where(
                    ItemApprovalModel.item_id == item_id,
                )
            ).scalar_one()
            row = ItemApprovalModel(
                item_id=item_id,
                approver_id=approver_id,
                sequence=(last or 0) + 1,
                recorded_at=now,
            )
            self._session.add(row)
        row.status = status.value
        row.approved_amount_cents = approved_amount_cents
        row.comment = comment
        row.decided_at = now
        self._session.flush()

        logger.info(
            "item_decision_recorded",
            extra={
                "item_id": str(item_id),
                "approver_id": str(approver_id),
                "status": status.value,
                "approved_amount_cents": approved_amount_cents,
                "corrected": corrected,
            },
        )
        return row.to_dto()

    def clear_item_decisions(
        self,
        item_ids: Sequence[UUID],
        approver_id: UUID | None = None,
    ) -> int:
        """Delete item decisions, optionally only those of one approver."""
        if not item_ids:
            return 0
        stmt = delete(ItemApprovalModel).where(
            ItemApprovalModel.item_id.in_(tuple(item_ids)),
        )
        if approver_id is not None:
            stmt = stmt.where(ItemApprovalModel.approver_id == approver_id)
        result = self._session.execute(stmt)
        logger.info(
            "item_decisions_cleared",
            extra={
                "item_count": len(item_ids),
                "approver_id": str(approver_id) if approver_id else None,
                "removed": result.rowcount,
            },
        )
        return result.rowcount

    def decisions_for_items(
        self,
        item_ids: Sequence[UUID],
    ) -> dict[UUID, tuple[ItemApproval, ...]]:
        """Current decisions per item, in first-recorded order."""
        grouped: dict[UUID, list[ItemApproval]] = {item_id: [] for item_id in item_ids}
        if not item_ids:
            return {}
        rows = self._session.execute(
            select(ItemApprovalModel)
            .where(ItemApprovalModel.item_id.in_(tuple(item_ids)))
            .order_by(ItemApprovalModel.sequence, ItemApprovalModel.recorded_at)
        ).scalars()
        for row in rows:
            grouped[row.item_id].append(row.to_dto())
        return {item_id: tuple(decisions) for item_id, decisions in grouped.items()}

    # =========================================================================
    # Report decisions
    # =========================================================================

    def record_report_decision(
        self,
        report_id: UUID,
        approver_id: UUID,
        decision: ReportDecision,
        comment: str | None = None,
    ) -> ReportApproval:
        """Insert or replace the decision for (report, approver)."""
        now = self._clock.now()
        row = self._session.execute(
            select(ReportApprovalModel).where(
                ReportApprovalModel.report_id == report_id,
                ReportApprovalModel.approver_id == approver_id,
            )
        ).scalar_one_or_none()

        corrected = row is not None
        if row is None:
            row = ReportApprovalModel(report_id=report_id, approver_id=approver_id)
            self._session.add(row)
        row.decision = decision.value
        row.comment = comment
        row.decided_at = now
        self._session.flush()

        logger.info(
            "report_decision_recorded",
            extra={
                "report_id": str(report_id),
                "approver_id": str(approver_id),
                "decision": decision.value,
                "corrected": corrected,
            },
        )
        return row.to_dto()

    def clear_report_decisions(self, report_id: UUID) -> int:
        result = self._session.execute(
            delete(ReportApprovalModel).where(
                ReportApprovalModel.report_id == report_id,
            )
        )
        logger.info(
            "report_decisions_cleared",
            extra={"report_id": str(report_id), "removed": result.rowcount},
        )
        return result.rowcount
