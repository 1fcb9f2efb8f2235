"""
Shared lifecycle steps for the expense module services.

Used by ``ExpenseService`` and ``ReportService`` to load requests, apply
guarded transitions with their audit event, and run one operation as one
transaction.

Architecture: Modules layer.  Imports only from expense_kernel and
expense_engines.  Flushes only; ``unit_of_work`` is the single place that
commits.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.actor import Actor
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.dtos import ExpenseRequest, ExpenseStatus, ReportStatus, StatusEvent
from expense_kernel.domain.workflow import Transition
from expense_kernel.exceptions import ExpenseNotFoundError, ReportNotFoundError
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.expense import ExpenseRequestModel
from expense_kernel.models.report import ExpenseReportModel
from expense_kernel.services.approval_recorder import ApprovalRecorder
from expense_kernel.services.audit_trail import AuditTrailWriter
from expense_engines.aggregation import compute_approved_amount, from_expense
from expense_modules.expense.guard import StatusTransitionGuard

logger = get_logger("modules.expense.lifecycle")

DEFAULT_CLOSE_REASON = "Expense closed by admin (report requirement bypassed)"


@contextmanager
def unit_of_work(session: Session, operation: str, **log_fields: Any) -> Iterator[None]:
    """Run one operation as one transaction: commit on success, rollback
    and re-raise on any exception."""
    with LogContext.bind(operation=operation, **log_fields):
        try:
            yield
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            raise
        logger.info("transaction_committed")


class ExpenseLifecycle:
    """Loads requests and applies transitions with their audit events."""

    def __init__(
        self,
        session: Session,
        guard: StatusTransitionGuard,
        clock: Clock,
    ) -> None:
        self._session = session
        self.guard = guard
        self.clock = clock
        self.recorder = ApprovalRecorder(session, clock)
        self.audit = AuditTrailWriter(session, clock)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, expense_id: UUID, for_update: bool = False) -> ExpenseRequestModel:
        stmt = select(ExpenseRequestModel).where(ExpenseRequestModel.id == expense_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(expense_id)
        return model

    def load_report(self, report_id: UUID, for_update: bool = False) -> ExpenseReportModel:
        stmt = select(ExpenseReportModel).where(ExpenseReportModel.id == report_id)
        if for_update:
            stmt = stmt.with_for_update()
        report = self._session.execute(stmt).scalar_one_or_none()
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    def reports_for(self, expense_id: UUID) -> list[ExpenseReportModel]:
        """All reports of a request, oldest first."""
        return list(
            self._session.execute(
                select(ExpenseReportModel)
                .where(ExpenseReportModel.expense_id == expense_id)
                .order_by(ExpenseReportModel.created_at)
            ).scalars()
        )

    def snapshot(self, expense_id: UUID) -> ExpenseRequest:
        """Fresh DTO after pending writes (bulk deletes included) are flushed."""
        self._session.flush()
        self._session.expire_all()
        return self.load(expense_id).to_dto()

    def approved_amount(self, expense: ExpenseRequest) -> int:
        return compute_approved_amount(from_expense(expense))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def apply(
        self,
        model: ExpenseRequestModel,
        transition: Transition,
        actor: Actor,
        reason: str | None,
    ) -> StatusEvent:
        """Move the request along ``transition`` and append its audit event."""
        from_status = ExpenseStatus(model.status)
        to_status = ExpenseStatus(transition.to_state)
        model.status = to_status.value
        model.updated_by_id = actor.id
        return self.audit.record_transition(
            model.id, from_status, to_status, actor.id, reason,
        )

    def close(
        self,
        model: ExpenseRequestModel,
        actor: Actor,
        transition: Transition,
        reason: str | None = None,
    ) -> tuple[StatusEvent, int]:
        """Close a request regardless of its report requirement.

        Stamps the aggregated approved amount when the request was never
        paid and force-closes every open report.  Returns the audit event
        and the number of reports closed.
        """
        if model.paid_amount_cents is None:
            amount = self.approved_amount(self.snapshot(model.id))
            model.paid_amount_cents = amount
            model.paid_at = self.clock.now()
            logger.info(
                "paid_amount_stamped_on_close",
                extra={"expense_id": str(model.id), "amount_cents": amount},
            )
        model.report_required = False

        closed_reports = 0
        for report in self.reports_for(model.id):
            if report.status != ReportStatus.CLOSED.value:
                report.status = ReportStatus.CLOSED.value
                report.updated_by_id = actor.id
                closed_reports += 1

        event = self.apply(model, transition, actor, reason or DEFAULT_CLOSE_REASON)
        logger.info(
            "expense_closed",
            extra={
                "expense_id": str(model.id),
                "paid_amount_cents": model.paid_amount_cents,
                "reports_closed": closed_reports,
            },
        )
        return event, closed_reports
