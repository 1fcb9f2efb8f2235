"""
Expense Report Module Service (``expense_modules.expense.report_service``).

Responsibility
--------------
Persists post-payment expense reports: submission against the approved
baseline, resubmission after a change request, report decisions, and
closing -- which closes the request too once every report is closed --
and notes on reports.

Architecture position
---------------------
**Modules layer** -- thin glue.  Validation and amounts come from
``expense_engines.reconciliation``; decisions go through the kernel
``ApprovalRecorder``; request transitions through the shared
``ExpenseLifecycle``.

Invariants enforced
-------------------
* Reconciliation runs before any row is written; a failed attachment rule
  leaves nothing behind.
* The approved baseline is snapshotted onto the report when it is first
  submitted; resubmissions reconcile against that snapshot.
* Resubmission replaces attachments, reconciliation rows and decisions in
  one transaction.

Failure modes
-------------
* ``ReportNotFoundError`` / ``ExpenseNotFoundError``.
* ``InvalidTransitionError`` when the request is not PAID or
  EXPENSE_REPORT_REQUESTED; ``InvalidReportTransitionError`` for report
  actions outside the report workflow.
* ``AttachmentError`` subclasses from reconciliation.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from expense_kernel.domain.actor import Actor
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import ExpenseReport, ReportDecision, ReportNote, ReportStatus
from expense_kernel.exceptions import ExpenseItemNotFoundError, InvalidTransitionError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.report import (
    ApprovedReportItemModel,
    ExpenseReportModel,
    ReportAttachmentModel,
    ReportNoteModel,
)
from expense_engines.aggregation import (
    ApprovalBaseline,
    BaselineItem,
    approval_baseline,
    from_expense,
)
from expense_engines.reconciliation import (
    AttachmentRef,
    ReconciliationResult,
    ReportLine,
    ReportSubmission,
    reconcile,
)
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.guard import StatusTransitionGuard
from expense_modules.expense.helpers import require_comment, validate_report_draft
from expense_modules.expense.lifecycle import ExpenseLifecycle, unit_of_work
from expense_modules.expense.models import ReportDraft, ReportOutcome
from expense_modules.expense.notifications import (
    Notification,
    NotificationDispatcher,
    NotificationKind,
    NotificationPlanner,
    NotificationSink,
    RecipientDirectory,
)
from expense_modules.expense.workflows import EXPENSE_REQUEST_WORKFLOW, REPORTABLE_STATES

logger = get_logger("modules.expense.report_service")

AUTO_CLOSE_REASON = "Expense closed automatically after all reports were closed"


def _submission(draft: ReportDraft) -> ReportSubmission:
    return ReportSubmission(
        attachments=tuple(
            AttachmentRef(a.item_id, a.is_refund_receipt) for a in draft.attachments
        ),
        lines=tuple(
            ReportLine(line.item_id, line.actual_amount_cents) for line in draft.items
        ),
        total_actual_cents=draft.total_actual_cents,
    )


def _stored_baseline(report: ExpenseReportModel) -> ApprovalBaseline:
    """Baseline snapshotted onto a report when it was first submitted."""
    return ApprovalBaseline(
        total_approved_cents=report.total_approved_cents,
        items=tuple(
            BaselineItem(row.expense_item_id, row.description, row.approved_amount_cents)
            for row in report.items
            if row.expense_item_id is not None
        ),
    )


class ReportService:
    """
    Orchestrates post-payment report operations.

    Each public mutating method owns the transaction boundary; notifications
    are delivered after commit.
    """

    def __init__(
        self,
        session: Session,
        config: ExpenseConfig | None = None,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
        directory: RecipientDirectory | None = None,
    ):
        self._session = session
        self._config = config or ExpenseConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._guard = StatusTransitionGuard(self._config)
        self._lifecycle = ExpenseLifecycle(session, self._guard, self._clock)
        self._planner = NotificationPlanner(self._config, directory)
        self._dispatcher = NotificationDispatcher(sink)

    def _write_contents(
        self,
        report_id: UUID,
        draft: ReportDraft,
        result: ReconciliationResult,
    ) -> None:
        for position, line in enumerate(result.lines):
            self._session.add(
                ApprovedReportItemModel(
                    id=uuid4(),
                    report_id=report_id,
                    expense_item_id=line.item_id,
                    position=position,
                    description=line.description,
                    approved_amount_cents=line.approved_amount_cents,
                    actual_amount_cents=line.actual_amount_cents,
                )
            )
        for position, attachment in enumerate(draft.attachments):
            self._session.add(
                ReportAttachmentModel(
                    id=uuid4(),
                    report_id=report_id,
                    item_id=attachment.item_id,
                    position=position,
                    filename=attachment.filename,
                    url=attachment.url,
                    mime_type=attachment.mime_type,
                    size_bytes=attachment.size_bytes,
                    is_refund_receipt=attachment.is_refund_receipt,
                )
            )

    def _check_attachment_items(self, expense_id: UUID, draft: ReportDraft) -> None:
        item_ids = {item.id for item in self._lifecycle.load(expense_id).items}
        for attachment in draft.attachments:
            if attachment.item_id is not None and attachment.item_id not in item_ids:
                raise ExpenseItemNotFoundError(attachment.item_id, expense_id=expense_id)

    def _report_snapshot(self, report_id: UUID) -> ExpenseReport:
        self._session.flush()
        self._session.expire_all()
        return self._lifecycle.load_report(report_id).to_dto()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_report(
        self,
        actor: Actor,
        expense_id: UUID,
        draft: ReportDraft,
    ) -> ReportOutcome:
        """Reconcile a report against the current approved baseline and
        persist it as PENDING."""
        with unit_of_work(
            self._session, "submit_report", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "submit_report", model.requester_id)
            if model.status not in REPORTABLE_STATES:
                raise InvalidTransitionError(expense_id, model.status, "submit_report")
            draft = validate_report_draft(draft)
            self._check_attachment_items(expense_id, draft)

            expense = self._lifecycle.snapshot(expense_id)
            baseline = approval_baseline(from_expense(expense))
            result = reconcile(baseline, _submission(draft))

            now = self._clock.now()
            report = ExpenseReportModel(
                id=uuid4(),
                expense_id=expense_id,
                author_id=actor.id,
                title=draft.title,
                content=draft.content,
                report_date=draft.report_date or now.date(),
                total_approved_cents=result.total_approved_cents,
                total_reported_cents=result.total_actual_cents,
                donation_cents=draft.donation_cents,
                status=ReportStatus.PENDING.value,
                created_at=now,
                updated_at=now,
                created_by_id=actor.id,
            )
            self._session.add(report)
            self._session.flush()
            self._write_contents(report.id, draft, result)
            saved = self._report_snapshot(report.id)
            logger.info(
                "report_submitted",
                extra={
                    "report_id": str(saved.id),
                    "expense_id": str(expense_id),
                    "difference_cents": result.difference_cents,
                    "additional_payment_needed": result.additional_payment_needed,
                },
            )

        return ReportOutcome(
            report=saved,
            reconciliation=result,
            notifications=self._dispatcher.dispatch(
                self._planner.report_created(expense, saved)
            ),
        )

    def resubmit_report(
        self,
        actor: Actor,
        report_id: UUID,
        draft: ReportDraft,
    ) -> ReportOutcome:
        """Replace a CHANGE_REQUESTED report's contents and return it to
        PENDING."""
        with unit_of_work(
            self._session, "resubmit_report", actor_id=actor.id, report_id=report_id,
        ):
            report = self._lifecycle.load_report(report_id, for_update=True)
            expense_id = report.expense_id
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(actor, "submit_report", model.requester_id)
            transition = self._guard.check_report(report_id, report.status_enum, "resubmit")
            draft = validate_report_draft(draft)
            self._check_attachment_items(expense_id, draft)

            result = reconcile(_stored_baseline(report), _submission(draft))

            self._session.execute(
                delete(ReportAttachmentModel).where(
                    ReportAttachmentModel.report_id == report_id,
                )
            )
            self._session.execute(
                delete(ApprovedReportItemModel).where(
                    ApprovedReportItemModel.report_id == report_id,
                )
            )
            self._lifecycle.recorder.clear_report_decisions(report_id)
            # Drop the deleted rows from loaded collections.
            self._session.expire_all()

            report = self._lifecycle.load_report(report_id)
            report.title = draft.title
            report.content = draft.content
            if draft.report_date is not None:
                report.report_date = draft.report_date
            report.total_reported_cents = result.total_actual_cents
            report.donation_cents = draft.donation_cents
            report.status = transition.to_state
            report.updated_by_id = actor.id
            self._write_contents(report_id, draft, result)

            saved = self._report_snapshot(report_id)
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "report_resubmitted",
                extra={
                    "report_id": str(report_id),
                    "difference_cents": result.difference_cents,
                },
            )

        return ReportOutcome(
            report=saved,
            reconciliation=result,
            notifications=self._dispatcher.dispatch(
                self._planner.report_created(expense, saved)
            ),
        )

    # =========================================================================
    # Decisions
    # =========================================================================

    def _decide(
        self,
        actor: Actor,
        report_id: UUID,
        action: str,
        decision: ReportDecision | None,
        comment: str | None,
        kind: NotificationKind,
    ) -> ReportOutcome:
        with unit_of_work(
            self._session, f"{action}_report", actor_id=actor.id, report_id=report_id,
        ):
            report = self._lifecycle.load_report(report_id, for_update=True)
            model = self._lifecycle.load(report.expense_id)
            self._guard.authorize(actor, "review_report", model.requester_id)
            transition = self._guard.check_report(report_id, report.status_enum, action)

            if decision is None:
                self._lifecycle.recorder.clear_report_decisions(report_id)
            else:
                self._lifecycle.recorder.record_report_decision(
                    report_id, actor.id, decision, comment,
                )
            report.status = transition.to_state
            report.updated_by_id = actor.id

            saved = self._report_snapshot(report_id)
            expense = self._lifecycle.snapshot(saved.expense_id)
            logger.info(
                "report_decided",
                extra={
                    "report_id": str(report_id),
                    "action": action,
                    "to_status": transition.to_state,
                },
            )

        notifications: Sequence[Notification] = self._planner.report_decided(
            kind, expense, saved, comment,
        )
        return ReportOutcome(
            report=saved,
            notifications=self._dispatcher.dispatch(notifications),
        )

    def approve_report(
        self,
        actor: Actor,
        report_id: UUID,
        comment: str | None = None,
    ) -> ReportOutcome:
        return self._decide(
            actor, report_id, "approve", ReportDecision.APPROVED, comment,
            NotificationKind.REPORT_APPROVED,
        )

    def deny_report(self, actor: Actor, report_id: UUID, comment: str) -> ReportOutcome:
        return self._decide(
            actor, report_id, "deny", ReportDecision.DENIED,
            require_comment(comment, "deny a report"),
            NotificationKind.REPORT_DENIED,
        )

    def request_report_change(
        self,
        actor: Actor,
        report_id: UUID,
        comment: str,
    ) -> ReportOutcome:
        """Send a PENDING or APPROVED report back; clears report decisions."""
        return self._decide(
            actor, report_id, "request_change", None,
            require_comment(comment, "request report changes"),
            NotificationKind.REPORT_CHANGE_REQUESTED,
        )

    # =========================================================================
    # Close
    # =========================================================================

    def close_report(self, actor: Actor, report_id: UUID) -> ReportOutcome:
        """Close a report.  Closes the request too once all its reports are
        closed and the request is in a closable status."""
        with unit_of_work(
            self._session, "close_report", actor_id=actor.id, report_id=report_id,
        ):
            report = self._lifecycle.load_report(report_id, for_update=True)
            expense_id = report.expense_id
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "review_report", model.requester_id)
            transition = self._guard.check_report(report_id, report.status_enum, "close")
            report.status = transition.to_state
            report.updated_by_id = actor.id
            self._session.flush()

            expense_closed = False
            all_closed = all(
                r.status == ReportStatus.CLOSED.value
                for r in self._lifecycle.reports_for(expense_id)
            )
            close = EXPENSE_REQUEST_WORKFLOW.find(model.status, "close")
            if all_closed and close is not None:
                self._lifecycle.close(model, actor, close, AUTO_CLOSE_REASON)
                expense_closed = True

            saved = self._report_snapshot(report_id)
            logger.info(
                "report_closed",
                extra={"report_id": str(report_id), "expense_closed": expense_closed},
            )

        return ReportOutcome(report=saved, expense_closed=expense_closed)

    # =========================================================================
    # Notes
    # =========================================================================

    def add_report_note(self, actor: Actor, report_id: UUID, content: str) -> ReportNote:
        """Append a note from the requester, an administrator or a campus
        pastor of the request's campus."""
        with unit_of_work(
            self._session, "add_report_note", actor_id=actor.id, report_id=report_id,
        ):
            report = self._lifecycle.load_report(report_id)
            model = self._lifecycle.load(report.expense_id)
            self._guard.authorize(
                actor, "add_note", model.requester_id, campus=model.campus,
            )
            content = require_comment(content, "add a note")
            note = ReportNoteModel(
                id=uuid4(),
                report_id=report_id,
                author_id=actor.id,
                content=content,
                created_at=self._clock.now(),
            )
            self._session.add(note)
            self._session.flush()
            result = note.to_dto()
            logger.info("report_note_added", extra={"report_id": str(report_id)})

        return result

    # =========================================================================
    # Reads
    # =========================================================================

    def get_report(self, report_id: UUID) -> ExpenseReport:
        return self._lifecycle.load_report(report_id).to_dto()

    def reports_for_expense(self, expense_id: UUID) -> tuple[ExpenseReport, ...]:
        self._lifecycle.load(expense_id)
        return tuple(r.to_dto() for r in self._lifecycle.reports_for(expense_id))

    def report_notes(
        self,
        report_id: UUID,
        actor: Actor | None = None,
    ) -> tuple[ReportNote, ...]:
        """Notes oldest first.  With ``actor``, checks they may read them."""
        report = self._lifecycle.load_report(report_id)
        if actor is not None:
            model = self._lifecycle.load(report.expense_id)
            self._guard.authorize(
                actor, "view_notes", model.requester_id, campus=model.campus,
            )
        rows = self._session.execute(
            select(ReportNoteModel)
            .where(ReportNoteModel.report_id == report_id)
            .order_by(ReportNoteModel.created_at)
        ).scalars()
        return tuple(row.to_dto() for row in rows)
