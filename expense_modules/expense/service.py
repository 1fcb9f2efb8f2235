"""
Expense Request Module Service (``expense_modules.expense.service``).

Responsibility
--------------
Orchestrates the expense-request lifecycle -- creation, edits and
resubmission, stage and item approvals, denials, change requests, undo,
payment and repeat payment, close, pastor remarks, notes and
administrative tagging -- by delegating
decisions to the ``StatusTransitionGuard``, amounts to
``expense_engines.aggregation`` and persistence to the kernel
``ApprovalRecorder`` and ``AuditTrailWriter``.

Architecture position
---------------------
**Modules layer** -- thin glue.  ``ExpenseService`` is the sole public
entry point for request operations.  It composes the stateless guard and
engines with the kernel recorder and audit trail writer.

Invariants enforced
-------------------
* Each public mutating method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on any exception); no partial writes.
* Every status change writes exactly one ``StatusEvent``; stage 1 of a
  two-stage approval writes one without changing status.
* The approved amount is always recomputed from current decisions.
* Notifications are dispatched only after commit and never fail the
  operation.

Failure modes
-------------
* ``ExpenseNotFoundError`` / ``ExpenseItemNotFoundError``.
* ``InvalidTransitionError`` when the guard finds no transition.
* ``PermissionDeniedError`` when the actor's role or campus is wrong.
* ``ValidationFailureError`` subclasses for draft and amount rules.

Audit relevance
---------------
Structured log events at operation start and at commit/rollback carry the
expense id, actor and action.  The StatusEvent trail is the paper trail;
requests are never hard-deleted.

Usage::

    service = ExpenseService(session, ExpenseConfig.with_defaults(), clock=clock)
    outcome = service.create_expense(leader, ExpenseDraft(title="Chairs", amount_cents=12000))
    outcome = service.approve_expense(admin, outcome.expense.id)
    payment = service.mark_paid(admin, outcome.expense.id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from expense_kernel.domain.actor import Actor
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.dtos import (
    ExpenseItem,
    ExpenseNote,
    ExpenseRequest,
    ExpenseStatus,
    ItemApproval,
    ItemDecisionStatus,
    PastorRemark,
    StageApproval,
    StageDecision,
    StatusEvent,
)
from expense_kernel.exceptions import (
    ExpenseItemNotFoundError,
    InvalidAmountError,
    InvalidTransitionError,
    NothingToPayError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.expense import (
    ExpenseItemModel,
    ExpenseNoteModel,
    ExpenseRequestModel,
    PastorRemarkModel,
)
from expense_engines.aggregation import compute_overage, from_expense, plan_full_approval
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.guard import StatusTransitionGuard
from expense_modules.expense.helpers import (
    normalize_expense_type,
    require_comment,
    validate_account_tag,
    validate_expense_draft,
)
from expense_modules.expense.lifecycle import ExpenseLifecycle, unit_of_work
from expense_modules.expense.models import (
    DispatchReport,
    ExpenseDraft,
    ExpenseOutcome,
    ItemDecisionOutcome,
    ItemDraft,
    PaymentOutcome,
)
from expense_modules.expense.notifications import (
    Notification,
    NotificationDispatcher,
    NotificationPlanner,
    NotificationSink,
    RecipientDirectory,
)
from expense_modules.expense.workflows import (
    ITEM_DECISION_STATES,
    ITEM_UNDO_STATES,
    REPAYABLE_STATES,
)

logger = get_logger("modules.expense.service")

CREATED_REASON = "Expense request submitted"
RESUBMITTED_REASON = "Expense request updated and resubmitted"
UNDO_REASON = "Approval/denial undone"
AUTO_APPROVED_COMMENT = "Auto-approved with expense approval"
PARTIALLY_APPROVED_REASON = "Mixed item approvals - some approved, some denied"

# Leave a field as stored.
UNCHANGED = object()


class ExpenseService:
    """
    Orchestrates expense-request operations through the guard, engines and
    kernel services.

    Contract
    --------
    * Mutating methods return an outcome DTO built after all writes were
      flushed; nothing returned holds a live ORM instance.
    * Reads (``get_expense``, ``approved_amount``, ``history``) never write.

    Guarantees
    ----------
    * Session is committed only when every step succeeded; otherwise rolled
      back and the error re-raised.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT send email itself; delivery goes through ``NotificationSink``.
    * Does NOT authenticate; the caller supplies a resolved ``Actor``.
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

    @property
    def guard(self) -> StatusTransitionGuard:
        return self._guard

    def _deliver(self, notifications: Sequence[Notification]) -> DispatchReport:
        return self._dispatcher.dispatch(notifications)

    def _item(self, model: ExpenseRequestModel, item_id: UUID) -> ExpenseItemModel:
        for item in model.items:
            if item.id == item_id:
                return item
        raise ExpenseItemNotFoundError(item_id, expense_id=model.id)

    def _add_items(
        self,
        expense_id: UUID,
        drafts: Sequence[ItemDraft],
        start: int = 0,
    ) -> None:
        for offset, draft in enumerate(drafts):
            self._session.add(
                ExpenseItemModel(
                    id=uuid4(),
                    expense_id=expense_id,
                    position=start + offset,
                    description=draft.description,
                    category=draft.category,
                    quantity=draft.quantity,
                    unit_price_cents=draft.unit_price_cents,
                    amount_cents=draft.line_amount_cents,
                )
            )

    def _replace_items(self, model: ExpenseRequestModel, drafts: Sequence[ItemDraft]) -> None:
        existing = [item.id for item in model.items]
        self._lifecycle.recorder.clear_item_decisions(existing)
        if existing:
            self._session.execute(
                delete(ExpenseItemModel).where(ExpenseItemModel.id.in_(existing))
            )
        # Drop the deleted rows from loaded collections.
        self._session.expire_all()
        self._add_items(model.id, drafts)

    def _kept_items(
        self,
        model: ExpenseRequestModel,
        drafts: Sequence[ItemDraft],
    ) -> dict[UUID, int]:
        """Stored item amounts by id; every id a draft names must exist."""
        kept = {item.id: item.amount_cents for item in model.items}
        for draft in drafts:
            if draft.id is not None and draft.id not in kept:
                raise ExpenseItemNotFoundError(draft.id, expense_id=model.id)
        return kept

    def _append_items(self, model: ExpenseRequestModel, drafts: Sequence[ItemDraft]) -> int:
        """Keep existing items and their decisions; add drafts without an id."""
        new = [draft for draft in drafts if draft.id is None]
        self._add_items(model.id, new, start=len(model.items))
        return len(new)

    # =========================================================================
    # Creation and edits
    # =========================================================================

    def create_expense(self, actor: Actor, draft: ExpenseDraft) -> ExpenseOutcome:
        """Validate a draft and persist a new SUBMITTED request."""
        with unit_of_work(self._session, "create_expense", actor_id=actor.id):
            draft = validate_expense_draft(draft, self._config)
            now = self._clock.now()
            model = ExpenseRequestModel(
                id=uuid4(),
                title=draft.title,
                description=draft.description,
                amount_cents=draft.amount_cents,
                status=ExpenseStatus.SUBMITTED.value,
                requester_id=actor.id,
                team=draft.team,
                campus=draft.campus if draft.campus is not None else actor.campus,
                urgency=draft.urgency,
                category=draft.category,
                event_date=draft.event_date,
                event_name=draft.event_name,
                full_event_budget_cents=draft.full_event_budget_cents,
                report_required=(
                    draft.report_required
                    if draft.report_required is not None
                    else self._config.default_report_required
                ),
                created_at=now,
                updated_at=now,
                created_by_id=actor.id,
            )
            self._session.add(model)
            self._session.flush()
            self._add_items(model.id, draft.items)

            event = self._lifecycle.audit.record_transition(
                model.id, None, ExpenseStatus.SUBMITTED, actor.id, CREATED_REASON,
            )
            expense = self._lifecycle.snapshot(model.id)
            logger.info(
                "expense_created",
                extra={
                    "expense_id": str(model.id),
                    "amount_cents": expense.amount_cents,
                    "item_count": len(expense.items),
                    "itemized": expense.is_itemized,
                },
            )

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
            notifications=self._deliver(self._planner.expense_submitted(expense)),
        )

    def update_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        draft: ExpenseDraft,
    ) -> ExpenseOutcome:
        """
        Edit a request and resubmit it.

        Items are replaced, unless the request is in CHANGE_REQUESTED after
        having been APPROVED: then existing items (and their decisions) are
        kept and drafts without an id are appended.  Kept items keep their
        stored amounts, and the event budget must match kept plus new items.
        Leaving CHANGE_REQUESTED notifies approvers as a fresh submission.
        """
        with unit_of_work(
            self._session, "update_expense", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "resubmit", model.requester_id)
            current = model.status_enum
            transition = self._guard.check(expense_id, current, "resubmit")

            append_mode = (
                current is ExpenseStatus.CHANGE_REQUESTED
                and self._lifecycle.audit.has_reached(expense_id, ExpenseStatus.APPROVED)
            )
            kept = self._kept_items(model, draft.items) if append_mode else None
            draft = validate_expense_draft(draft, self._config, kept_items=kept)
            if append_mode:
                appended = self._append_items(model, draft.items)
            else:
                self._replace_items(model, draft.items)
                appended = len(draft.items)

            model.title = draft.title
            model.description = draft.description
            model.amount_cents = draft.amount_cents
            model.team = draft.team
            if draft.campus is not None:
                model.campus = draft.campus
            model.urgency = draft.urgency
            model.category = draft.category
            model.event_date = draft.event_date
            model.event_name = draft.event_name
            model.full_event_budget_cents = draft.full_event_budget_cents
            if draft.report_required is not None:
                model.report_required = draft.report_required

            event = self._lifecycle.apply(model, transition, actor, RESUBMITTED_REASON)
            expense = self._lifecycle.snapshot(expense_id)
            # Approvers hear about a resubmission, not about edits in place.
            notifications: Sequence[Notification] = (
                self._planner.expense_submitted(expense)
                if current is ExpenseStatus.CHANGE_REQUESTED
                else ()
            )
            logger.info(
                "expense_updated",
                extra={
                    "expense_id": str(expense_id),
                    "append_mode": append_mode,
                    "items_written": appended,
                },
            )

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
            notifications=self._deliver(notifications),
        )

    # =========================================================================
    # Request-level decisions
    # =========================================================================

    def approve_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        stage: int = 1,
        comment: str | None = None,
    ) -> ExpenseOutcome:
        """
        Record an approval at ``stage``.

        At the final stage the request becomes APPROVED and every item the
        approver has not already approved gets a full-amount approval.  At an
        intermediate stage the request keeps its status.
        """
        with unit_of_work(
            self._session, "approve_expense", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "approve", model.requester_id)
            transition = self._guard.approval_transition(
                expense_id, model.status_enum, stage,
            )
            self._lifecycle.recorder.record_stage_decision(
                expense_id, stage, actor.id, StageDecision.APPROVED, comment,
            )

            final = transition.to_state == ExpenseStatus.APPROVED.value
            auto_approved: tuple[UUID, ...] = ()
            if final:
                planned = plan_full_approval(
                    from_expense(self._lifecycle.snapshot(expense_id)),
                    actor.id,
                    preserve_denials=self._config.preserve_item_denials_on_approval,
                )
                item_comment = (
                    f"{AUTO_APPROVED_COMMENT}: {comment}" if comment else AUTO_APPROVED_COMMENT
                )
                for plan in planned:
                    self._lifecycle.recorder.record_item_decision(
                        plan.item_id,
                        actor.id,
                        ItemDecisionStatus.APPROVED,
                        plan.amount_cents,
                        item_comment,
                    )
                auto_approved = tuple(plan.item_id for plan in planned)

            if comment:
                reason = comment
            elif final:
                reason = f"Expense approved at stage {stage}"
            elif transition.from_state != ExpenseStatus.SUBMITTED.value:
                reason = f"Stage {stage} approval corrected"
            else:
                reason = f"Stage {stage} approved; awaiting stage {self._config.final_stage}"
            event = self._lifecycle.apply(model, transition, actor, reason)

            expense = self._lifecycle.snapshot(expense_id)
            approved = self._lifecycle.approved_amount(expense)
            logger.info(
                "expense_approved" if final else "expense_stage_approved",
                extra={
                    "expense_id": str(expense_id),
                    "stage": stage,
                    "approved_amount_cents": approved,
                    "auto_approved_items": len(auto_approved),
                },
            )

        notifications: Sequence[Notification] = ()
        if final:
            notifications = self._planner.expense_approved(expense, approved, comment)
        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=approved,
            events=(event,),
            auto_approved_item_ids=auto_approved,
            notifications=self._deliver(notifications),
        )

    def deny_expense(self, actor: Actor, expense_id: UUID, reason: str) -> ExpenseOutcome:
        """Deny a SUBMITTED request.  A reason is required."""
        with unit_of_work(
            self._session, "deny_expense", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "deny", model.requester_id)
            reason = require_comment(reason, "deny")
            transition = self._guard.check(expense_id, model.status_enum, "deny")

            # A denial replaces any earlier stage decisions.
            self._lifecycle.recorder.clear_stage_decisions(expense_id)
            self._lifecycle.recorder.record_stage_decision(
                expense_id, 1, actor.id, StageDecision.DENIED, reason,
            )
            event = self._lifecycle.apply(model, transition, actor, reason)
            expense = self._lifecycle.snapshot(expense_id)
            logger.info("expense_denied", extra={"expense_id": str(expense_id)})

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
            notifications=self._deliver(self._planner.expense_denied(expense, reason)),
        )

    def request_change(
        self,
        actor: Actor,
        expense_id: UUID,
        reason: str | None = None,
    ) -> ExpenseOutcome:
        """Requester pulls a SUBMITTED or APPROVED request back for edits."""
        with unit_of_work(
            self._session, "request_change", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "request_change", model.requester_id)
            current = model.status_enum
            transition = self._guard.check(expense_id, current, "request_change")
            if not reason or not reason.strip():
                reason = (
                    "Requester requested to add more items"
                    if current is ExpenseStatus.APPROVED
                    else "Requester requested changes"
                )
            event = self._lifecycle.apply(model, transition, actor, reason)
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_change_requested",
                extra={"expense_id": str(expense_id), "by": "requester"},
            )

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
            notifications=self._deliver(
                self._planner.change_requested_by_requester(expense, reason)
            ),
        )

    def admin_request_change(
        self,
        actor: Actor,
        expense_id: UUID,
        comment: str,
    ) -> ExpenseOutcome:
        """Administrator sends a request back to the requester with a note."""
        with unit_of_work(
            self._session, "admin_request_change", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "admin_request_change", model.requester_id)
            comment = require_comment(comment, "request changes")
            transition = self._guard.check(
                expense_id, model.status_enum, "admin_request_change",
            )
            self._session.add(
                ExpenseNoteModel(
                    id=uuid4(),
                    expense_id=expense_id,
                    author_id=actor.id,
                    content=f"Change Requested: {comment}",
                    created_at=self._clock.now(),
                )
            )
            event = self._lifecycle.apply(model, transition, actor, comment)
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_change_requested",
                extra={"expense_id": str(expense_id), "by": "admin"},
            )

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
            notifications=self._deliver(
                self._planner.change_requested_by_admin(expense, comment)
            ),
        )

    def undo_decision(
        self,
        actor: Actor,
        expense_id: UUID,
        reason: str | None = None,
    ) -> ExpenseOutcome:
        """Return an APPROVED or DENIED request to SUBMITTED."""
        with unit_of_work(
            self._session, "undo_decision", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "undo_decision", model.requester_id)
            transition = self._guard.check(expense_id, model.status_enum, "undo_decision")
            self._lifecycle.recorder.clear_stage_decisions(expense_id)
            event = self._lifecycle.apply(model, transition, actor, reason or UNDO_REASON)
            expense = self._lifecycle.snapshot(expense_id)

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
        )

    # =========================================================================
    # Item-level decisions
    # =========================================================================

    def _item_decision(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
        operation: str,
        status: ItemDecisionStatus,
        approved_amount_cents: int | None,
        comment: str | None,
    ) -> ItemDecisionOutcome:
        with unit_of_work(
            self._session, operation, actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "item_decision", model.requester_id)
            if model.status not in ITEM_DECISION_STATES:
                raise InvalidTransitionError(expense_id, model.status, operation)
            item = self._item(model, item_id)
            if status is ItemDecisionStatus.APPROVED and approved_amount_cents is None:
                approved_amount_cents = item.amount_cents
            if approved_amount_cents is not None and approved_amount_cents > item.amount_cents:
                raise InvalidAmountError(
                    "approved_amount_cents",
                    approved_amount_cents,
                    f"cannot exceed the requested item amount {item.amount_cents}",
                )

            decision = self._lifecycle.recorder.record_item_decision(
                item_id, actor.id, status, approved_amount_cents, comment,
            )
            expense = self._lifecycle.snapshot(expense_id)
            approved = self._lifecycle.approved_amount(expense)

        return ItemDecisionOutcome(
            expense_id=expense_id,
            item_id=item_id,
            decision=decision,
            approved_amount_cents=approved,
        )

    def approve_item(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
        approved_amount_cents: int | None = None,
        comment: str | None = None,
    ) -> ItemDecisionOutcome:
        """Approve an item, in full or for ``approved_amount_cents``."""
        return self._item_decision(
            actor, expense_id, item_id, "approve_item",
            ItemDecisionStatus.APPROVED, approved_amount_cents, comment,
        )

    def deny_item(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
        comment: str,
    ) -> ItemDecisionOutcome:
        return self._item_decision(
            actor, expense_id, item_id, "deny_item",
            ItemDecisionStatus.DENIED, None, require_comment(comment, "deny an item"),
        )

    def request_item_change(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
        comment: str,
    ) -> ItemDecisionOutcome:
        return self._item_decision(
            actor, expense_id, item_id, "request_item_change",
            ItemDecisionStatus.CHANGE_REQUESTED, None,
            require_comment(comment, "request item changes"),
        )

    def undo_item_decision(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
    ) -> ItemDecisionOutcome:
        """Remove the actor's own decision on an item."""
        with unit_of_work(
            self._session, "undo_item_decision", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "item_decision", model.requester_id)
            if model.status not in ITEM_UNDO_STATES:
                raise InvalidTransitionError(expense_id, model.status, "undo_item_decision")
            self._item(model, item_id)
            self._lifecycle.recorder.clear_item_decisions([item_id], approver_id=actor.id)
            expense = self._lifecycle.snapshot(expense_id)
            approved = self._lifecycle.approved_amount(expense)

        return ItemDecisionOutcome(
            expense_id=expense_id,
            item_id=item_id,
            decision=None,
            approved_amount_cents=approved,
        )

    # =========================================================================
    # Payment and close
    # =========================================================================

    def mark_paid(
        self,
        actor: Actor,
        expense_id: UUID,
        payment_date: date | None = None,
    ) -> PaymentOutcome:
        """
        Record a payment.

        First payment: an APPROVED request is paid its aggregated approved
        amount and moves to PAID (then EXPENSE_REPORT_REQUESTED when a report
        is required).  Repeat payment: an already paid request is paid the
        overage shown by its latest report; status does not change.
        """
        with unit_of_work(
            self._session, "mark_paid", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "mark_paid", model.requester_id)
            now = self._clock.now()

            if model.paid_at is None:
                transition = self._guard.check(expense_id, model.status_enum, "mark_paid")
                amount = self._lifecycle.approved_amount(self._lifecycle.snapshot(expense_id))
                self._guard.require_payable(expense_id, amount)

                model.paid_amount_cents = amount
                model.paid_at = now
                model.paid_by_id = actor.id
                model.payment_date = payment_date or now.date()
                events: list[StatusEvent] = [
                    self._lifecycle.apply(
                        model, transition, actor, f"Payment of {amount} cents recorded",
                    )
                ]
                follow_up = self._guard.after_payment(model.report_required)
                if follow_up is not None:
                    events.append(
                        self._lifecycle.apply(
                            model, follow_up, actor, "Expense report requested after payment",
                        )
                    )
                is_repayment = False
            else:
                if model.status not in REPAYABLE_STATES:
                    raise InvalidTransitionError(expense_id, model.status, "mark_paid")
                reports = self._lifecycle.reports_for(expense_id)
                if not reports:
                    raise NothingToPayError(expense_id, "no report shows additional spend")
                latest = reports[-1]
                amount = compute_overage(
                    model.paid_amount_cents or 0,
                    latest.total_reported_cents,
                    latest.donation_cents,
                )
                if amount == 0:
                    raise NothingToPayError(
                        expense_id, "reported spend does not exceed the amount paid",
                    )
                model.paid_amount_cents = (model.paid_amount_cents or 0) + amount
                model.paid_at = now
                model.paid_by_id = actor.id
                model.payment_date = payment_date or now.date()
                events = []
                is_repayment = True

            model.updated_by_id = actor.id
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_paid",
                extra={
                    "expense_id": str(expense_id),
                    "amount_cents": amount,
                    "paid_amount_cents": expense.paid_amount_cents,
                    "is_repayment": is_repayment,
                },
            )

        return PaymentOutcome(
            expense=expense,
            amount_paid_cents=amount,
            is_repayment=is_repayment,
            events=tuple(events),
            notifications=self._deliver(self._planner.expense_paid(expense, amount)),
        )

    def close_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        reason: str | None = None,
    ) -> ExpenseOutcome:
        """Close a request, bypassing any outstanding report requirement."""
        with unit_of_work(
            self._session, "close_expense", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "close", model.requester_id)
            transition = self._guard.check(expense_id, model.status_enum, "close")
            event, _ = self._lifecycle.close(model, actor, transition, reason)
            expense = self._lifecycle.snapshot(expense_id)

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
        )

    # =========================================================================
    # Pastor remarks
    # =========================================================================

    def add_pastor_remark(
        self,
        actor: Actor,
        expense_id: UUID,
        content: str,
    ) -> PastorRemark:
        """Insert or replace the campus pastor's remark on a SUBMITTED request."""
        with unit_of_work(
            self._session, "add_pastor_remark", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(
                actor, "pastor_remark", model.requester_id, campus=model.campus,
            )
            if model.status_enum is not ExpenseStatus.SUBMITTED:
                raise InvalidTransitionError(expense_id, model.status, "add_pastor_remark")
            content = require_comment(content, "add a remark")

            remark = self._session.execute(
                select(PastorRemarkModel).where(
                    PastorRemarkModel.expense_id == expense_id,
                    PastorRemarkModel.pastor_id == actor.id,
                )
            ).scalar_one_or_none()
            now = self._clock.now()
            corrected = remark is not None
            if remark is None:
                remark = PastorRemarkModel(
                    id=uuid4(),
                    expense_id=expense_id,
                    pastor_id=actor.id,
                    created_at=now,
                    created_by_id=actor.id,
                )
                self._session.add(remark)
            remark.content = content
            remark.updated_at = now
            remark.updated_by_id = actor.id
            self._session.flush()
            result = remark.to_dto()
            logger.info(
                "pastor_remark_recorded",
                extra={"expense_id": str(expense_id), "corrected": corrected},
            )

        return result

    # =========================================================================
    # Notes and administrative edits
    # =========================================================================

    def add_note(self, actor: Actor, expense_id: UUID, content: str) -> ExpenseNote:
        """Append a note from the requester, an administrator or a campus
        pastor of the request's campus.  Allowed in any status."""
        with unit_of_work(
            self._session, "add_note", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(
                actor, "add_note", model.requester_id, campus=model.campus,
            )
            content = require_comment(content, "add a note")
            note = ExpenseNoteModel(
                id=uuid4(),
                expense_id=expense_id,
                author_id=actor.id,
                content=content,
                created_at=self._clock.now(),
            )
            self._session.add(note)
            self._session.flush()
            result = note.to_dto()
            logger.info("expense_note_added", extra={"expense_id": str(expense_id)})

        return result

    def mark_partially_approved(
        self,
        actor: Actor,
        expense_id: UUID,
        reason: str | None = None,
    ) -> ExpenseOutcome:
        """Administrator flags a SUBMITTED request with mixed item decisions."""
        with unit_of_work(
            self._session, "mark_partially_approved",
            actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id, for_update=True)
            self._guard.authorize(actor, "update_status", model.requester_id)
            transition = self._guard.check(
                expense_id, model.status_enum, "mark_partially_approved",
            )
            event = self._lifecycle.apply(
                model, transition, actor, reason or PARTIALLY_APPROVED_REASON,
            )
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_partially_approved", extra={"expense_id": str(expense_id)},
            )

        return ExpenseOutcome(
            expense=expense,
            approved_amount_cents=self._lifecycle.approved_amount(expense),
            events=(event,),
        )

    def update_item_category(
        self,
        actor: Actor,
        expense_id: UUID,
        item_id: UUID,
        category: str | None,
    ) -> ExpenseItem:
        """Set or clear an item's category.  No status change."""
        with unit_of_work(
            self._session, "update_item_category",
            actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(actor, "update_metadata", model.requester_id)
            item = self._item(model, item_id)
            item.category = category.strip() if category and category.strip() else None
            self._session.flush()
            result = item.to_dto()
            logger.info(
                "expense_item_category_updated",
                extra={"expense_id": str(expense_id), "item_id": str(item_id)},
            )

        return result

    def tag_account(
        self,
        actor: Actor,
        expense_id: UUID,
        account: str | None,
    ) -> ExpenseRequest:
        """Set or clear the bookkeeping account a request is charged to."""
        with unit_of_work(
            self._session, "tag_account", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(actor, "update_metadata", model.requester_id)
            model.account = validate_account_tag(account, self._config)
            model.updated_by_id = actor.id
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_account_tagged",
                extra={"expense_id": str(expense_id), "account": expense.account},
            )

        return expense

    def set_expense_type(
        self,
        actor: Actor,
        expense_id: UUID,
        expense_type: str | None,
        destination_account: str | None | object = UNCHANGED,
    ) -> ExpenseRequest:
        """
        Set or clear the administrative expense type.

        ``destination_account`` is left alone unless passed; ``None`` clears
        it.
        """
        with unit_of_work(
            self._session, "set_expense_type", actor_id=actor.id, expense_id=expense_id,
        ):
            model = self._lifecycle.load(expense_id)
            self._guard.authorize(actor, "update_metadata", model.requester_id)
            model.expense_type = normalize_expense_type(expense_type)
            if destination_account is not UNCHANGED:
                model.destination_account = validate_account_tag(
                    destination_account, self._config, field="destination_account",
                )
            model.updated_by_id = actor.id
            expense = self._lifecycle.snapshot(expense_id)
            logger.info(
                "expense_type_updated",
                extra={
                    "expense_id": str(expense_id),
                    "expense_type": expense.expense_type,
                    "destination_account": expense.destination_account,
                },
            )

        return expense

    # =========================================================================
    # Reads
    # =========================================================================

    def get_expense(self, expense_id: UUID) -> ExpenseRequest:
        return self._lifecycle.load(expense_id).to_dto()

    def approved_amount(self, expense_id: UUID) -> int:
        """Approved amount recomputed from the current decisions."""
        return self._lifecycle.approved_amount(self.get_expense(expense_id))

    def history(self, expense_id: UUID) -> tuple[StatusEvent, ...]:
        self._lifecycle.load(expense_id)
        return self._lifecycle.audit.history(expense_id)

    def transition_counts(self, expense_id: UUID) -> dict[ExpenseStatus, int]:
        """How many times the request entered each status."""
        self._lifecycle.load(expense_id)
        return self._lifecycle.audit.transition_counts(expense_id)

    def stage_decisions(self, expense_id: UUID) -> tuple[StageApproval, ...]:
        self._lifecycle.load(expense_id)
        return self._lifecycle.recorder.stage_decisions(expense_id)

    def item_decisions(self, expense_id: UUID) -> dict[UUID, tuple[ItemApproval, ...]]:
        """Current decisions per item, in first-recorded order."""
        model = self._lifecycle.load(expense_id)
        return self._lifecycle.recorder.decisions_for_items(
            [item.id for item in model.items]
        )

    def notes(
        self,
        expense_id: UUID,
        actor: Actor | None = None,
    ) -> tuple[ExpenseNote, ...]:
        """Notes oldest first.  With ``actor``, checks they may read them."""
        model = self._lifecycle.load(expense_id)
        if actor is not None:
            self._guard.authorize(
                actor, "view_notes", model.requester_id, campus=model.campus,
            )
        rows = self._session.execute(
            select(ExpenseNoteModel)
            .where(ExpenseNoteModel.expense_id == expense_id)
            .order_by(ExpenseNoteModel.created_at)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def pastor_remarks(self, expense_id: UUID) -> tuple[PastorRemark, ...]:
        rows = self._session.execute(
            select(PastorRemarkModel).where(PastorRemarkModel.expense_id == expense_id)
        ).scalars()
        return tuple(row.to_dto() for row in rows)
