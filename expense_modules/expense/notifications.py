"""
Expense Notifications (``expense_modules.expense.notifications``).

Responsibility
--------------
Builds the notifications a lifecycle operation emits (as data) and delivers
them through a pluggable ``NotificationSink`` once the operation's
transaction has committed.

Architecture position
---------------------
**Modules layer**.  ``NotificationPlanner`` is pure apart from optional
recipient lookups; ``NotificationDispatcher`` is the only place that calls
the sink.

Invariants enforced
-------------------
* One ``Notification`` per recipient; duplicate addresses are dropped.
* Delivery never raises: each failure is logged and counted in the
  returned ``DispatchReport``.
* Dispatch happens after commit; a rolled-back operation sends nothing.

Failure modes
-------------
* Sink exceptions are caught per notification and surface only as
  ``DispatchReport.failed`` / ``DispatchReport.errors``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID

from expense_kernel.domain.dtos import ExpenseReport, ExpenseRequest
from expense_kernel.logging_config import get_logger
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.models import DispatchReport

logger = get_logger("modules.expense.notifications")


class NotificationKind(str, Enum):
    EXPENSE_SUBMITTED = "expense_submitted"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_DENIED = "expense_denied"
    EXPENSE_PAID = "expense_paid"
    CHANGE_REQUESTED_BY_ADMIN = "change_requested_by_admin"
    CHANGE_REQUESTED_BY_REQUESTER = "change_requested_by_requester"
    REPORT_CREATED = "report_created"
    REPORT_APPROVED = "report_approved"
    REPORT_DENIED = "report_denied"
    REPORT_CHANGE_REQUESTED = "report_change_requested"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    recipient: str
    subject: str
    body: str
    expense_id: UUID
    report_id: UUID | None = None


@runtime_checkable
class NotificationSink(Protocol):
    """Delivers one notification.  May raise; the dispatcher absorbs it."""

    def send(self, notification: Notification) -> None: ...


@runtime_checkable
class RecipientDirectory(Protocol):
    """Resolves user ids and campuses to email addresses."""

    def email_for(self, user_id: UUID) -> str | None: ...

    def campus_pastor_emails(self, campus: str | None) -> Sequence[str]: ...


class LoggingSink:
    """Default sink: records the notification in the structured log only."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "notification_logged",
            extra={
                "kind": notification.kind.value,
                "recipient": notification.recipient,
                "subject": notification.subject,
                "expense_id": str(notification.expense_id),
            },
        )


def _dollars(cents: int) -> str:
    return f"${cents // 100:,}.{cents % 100:02d}"


def _unique(addresses: Iterable[str | None]) -> tuple[str, ...]:
    seen: list[str] = []
    for address in addresses:
        if address and address not in seen:
            seen.append(address)
    return tuple(seen)


class NotificationPlanner:
    """Turns lifecycle outcomes into notifications for the right recipients.

    Decisions go to the requester; submissions, requester change requests
    and reports go to the configured admin addresses plus the campus
    pastors of the expense's campus.  Without a ``RecipientDirectory`` only
    the configured admin addresses are known.
    """

    def __init__(
        self,
        config: ExpenseConfig,
        directory: RecipientDirectory | None = None,
    ) -> None:
        self._config = config
        self._directory = directory

    def _approvers(self, expense: ExpenseRequest) -> tuple[str, ...]:
        pastors: Sequence[str] = ()
        if self._directory is not None:
            pastors = self._directory.campus_pastor_emails(expense.campus)
        return _unique([*self._config.admin_notification_emails, *pastors])

    def _requester(self, expense: ExpenseRequest) -> tuple[str, ...]:
        if self._directory is None:
            return ()
        return _unique([self._directory.email_for(expense.requester_id)])

    def _build(
        self,
        kind: NotificationKind,
        recipients: tuple[str, ...],
        subject: str,
        body: str,
        expense: ExpenseRequest,
        report: ExpenseReport | None = None,
    ) -> tuple[Notification, ...]:
        if not recipients:
            logger.debug(
                "notification_skipped_no_recipients",
                extra={"kind": kind.value, "expense_id": str(expense.id)},
            )
        return tuple(
            Notification(
                kind=kind,
                recipient=recipient,
                subject=subject,
                body=body,
                expense_id=expense.id,
                report_id=report.id if report is not None else None,
            )
            for recipient in recipients
        )

    # Requests

    def expense_submitted(self, expense: ExpenseRequest) -> tuple[Notification, ...]:
        return self._build(
            NotificationKind.EXPENSE_SUBMITTED,
            self._approvers(expense),
            f"New expense request: {expense.title}",
            f"A request for {_dollars(expense.amount_cents)} is awaiting review.",
            expense,
        )

    def expense_approved(
        self,
        expense: ExpenseRequest,
        approved_amount_cents: int,
        comment: str | None = None,
    ) -> tuple[Notification, ...]:
        body = f"Your request was approved for {_dollars(approved_amount_cents)}."
        if comment:
            body += f"\n\nComment: {comment}"
        return self._build(
            NotificationKind.EXPENSE_APPROVED,
            self._requester(expense),
            f"Expense approved: {expense.title}",
            body,
            expense,
        )

    def expense_denied(
        self, expense: ExpenseRequest, reason: str,
    ) -> tuple[Notification, ...]:
        return self._build(
            NotificationKind.EXPENSE_DENIED,
            self._requester(expense),
            f"Expense denied: {expense.title}",
            f"Your request was denied.\n\nReason: {reason}",
            expense,
        )

    def expense_paid(
        self, expense: ExpenseRequest, amount_cents: int,
    ) -> tuple[Notification, ...]:
        body = f"A payment of {_dollars(amount_cents)} was recorded."
        if expense.report_required:
            body += "\n\nPlease submit an expense report with your receipts."
        return self._build(
            NotificationKind.EXPENSE_PAID,
            self._requester(expense),
            f"Expense paid: {expense.title}",
            body,
            expense,
        )

    def change_requested_by_admin(
        self, expense: ExpenseRequest, comment: str,
    ) -> tuple[Notification, ...]:
        return self._build(
            NotificationKind.CHANGE_REQUESTED_BY_ADMIN,
            self._requester(expense),
            f"Changes requested: {expense.title}",
            f"An administrator requested changes.\n\nComment: {comment}",
            expense,
        )

    def change_requested_by_requester(
        self, expense: ExpenseRequest, reason: str,
    ) -> tuple[Notification, ...]:
        return self._build(
            NotificationKind.CHANGE_REQUESTED_BY_REQUESTER,
            self._approvers(expense),
            f"Requester is revising: {expense.title}",
            reason,
            expense,
        )

    # Reports

    def report_created(
        self, expense: ExpenseRequest, report: ExpenseReport,
    ) -> tuple[Notification, ...]:
        return self._build(
            NotificationKind.REPORT_CREATED,
            self._approvers(expense),
            f"Expense report submitted: {report.title}",
            (
                f"Reported spend {_dollars(report.total_reported_cents)} against "
                f"{_dollars(report.total_approved_cents)} approved."
            ),
            expense,
            report,
        )

    def report_decided(
        self,
        kind: NotificationKind,
        expense: ExpenseRequest,
        report: ExpenseReport,
        comment: str | None = None,
    ) -> tuple[Notification, ...]:
        verb = {
            NotificationKind.REPORT_APPROVED: "approved",
            NotificationKind.REPORT_DENIED: "denied",
            NotificationKind.REPORT_CHANGE_REQUESTED: "returned for changes",
        }[kind]
        body = f"Your expense report was {verb}."
        if comment:
            body += f"\n\nComment: {comment}"
        return self._build(
            kind,
            self._requester(expense),
            f"Expense report {verb}: {report.title}",
            body,
            expense,
            report,
        )


class NotificationDispatcher:
    """Delivers notifications after commit; failures are soft."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink or LoggingSink()

    def dispatch(self, notifications: Sequence[Notification]) -> DispatchReport:
        sent = 0
        errors: list[str] = []
        for notification in notifications:
            try:
                self._sink.send(notification)
            except Exception as exc:
                errors.append(f"{notification.recipient}: {exc}")
                logger.warning(
                    "notification_delivery_failed",
                    exc_info=True,
                    extra={
                        "kind": notification.kind.value,
                        "recipient": notification.recipient,
                        "expense_id": str(notification.expense_id),
                    },
                )
            else:
                sent += 1

        report = DispatchReport(sent=sent, failed=len(errors), errors=tuple(errors))
        if notifications:
            logger.info(
                "notifications_dispatched",
                extra={"sent": report.sent, "failed": report.failed},
            )
        return report
