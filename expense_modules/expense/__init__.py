"""
Expense Lifecycle Module (``expense_modules.expense``).

Responsibility
--------------
Thin glue for the expense-request lifecycle: submission, stage and item
approvals, change requests, payment, post-payment reports and close.

Architecture position
---------------------
**Modules layer** -- workflow tables, the status transition guard, config
schema, draft validation, notifications, and the two service facades that
own the transaction boundary.

Invariants enforced
-------------------
* Only transitions in the workflow tables are legal.
* Transaction boundary owned by ``ExpenseService`` and ``ReportService``.
* Notifications are sent after commit and never fail an operation.

Failure modes
-------------
* Typed ``ExpenseKernelError`` subclasses; see ``expense_kernel.exceptions``.

Audit relevance
---------------
Every status change appends an immutable StatusEvent through the kernel
audit trail writer.
"""

from expense_modules.expense.config import ExpenseConfig, load_expense_config
from expense_modules.expense.guard import StatusTransitionGuard
from expense_modules.expense.models import (
    AttachmentDraft,
    DispatchReport,
    ExpenseDraft,
    ExpenseOutcome,
    ItemDecisionOutcome,
    ItemDraft,
    PaymentOutcome,
    ReportDraft,
    ReportItemDraft,
    ReportOutcome,
)
from expense_modules.expense.notifications import (
    LoggingSink,
    Notification,
    NotificationKind,
    NotificationSink,
    RecipientDirectory,
)
from expense_modules.expense.report_service import ReportService
from expense_modules.expense.service import ExpenseService
from expense_modules.expense.workflows import (
    EXPENSE_REPORT_WORKFLOW,
    EXPENSE_REQUEST_WORKFLOW,
)

__all__ = [
    "AttachmentDraft",
    "DispatchReport",
    "EXPENSE_REPORT_WORKFLOW",
    "EXPENSE_REQUEST_WORKFLOW",
    "ExpenseConfig",
    "ExpenseDraft",
    "ExpenseOutcome",
    "ExpenseService",
    "ItemDecisionOutcome",
    "ItemDraft",
    "LoggingSink",
    "Notification",
    "NotificationKind",
    "NotificationSink",
    "PaymentOutcome",
    "RecipientDirectory",
    "ReportDraft",
    "ReportItemDraft",
    "ReportOutcome",
    "ReportService",
    "StatusTransitionGuard",
    "load_expense_config",
]
