"""
Typed Exception Hierarchy for the Expense Kernel.

Every error raised by the kernel, the engines and the expense module is a
subclass of ExpenseKernelError.  Each class carries:
  1. a CODE attribute (machine-readable, API-safe)
  2. structured DATA attributes (not just a message string)

Callers catch by type and read attributes instead of parsing messages:

    try:
        service.approve_expense(actor, expense_id, stage=1)
    except InvalidTransitionError as e:
        api_response(status=409, code=e.code, from_status=e.from_status)
    except PermissionDeniedError as e:
        api_response(status=403, code=e.code, action=e.action)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ExpenseKernelError (base)
    |
    +-- NotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- ExpenseItemNotFoundError
    |   +-- ReportNotFoundError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- InvalidReportTransitionError
    |
    +-- ValidationFailureError
    |   +-- DraftValidationError
    |   +-- EventFieldsMissingError
    |   +-- EventBudgetMismatchError
    |   +-- InvalidStageError
    |   +-- InvalidAmountError
    |   +-- CommentRequiredError
    |   +-- NothingToPayError
    |   +-- UnknownReportItemError
    |   +-- AttachmentError
    |       +-- MissingItemAttachmentError
    |       +-- InsufficientAttachmentsError
    |       +-- MissingRefundReceiptError
    |
    +-- PermissionDeniedError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES
===============================================================================

    Code                         | Exception
    -----------------------------|------------------------------
    EXPENSE_NOT_FOUND            | ExpenseNotFoundError
    EXPENSE_ITEM_NOT_FOUND       | ExpenseItemNotFoundError
    REPORT_NOT_FOUND             | ReportNotFoundError
    INVALID_TRANSITION           | InvalidTransitionError
    INVALID_REPORT_TRANSITION    | InvalidReportTransitionError
    DRAFT_INVALID                | DraftValidationError
    EVENT_FIELDS_MISSING         | EventFieldsMissingError
    EVENT_BUDGET_MISMATCH        | EventBudgetMismatchError
    INVALID_STAGE                | InvalidStageError
    INVALID_AMOUNT               | InvalidAmountError
    COMMENT_REQUIRED             | CommentRequiredError
    NOTHING_TO_PAY               | NothingToPayError
    UNKNOWN_REPORT_ITEM          | UnknownReportItemError
    MISSING_ITEM_ATTACHMENT      | MissingItemAttachmentError
    INSUFFICIENT_ATTACHMENTS     | InsufficientAttachmentsError
    MISSING_REFUND_RECEIPT       | MissingRefundReceiptError
    PERMISSION_DENIED            | PermissionDeniedError
    IMMUTABILITY_VIOLATION       | ImmutabilityViolationError
    CONFIGURATION_ERROR          | ConfigurationError

No error leaves partial state behind: module services roll back the whole
transaction before re-raising.
"""

from __future__ import annotations

from typing import Any


class ExpenseKernelError(Exception):
    """Base exception for all expense kernel errors."""

    code: str = "EXPENSE_KERNEL_ERROR"


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(ExpenseKernelError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    """Expense request not found."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: Any):
        self.expense_id = str(expense_id)
        super().__init__(f"Expense request not found: {expense_id}")


class ExpenseItemNotFoundError(NotFoundError):
    """Expense item not found (or not owned by the given request)."""

    code: str = "EXPENSE_ITEM_NOT_FOUND"

    def __init__(self, item_id: Any, expense_id: Any | None = None):
        self.item_id = str(item_id)
        self.expense_id = str(expense_id) if expense_id is not None else None
        suffix = f" on expense {expense_id}" if expense_id is not None else ""
        super().__init__(f"Expense item not found: {item_id}{suffix}")


class ReportNotFoundError(NotFoundError):
    """Expense report not found."""

    code: str = "REPORT_NOT_FOUND"

    def __init__(self, report_id: Any):
        self.report_id = str(report_id)
        super().__init__(f"Expense report not found: {report_id}")


# =============================================================================
# Transitions
# =============================================================================


class TransitionError(ExpenseKernelError):
    """Base for lifecycle transition errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """The requested action is not legal from the request's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: Any, from_status: str, action: str):
        self.entity_id = str(entity_id)
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} expense {entity_id} in status {from_status}"
        )


class InvalidReportTransitionError(TransitionError):
    """The requested action is not legal from the report's current status."""

    code: str = "INVALID_REPORT_TRANSITION"

    def __init__(self, report_id: Any, from_status: str, action: str):
        self.report_id = str(report_id)
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} report {report_id} in status {from_status}"
        )


# =============================================================================
# Validation failures
# =============================================================================


class ValidationFailureError(ExpenseKernelError):
    """Base for business-rule violations.  Nothing is persisted."""

    code: str = "VALIDATION_FAILURE"


class DraftValidationError(ValidationFailureError):
    """A submitted expense draft violates a field rule."""

    code: str = "DRAFT_INVALID"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class EventFieldsMissingError(ValidationFailureError):
    """Event metadata is incomplete."""

    code: str = "EVENT_FIELDS_MISSING"

    def __init__(self, missing: tuple[str, ...]):
        self.missing = list(missing)
        super().__init__(
            f"Event expenses require: {', '.join(missing)}"
        )


class EventBudgetMismatchError(ValidationFailureError):
    """Item amounts do not sum to the full event budget."""

    code: str = "EVENT_BUDGET_MISMATCH"

    def __init__(self, items_total_cents: int, budget_cents: int):
        self.items_total_cents = items_total_cents
        self.budget_cents = budget_cents
        super().__init__(
            f"Item total {items_total_cents} does not equal "
            f"full event budget {budget_cents}"
        )


class InvalidStageError(ValidationFailureError):
    """Approval stage outside the supported range."""

    code: str = "INVALID_STAGE"

    def __init__(self, stage: int):
        self.stage = stage
        super().__init__(f"Approval stage must be 1 or 2, got {stage}")


class InvalidAmountError(ValidationFailureError):
    """An amount is out of range (negative approval, non-positive request)."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount_cents: int, reason: str):
        self.field = field
        self.amount_cents = amount_cents
        self.reason = reason
        super().__init__(f"Invalid {field} {amount_cents}: {reason}")


class CommentRequiredError(ValidationFailureError):
    """The action requires a non-empty comment or reason."""

    code: str = "COMMENT_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A comment is required to {action}")


class NothingToPayError(ValidationFailureError):
    """Payment requested but the computed amount owed is zero."""

    code: str = "NOTHING_TO_PAY"

    def __init__(self, expense_id: Any, reason: str):
        self.expense_id = str(expense_id)
        self.reason = reason
        super().__init__(f"Nothing to pay on expense {expense_id}: {reason}")


class UnknownReportItemError(ValidationFailureError):
    """A report line references an item outside the approved baseline."""

    code: str = "UNKNOWN_REPORT_ITEM"

    def __init__(self, item_id: Any):
        self.item_id = str(item_id)
        super().__init__(
            f"Item {item_id} is not part of the approved baseline"
        )


class AttachmentError(ValidationFailureError):
    """Base for attachment-sufficiency violations."""

    code: str = "ATTACHMENT_ERROR"


class MissingItemAttachmentError(AttachmentError):
    """An approved item has no supporting (non-refund) attachment."""

    code: str = "MISSING_ITEM_ATTACHMENT"

    def __init__(self, item_id: Any, description: str):
        self.item_id = str(item_id)
        self.description = description
        super().__init__(
            f"Item '{description}' ({item_id}) requires at least one receipt"
        )


class InsufficientAttachmentsError(AttachmentError):
    """A non-itemized report has no supporting attachment."""

    code: str = "INSUFFICIENT_ATTACHMENTS"

    def __init__(self, required: int, provided: int):
        self.required = required
        self.provided = provided
        super().__init__(
            f"Report requires at least {required} receipt(s), got {provided}"
        )


class MissingRefundReceiptError(AttachmentError):
    """Actual spend is below approved but no refund receipt is attached."""

    code: str = "MISSING_REFUND_RECEIPT"

    def __init__(self, shortfall_cents: int, item_id: Any | None = None):
        self.shortfall_cents = shortfall_cents
        self.item_id = str(item_id) if item_id is not None else None
        scope = f"item {item_id}" if item_id is not None else "report"
        super().__init__(
            f"Refund receipt required for {scope}: "
            f"actual is {shortfall_cents} below approved"
        )


# =============================================================================
# Permissions
# =============================================================================


class PermissionDeniedError(ExpenseKernelError):
    """The actor lacks the role or campus required by the action."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: Any, action: str, reason: str):
        self.actor_id = str(actor_id)
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(ExpenseKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(ExpenseKernelError):
    """Configuration file could not be loaded or is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
