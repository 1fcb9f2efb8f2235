"""
Expense Helpers (``expense_modules.expense.helpers``).

Responsibility
--------------
Pure validation of drafts submitted by users: expense requests, their line
items and post-payment reports.  Stateless functions with no side effects.

Architecture position
---------------------
**Modules layer** -- pure helper functions.  No I/O, no session, no
clock, no database access.  Called by ``ExpenseService`` and
``ReportService`` before anything is written, or from tests.

Invariants enforced
-------------------
* Title non-empty, requested amount positive, urgency inside the configured
  range.
* ``event_date`` set implies ``event_name`` set and a positive full event
  budget; the configured event category requires ``event_date``.
* With event metadata and items, the amounts of the items that will be
  stored sum to the event budget.  Items kept from an approved request
  keep their stored amounts.
* Item quantity positive; unit price and line amount non-negative; an
  explicit line amount equals quantity times unit price.

Failure modes
-------------
* ``DraftValidationError`` naming the field and the reason.
* ``EventFieldsMissingError`` listing the missing event fields.
* ``EventBudgetMismatchError`` with both totals.
* ``InvalidAmountError`` for a non-positive requested amount or a negative
  donation.
* ``CommentRequiredError`` for a blank reason where one is mandatory.
* ``DraftValidationError`` for an unknown account tag or an overlong
  expense type.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from uuid import UUID

from expense_kernel.exceptions import (
    CommentRequiredError,
    DraftValidationError,
    EventBudgetMismatchError,
    EventFieldsMissingError,
    InvalidAmountError,
)
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.models import ExpenseDraft, ItemDraft, ReportDraft

EXPENSE_TYPE_MAX_LENGTH = 100


def require_comment(comment: str | None, action: str) -> str:
    """Return the stripped comment; a blank one raises CommentRequiredError."""
    if comment is None or not comment.strip():
        raise CommentRequiredError(action)
    return comment.strip()


def validate_item(item: ItemDraft, position: int) -> ItemDraft:
    """
    Validate one line item and fill in its amount.

    Postconditions:
        - Returns a copy with ``amount_cents`` set and description stripped.
    """
    field_prefix = f"items[{position}]"
    description = (item.description or "").strip()
    if not description:
        raise DraftValidationError(f"{field_prefix}.description", "cannot be empty")
    if item.quantity <= 0:
        raise DraftValidationError(f"{field_prefix}.quantity", "must be positive")
    if item.unit_price_cents < 0:
        raise DraftValidationError(
            f"{field_prefix}.unit_price_cents", "cannot be negative",
        )

    expected = item.quantity * item.unit_price_cents
    if item.amount_cents is not None:
        if item.amount_cents < 0:
            raise DraftValidationError(
                f"{field_prefix}.amount_cents", "cannot be negative",
            )
        if item.amount_cents != expected:
            raise DraftValidationError(
                f"{field_prefix}.amount_cents",
                f"expected quantity x unit price = {expected}, got {item.amount_cents}",
            )

    return replace(item, description=description, amount_cents=expected)


def _check_event_fields(draft: ExpenseDraft, config: ExpenseConfig) -> None:
    if draft.category == config.event_category and draft.event_date is None:
        raise EventFieldsMissingError(("event_date",))
    if draft.event_date is None:
        return

    missing: list[str] = []
    if not (draft.event_name or "").strip():
        missing.append("event_name")
    if draft.full_event_budget_cents is None or draft.full_event_budget_cents <= 0:
        missing.append("full_event_budget_cents")
    if missing:
        raise EventFieldsMissingError(tuple(missing))


def _check_kept_items(items: tuple[ItemDraft, ...], kept_items: Mapping[UUID, int]) -> None:
    for i, item in enumerate(items):
        if item.id is None or item.id not in kept_items:
            continue
        if item.amount_cents != kept_items[item.id]:
            raise DraftValidationError(
                f"items[{i}].amount_cents",
                f"kept item amount is fixed at {kept_items[item.id]}",
            )


def validate_expense_draft(
    draft: ExpenseDraft,
    config: ExpenseConfig,
    kept_items: Mapping[UUID, int] | None = None,
) -> ExpenseDraft:
    """
    Validate a request draft against the business rules.

    Preconditions:
        - ``config`` is the explicit lifecycle configuration.
        - ``kept_items`` maps the id of every stored item that survives the
          edit to its amount.  When given, only drafts without an id are
          new; the budget check runs over kept plus new items.
    Postconditions:
        - Returns a normalized copy: title stripped, urgency defaulted,
          every item amount filled in.
    Raises:
        DraftValidationError, EventFieldsMissingError,
        EventBudgetMismatchError, InvalidAmountError.
    """
    title = (draft.title or "").strip()
    if not title:
        raise DraftValidationError("title", "cannot be empty")
    if draft.amount_cents <= 0:
        raise InvalidAmountError(
            "amount_cents", draft.amount_cents, "requested amount must be positive",
        )

    urgency = draft.urgency if draft.urgency is not None else config.default_urgency
    if not config.min_urgency <= urgency <= config.max_urgency:
        raise DraftValidationError(
            "urgency",
            f"must be between {config.min_urgency} and {config.max_urgency}",
        )

    _check_event_fields(draft, config)

    items = tuple(validate_item(item, i) for i, item in enumerate(draft.items))
    if kept_items is None:
        stored_amounts = [item.amount_cents for item in items]
    else:
        _check_kept_items(items, kept_items)
        stored_amounts = [
            *kept_items.values(),
            *(item.amount_cents for item in items if item.id is None),
        ]
    if stored_amounts and draft.event_date is not None:
        items_total = sum(stored_amounts)
        if items_total != draft.full_event_budget_cents:
            raise EventBudgetMismatchError(items_total, draft.full_event_budget_cents)

    return replace(draft, title=title, urgency=urgency, items=items)


def validate_report_draft(draft: ReportDraft) -> ReportDraft:
    """Field checks for a report draft.  Attachment rules live in the
    reconciliation engine."""
    title = (draft.title or "").strip()
    if not title:
        raise DraftValidationError("title", "cannot be empty")
    if draft.donation_cents is not None and draft.donation_cents < 0:
        raise InvalidAmountError(
            "donation_cents", draft.donation_cents, "donation cannot be negative",
        )
    for i, attachment in enumerate(draft.attachments):
        if not attachment.filename.strip():
            raise DraftValidationError(f"attachments[{i}].filename", "cannot be empty")
        if not attachment.url.strip():
            raise DraftValidationError(f"attachments[{i}].url", "cannot be empty")
    return replace(draft, title=title)


def validate_account_tag(
    account: str | None,
    config: ExpenseConfig,
    field: str = "account",
) -> str | None:
    """Strip an account tag and check it against ``config.accounts``.

    Blank clears the tag.  An empty ``config.accounts`` accepts any tag.
    """
    if account is None or not account.strip():
        return None
    account = account.strip()
    if config.accounts and account not in config.accounts:
        raise DraftValidationError(field, f"unknown account tag '{account}'")
    return account


def normalize_expense_type(expense_type: str | None) -> str | None:
    if expense_type is None or not expense_type.strip():
        return None
    expense_type = expense_type.strip()
    if len(expense_type) > EXPENSE_TYPE_MAX_LENGTH:
        raise DraftValidationError(
            "expense_type", f"must be {EXPENSE_TYPE_MAX_LENGTH} characters or less",
        )
    return expense_type
