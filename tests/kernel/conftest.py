"""Kernel fixtures: persisted request, item and report rows."""

from uuid import uuid4

import pytest

from expense_kernel.models.expense import ExpenseItemModel, ExpenseRequestModel
from expense_kernel.models.report import ExpenseReportModel


@pytest.fixture
def requester_id():
    return uuid4()


@pytest.fixture
def expense_row(session, requester_id):
    row = ExpenseRequestModel(
        id=uuid4(),
        title="Kernel fixture",
        amount_cents=15_000,
        requester_id=requester_id,
        created_by_id=requester_id,
    )
    session.add(row)
    session.flush()
    return row


@pytest.fixture
def item_rows(session, expense_row):
    rows = [
        ExpenseItemModel(
            id=uuid4(), expense_id=expense_row.id, position=0,
            description="Chairs", quantity=4, unit_price_cents=2_500,
            amount_cents=10_000,
        ),
        ExpenseItemModel(
            id=uuid4(), expense_id=expense_row.id, position=1,
            description="Tables", quantity=1, unit_price_cents=5_000,
            amount_cents=5_000,
        ),
    ]
    session.add_all(rows)
    session.flush()
    return rows


@pytest.fixture
def report_row(session, expense_row, requester_id):
    row = ExpenseReportModel(
        id=uuid4(),
        expense_id=expense_row.id,
        author_id=requester_id,
        title="Receipts",
        total_approved_cents=15_000,
        total_reported_cents=15_000,
        created_by_id=requester_id,
    )
    session.add(row)
    session.flush()
    return row
