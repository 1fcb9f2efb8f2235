"""
Tests for the Amount Aggregator.

Covers:
- Lump-sum and itemized approved amounts
- First-approval-wins ordering for multiple approvers
- Approval baselines for reports
- Whole-request approval planning
- Overage computation for repeat payments
- Engine tracing
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from expense_engines.aggregation import (
    ItemDecision,
    ItemizedRequest,
    ItemSnapshot,
    LumpSumRequest,
    approval_baseline,
    compute_approved_amount,
    compute_overage,
    from_expense,
    item_contribution,
    plan_full_approval,
)
from expense_kernel.domain.dtos import (
    ExpenseItem,
    ExpenseRequest,
    ExpenseStatus,
    ItemApproval,
    ItemDecisionStatus,
    StageApproval,
    StageDecision,
)

APPROVED = ItemDecisionStatus.APPROVED
DENIED = ItemDecisionStatus.DENIED
CHANGE = ItemDecisionStatus.CHANGE_REQUESTED
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _item(amount, *decisions, description="Item"):
    return ItemSnapshot(uuid4(), description, amount, tuple(decisions))


def _expense(items=(), stage_approvals=(), amount=10_000):
    return ExpenseRequest(
        id=uuid4(), title="Test", description=None, amount_cents=amount,
        status=ExpenseStatus.SUBMITTED, requester_id=uuid4(), team=None,
        campus=None, urgency=2, category=None, event_date=None,
        event_name=None, full_event_budget_cents=None, paid_amount_cents=None,
        paid_at=None, paid_by_id=None, payment_date=None, report_required=True,
        items=tuple(items), stage_approvals=tuple(stage_approvals),
    )


class TestLumpSum:
    """Requests without items are approved as a whole."""

    def test_without_approval_is_zero(self):
        assert compute_approved_amount(LumpSumRequest(50_000, has_approval=False)) == 0

    def test_with_approval_is_requested_amount(self):
        assert compute_approved_amount(LumpSumRequest(50_000, has_approval=True)) == 50_000

    def test_from_expense_detects_stage_approval(self):
        expense = _expense(stage_approvals=(
            StageApproval(uuid4(), uuid4(), 1, uuid4(), StageDecision.APPROVED, None, NOW),
        ))
        request = from_expense(expense)
        assert request == LumpSumRequest(10_000, has_approval=True)

    def test_from_expense_denial_is_not_approval(self):
        expense = _expense(stage_approvals=(
            StageApproval(uuid4(), uuid4(), 1, uuid4(), StageDecision.DENIED, "no", NOW),
        ))
        assert compute_approved_amount(from_expense(expense)) == 0


class TestItemized:
    """Each item contributes its first APPROVED decision."""

    def test_no_decisions_is_zero(self):
        request = ItemizedRequest((_item(10_000), _item(5_000)))
        assert compute_approved_amount(request) == 0

    def test_partial_and_full_amounts(self):
        admin = uuid4()
        request = ItemizedRequest((
            _item(10_000, ItemDecision(admin, APPROVED, 8_000)),
            _item(5_000, ItemDecision(admin, APPROVED)),
        ))
        assert compute_approved_amount(request) == 13_000

    def test_denied_and_change_requested_contribute_nothing(self):
        admin = uuid4()
        request = ItemizedRequest((
            _item(10_000, ItemDecision(admin, DENIED)),
            _item(5_000, ItemDecision(admin, CHANGE)),
            _item(2_000, ItemDecision(admin, APPROVED)),
        ))
        assert compute_approved_amount(request) == 2_000

    def test_first_approval_wins(self):
        first, second = uuid4(), uuid4()
        item = _item(
            10_000,
            ItemDecision(first, APPROVED, 4_000),
            ItemDecision(second, APPROVED, 9_000),
        )
        assert item_contribution(item) == 4_000

    def test_denial_before_approval_does_not_block(self):
        first, second = uuid4(), uuid4()
        item = _item(
            10_000,
            ItemDecision(first, DENIED),
            ItemDecision(second, APPROVED, 6_000),
        )
        assert item_contribution(item) == 6_000

    def test_zero_approved_amount_counts_as_zero(self):
        item = _item(10_000, ItemDecision(uuid4(), APPROVED, 0))
        assert item_contribution(item) == 0

    def test_from_expense_preserves_decision_order(self):
        expense_id, item_id = uuid4(), uuid4()
        first, second = uuid4(), uuid4()
        expense = _expense(items=(
            ExpenseItem(
                item_id, expense_id, "Chairs", None, 1, 10_000, 10_000,
                approvals=(
                    ItemApproval(uuid4(), item_id, first, APPROVED, 3_000, None, NOW),
                    ItemApproval(uuid4(), item_id, second, APPROVED, None, None, NOW),
                ),
            ),
        ))
        request = from_expense(expense)
        assert isinstance(request, ItemizedRequest)
        assert compute_approved_amount(request) == 3_000

    @settings(max_examples=50)
    @given(
        st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=1_000_000),
                st.sampled_from(list(ItemDecisionStatus)),
                st.one_of(st.none(), st.integers(min_value=0, max_value=1_000_000)),
            ),
            max_size=20,
        )
    )
    def test_total_is_sum_of_contributions(self, rows):
        items = tuple(
            _item(amount, ItemDecision(uuid4(), status, approved))
            for amount, status, approved in rows
        )
        request = ItemizedRequest(items)
        total = compute_approved_amount(request)

        assert total == sum(item_contribution(i) for i in items)
        assert total >= 0
        # Re-derivable: same input, same answer.
        assert compute_approved_amount(request) == total


class TestApprovalBaseline:

    def test_lump_sum_baseline_has_no_items(self):
        baseline = approval_baseline(LumpSumRequest(50_000, has_approval=True))
        assert baseline.total_approved_cents == 50_000
        assert not baseline.is_itemized

    def test_itemized_baseline_skips_unapproved_items(self):
        admin = uuid4()
        chairs = _item(10_000, ItemDecision(admin, APPROVED, 8_000), description="Chairs")
        tables = _item(5_000, ItemDecision(admin, DENIED), description="Tables")
        baseline = approval_baseline(ItemizedRequest((chairs, tables)))

        assert baseline.total_approved_cents == 8_000
        assert [i.item_id for i in baseline.items] == [chairs.item_id]
        assert baseline.item(chairs.item_id).approved_amount_cents == 8_000
        assert baseline.item(tables.item_id) is None


class TestPlanFullApproval:

    def test_lump_sum_plans_nothing(self):
        assert plan_full_approval(LumpSumRequest(1_000, True), uuid4()) == ()

    def test_undecided_items_get_full_amount(self):
        admin = uuid4()
        a, b = _item(10_000), _item(5_000)
        planned = plan_full_approval(ItemizedRequest((a, b)), admin)
        assert [(p.item_id, p.amount_cents) for p in planned] == [
            (a.item_id, 10_000), (b.item_id, 5_000),
        ]
        assert all(p.previous_status is None for p in planned)

    def test_existing_approval_is_left_alone(self):
        admin = uuid4()
        partial = _item(10_000, ItemDecision(admin, APPROVED, 2_000))
        assert plan_full_approval(ItemizedRequest((partial,)), admin) == ()

    def test_denied_items_upgraded_by_default(self):
        admin = uuid4()
        denied = _item(10_000, ItemDecision(admin, DENIED))
        planned = plan_full_approval(ItemizedRequest((denied,)), admin)
        assert planned[0].previous_status is DENIED
        assert planned[0].amount_cents == 10_000

    def test_denied_items_preserved_when_configured(self):
        admin = uuid4()
        denied = _item(10_000, ItemDecision(admin, DENIED))
        change = _item(3_000, ItemDecision(admin, CHANGE))
        planned = plan_full_approval(
            ItemizedRequest((denied, change)), admin, preserve_denials=True,
        )
        assert [p.item_id for p in planned] == [change.item_id]

    def test_other_approvers_decisions_do_not_count(self):
        admin, other = uuid4(), uuid4()
        item = _item(10_000, ItemDecision(other, APPROVED, 1_000))
        planned = plan_full_approval(ItemizedRequest((item,)), admin)
        assert len(planned) == 1


class TestComputeOverage:

    @pytest.mark.parametrize(
        "paid, reported, donation, expected",
        [
            (10_000, 12_000, None, 2_000),
            (10_000, 12_000, 500, 1_500),
            (10_000, 12_000, 5_000, 0),
            (10_000, 9_000, None, 0),
            (0, 0, 0, 0),
        ],
    )
    def test_overage(self, paid, reported, donation, expected):
        assert compute_overage(paid, reported, donation) == expected

    def test_negative_input_rejected(self):
        with pytest.raises(ValueError):
            compute_overage(-1, 100)


class TestEngineTrace:

    def test_trace_emitted_with_fingerprint(self, captured_logs):
        compute_approved_amount(LumpSumRequest(1_000, True))
        traces = [r for r in captured_logs() if r["message"] == "EXPENSE_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "aggregation"
        assert len(traces[-1]["input_fingerprint"]) == 16
