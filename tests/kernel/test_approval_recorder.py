"""
Tests for the Approval Recorder.

Covers:
- Stage decisions: one row per (expense, stage), corrections update in place
- Item decisions: one row per (item, approver), first-insert ordering kept
- Report decisions: one row per (report, approver)
- Range checks on stage numbers and approved amounts
- Clearing decisions, globally and per approver
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from expense_kernel.domain.dtos import ItemDecisionStatus, ReportDecision, StageDecision
from expense_kernel.exceptions import InvalidAmountError, InvalidStageError
from expense_kernel.models.approval import ItemApprovalModel, StageApprovalModel
from expense_kernel.models.report import ReportApprovalModel
from expense_kernel.services.approval_recorder import ApprovalRecorder


@pytest.fixture
def recorder(session, deterministic_clock):
    return ApprovalRecorder(session, deterministic_clock)


def _count(session, model, *where):
    return session.execute(select(func.count(model.id)).where(*where)).scalar_one()


class TestStageDecisions:

    def test_record_returns_dto(self, recorder, expense_row, deterministic_clock):
        approver = uuid4()
        approval = recorder.record_stage_decision(
            expense_row.id, 1, approver, StageDecision.APPROVED, "ok",
        )
        assert approval.stage == 1
        assert approval.approver_id == approver
        assert approval.decision is StageDecision.APPROVED
        assert approval.decided_at == deterministic_clock.now()

    def test_repeat_is_correction_not_duplicate(
        self, session, recorder, expense_row, deterministic_clock,
    ):
        first, second = uuid4(), uuid4()
        recorder.record_stage_decision(expense_row.id, 1, first, StageDecision.APPROVED)
        deterministic_clock.advance(60)
        corrected = recorder.record_stage_decision(
            expense_row.id, 1, second, StageDecision.DENIED, "not in budget",
        )

        assert _count(session, StageApprovalModel,
                      StageApprovalModel.expense_id == expense_row.id) == 1
        assert corrected.approver_id == second
        assert corrected.decision is StageDecision.DENIED
        assert corrected.comment == "not in budget"

    def test_stages_are_independent(self, recorder, expense_row):
        approver = uuid4()
        recorder.record_stage_decision(expense_row.id, 2, approver, StageDecision.APPROVED)
        recorder.record_stage_decision(expense_row.id, 1, approver, StageDecision.APPROVED)
        assert [a.stage for a in recorder.stage_decisions(expense_row.id)] == [1, 2]

    @pytest.mark.parametrize("stage", [0, 3, -1])
    def test_stage_out_of_range(self, recorder, expense_row, stage):
        with pytest.raises(InvalidStageError) as exc_info:
            recorder.record_stage_decision(
                expense_row.id, stage, uuid4(), StageDecision.APPROVED,
            )
        assert exc_info.value.stage == stage

    def test_clear_selected_stages(self, recorder, expense_row):
        approver = uuid4()
        recorder.record_stage_decision(expense_row.id, 1, approver, StageDecision.APPROVED)
        recorder.record_stage_decision(expense_row.id, 2, approver, StageDecision.APPROVED)

        assert recorder.clear_stage_decisions(expense_row.id, stages=(2,)) == 1
        assert [a.stage for a in recorder.stage_decisions(expense_row.id)] == [1]

    def test_logs_correction_flag(self, recorder, expense_row, captured_logs):
        approver = uuid4()
        recorder.record_stage_decision(expense_row.id, 1, approver, StageDecision.APPROVED)
        recorder.record_stage_decision(expense_row.id, 1, approver, StageDecision.APPROVED)
        flags = [
            r["corrected"] for r in captured_logs()
            if r["message"] == "stage_decision_recorded"
        ]
        assert flags == [False, True]


class TestItemDecisions:

    def test_one_row_per_item_and_approver(self, session, recorder, item_rows):
        chairs = item_rows[0]
        approver = uuid4()
        recorder.record_item_decision(chairs.id, approver, ItemDecisionStatus.DENIED)
        recorder.record_item_decision(
            chairs.id, approver, ItemDecisionStatus.APPROVED, 8_000,
        )

        decisions = recorder.decisions_for_items([chairs.id])[chairs.id]
        assert len(decisions) == 1
        assert decisions[0].status is ItemDecisionStatus.APPROVED
        assert decisions[0].approved_amount_cents == 8_000
        assert _count(session, ItemApprovalModel,
                      ItemApprovalModel.item_id == chairs.id) == 1

    def test_correction_keeps_first_recorded_order(
        self, recorder, item_rows, deterministic_clock,
    ):
        chairs = item_rows[0]
        first, second = uuid4(), uuid4()
        recorder.record_item_decision(chairs.id, first, ItemDecisionStatus.APPROVED, 1_000)
        deterministic_clock.advance(10)
        recorder.record_item_decision(chairs.id, second, ItemDecisionStatus.APPROVED, 2_000)
        deterministic_clock.advance(10)
        recorder.record_item_decision(chairs.id, first, ItemDecisionStatus.APPROVED, 3_000)

        decisions = recorder.decisions_for_items([chairs.id])[chairs.id]
        assert [d.approver_id for d in decisions] == [first, second]
        assert decisions[0].approved_amount_cents == 3_000
        assert decisions[0].decided_at == (
            decisions[1].decided_at + timedelta(seconds=10)
        )

    def test_negative_amount_rejected(self, recorder, item_rows):
        with pytest.raises(InvalidAmountError):
            recorder.record_item_decision(
                item_rows[0].id, uuid4(), ItemDecisionStatus.APPROVED, -1,
            )

    def test_items_without_decisions_are_present(self, recorder, item_rows):
        grouped = recorder.decisions_for_items([row.id for row in item_rows])
        assert grouped == {row.id: () for row in item_rows}

    def test_clear_only_one_approvers_decisions(self, recorder, item_rows):
        ids = [row.id for row in item_rows]
        mine, theirs = uuid4(), uuid4()
        for item_id in ids:
            recorder.record_item_decision(item_id, mine, ItemDecisionStatus.APPROVED)
            recorder.record_item_decision(item_id, theirs, ItemDecisionStatus.DENIED)

        assert recorder.clear_item_decisions(ids, approver_id=mine) == 2
        grouped = recorder.decisions_for_items(ids)
        assert all(
            [d.approver_id for d in decisions] == [theirs]
            for decisions in grouped.values()
        )

    def test_clear_nothing_for_no_items(self, recorder):
        assert recorder.clear_item_decisions([]) == 0


class TestReportDecisions:

    def test_one_row_per_report_and_approver(self, session, recorder, report_row):
        approver = uuid4()
        recorder.record_report_decision(report_row.id, approver, ReportDecision.DENIED, "x")
        latest = recorder.record_report_decision(
            report_row.id, approver, ReportDecision.APPROVED,
        )
        assert latest.decision is ReportDecision.APPROVED
        assert latest.comment is None
        assert _count(session, ReportApprovalModel,
                      ReportApprovalModel.report_id == report_row.id) == 1

    def test_clear_report_decisions(self, recorder, report_row):
        recorder.record_report_decision(report_row.id, uuid4(), ReportDecision.APPROVED)
        recorder.record_report_decision(report_row.id, uuid4(), ReportDecision.APPROVED)
        assert recorder.clear_report_decisions(report_row.id) == 2
