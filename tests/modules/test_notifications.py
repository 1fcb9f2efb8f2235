"""
Tests for notification planning and dispatch.

Covers:
- Recipient selection per notification kind
- De-duplication of recipient addresses
- Behavior without a recipient directory
- Soft-failing delivery with a dispatch report
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from expense_kernel.domain.dtos import (
    ExpenseReport,
    ExpenseRequest,
    ExpenseStatus,
    ReportStatus,
)
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.notifications import (
    LoggingSink,
    Notification,
    NotificationDispatcher,
    NotificationKind,
    NotificationPlanner,
    NotificationSink,
    RecipientDirectory,
)

K = NotificationKind


def _expense(requester_id, campus="North", report_required=True):
    return ExpenseRequest(
        id=uuid4(), title="Sound system", description=None, amount_cents=123_456,
        status=ExpenseStatus.SUBMITTED, requester_id=requester_id, team="Tech",
        campus=campus, urgency=2, category=None, event_date=None, event_name=None,
        full_event_budget_cents=None, paid_amount_cents=None, paid_at=None,
        paid_by_id=None, payment_date=None, report_required=report_required,
    )


def _report(expense):
    return ExpenseReport(
        id=uuid4(), expense_id=expense.id, author_id=expense.requester_id,
        title="Receipts", content=None, report_date=None,
        total_approved_cents=10_000, total_reported_cents=12_000,
        donation_cents=None, status=ReportStatus.PENDING,
    )


@pytest.fixture
def planner(expense_config, directory):
    return NotificationPlanner(expense_config, directory)


@pytest.fixture
def expense(leader):
    return _expense(leader.id)


class TestRecipients:

    def test_directory_satisfies_protocol(self, directory, sink):
        assert isinstance(directory, RecipientDirectory)
        assert isinstance(sink, NotificationSink)

    def test_submission_goes_to_admins_and_campus_pastors(self, planner, expense, pastor):
        notes = planner.expense_submitted(expense)
        assert [n.recipient for n in notes] == ["finance@example.org", pastor.email]
        assert all(n.kind is K.EXPENSE_SUBMITTED for n in notes)
        assert "$1,234.56" in notes[0].body

    def test_other_campus_has_no_pastors(self, planner, leader):
        notes = planner.expense_submitted(_expense(leader.id, campus="South"))
        assert [n.recipient for n in notes] == ["finance@example.org"]

    def test_decisions_go_to_requester(self, planner, expense, leader):
        for notes in (
            planner.expense_approved(expense, 10_000, "enjoy"),
            planner.expense_denied(expense, "over budget"),
            planner.change_requested_by_admin(expense, "split it"),
        ):
            assert [n.recipient for n in notes] == [leader.email]

    def test_approval_body_includes_comment(self, planner, expense):
        (note,) = planner.expense_approved(expense, 10_000, "enjoy")
        assert "$100.00" in note.body
        assert "Comment: enjoy" in note.body

    def test_requester_change_goes_to_approvers(self, planner, expense, pastor):
        notes = planner.change_requested_by_requester(expense, "wrong vendor")
        assert pastor.email in [n.recipient for n in notes]
        assert notes[0].kind is K.CHANGE_REQUESTED_BY_REQUESTER

    def test_paid_mentions_report_when_required(self, planner, leader):
        (note,) = planner.expense_paid(_expense(leader.id), 5_000)
        assert "expense report" in note.body
        (note,) = planner.expense_paid(_expense(leader.id, report_required=False), 5_000)
        assert "expense report" not in note.body

    def test_report_notifications_carry_report_id(self, planner, expense, leader):
        report = _report(expense)
        created = planner.report_created(expense, report)
        assert all(n.report_id == report.id for n in created)
        (decided,) = planner.report_decided(K.REPORT_DENIED, expense, report, "no receipts")
        assert decided.recipient == leader.email
        assert "denied" in decided.subject

    def test_duplicate_addresses_dropped(self, directory, expense):
        config = ExpenseConfig(
            admin_notification_emails=("pastor@example.org", "finance@example.org"),
        )
        notes = NotificationPlanner(config, directory).expense_submitted(expense)
        assert [n.recipient for n in notes] == ["pastor@example.org", "finance@example.org"]


class TestWithoutDirectory:

    def test_only_admins_known(self, expense_config, expense):
        planner = NotificationPlanner(expense_config)
        assert [n.recipient for n in planner.expense_submitted(expense)] == [
            "finance@example.org",
        ]

    def test_requester_notifications_skipped(self, expense_config, expense, captured_logs):
        planner = NotificationPlanner(expense_config)
        assert planner.expense_denied(expense, "no") == ()
        assert any(
            r["message"] == "notification_skipped_no_recipients" for r in captured_logs()
        )


class _FlakySink:

    def __init__(self, failing):
        self.failing = failing
        self.delivered = []

    def send(self, notification):
        if notification.recipient == self.failing:
            raise ConnectionError("smtp timeout")
        self.delivered.append(notification.recipient)


class TestDispatcher:

    def _notes(self, *recipients):
        expense_id = uuid4()
        return [
            Notification(K.EXPENSE_APPROVED, r, "s", "b", expense_id) for r in recipients
        ]

    def test_all_delivered(self, sink):
        report = NotificationDispatcher(sink).dispatch(self._notes("a@x.org", "b@x.org"))
        assert report.sent == 2
        assert report.all_delivered
        assert len(sink.sent) == 2

    def test_failure_does_not_stop_others(self, captured_logs):
        flaky = _FlakySink(failing="a@x.org")
        report = NotificationDispatcher(flaky).dispatch(
            self._notes("a@x.org", "b@x.org", "c@x.org"),
        )
        assert flaky.delivered == ["b@x.org", "c@x.org"]
        assert report.sent == 2
        assert report.failed == 1
        assert report.errors == ("a@x.org: smtp timeout",)
        assert not report.all_delivered
        assert any(r["message"] == "notification_delivery_failed" for r in captured_logs())

    def test_nothing_to_send(self):
        report = NotificationDispatcher(_FlakySink(failing=None)).dispatch([])
        assert report.sent == 0
        assert report.all_delivered

    def test_default_sink_logs(self, captured_logs):
        dispatcher = NotificationDispatcher()
        dispatcher.dispatch(self._notes("a@x.org"))
        logged = [r for r in captured_logs() if r["message"] == "notification_logged"]
        assert logged[0]["recipient"] == "a@x.org"
        assert isinstance(LoggingSink(), NotificationSink)
