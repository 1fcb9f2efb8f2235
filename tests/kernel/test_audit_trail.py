"""
Tests for the Audit Trail Writer.

Covers:
- Appending status events with per-request sequence numbers
- Reading history oldest first
- "Ever reached" queries independent of current status
- Append-only enforcement on the ORM model
"""

from uuid import uuid4

import pytest

from expense_kernel.domain.dtos import ExpenseStatus
from expense_kernel.exceptions import ImmutabilityViolationError
from expense_kernel.models.status_event import StatusEventModel
from expense_kernel.services.audit_trail import AuditTrailWriter

S = ExpenseStatus


@pytest.fixture
def audit(session, deterministic_clock):
    return AuditTrailWriter(session, deterministic_clock)


class TestRecordTransition:

    def test_creation_event_has_no_from_status(
        self, audit, expense_row, deterministic_clock,
    ):
        actor = uuid4()
        event = audit.record_transition(expense_row.id, None, S.SUBMITTED, actor, "created")
        assert event.from_status is None
        assert event.to_status is S.SUBMITTED
        assert event.actor_id == actor
        assert event.reason == "created"
        assert event.created_at == deterministic_clock.now()

    def test_history_is_ordered(self, audit, expense_row, deterministic_clock):
        actor = uuid4()
        audit.record_transition(expense_row.id, None, S.SUBMITTED, actor)
        audit.record_transition(expense_row.id, S.SUBMITTED, S.APPROVED, actor)
        audit.record_transition(expense_row.id, S.APPROVED, S.PAID, actor)

        history = audit.history(expense_row.id)
        assert [e.to_status for e in history] == [S.SUBMITTED, S.APPROVED, S.PAID]
        assert history[1].from_status is S.SUBMITTED

    def test_same_status_event_is_allowed(self, audit, expense_row):
        actor = uuid4()
        audit.record_transition(expense_row.id, S.SUBMITTED, S.SUBMITTED, actor, "stage 1")
        assert len(audit.history(expense_row.id)) == 1

    def test_history_of_unknown_request_is_empty(self, audit):
        assert audit.history(uuid4()) == ()


class TestHasReached:

    def test_reached_after_leaving(self, audit, expense_row):
        actor = uuid4()
        audit.record_transition(expense_row.id, S.SUBMITTED, S.APPROVED, actor)
        audit.record_transition(expense_row.id, S.APPROVED, S.CHANGE_REQUESTED, actor)

        assert audit.has_reached(expense_row.id, S.APPROVED)
        assert not audit.has_reached(expense_row.id, S.PAID)

    def test_transition_counts(self, audit, expense_row):
        actor = uuid4()
        audit.record_transition(expense_row.id, None, S.SUBMITTED, actor)
        audit.record_transition(expense_row.id, S.SUBMITTED, S.CHANGE_REQUESTED, actor)
        audit.record_transition(expense_row.id, S.CHANGE_REQUESTED, S.SUBMITTED, actor)

        counts = audit.transition_counts(expense_row.id)
        assert counts == {S.SUBMITTED: 2, S.CHANGE_REQUESTED: 1}


class TestAppendOnly:

    def _persisted(self, session, audit, expense_row):
        event = audit.record_transition(expense_row.id, None, S.SUBMITTED, uuid4())
        return session.get(StatusEventModel, event.id)

    def test_update_rejected(self, session, audit, expense_row):
        row = self._persisted(session, audit, expense_row)
        row.reason = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StatusEvent"

    def test_delete_rejected(self, session, audit, expense_row):
        row = self._persisted(session, audit, expense_row)
        session.delete(row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
