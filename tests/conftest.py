"""
Pytest fixtures for the expense lifecycle test suite.

Provides:
- In-memory SQLite sessions with every table created
- A deterministic clock and one actor per role
- Services wired with a recording notification sink
- Structured-log capture

Environment Variables:
- DATABASE_URL: optional database URL (e.g. a PostgreSQL test database).
  If not set, each test gets a fresh in-memory SQLite database.
"""

import json
import logging
import os
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from expense_kernel.db.engine import build_engine, create_tables, drop_tables
from expense_kernel.domain.actor import Actor, Role
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_modules.expense.config import ExpenseConfig
from expense_modules.expense.models import ExpenseDraft, ItemDraft
from expense_modules.expense.notifications import Notification
from expense_modules.expense.report_service import ReportService
from expense_modules.expense.service import ExpenseService

CAMPUS = "North"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, expense_service):
            expense_service.create_expense(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = build_engine(os.environ.get("DATABASE_URL", "sqlite://"))
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    session = factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=Role.ADMIN, email="admin@example.org", name="Admin")


@pytest.fixture
def pastor() -> Actor:
    return Actor(
        id=uuid4(), role=Role.CAMPUS_PASTOR, campus=CAMPUS,
        email="pastor@example.org", name="Pastor",
    )


@pytest.fixture
def leader() -> Actor:
    return Actor(
        id=uuid4(), role=Role.LEADER, campus=CAMPUS,
        email="leader@example.org", name="Leader",
    )


@pytest.fixture
def other_leader() -> Actor:
    return Actor(id=uuid4(), role=Role.LEADER, campus=CAMPUS, email="other@example.org")


# =============================================================================
# Notifications
# =============================================================================


class RecordingSink:
    """Keeps every notification; optionally fails for chosen recipients."""

    def __init__(self, fail_for: tuple[str, ...] = ()):
        self.sent: list[Notification] = []
        self.fail_for = fail_for

    def send(self, notification: Notification) -> None:
        if notification.recipient in self.fail_for:
            raise ConnectionError(f"mail server rejected {notification.recipient}")
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind.value for n in self.sent]


class StaticDirectory:
    """Recipient directory backed by the test actors."""

    def __init__(self, *actors: Actor, pastors: dict[str, tuple[str, ...]] | None = None):
        self._emails = {a.id: a.email for a in actors}
        self._pastors = pastors or {}

    def email_for(self, user_id: UUID) -> str | None:
        return self._emails.get(user_id)

    def campus_pastor_emails(self, campus: str | None) -> tuple[str, ...]:
        return self._pastors.get(campus or "", ())


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def directory(admin, pastor, leader, other_leader) -> StaticDirectory:
    return StaticDirectory(
        admin, pastor, leader, other_leader, pastors={CAMPUS: (pastor.email,)},
    )


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def expense_config() -> ExpenseConfig:
    return ExpenseConfig(admin_notification_emails=("finance@example.org",))


@pytest.fixture
def two_stage_config() -> ExpenseConfig:
    return ExpenseConfig(
        require_two_stage_approval=True,
        admin_notification_emails=("finance@example.org",),
    )


@pytest.fixture
def expense_service(session, expense_config, deterministic_clock, sink, directory):
    return ExpenseService(
        session,
        expense_config,
        clock=deterministic_clock,
        sink=sink,
        directory=directory,
    )


@pytest.fixture
def report_service(session, expense_config, deterministic_clock, sink, directory):
    return ReportService(
        session,
        expense_config,
        clock=deterministic_clock,
        sink=sink,
        directory=directory,
    )


# =============================================================================
# Drafts
# =============================================================================


@pytest.fixture
def lump_sum_draft() -> ExpenseDraft:
    return ExpenseDraft(title="Youth retreat deposit", amount_cents=50_000)


@pytest.fixture
def itemized_draft() -> ExpenseDraft:
    return ExpenseDraft(
        title="Sunday setup",
        amount_cents=15_000,
        items=(
            ItemDraft(description="Chairs", unit_price_cents=2_500, quantity=4),
            ItemDraft(description="Tables", unit_price_cents=5_000),
        ),
    )
