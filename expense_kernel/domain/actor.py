"""
Actor and role predicates (``expense_kernel.domain.actor``).

The kernel trusts the actor it is handed: authentication and role resolution
happen outside.  The predicates here are the only place role ranks and
campus scoping are interpreted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Organizational role, ranked ADMIN > CAMPUS_PASTOR > LEADER."""

    ADMIN = "ADMIN"
    CAMPUS_PASTOR = "CAMPUS_PASTOR"
    LEADER = "LEADER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK: dict[Role, int] = {
    Role.ADMIN: 3,
    Role.CAMPUS_PASTOR: 2,
    Role.LEADER: 1,
}


@dataclass(frozen=True)
class Actor:
    """A resolved user acting on the system."""

    id: UUID
    role: Role
    campus: str | None = None
    email: str | None = None
    name: str | None = None

    def has_role_at_least(self, role: Role) -> bool:
        return self.role.rank >= role.rank


def can_approve(actor: Actor) -> bool:
    """Stage, item and report decisions are admin-only."""
    return actor.role is Role.ADMIN


def can_mark_paid(actor: Actor) -> bool:
    return actor.role is Role.ADMIN


def can_view_all(actor: Actor) -> bool:
    return actor.has_role_at_least(Role.CAMPUS_PASTOR)


def can_add_pastor_remark(actor: Actor, campus: str | None) -> bool:
    """Only a campus pastor of the request's own campus may remark."""
    return (
        actor.role is Role.CAMPUS_PASTOR
        and actor.campus is not None
        and actor.campus == campus
    )


def can_add_note(actor: Actor, requester_id: UUID, campus: str | None) -> bool:
    """Requester, any administrator, or a campus pastor of the same campus."""
    return (
        actor.id == requester_id
        or actor.role is Role.ADMIN
        or can_add_pastor_remark(actor, campus)
    )
