"""
Canonical workflow types (``expense_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines.  The expense request and
the expense report each declare one ``Workflow``; guards look transitions
up by (from_state, action) instead of branching on status strings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition exists per (from_state, action) pair.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the transition guard does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def find(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for (from_state, action), or None."""
        for transition in self.transitions:
            if transition.from_state == from_state and transition.action == action:
                return transition
        return None

    def sources(self, action: str) -> frozenset[str]:
        """States from which ``action`` is legal."""
        return frozenset(
            t.from_state for t in self.transitions if t.action == action
        )

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Actions available in ``state``, in declaration order."""
        return tuple(t.action for t in self.transitions if t.from_state == state)
