"""Ballot phase controller — manages the one-way workflow progression.

REGISTERING_VOTERS → PROPOSALS_REGISTRATION_STARTED →
PROPOSALS_REGISTRATION_ENDED → VOTING_SESSION_STARTED →
VOTING_SESSION_ENDED → VOTES_TALLIED

Rules:
- Phase progression is one-way. No regression, no skipping.
- Each administrative transition has exactly one legal source phase.
- The final step (→ VOTES_TALLIED) belongs to the tally, not to a
  transition operation.

The controller validates and applies; it does not record events. The
ballot records the audit event between ``check_transition`` and
``apply``, so a phase change is never committed without its record.
"""

from __future__ import annotations

from ballot.errors import PhaseMismatch
from ballot.models.ballot import WorkflowPhase


# Administrative transitions: operation → (source phase, target phase)
TRANSITIONS: dict[str, tuple[WorkflowPhase, WorkflowPhase]] = {
    "start_proposals_registering": (
        WorkflowPhase.REGISTERING_VOTERS,
        WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
    ),
    "end_proposals_registering": (
        WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
        WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
    ),
    "start_voting_session": (
        WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
        WorkflowPhase.VOTING_SESSION_STARTED,
    ),
    "end_voting_session": (
        WorkflowPhase.VOTING_SESSION_STARTED,
        WorkflowPhase.VOTING_SESSION_ENDED,
    ),
    "tally_votes": (
        WorkflowPhase.VOTING_SESSION_ENDED,
        WorkflowPhase.VOTES_TALLIED,
    ),
}


class PhaseController:
    """Holds the current phase and enforces forward-only transitions.

    Invariants:
    1. Phase progression is one-way.
    2. A transition moves exactly one step forward.
    3. A rejected transition leaves the phase untouched.
    """

    def __init__(
        self, phase: WorkflowPhase = WorkflowPhase.REGISTERING_VOTERS,
    ) -> None:
        self._phase = phase

    @property
    def phase(self) -> WorkflowPhase:
        return self._phase

    def require(self, expected: WorkflowPhase, operation: str) -> None:
        """Raise PhaseMismatch unless the current phase is ``expected``."""
        if self._phase != expected:
            raise PhaseMismatch(expected, self._phase, operation)

    def can_transition(self, target: WorkflowPhase) -> tuple[bool, str]:
        """Check if moving to ``target`` respects one-way progression.

        Returns (allowed, reason).
        """
        current_ord = self._phase.ordinal
        target_ord = target.ordinal

        if target_ord <= current_ord:
            return False, f"Cannot regress from {self._phase.value} to {target.value}"
        if target != self._phase.next_phase:
            return False, f"Cannot skip phases: {self._phase.value} → {target.value}"
        return True, f"{self._phase.value} → {target.value} transition allowed"

    def check_transition(self, operation: str) -> tuple[WorkflowPhase, WorkflowPhase]:
        """Validate the named transition against the current phase.

        Returns (previous, new). Raises PhaseMismatch if the current
        phase is not the operation's source phase.
        """
        try:
            source, target = TRANSITIONS[operation]
        except KeyError:
            raise ValueError(f"Unknown transition: {operation}") from None
        self.require(source, operation)
        allowed, reason = self.can_transition(target)
        if not allowed:  # pragma: no cover - table is one-step by construction
            raise ValueError(reason)
        return source, target

    def apply(self, target: WorkflowPhase) -> None:
        """Commit a transition previously validated by check_transition."""
        allowed, reason = self.can_transition(target)
        if not allowed:
            raise ValueError(reason)
        self._phase = target
