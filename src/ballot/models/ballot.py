"""Ballot data models — workflow phases, voter records, proposals.

The workflow is a fixed six-phase sequence. Progression is one-way:
each phase may only advance to the next one, never skip, never regress.

Records are immutable snapshots. Registries replace a record rather than
mutating it in place, so a record handed to a caller never changes under it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class WorkflowPhase(str, enum.Enum):
    """The six phases of a ballot, in workflow order."""
    REGISTERING_VOTERS = "registering_voters"
    PROPOSALS_REGISTRATION_STARTED = "proposals_registration_started"
    PROPOSALS_REGISTRATION_ENDED = "proposals_registration_ended"
    VOTING_SESSION_STARTED = "voting_session_started"
    VOTING_SESSION_ENDED = "voting_session_ended"
    VOTES_TALLIED = "votes_tallied"

    @property
    def ordinal(self) -> int:
        """Position of this phase in the workflow (0-based)."""
        return PHASE_ORDER.index(self)

    @property
    def next_phase(self) -> WorkflowPhase | None:
        """The phase that follows this one, or None for the final phase."""
        idx = self.ordinal + 1
        return PHASE_ORDER[idx] if idx < len(PHASE_ORDER) else None

    @classmethod
    def from_ordinal(cls, ordinal: int) -> WorkflowPhase:
        if not 0 <= ordinal < len(PHASE_ORDER):
            raise ValueError(f"No workflow phase with ordinal {ordinal}")
        return PHASE_ORDER[ordinal]


PHASE_ORDER: tuple[WorkflowPhase, ...] = tuple(WorkflowPhase)


@dataclass(frozen=True)
class Voter:
    """Eligibility and ballot state of one principal.

    Invariants:
    - has_voted goes False → True exactly once.
    - voted_proposal_id is meaningful only when has_voted is True.
    """
    is_registered: bool = False
    has_voted: bool = False
    voted_proposal_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_registered": self.is_registered,
            "has_voted": self.has_voted,
            "voted_proposal_id": self.voted_proposal_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Voter:
        return cls(
            is_registered=bool(data.get("is_registered", False)),
            has_voted=bool(data.get("has_voted", False)),
            voted_proposal_id=int(data.get("voted_proposal_id", 0)),
        )


# Returned for principals that were never registered.
UNREGISTERED_VOTER = Voter()


@dataclass(frozen=True)
class Proposal:
    """A submitted proposal. Its id is its position in the registry."""
    description: str
    vote_count: int = 0

    def __post_init__(self) -> None:
        if self.vote_count < 0:
            raise ValueError("vote_count cannot be negative")

    def to_dict(self) -> dict[str, Any]:
        return {"description": self.description, "vote_count": self.vote_count}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Proposal:
        return cls(
            description=data["description"],
            vote_count=int(data.get("vote_count", 0)),
        )
