"""Ballot error taxonomy.

Every error is a rejection of the attempted operation. None of them leave
partial state behind: a failed call has no side effect and may be retried
by the caller as-is.

Each error carries a stable ``code`` so collaborators (service layer, CLI)
can map failures without parsing messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ballot.models.ballot import WorkflowPhase


class BallotError(Exception):
    """Base class for all rejected ballot operations."""
    code = "ballot_error"
    default_message = "Ballot operation rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


# Access gate


class NotAdministrator(BallotError):
    code = "not_administrator"
    default_message = "Caller is not the administrator"


class NotVoter(BallotError):
    code = "not_voter"
    default_message = "You're not a voter"


# Workflow


# Rejection message for each phase-gated operation.
PHASE_MESSAGES: dict[str, str] = {
    "add_voter": "Voters registration is not open yet",
    "start_proposals_registering": "Registering proposals can't be started now",
    "add_proposal": "Proposals are not allowed yet",
    "end_proposals_registering": "Registering proposals haven't started yet",
    "start_voting_session": "Registering proposals phase is not finished",
    "set_vote": "Voting session hasn't started yet",
    "end_voting_session": "Voting session hasn't started yet",
    "tally_votes": "Current status is not voting session ended",
    "results": "Votes have not been tallied yet",
}


class PhaseMismatch(BallotError):
    """Raised when an operation is attempted outside its required phase."""
    code = "phase_mismatch"

    def __init__(
        self,
        expected: WorkflowPhase,
        actual: WorkflowPhase,
        operation: str,
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.operation = operation
        message = PHASE_MESSAGES.get(
            operation,
            f"{operation} requires phase {expected.value}, current phase is {actual.value}",
        )
        super().__init__(message)


# Domain preconditions


class AlreadyRegistered(BallotError):
    code = "already_registered"
    default_message = "Already registered"


class AlreadyVoted(BallotError):
    code = "already_voted"
    default_message = "You have already voted"


class EmptyDescription(BallotError):
    code = "empty_description"
    default_message = "Proposal description cannot be empty"


class ProposalNotFound(BallotError):
    code = "proposal_not_found"
    default_message = "Proposal not found"


class NoProposals(BallotError):
    code = "no_proposals"
    default_message = "No proposals to tally"


class AuditTrailError(BallotError):
    """The event log refused the record; the operation was not applied."""
    code = "audit_trail_failure"
    default_message = "Event log rejected the record"
