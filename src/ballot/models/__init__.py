"""Core data models for the ballot workflow."""

from ballot.models.ballot import (
    PHASE_ORDER,
    UNREGISTERED_VOTER,
    Proposal,
    Voter,
    WorkflowPhase,
)

__all__ = [
    "PHASE_ORDER",
    "UNREGISTERED_VOTER",
    "Proposal",
    "Voter",
    "WorkflowPhase",
]
