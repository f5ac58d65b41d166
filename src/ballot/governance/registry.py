"""Voter and proposal registries.

Both registries are plain in-memory stores guarded by the owning ballot.
They validate their own record-level preconditions (duplicate
registration, empty description, id range, double vote) but know nothing
about phases or callers: access and phase checks are the ballot's job.

Structure mirrors the other engines in this package:
- ``check_*`` methods validate without side effects.
- Mutating methods assume the matching check already passed.
- ``to_records`` / ``from_records`` round-trip through plain dicts.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterator, Optional

from ballot.errors import (
    AlreadyRegistered,
    AlreadyVoted,
    EmptyDescription,
    ProposalNotFound,
)
from ballot.models.ballot import UNREGISTERED_VOTER, Proposal, Voter


class VoterRegistry:
    """Voter records keyed by principal. Records are never deleted."""

    def __init__(self) -> None:
        self._voters: dict[str, Voter] = {}

    @classmethod
    def from_records(cls, voters_data: dict[str, dict[str, Any]]) -> VoterRegistry:
        """Restore registry state from persistence records."""
        registry = cls()
        for address, data in voters_data.items():
            registry._voters[address] = Voter.from_dict(data)
        return registry

    def to_records(self) -> dict[str, dict[str, Any]]:
        return {address: v.to_dict() for address, v in self._voters.items()}

    def get(self, address: str) -> Optional[Voter]:
        return self._voters.get(address)

    def lookup(self, address: str) -> Voter:
        """Return the stored record, or the zero-valued record if unknown."""
        return self._voters.get(address, UNREGISTERED_VOTER)

    def check_register(self, address: str) -> None:
        existing = self._voters.get(address)
        if existing is not None and existing.is_registered:
            raise AlreadyRegistered()

    def register(self, address: str) -> Voter:
        voter = Voter(is_registered=True)
        self._voters[address] = voter
        return voter

    def check_vote(self, address: str) -> None:
        if self.lookup(address).has_voted:
            raise AlreadyVoted()

    def mark_voted(self, address: str, proposal_id: int) -> Voter:
        voter = replace(
            self._voters[address], has_voted=True, voted_proposal_id=proposal_id,
        )
        self._voters[address] = voter
        return voter

    def __iter__(self) -> Iterator[str]:
        return iter(self._voters)

    def __len__(self) -> int:
        return len(self._voters)

    @property
    def voted_count(self) -> int:
        return sum(1 for v in self._voters.values() if v.has_voted)


class ProposalRegistry:
    """Append-only ordered proposals. A proposal's id is its index."""

    def __init__(self) -> None:
        self._proposals: list[Proposal] = []

    @classmethod
    def from_records(cls, proposals_data: list[dict[str, Any]]) -> ProposalRegistry:
        """Restore registry state from persistence records (in id order)."""
        registry = cls()
        registry._proposals = [Proposal.from_dict(p) for p in proposals_data]
        return registry

    def to_records(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self._proposals]

    @staticmethod
    def check_description(description: str) -> None:
        if not description or not description.strip():
            raise EmptyDescription()

    def append(self, description: str) -> int:
        """Append a proposal with zero votes and return its id."""
        proposal_id = len(self._proposals)
        self._proposals.append(Proposal(description=description))
        return proposal_id

    def check_exists(self, proposal_id: int) -> None:
        if not 0 <= proposal_id < len(self._proposals):
            raise ProposalNotFound()

    def get(self, proposal_id: int) -> Proposal:
        self.check_exists(proposal_id)
        return self._proposals[proposal_id]

    def increment(self, proposal_id: int) -> Proposal:
        proposal = self._proposals[proposal_id]
        updated = replace(proposal, vote_count=proposal.vote_count + 1)
        self._proposals[proposal_id] = updated
        return updated

    def snapshot(self) -> list[Proposal]:
        """Return the proposals in id order."""
        return list(self._proposals)

    def __len__(self) -> int:
        return len(self._proposals)
