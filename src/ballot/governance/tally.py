"""Plurality tally — selects the proposal with the most votes.

Tie-break: the earliest-submitted (lowest id) proposal among those sharing
the maximum count wins. A later proposal replaces the current best only
when its count is strictly greater.
"""

from __future__ import annotations

from typing import Sequence

from ballot.errors import NoProposals
from ballot.models.ballot import Proposal


class TallyEngine:
    """Deterministic plurality winner selection."""

    def select_winner(self, proposals: Sequence[Proposal]) -> int:
        """Return the id of the winning proposal.

        Raises NoProposals if there is nothing to tally.
        """
        if not proposals:
            raise NoProposals()

        best_id = 0
        best_count = proposals[0].vote_count
        for proposal_id in range(1, len(proposals)):
            count = proposals[proposal_id].vote_count
            if count > best_count:
                best_id = proposal_id
                best_count = count
        return best_id

    def standings(self, proposals: Sequence[Proposal]) -> list[int]:
        """Proposal ids ordered by descending count, then ascending id.

        The first entry always agrees with ``select_winner``.
        """
        return sorted(
            range(len(proposals)),
            key=lambda pid: (-proposals[pid].vote_count, pid),
        )
