"""Access gate — the two guard predicates placed in front of every operation.

The predicates are independent and composable: an operation applies the
administrator check, the registered-voter check, or neither (universal
reads). The administrator is not implicitly a voter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ballot.errors import NotAdministrator, NotVoter

if TYPE_CHECKING:
    from ballot.governance.registry import VoterRegistry


def require_administrator(caller: str, administrator: str) -> None:
    """Raise NotAdministrator unless caller is the ballot's administrator."""
    if caller != administrator:
        raise NotAdministrator()


def require_registered_voter(caller: str, voters: VoterRegistry) -> None:
    """Raise NotVoter unless caller holds a registered voter record."""
    voter = voters.get(caller)
    if voter is None or not voter.is_registered:
        raise NotVoter()
