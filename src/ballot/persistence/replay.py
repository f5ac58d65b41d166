"""Event-log replay — rebuild a ballot from its audit trail.

Replay re-executes each recorded event through the ballot's own guarded
operations on a fresh instance, so every historical step is validated
again (access, phase, preconditions). Comparing the rebuilt ballot with
a stored snapshot detects a state store that drifted from the log.
"""

from __future__ import annotations

from typing import Any, Iterable

from ballot.errors import BallotError
from ballot.governance.ballot import DEFAULT_BALLOT_ID, Ballot
from ballot.governance.workflow import TRANSITIONS
from ballot.models.ballot import WorkflowPhase
from ballot.persistence.event_log import EventKind, EventRecord


class ReplayError(Exception):
    """Raised when an event cannot be re-applied to the rebuilt ballot."""

    def __init__(self, event: EventRecord, reason: str) -> None:
        self.event = event
        super().__init__(f"Event {event.event_id} ({event.event_kind.value}): {reason}")


# Target phase → operation that produces it
_OPERATION_FOR_TARGET: dict[WorkflowPhase, str] = {
    target: operation for operation, (_, target) in TRANSITIONS.items()
}


def _apply(ballot: Ballot, event: EventRecord) -> None:
    payload = event.payload
    actor = event.actor_id

    if event.event_kind == EventKind.VOTER_REGISTERED:
        ballot.add_voter(actor, payload["address"])

    elif event.event_kind == EventKind.PROPOSAL_REGISTERED:
        proposal_id = ballot.add_proposal(actor, payload["description"])
        if proposal_id != payload["proposal_id"]:
            raise ReplayError(
                event,
                f"proposal id {proposal_id} != recorded {payload['proposal_id']}",
            )

    elif event.event_kind == EventKind.VOTED:
        ballot.set_vote(actor, payload["proposal_id"])

    elif event.event_kind == EventKind.WORKFLOW_STATUS_CHANGE:
        target = WorkflowPhase(payload["new"])
        operation = _OPERATION_FOR_TARGET.get(target)
        if operation is None:
            raise ReplayError(event, f"no operation leads to {target.value}")
        if operation == "tally_votes":
            winner = ballot.tally_votes(actor)
            recorded = payload.get("winning_proposal_id")
            if recorded is not None and winner != recorded:
                raise ReplayError(
                    event, f"winning proposal {winner} != recorded {recorded}",
                )
        else:
            getattr(ballot, operation)(actor)


def rebuild_ballot(
    events: Iterable[EventRecord],
    administrator: str,
    ballot_id: str = DEFAULT_BALLOT_ID,
) -> Ballot:
    """Replay ``events`` onto a fresh in-memory ballot.

    Raises ReplayError naming the first event that fails to re-apply.
    """
    ballot = Ballot(administrator=administrator, ballot_id=ballot_id)
    for event in events:
        try:
            _apply(ballot, event)
        except BallotError as e:
            raise ReplayError(event, str(e)) from e
        except KeyError as e:
            raise ReplayError(event, f"missing payload field {e}") from e
    return ballot


def verify_against(
    events: Iterable[EventRecord],
    records: dict[str, Any],
) -> list[str]:
    """Compare a replay of ``events`` with a stored snapshot.

    Returns a list of discrepancies. Empty list means consistent.
    """
    try:
        rebuilt = rebuild_ballot(
            events,
            administrator=records["administrator"],
            ballot_id=records.get("ballot_id", DEFAULT_BALLOT_ID),
        )
    except ReplayError as e:
        return [str(e)]

    replayed = rebuilt.to_records()
    discrepancies: list[str] = []
    for key in ("phase", "winning_proposal_id", "proposals", "voters"):
        if replayed.get(key) != records.get(key):
            discrepancies.append(
                f"{key}: replayed {replayed.get(key)!r} != stored {records.get(key)!r}"
            )
    return discrepancies
