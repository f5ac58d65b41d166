"""Ballot service — typed-result facade over a single ballot.

This is the interface for collaborators that map requests (CLI, RPC,
HTTP) onto the ballot's operation set. It:
- Wires a ballot to its durable event log and state store.
- Converts every rejection into a ``ServiceResult`` instead of an
  exception, carrying the error's stable code.
- Builds status and results summaries for display.

The ballot itself stays the only place where rules are enforced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ballot import __version__
from ballot.config import BallotConfig
from ballot.errors import BallotError
from ballot.governance.ballot import Ballot
from ballot.models.ballot import WorkflowPhase
from ballot.persistence.event_log import EventKind, EventLog
from ballot.persistence.replay import ReplayError, rebuild_ballot, verify_against
from ballot.persistence.state_store import StateStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class BallotService:
    """Unified ballot facade.

    Usage:
        service = BallotService(Ballot(administrator="admin"))
        service.add_voter("admin", "alice")
        result = service.start_proposals_registering("admin")
        if not result.success:
            print(result.errors, result.data["code"])

    Durable (config-driven):
        service = BallotService.open(load_config())
    """

    def __init__(self, ballot: Ballot) -> None:
        self._ballot = ballot

    @classmethod
    def open(cls, config: BallotConfig) -> BallotService:
        """Load the configured ballot from disk, or create it.

        The event log is the committed record. Its replay is compared with
        the stored snapshot, and a stale or missing snapshot is rebuilt
        from the log and saved again. A log that cannot be replayed, or a
        snapshot with no events behind it, refuses to open.

        A stored ballot keeps its original administrator even if the
        config now names someone else.
        """
        config.data_dir.mkdir(parents=True, exist_ok=True)
        event_log = EventLog(storage_path=config.events_path)
        state_store = StateStore(storage_path=config.state_path)

        records = state_store.get(config.ballot_id)
        events = event_log.events()

        if not events:
            if records is not None:
                raise ValueError(
                    f"Ballot {config.ballot_id} has a stored snapshot but no events in {config.events_path}"
                )
            if not config.administrator:
                raise ValueError(
                    f"Ballot {config.ballot_id} has no stored state and no administrator is configured"
                )
            return cls(Ballot(
                administrator=config.administrator,
                ballot_id=config.ballot_id,
                event_log=event_log,
                state_store=state_store,
            ))

        # Only the administrator can act before any voter is registered
        administrator = events[0].actor_id
        if config.administrator and config.administrator != administrator:
            log.warning(
                "Ballot %s: configured administrator %s ignored, stored administrator is %s",
                config.ballot_id, config.administrator, administrator,
            )
        try:
            replayed = rebuild_ballot(events, administrator, ballot_id=config.ballot_id)
        except ReplayError as e:
            raise ValueError(
                f"Ballot {config.ballot_id}: event log cannot be replayed: {e}"
            ) from e

        replayed_records = replayed.to_records()
        ballot = Ballot.from_records(
            replayed_records, event_log=event_log, state_store=state_store,
        )
        if records != replayed_records:
            log.warning(
                "Ballot %s: stored snapshot is stale, restored from %d logged events",
                config.ballot_id, len(events),
            )
            ballot.save_snapshot()
        return cls(ballot)

    @property
    def ballot(self) -> Ballot:
        return self._ballot

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    def add_voter(self, caller: str, address: str) -> ServiceResult:
        return self._run(
            "add_voter",
            lambda: {"address": address, **self._ballot.add_voter(caller, address).to_dict()},
        )

    def start_proposals_registering(self, caller: str) -> ServiceResult:
        return self._run_transition(caller, self._ballot.start_proposals_registering)

    def end_proposals_registering(self, caller: str) -> ServiceResult:
        return self._run_transition(caller, self._ballot.end_proposals_registering)

    def start_voting_session(self, caller: str) -> ServiceResult:
        return self._run_transition(caller, self._ballot.start_voting_session)

    def end_voting_session(self, caller: str) -> ServiceResult:
        return self._run_transition(caller, self._ballot.end_voting_session)

    def tally_votes(self, caller: str) -> ServiceResult:
        return self._run(
            "tally_votes",
            lambda: {
                "winning_proposal_id": self._ballot.tally_votes(caller),
                "phase": self._ballot.current_phase().value,
            },
        )

    # ------------------------------------------------------------------
    # Voter-facing
    # ------------------------------------------------------------------

    def get_voter(self, caller: str, address: str) -> ServiceResult:
        return self._run(
            "get_voter",
            lambda: {"address": address, **self._ballot.get_voter(caller, address).to_dict()},
        )

    def add_proposal(self, caller: str, description: str) -> ServiceResult:
        return self._run(
            "add_proposal",
            lambda: {"proposal_id": self._ballot.add_proposal(caller, description)},
        )

    def get_one_proposal(self, caller: str, proposal_id: int) -> ServiceResult:
        return self._run(
            "get_one_proposal",
            lambda: {
                "proposal_id": proposal_id,
                **self._ballot.get_one_proposal(caller, proposal_id).to_dict(),
            },
        )

    def set_vote(self, caller: str, proposal_id: int) -> ServiceResult:
        def _vote() -> dict[str, Any]:
            self._ballot.set_vote(caller, proposal_id)
            return {"voter": caller, "proposal_id": proposal_id}

        return self._run("set_vote", _vote)

    # ------------------------------------------------------------------
    # Universal reads and reporting
    # ------------------------------------------------------------------

    def current_phase(self) -> WorkflowPhase:
        return self._ballot.current_phase()

    def winning_proposal_id(self) -> int:
        return self._ballot.winning_proposal_id()

    def results(self) -> ServiceResult:
        """Proposals with counts in standings order (after tallying)."""
        def _results() -> dict[str, Any]:
            standings = [
                {"proposal_id": pid, **proposal.to_dict()}
                for pid, proposal in self._ballot.results()
            ]
            return {
                "winning_proposal_id": self._ballot.winning_proposal_id(),
                "standings": standings,
            }

        return self._run("results", _results)

    def events(self, kind: Optional[EventKind] = None) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._ballot.event_log.events(kind)]

    def verify_log(self) -> ServiceResult:
        """Replay the event log and compare it with the ballot's state."""
        discrepancies = verify_against(
            self._ballot.event_log.events(), self._ballot.to_records(),
        )
        if discrepancies:
            return ServiceResult(
                success=False,
                errors=discrepancies,
                data={"code": "log_mismatch"},
            )
        return ServiceResult(
            success=True, data={"events": self._ballot.event_log.count},
        )

    def status(self) -> dict[str, Any]:
        """Return a ballot-wide status summary."""
        snapshot = self._ballot.snapshot_status()
        phase = snapshot["phase"]
        status: dict[str, Any] = {
            "version": __version__,
            "ballot_id": self._ballot.ballot_id,
            "administrator": self._ballot.administrator,
            "phase": {"name": phase.value, "ordinal": phase.ordinal},
            "voters": {"registered": snapshot["voters"], "voted": snapshot["voted"]},
            "proposals": snapshot["proposals"],
            "events": snapshot["events"],
            "last_event_id": snapshot["last_event_id"],
            "persistence_degraded": snapshot["persistence_degraded"],
        }
        if snapshot["winning_proposal_id"] is not None:
            status["winning_proposal_id"] = snapshot["winning_proposal_id"]
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_transition(
        self, caller: str, transition: Callable[[str], WorkflowPhase],
    ) -> ServiceResult:
        def _transition() -> dict[str, Any]:
            new = transition(caller)
            previous = WorkflowPhase.from_ordinal(new.ordinal - 1)
            return {"previous": previous.value, "new": new.value}

        return self._run(transition.__name__, _transition)

    @staticmethod
    def _run(operation: str, action: Callable[[], dict[str, Any]]) -> ServiceResult:
        """Execute a ballot operation, mapping rejections to a result."""
        try:
            data = action()
        except BallotError as e:
            log.debug("%s rejected (%s): %s", operation, e.code, e)
            return ServiceResult(success=False, errors=[str(e)], data={"code": e.code})
        return ServiceResult(success=True, data=data)
