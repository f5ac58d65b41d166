"""Ballot instance — one administrator, one workflow, one winner.

A ``Ballot`` owns the phase controller, both registries and the tally
result. It is the single mutual-exclusion domain for all of them: every
operation (reads included) runs under one re-entrant lock, so mutations
are serialised and no reader ever sees one half-applied.

Every mutating operation follows the same ordering:
1. Access gate (administrator or registered voter).
2. Phase check.
3. Domain preconditions (nothing written yet — fail fast).
4. Audit record appended to the event log (if this fails, nothing changed).
5. In-memory mutation (cannot fail — already validated).
6. Snapshot persisted to the state store, if one is attached. A failure
   here does not roll back: the audit trail already holds the change,
   and the next ``BallotService.open`` rebuilds the snapshot from it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from ballot.errors import AuditTrailError
from ballot.governance.access import require_administrator, require_registered_voter
from ballot.governance.registry import ProposalRegistry, VoterRegistry
from ballot.governance.tally import TallyEngine
from ballot.governance.workflow import PhaseController
from ballot.models.ballot import Proposal, Voter, WorkflowPhase
from ballot.persistence.event_log import EventKind, EventLog, EventRecord
from ballot.persistence.state_store import StateStore

log = logging.getLogger(__name__)

DEFAULT_BALLOT_ID = "default"


class Ballot:
    """A single plurality ballot.

    Usage:
        ballot = Ballot(administrator="admin")
        ballot.add_voter("admin", "alice")
        ballot.start_proposals_registering("admin")
        pid = ballot.add_proposal("alice", "Build a bridge")
        ballot.end_proposals_registering("admin")
        ballot.start_voting_session("admin")
        ballot.set_vote("alice", pid)
        ballot.end_voting_session("admin")
        ballot.tally_votes("admin")
        ballot.winning_proposal_id()

    Persistence (optional):
        ballot = Ballot("admin", event_log=log, state_store=store)
        # Every committed change is appended to the log and snapshotted.
    """

    def __init__(
        self,
        administrator: str,
        ballot_id: str = DEFAULT_BALLOT_ID,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        if not administrator:
            raise ValueError("A ballot needs an administrator")
        self._administrator = administrator
        self._ballot_id = ballot_id
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store

        self._phases = PhaseController()
        self._voters = VoterRegistry()
        self._proposals = ProposalRegistry()
        self._tally = TallyEngine()
        self._winning_proposal_id = 0

        self._lock = threading.RLock()
        # Initialise counter from the log to avoid ID collision on restart
        self._event_counter = self._event_log.count
        self._persistence_degraded = False

    @classmethod
    def from_records(
        cls,
        records: dict[str, Any],
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> Ballot:
        """Restore a ballot from a ``to_records`` snapshot."""
        ballot = cls(
            administrator=records["administrator"],
            ballot_id=records.get("ballot_id", DEFAULT_BALLOT_ID),
            event_log=event_log,
            state_store=state_store,
        )
        ballot._phases = PhaseController(WorkflowPhase(records["phase"]))
        ballot._voters = VoterRegistry.from_records(records.get("voters", {}))
        ballot._proposals = ProposalRegistry.from_records(records.get("proposals", []))
        ballot._winning_proposal_id = int(records.get("winning_proposal_id", 0))
        return ballot

    def to_records(self) -> dict[str, Any]:
        with self._lock:
            return {
                "ballot_id": self._ballot_id,
                "administrator": self._administrator,
                "phase": self._phases.phase.value,
                "voters": self._voters.to_records(),
                "proposals": self._proposals.to_records(),
                "winning_proposal_id": self._winning_proposal_id,
            }

    # ------------------------------------------------------------------
    # Universal reads
    # ------------------------------------------------------------------

    @property
    def ballot_id(self) -> str:
        return self._ballot_id

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def current_phase(self) -> WorkflowPhase:
        with self._lock:
            return self._phases.phase

    def winning_proposal_id(self) -> int:
        """The tallied winner; 0 until votes have been tallied."""
        with self._lock:
            return self._winning_proposal_id

    def snapshot_status(self) -> dict[str, Any]:
        """Phase, registry sizes and winner read under a single lock hold.

        ``winning_proposal_id`` is None until votes have been tallied.
        """
        with self._lock:
            phase = self._phases.phase
            tallied = phase == WorkflowPhase.VOTES_TALLIED
            last = self._event_log.last_event
            return {
                "phase": phase,
                "voters": len(self._voters),
                "voted": self._voters.voted_count,
                "proposals": len(self._proposals),
                "events": self._event_log.count,
                "last_event_id": last.event_id if last is not None else None,
                "persistence_degraded": self._persistence_degraded,
                "winning_proposal_id": self._winning_proposal_id if tallied else None,
            }

    def save_snapshot(self) -> bool:
        """Write the current state to the state store.

        Returns False (and raises the degraded flag) if the write failed.
        """
        with self._lock:
            self._persistence_degraded = False
            self._persist()
            return not self._persistence_degraded

    # ------------------------------------------------------------------
    # Voter registry
    # ------------------------------------------------------------------

    def add_voter(self, caller: str, address: str) -> Voter:
        """Register ``address`` as an eligible voter (administrator only)."""
        with self._lock:
            require_administrator(caller, self._administrator)
            self._phases.require(WorkflowPhase.REGISTERING_VOTERS, "add_voter")
            self._voters.check_register(address)

            self._record_event(EventKind.VOTER_REGISTERED, caller, {"address": address})
            voter = self._voters.register(address)
            self._persist()
        log.info("Ballot %s: voter registered: %s", self._ballot_id, address)
        return voter

    def get_voter(self, caller: str, address: str) -> Voter:
        """Return the voter record for ``address``.

        Unknown addresses yield the zero-valued record, not an error.
        """
        with self._lock:
            require_registered_voter(caller, self._voters)
            return self._voters.lookup(address)

    # ------------------------------------------------------------------
    # Proposal registry
    # ------------------------------------------------------------------

    def add_proposal(self, caller: str, description: str) -> int:
        """Submit a proposal and return its id."""
        with self._lock:
            require_registered_voter(caller, self._voters)
            self._phases.require(
                WorkflowPhase.PROPOSALS_REGISTRATION_STARTED, "add_proposal",
            )
            self._proposals.check_description(description)

            proposal_id = len(self._proposals)
            self._record_event(
                EventKind.PROPOSAL_REGISTERED,
                caller,
                {"proposal_id": proposal_id, "description": description},
            )
            self._proposals.append(description)
            self._persist()
        log.info("Ballot %s: proposal %d registered by %s", self._ballot_id, proposal_id, caller)
        return proposal_id

    def get_one_proposal(self, caller: str, proposal_id: int) -> Proposal:
        with self._lock:
            require_registered_voter(caller, self._voters)
            return self._proposals.get(proposal_id)

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def set_vote(self, caller: str, proposal_id: int) -> None:
        """Cast the caller's single vote for ``proposal_id``."""
        with self._lock:
            require_registered_voter(caller, self._voters)
            self._phases.require(WorkflowPhase.VOTING_SESSION_STARTED, "set_vote")
            self._voters.check_vote(caller)
            self._proposals.check_exists(proposal_id)

            self._record_event(
                EventKind.VOTED, caller, {"voter": caller, "proposal_id": proposal_id},
            )
            self._proposals.increment(proposal_id)
            self._voters.mark_voted(caller, proposal_id)
            self._persist()
        log.info("Ballot %s: %s voted for proposal %d", self._ballot_id, caller, proposal_id)

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def start_proposals_registering(self, caller: str) -> WorkflowPhase:
        return self._transition(caller, "start_proposals_registering")

    def end_proposals_registering(self, caller: str) -> WorkflowPhase:
        return self._transition(caller, "end_proposals_registering")

    def start_voting_session(self, caller: str) -> WorkflowPhase:
        return self._transition(caller, "start_voting_session")

    def end_voting_session(self, caller: str) -> WorkflowPhase:
        return self._transition(caller, "end_voting_session")

    # ------------------------------------------------------------------
    # Tally
    # ------------------------------------------------------------------

    def tally_votes(self, caller: str) -> int:
        """Select the winner, close the ballot, and return the winning id.

        Raises NoProposals (phase unchanged) if nothing was submitted.
        """
        with self._lock:
            require_administrator(caller, self._administrator)
            previous, new = self._phases.check_transition("tally_votes")
            winner = self._tally.select_winner(self._proposals.snapshot())

            self._record_event(
                EventKind.WORKFLOW_STATUS_CHANGE,
                caller,
                {
                    "previous": previous.value,
                    "new": new.value,
                    "winning_proposal_id": winner,
                },
            )
            self._winning_proposal_id = winner
            self._phases.apply(new)
            self._persist()
        log.info("Ballot %s: votes tallied, winning proposal %d", self._ballot_id, winner)
        return winner

    def results(self) -> list[tuple[int, Proposal]]:
        """Proposals in standings order. Only available once tallied."""
        with self._lock:
            self._phases.require(WorkflowPhase.VOTES_TALLIED, "results")
            proposals = self._proposals.snapshot()
            return [(pid, proposals[pid]) for pid in self._tally.standings(proposals)]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, caller: str, operation: str) -> WorkflowPhase:
        with self._lock:
            require_administrator(caller, self._administrator)
            previous, new = self._phases.check_transition(operation)

            self._record_event(
                EventKind.WORKFLOW_STATUS_CHANGE,
                caller,
                {"previous": previous.value, "new": new.value},
            )
            self._phases.apply(new)
            self._persist()
        log.info("Ballot %s: %s → %s", self._ballot_id, previous.value, new.value)
        return new

    def _next_event_id(self) -> str:
        return f"{self._ballot_id}-EVT-{self._event_counter + 1:08d}"

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> EventRecord:
        """Append the audit record for a change about to be applied.

        Raises AuditTrailError if the log refuses it; the counter only
        advances once the record is durably appended.
        """
        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
        )
        try:
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            raise AuditTrailError(f"Event log failure: {e}") from e
        self._event_counter += 1
        return event

    def _persist(self) -> None:
        """Snapshot state after the audit record has been committed.

        MUST NOT roll back in-memory state. On failure the store is stale
        and the degraded flag is raised for operator attention.
        """
        if self._state_store is None:
            return
        try:
            self._state_store.put(self._ballot_id, self.to_records())
        except OSError as e:
            self._persistence_degraded = True
            log.warning(
                "Ballot %s: persistence degraded, state store is stale: %s",
                self._ballot_id, e,
            )


