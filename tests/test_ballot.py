"""Tests for the ballot instance — proves gates, phases, atomicity and tally."""

from __future__ import annotations

import threading
from typing import Any, Callable

import pytest

from ballot.errors import (
    AlreadyRegistered,
    AlreadyVoted,
    AuditTrailError,
    EmptyDescription,
    NoProposals,
    NotAdministrator,
    NotVoter,
    PhaseMismatch,
    ProposalNotFound,
)
from ballot.governance.ballot import Ballot
from ballot.models.ballot import PHASE_ORDER, Proposal, Voter, WorkflowPhase
from ballot.persistence.event_log import EventKind, EventLog, EventRecord
from ballot.persistence.state_store import StateStore

OWNER = "owner"
VOTERS = ["voter_1", "voter_2", "voter_3", "voter_4"]
PROPOSALS = ["Cyril", "Thomas", "Zlatan", "Pires"]


def _ballot_in(phase: WorkflowPhase, **kwargs: Any) -> Ballot:
    """A ballot with VOTERS registered, advanced to ``phase``.

    PROPOSALS are submitted while proposal registration is open.
    No votes are cast.
    """
    ballot = Ballot(administrator=OWNER, **kwargs)
    for voter in VOTERS:
        ballot.add_voter(OWNER, voter)
    steps = [
        ballot.start_proposals_registering,
        ballot.end_proposals_registering,
        ballot.start_voting_session,
        ballot.end_voting_session,
        ballot.tally_votes,
    ]
    for step in steps[: phase.ordinal]:
        step(OWNER)
        if ballot.current_phase() == WorkflowPhase.PROPOSALS_REGISTRATION_STARTED:
            for description in PROPOSALS:
                ballot.add_proposal(VOTERS[0], description)
    return ballot


# operation name → (required phase, call)
_OPERATIONS: dict[str, tuple[WorkflowPhase, Callable[[Ballot], Any]]] = {
    "add_voter": (
        WorkflowPhase.REGISTERING_VOTERS,
        lambda b: b.add_voter(OWNER, "newcomer"),
    ),
    "start_proposals_registering": (
        WorkflowPhase.REGISTERING_VOTERS,
        lambda b: b.start_proposals_registering(OWNER),
    ),
    "add_proposal": (
        WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
        lambda b: b.add_proposal(VOTERS[1], "Julien"),
    ),
    "end_proposals_registering": (
        WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
        lambda b: b.end_proposals_registering(OWNER),
    ),
    "start_voting_session": (
        WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
        lambda b: b.start_voting_session(OWNER),
    ),
    "set_vote": (
        WorkflowPhase.VOTING_SESSION_STARTED,
        lambda b: b.set_vote(VOTERS[1], 0),
    ),
    "end_voting_session": (
        WorkflowPhase.VOTING_SESSION_STARTED,
        lambda b: b.end_voting_session(OWNER),
    ),
    "tally_votes": (
        WorkflowPhase.VOTING_SESSION_ENDED,
        lambda b: b.tally_votes(OWNER),
    ),
}

_MISMATCH_CASES = [
    (operation, phase)
    for operation, (required, _) in _OPERATIONS.items()
    for phase in PHASE_ORDER
    if phase != required
]


class _FailingEventLog(EventLog):
    def append(self, event: EventRecord) -> None:
        raise OSError("disk full")


class _FailingStateStore(StateStore):
    def put(self, key: str, record: dict[str, Any]) -> None:
        raise OSError("read-only filesystem")


class TestAdministratorGate:
    def test_owner_can_add_voter(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.get_voter(VOTERS[0], VOTERS[0]).is_registered is True

    def test_non_owner_cannot_add_voter(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        with pytest.raises(NotAdministrator):
            ballot.add_voter(VOTERS[0], VOTERS[1])

    @pytest.mark.parametrize(
        "operation",
        [
            "start_proposals_registering",
            "end_proposals_registering",
            "start_voting_session",
            "end_voting_session",
            "tally_votes",
        ],
    )
    def test_non_owner_cannot_change_phase(self, operation: str) -> None:
        required, call = _OPERATIONS[operation]
        ballot = _ballot_in(required)
        with pytest.raises(NotAdministrator):
            getattr(ballot, operation)(VOTERS[0])
        assert ballot.current_phase() == required

    def test_access_checked_before_phase(self) -> None:
        ballot = Ballot(administrator=OWNER)
        with pytest.raises(NotAdministrator):
            ballot.tally_votes(VOTERS[0])

    def test_blank_administrator_invalid(self) -> None:
        with pytest.raises(ValueError):
            Ballot(administrator="")


class TestVoterGate:
    def test_registered_voter_can_read(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.get_voter(VOTERS[0], VOTERS[0]).is_registered

    def test_administrator_is_not_implicitly_a_voter(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        with pytest.raises(NotVoter, match="You're not a voter"):
            ballot.get_voter(OWNER, VOTERS[0])

    def test_administrator_registered_as_voter_can_propose(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, OWNER)
        ballot.start_proposals_registering(OWNER)
        assert ballot.add_proposal(OWNER, "Cyril") == 0

    def test_outsider_cannot_propose(self) -> None:
        ballot = _ballot_in(WorkflowPhase.PROPOSALS_REGISTRATION_STARTED)
        with pytest.raises(NotVoter):
            ballot.add_proposal("outsider", "Sneaky")

    def test_outsider_cannot_vote(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        with pytest.raises(NotVoter):
            ballot.set_vote("outsider", 0)

    def test_outsider_cannot_read_proposal(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        with pytest.raises(NotVoter):
            ballot.get_one_proposal("outsider", 0)


class TestPhaseGates:
    @pytest.mark.parametrize("operation,phase", _MISMATCH_CASES)
    def test_wrong_phase_rejected(self, operation: str, phase: WorkflowPhase) -> None:
        required, call = _OPERATIONS[operation]
        ballot = _ballot_in(phase)
        events_before = ballot.event_log.count
        records_before = ballot.to_records()

        with pytest.raises(PhaseMismatch) as exc:
            call(ballot)

        assert exc.value.expected == required
        assert exc.value.actual == phase
        assert ballot.current_phase() == phase
        assert ballot.event_log.count == events_before
        assert ballot.to_records() == records_before

    @pytest.mark.parametrize(
        "operation,message",
        [
            ("add_voter", "Voters registration is not open yet"),
            ("start_proposals_registering", "Registering proposals can't be started now"),
            ("tally_votes", "Current status is not voting session ended"),
        ],
    )
    def test_phase_specific_messages(self, operation: str, message: str) -> None:
        _, call = _OPERATIONS[operation]
        ballot = _ballot_in(WorkflowPhase.PROPOSALS_REGISTRATION_STARTED)
        with pytest.raises(PhaseMismatch, match=message):
            call(ballot)

    def test_transitions_are_monotonic(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        transitions = [
            ballot.start_proposals_registering,
            ballot.end_proposals_registering,
            ballot.start_voting_session,
            ballot.end_voting_session,
        ]
        for n, transition in enumerate(transitions, start=1):
            if n == 2:
                ballot.add_proposal(VOTERS[0], "Cyril")
            transition(OWNER)
            assert ballot.current_phase() == PHASE_ORDER[n]
        ballot.tally_votes(OWNER)
        assert ballot.current_phase() == WorkflowPhase.VOTES_TALLIED

    def test_repeated_transition_rejected(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.start_proposals_registering(OWNER)
        with pytest.raises(PhaseMismatch):
            ballot.start_proposals_registering(OWNER)
        assert ballot.current_phase() == WorkflowPhase.PROPOSALS_REGISTRATION_STARTED


class TestAddVoter:
    def test_fresh_record(self) -> None:
        ballot = Ballot(administrator=OWNER)
        voter = ballot.add_voter(OWNER, VOTERS[0])
        assert voter == Voter(is_registered=True, has_voted=False, voted_proposal_id=0)

    def test_duplicate_rejected(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        with pytest.raises(AlreadyRegistered):
            ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.snapshot_status()["voters"] == 1
        assert len(ballot.event_log.events(EventKind.VOTER_REGISTERED)) == 1

    def test_emits_voter_registered(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[1])
        event = ballot.event_log.last_event
        assert event is not None
        assert event.event_kind == EventKind.VOTER_REGISTERED
        assert event.payload == {"address": VOTERS[1]}
        assert event.actor_id == OWNER

    def test_unknown_address_reads_as_zero_record(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.add_voter(OWNER, VOTERS[0])
        voter = ballot.get_voter(VOTERS[0], "never_registered")
        assert voter == Voter(is_registered=False, has_voted=False, voted_proposal_id=0)


class TestAddProposal:
    def test_ids_in_arrival_order(self) -> None:
        ballot = _ballot_in(WorkflowPhase.REGISTERING_VOTERS)
        ballot.start_proposals_registering(OWNER)
        ids = [
            ballot.add_proposal(VOTERS[i % len(VOTERS)], description)
            for i, description in enumerate(PROPOSALS)
        ]
        assert ids == [0, 1, 2, 3]
        for pid, description in enumerate(PROPOSALS):
            assert ballot.get_one_proposal(VOTERS[2], pid) == Proposal(description, 0)

    def test_empty_description_rejected(self) -> None:
        ballot = _ballot_in(WorkflowPhase.PROPOSALS_REGISTRATION_STARTED)
        count_before = ballot.snapshot_status()["proposals"]
        with pytest.raises(EmptyDescription):
            ballot.add_proposal(VOTERS[1], "")
        assert ballot.snapshot_status()["proposals"] == count_before

    def test_emits_proposal_registered(self) -> None:
        ballot = _ballot_in(WorkflowPhase.PROPOSALS_REGISTRATION_STARTED)
        pid = ballot.add_proposal(VOTERS[1], "Alyra")
        event = ballot.event_log.last_event
        assert event.event_kind == EventKind.PROPOSAL_REGISTERED
        assert event.payload == {"proposal_id": pid, "description": "Alyra"}

    def test_unknown_proposal(self) -> None:
        ballot = _ballot_in(WorkflowPhase.PROPOSALS_REGISTRATION_ENDED)
        with pytest.raises(ProposalNotFound):
            ballot.get_one_proposal(VOTERS[0], len(PROPOSALS))


class TestSetVote:
    def test_vote_updates_proposal_and_voter(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        ballot.set_vote(VOTERS[1], 2)
        assert ballot.get_one_proposal(VOTERS[1], 2).vote_count == 1
        voter = ballot.get_voter(VOTERS[1], VOTERS[1])
        assert voter.has_voted is True
        assert voter.voted_proposal_id == 2
        others = [ballot.get_one_proposal(VOTERS[1], pid).vote_count for pid in (0, 1, 3)]
        assert others == [0, 0, 0]

    def test_emits_voted(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        ballot.set_vote(VOTERS[1], 1)
        event = ballot.event_log.last_event
        assert event.event_kind == EventKind.VOTED
        assert event.payload == {"voter": VOTERS[1], "proposal_id": 1}

    def test_second_vote_rejected(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        ballot.set_vote(VOTERS[1], 1)
        with pytest.raises(AlreadyVoted, match="You have already voted"):
            ballot.set_vote(VOTERS[1], 2)
        assert ballot.get_one_proposal(VOTERS[1], 1).vote_count == 1
        assert ballot.get_one_proposal(VOTERS[1], 2).vote_count == 0
        assert ballot.get_voter(VOTERS[1], VOTERS[1]).voted_proposal_id == 1

    @pytest.mark.parametrize("proposal_id", [-1, 4, 100])
    def test_unknown_proposal_rejected(self, proposal_id: int) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        with pytest.raises(ProposalNotFound):
            ballot.set_vote(VOTERS[1], proposal_id)
        assert ballot.get_voter(VOTERS[1], VOTERS[1]).has_voted is False


class TestTally:
    def _vote_counts(self, counts: list[int]) -> Ballot:
        voters = [f"v{i}" for i in range(sum(counts))]
        ballot = Ballot(administrator=OWNER)
        for voter in voters:
            ballot.add_voter(OWNER, voter)
        ballot.start_proposals_registering(OWNER)
        for i in range(len(counts)):
            ballot.add_proposal(voters[0], f"P{i}")
        ballot.end_proposals_registering(OWNER)
        ballot.start_voting_session(OWNER)
        it = iter(voters)
        for pid, count in enumerate(counts):
            for _ in range(count):
                ballot.set_vote(next(it), pid)
        ballot.end_voting_session(OWNER)
        return ballot

    def test_tie_break_first_maximum(self) -> None:
        ballot = self._vote_counts([2, 5, 5, 1])
        assert ballot.tally_votes(OWNER) == 1
        assert ballot.winning_proposal_id() == 1

    def test_winner_is_zero_before_tally(self) -> None:
        ballot = self._vote_counts([0, 3])
        assert ballot.winning_proposal_id() == 0
        ballot.tally_votes(OWNER)
        assert ballot.winning_proposal_id() == 1

    def test_tally_emits_status_change(self) -> None:
        ballot = self._vote_counts([1, 0])
        ballot.tally_votes(OWNER)
        event = ballot.event_log.last_event
        assert event.event_kind == EventKind.WORKFLOW_STATUS_CHANGE
        assert event.payload["previous"] == WorkflowPhase.VOTING_SESSION_ENDED.value
        assert event.payload["new"] == WorkflowPhase.VOTES_TALLIED.value

    def test_empty_registry_rejected(self) -> None:
        ballot = Ballot(administrator=OWNER)
        ballot.start_proposals_registering(OWNER)
        ballot.end_proposals_registering(OWNER)
        ballot.start_voting_session(OWNER)
        ballot.end_voting_session(OWNER)
        with pytest.raises(NoProposals):
            ballot.tally_votes(OWNER)
        assert ballot.current_phase() == WorkflowPhase.VOTING_SESSION_ENDED

    def test_results_in_standings_order(self) -> None:
        ballot = self._vote_counts([2, 5, 5, 1])
        ballot.tally_votes(OWNER)
        assert [pid for pid, _ in ballot.results()] == [1, 2, 0, 3]

    def test_results_before_tally_rejected(self) -> None:
        ballot = self._vote_counts([1])
        with pytest.raises(PhaseMismatch, match="not been tallied"):
            ballot.results()


class TestEndToEnd:
    def test_full_ballot(self) -> None:
        ballot = Ballot(administrator=OWNER)
        for voter in VOTERS:
            ballot.add_voter(OWNER, voter)
        ballot.start_proposals_registering(OWNER)
        for description in PROPOSALS:
            ballot.add_proposal(VOTERS[0], description)
        ballot.end_proposals_registering(OWNER)
        ballot.start_voting_session(OWNER)
        ballot.set_vote(VOTERS[0], 0)
        ballot.set_vote(VOTERS[1], 2)
        ballot.set_vote(VOTERS[2], 3)
        ballot.set_vote(VOTERS[3], 3)
        ballot.end_voting_session(OWNER)
        ballot.tally_votes(OWNER)

        assert ballot.winning_proposal_id() == 3
        assert ballot.current_phase() == WorkflowPhase.VOTES_TALLIED
        kinds = [e.event_kind for e in ballot.event_log.events()]
        assert kinds.count(EventKind.VOTER_REGISTERED) == 4
        assert kinds.count(EventKind.PROPOSAL_REGISTERED) == 4
        assert kinds.count(EventKind.VOTED) == 4
        assert kinds.count(EventKind.WORKFLOW_STATUS_CHANGE) == 5


class TestAtomicity:
    def test_audit_failure_leaves_state_unchanged(self) -> None:
        ballot = Ballot(administrator=OWNER, event_log=_FailingEventLog())
        with pytest.raises(AuditTrailError):
            ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.snapshot_status()["voters"] == 0

    def test_audit_failure_during_vote(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        ballot._event_log = _FailingEventLog()
        with pytest.raises(AuditTrailError):
            ballot.set_vote(VOTERS[1], 0)
        assert ballot.get_one_proposal(VOTERS[1], 0).vote_count == 0
        assert ballot.get_voter(VOTERS[1], VOTERS[1]).has_voted is False

    def test_event_ids_do_not_skip_after_failure(self) -> None:
        ballot = Ballot(administrator=OWNER, ballot_id="b1")
        ballot.add_voter(OWNER, VOTERS[0])
        with pytest.raises(AlreadyRegistered):
            ballot.add_voter(OWNER, VOTERS[0])
        ballot.add_voter(OWNER, VOTERS[1])
        ids = [e.event_id for e in ballot.event_log.events()]
        assert ids == ["b1-EVT-00000001", "b1-EVT-00000002"]

    def test_store_failure_degrades_without_rollback(self) -> None:
        ballot = Ballot(administrator=OWNER, state_store=_FailingStateStore())
        ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.persistence_degraded is True
        assert ballot.snapshot_status()["voters"] == 1
        assert ballot.event_log.count == 1


class TestPersistence:
    def test_snapshot_written_after_each_change(self) -> None:
        store = StateStore()
        ballot = Ballot(administrator=OWNER, ballot_id="b1", state_store=store)
        ballot.add_voter(OWNER, VOTERS[0])
        assert store.get("b1")["voters"][VOTERS[0]]["is_registered"] is True

    def test_records_round_trip(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        ballot.set_vote(VOTERS[2], 3)
        restored = Ballot.from_records(ballot.to_records())
        assert restored.to_records() == ballot.to_records()
        assert restored.current_phase() == WorkflowPhase.VOTING_SESSION_STARTED
        with pytest.raises(AlreadyVoted):
            restored.set_vote(VOTERS[2], 0)

    def test_event_counter_resumes_from_log(self) -> None:
        log = EventLog()
        first = Ballot(administrator=OWNER, event_log=log)
        first.add_voter(OWNER, VOTERS[0])
        second = Ballot.from_records(first.to_records(), event_log=log)
        second.add_voter(OWNER, VOTERS[1])
        assert log.count == 2

    def test_save_snapshot_reports_failure(self) -> None:
        ballot = Ballot(administrator=OWNER, state_store=_FailingStateStore())
        assert ballot.save_snapshot() is False
        assert ballot.persistence_degraded

    def test_save_snapshot_clears_degraded_flag(self) -> None:
        store = StateStore()
        ballot = Ballot(administrator=OWNER, ballot_id="b1", state_store=_FailingStateStore())
        ballot.add_voter(OWNER, VOTERS[0])
        assert ballot.persistence_degraded
        ballot._state_store = store
        assert ballot.save_snapshot() is True
        assert not ballot.persistence_degraded
        assert store.get("b1")["voters"][VOTERS[0]]["is_registered"] is True


class TestSnapshotStatus:
    def test_fresh_ballot(self) -> None:
        assert Ballot(administrator=OWNER).snapshot_status() == {
            "phase": WorkflowPhase.REGISTERING_VOTERS,
            "voters": 0,
            "voted": 0,
            "proposals": 0,
            "events": 0,
            "last_event_id": None,
            "persistence_degraded": False,
            "winning_proposal_id": None,
        }

    def test_winner_only_once_tallied(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_ENDED, ballot_id="b1")
        assert ballot.snapshot_status()["winning_proposal_id"] is None
        ballot.tally_votes(OWNER)
        status = ballot.snapshot_status()
        assert status["phase"] == WorkflowPhase.VOTES_TALLIED
        assert status["winning_proposal_id"] == 0
        assert status["proposals"] == len(PROPOSALS)
        # voters, proposals, five phase changes
        assert status["events"] == len(VOTERS) + len(PROPOSALS) + 5
        assert status["last_event_id"] == f"b1-EVT-{status['events']:08d}"


class TestConcurrency:
    def test_parallel_votes_all_counted(self) -> None:
        voters = [f"v{i}" for i in range(40)]
        ballot = Ballot(administrator=OWNER)
        for voter in voters:
            ballot.add_voter(OWNER, voter)
        ballot.start_proposals_registering(OWNER)
        ballot.add_proposal(voters[0], "A")
        ballot.add_proposal(voters[0], "B")
        ballot.end_proposals_registering(OWNER)
        ballot.start_voting_session(OWNER)

        threads = [
            threading.Thread(target=ballot.set_vote, args=(voter, i % 2))
            for i, voter in enumerate(voters)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        counts = [ballot.get_one_proposal(voters[0], pid).vote_count for pid in (0, 1)]
        assert counts == [20, 20]
        assert ballot.snapshot_status()["voted"] == 40
        assert len(ballot.event_log.events(EventKind.VOTED)) == 40

    def test_racing_double_vote_counts_once(self) -> None:
        ballot = _ballot_in(WorkflowPhase.VOTING_SESSION_STARTED)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def _vote() -> None:
            try:
                ballot.set_vote(VOTERS[3], 1)
                result = "ok"
            except AlreadyVoted:
                result = "already"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_vote) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("already") == 9
        assert ballot.get_one_proposal(VOTERS[3], 1).vote_count == 1
