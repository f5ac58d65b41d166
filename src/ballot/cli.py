"""Ballot CLI — command-line interface for a durable ballot.

Every command acts as the principal given by ``--as`` (default: the
configured administrator). State lives in the data directory: a JSONL
event log and a JSON state snapshot.

Usage:
    python -m ballot.cli status
    python -m ballot.cli add-voter --address alice
    python -m ballot.cli start-proposals
    python -m ballot.cli --as alice add-proposal --description "Build a bridge"
    python -m ballot.cli end-proposals
    python -m ballot.cli start-voting
    python -m ballot.cli --as alice vote --id 0
    python -m ballot.cli end-voting
    python -m ballot.cli tally
    python -m ballot.cli winner
    python -m ballot.cli verify-log
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from ballot.config import DEFAULT_CONFIG_DIR, load_config
from ballot.logging_setup import setup_logging
from ballot.persistence.event_log import EventKind
from ballot.service import BallotService, ServiceResult


def _make_service(args: argparse.Namespace) -> BallotService:
    """Create a BallotService with durable persistence."""
    config = load_config(args.config)
    if args.data_dir is not None:
        config = replace(config, data_dir=args.data_dir)
    setup_logging(config.log_level, config.log_file)
    return BallotService.open(config)


def _principal(args: argparse.Namespace, service: BallotService) -> str:
    return args.principal or service.ballot.administrator


def _emit(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, sort_keys=True))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _print_json(data: Any) -> int:
    print(json.dumps(data, indent=2, sort_keys=True))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_json(service.status())


def cmd_add_voter(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.add_voter(_principal(args, service), args.address))


def cmd_get_voter(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.get_voter(_principal(args, service), args.address))


def cmd_start_proposals(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.start_proposals_registering(_principal(args, service)))


def cmd_end_proposals(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.end_proposals_registering(_principal(args, service)))


def cmd_start_voting(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.start_voting_session(_principal(args, service)))


def cmd_end_voting(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.end_voting_session(_principal(args, service)))


def cmd_add_proposal(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.add_proposal(_principal(args, service), args.description))


def cmd_get_proposal(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.get_one_proposal(_principal(args, service), args.id))


def cmd_vote(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.set_vote(_principal(args, service), args.id))


def cmd_tally(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.tally_votes(_principal(args, service)))


def cmd_winner(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _print_json({
        "phase": service.current_phase().value,
        "winning_proposal_id": service.winning_proposal_id(),
    })


def cmd_results(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.results())


def cmd_events(args: argparse.Namespace) -> int:
    service = _make_service(args)
    kind = EventKind(args.kind) if args.kind else None
    return _print_json(service.events(kind))


def cmd_verify_log(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _emit(service.verify_log())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ballot",
        description="Plurality ballot workflow CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Override the configured data directory",
    )
    parser.add_argument(
        "--as",
        dest="principal",
        default=None,
        help="Principal to act as (default: the ballot administrator)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show ballot status")

    p_add_voter = sub.add_parser("add-voter", help="Register a voter (administrator)")
    p_add_voter.add_argument("--address", required=True, help="Voter principal")

    p_get_voter = sub.add_parser("get-voter", help="Show a voter record (voters only)")
    p_get_voter.add_argument("--address", required=True, help="Voter principal")

    sub.add_parser("start-proposals", help="Open proposal registration (administrator)")
    sub.add_parser("end-proposals", help="Close proposal registration (administrator)")
    sub.add_parser("start-voting", help="Open the voting session (administrator)")
    sub.add_parser("end-voting", help="Close the voting session (administrator)")

    p_add_prop = sub.add_parser("add-proposal", help="Submit a proposal (voters only)")
    p_add_prop.add_argument("--description", required=True, help="Proposal text")

    p_get_prop = sub.add_parser("get-proposal", help="Show a proposal (voters only)")
    p_get_prop.add_argument("--id", type=int, required=True, help="Proposal ID")

    p_vote = sub.add_parser("vote", help="Cast a vote (voters only)")
    p_vote.add_argument("--id", type=int, required=True, help="Proposal ID")

    sub.add_parser("tally", help="Tally votes and close the ballot (administrator)")
    sub.add_parser("winner", help="Show the winning proposal ID")
    sub.add_parser("results", help="Show tallied standings")

    p_events = sub.add_parser("events", help="List audit events")
    p_events.add_argument(
        "--kind", choices=[k.value for k in EventKind], help="Filter by event kind",
    )

    sub.add_parser("verify-log", help="Replay the event log against stored state")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "add-voter": cmd_add_voter,
        "get-voter": cmd_get_voter,
        "start-proposals": cmd_start_proposals,
        "end-proposals": cmd_end_proposals,
        "start-voting": cmd_start_voting,
        "end-voting": cmd_end_voting,
        "add-proposal": cmd_add_proposal,
        "get-proposal": cmd_get_proposal,
        "vote": cmd_vote,
        "tally": cmd_tally,
        "winner": cmd_winner,
        "results": cmd_results,
        "events": cmd_events,
        "verify-log": cmd_verify_log,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
