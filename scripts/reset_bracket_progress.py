#!/usr/bin/env python3
"""Clear recorded results from a given round onward for event brackets.

Organizers use this to roll a bracket back after results were reported in the
wrong order. Each decided match in the selected rounds is cleared through the
same propagation rules the engine applies, so downstream slots filled by those
matches are emptied while sibling results stay in place. Matches decided by a
bye are left untouched. By default it performs no writes (dry-run). Pass
``--execute`` once you are satisfied with the planned changes.
"""

from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - simple environment setup
    sys.path.insert(0, str(ROOT_DIR))

from bracket_engine.config import read_settings
from bracket_engine.errors import ConcurrentUpdateError
from bracket_engine.lookup import validate_bracket_shape
from bracket_engine.models import BracketState
from bracket_engine.propagation import clear_result
from bracket_engine.storage import BracketStorage

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ResetSummary:
    event_id: str
    match_id: int
    round_number: int
    winner_id: str


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--table",
        help="DynamoDB table storing brackets (defaults to BRACKET_TABLE_NAME)",
    )
    parser.add_argument(
        "--event",
        action="append",
        dest="event_ids",
        help="Event id to process (repeat for multiple)",
    )
    parser.add_argument(
        "--from-round",
        type=int,
        default=2,
        help="First round whose results are cleared (default: 2)",
    )
    parser.add_argument(
        "--profile",
        help="Optional AWS profile to use",
    )
    parser.add_argument(
        "--region",
        help="AWS region (defaults to AWS_REGION)",
    )
    parser.add_argument(
        "--input-file",
        help="Process bracket items from a JSON file instead of DynamoDB",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Apply fixes instead of printing the planned changes",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (defaults to BRACKET_LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


def iter_offline_brackets(path: str) -> Iterable[dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, list):
        raise ValueError("Input file must contain a JSON list of DynamoDB items")
    for item in data:
        if not isinstance(item, dict):
            raise ValueError("Each entry in the input file must be a JSON object")
        yield item


def reset_bracket(
    bracket: BracketState, from_round: int
) -> tuple[BracketState, list[ResetSummary]]:
    """Clear every human-decided result in rounds ``>= from_round``."""
    for problem in validate_bracket_shape(bracket):
        log.warning("Event %s: %s", bracket.event_id, problem)
    summaries: list[ResetSummary] = []
    working = bracket
    for round_ in bracket.rounds:
        if round_.number < from_round:
            continue
        for match in round_.matches:
            current = working.find_match(match.match_id)
            if current is None or current.winner_id is None or current.has_bye:
                continue
            summaries.append(
                ResetSummary(
                    event_id=bracket.event_id,
                    match_id=current.match_id,
                    round_number=current.round_number,
                    winner_id=current.winner_id,
                )
            )
            working = clear_result(working, current.match_id).bracket
    return working, summaries


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO), format="%(message)s"
    )


def _log_summaries(summaries: list[ResetSummary], dry_run: bool) -> None:
    for summary in summaries:
        log.info(
            "%s winner %s of match %s (round %s)",
            "Would clear" if dry_run else "Cleared",
            summary.winner_id,
            summary.match_id,
            summary.round_number,
        )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = read_settings()
    configure_logging(args.log_level or settings.log_level)
    dry_run = not args.execute
    if args.from_round < 1:
        raise SystemExit("--from-round must be 1 or greater")

    overall_resets = 0

    if args.input_file:
        for item in iter_offline_brackets(args.input_file):
            bracket = BracketState.from_item(item)
            _, summaries = reset_bracket(bracket, args.from_round)
            if not summaries:
                log.info("No results to reset for event %s", bracket.event_id)
                continue
            overall_resets += len(summaries)
            _log_summaries(summaries, dry_run=True)
        log.info("Dry-run complete. Total matches needing reset: %s", overall_resets)
        return overall_resets

    table_name = args.table or settings.table_name
    if not table_name:
        raise SystemExit("No DynamoDB table specified and BRACKET_TABLE_NAME is unset")
    if not args.event_ids:
        raise SystemExit("No event ids provided")

    session_kwargs: dict[str, Any] = {}
    if args.profile:
        session_kwargs["profile_name"] = args.profile
    session_kwargs["region_name"] = args.region or settings.aws_region
    session = boto3.Session(**session_kwargs)
    storage = BracketStorage(session.resource("dynamodb").Table(table_name))

    try:
        for event_id in args.event_ids:
            bracket = storage.load_bracket(event_id)
            if bracket is None:
                log.warning("Event %s has no bracket", event_id)
                continue
            updated, summaries = reset_bracket(bracket, args.from_round)
            if not summaries:
                log.info("Event %s already clean", event_id)
                continue
            overall_resets += len(summaries)
            _log_summaries(summaries, dry_run)
            if dry_run:
                log.info("Would update bracket for event %s", event_id)
                continue
            try:
                storage.save_bracket(updated)
            except ConcurrentUpdateError:
                log.error(
                    "Event %s changed while resetting; rerun the script", event_id
                )
                continue
            log.info("Updated bracket for event %s", event_id)
    except (ClientError, BotoCoreError) as exc:  # pragma: no cover - network failure
        log.error("AWS request failed: %s", exc)
        raise SystemExit(2) from exc

    log.info(
        "%s complete. Total matches reset: %s",
        "Dry-run" if dry_run else "Execution",
        overall_resets,
    )
    return overall_resets


if __name__ == "__main__":
    main()
