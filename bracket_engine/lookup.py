"""Match id arithmetic, the id lookup table and bracket shape checks."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import BracketState


class _HasMatchId(Protocol):
    match_id: int


class _HasMatches(Protocol):
    @property
    def matches(self) -> Sequence[_HasMatchId]: ...


def next_power_of_two(value: int) -> int:
    if value <= 0:
        raise ValueError("Value must be positive")
    return 1 << (value - 1).bit_length()


def round_count(effective_size: int) -> int:
    """Return ``ceil(log2(effective_size))``; a single entrant needs no rounds."""
    if effective_size <= 1:
        return 0
    return (effective_size - 1).bit_length()


def matches_in_round(perfect_size: int, round_number: int) -> int:
    return perfect_size >> round_number


def round_start_ids(perfect_size: int, num_rounds: int) -> dict[int, int]:
    """Return the id of the first match of every round, keyed by round number."""
    starts: dict[int, int] = {}
    current = 1
    for round_number in range(1, num_rounds + 1):
        starts[round_number] = current
        current += matches_in_round(perfect_size, round_number)
    return starts


def next_match_id(
    starts: dict[int, int], num_rounds: int, round_number: int, index: int
) -> int | None:
    if round_number >= num_rounds:
        return None
    return starts[round_number + 1] + index // 2


def feeder_position(match_index: int) -> int:
    """Slot (0 or 1) a match feeds in its successor, from its index in the round."""
    return match_index % 2


@dataclass(frozen=True, slots=True)
class MatchPosition:
    round_index: int
    match_index: int


class MatchIndex:
    """Flat ``match_id -> (round, index)`` table built once per bracket."""

    def __init__(self, rounds: Iterable[_HasMatches]) -> None:
        self._positions: dict[int, MatchPosition] = {}
        for round_index, round_ in enumerate(rounds):
            for match_index, match in enumerate(round_.matches):
                self._positions[match.match_id] = MatchPosition(
                    round_index=round_index, match_index=match_index
                )

    def position(self, match_id: int) -> MatchPosition | None:
        return self._positions.get(match_id)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)


def validate_bracket_shape(state: BracketState) -> list[str]:
    """Return a list of invariant violations; an empty list means a sound bracket."""
    problems: list[str] = []
    rounds = state.rounds
    if not rounds:
        if state.sole_entrant_id is None:
            problems.append("Bracket has no rounds and no sole entrant")
        return problems

    perfect_size = 2 ** len(rounds)
    expected_total = perfect_size - 1
    all_ids = [match.match_id for match in state.all_matches()]
    if len(all_ids) != expected_total:
        problems.append(
            f"Expected {expected_total} matches, found {len(all_ids)}"
        )
    if sorted(all_ids) != list(range(1, len(all_ids) + 1)):
        problems.append("Match ids are not dense from 1")
    if all_ids != sorted(all_ids):
        problems.append("Match ids are not increasing in round-major order")

    for round_number, round_ in enumerate(rounds, start=1):
        expected_count = matches_in_round(perfect_size, round_number)
        if len(round_.matches) != expected_count:
            problems.append(
                f"Round {round_number} has {len(round_.matches)} matches, "
                f"expected {expected_count}"
            )

    index = MatchIndex(rounds)
    feeders: dict[int, int] = {}
    for match in state.all_matches():
        if match.next_match_id is None:
            if match.round_number != len(rounds):
                problems.append(f"Match {match.match_id} has no successor")
            continue
        target = index.position(match.next_match_id)
        if target is None:
            problems.append(
                f"Match {match.match_id} points at unknown match {match.next_match_id}"
            )
            continue
        if target.round_index != match.round_number:
            problems.append(
                f"Match {match.match_id} skips a round to {match.next_match_id}"
            )
        feeders[match.next_match_id] = feeders.get(match.next_match_id, 0) + 1

    for target_id, count in sorted(feeders.items()):
        if count != 2:
            problems.append(f"Match {target_id} is fed by {count} matches")

    for match in state.all_matches():
        occupants = {slot.participant_id for slot in match.slots if slot.is_assigned}
        if match.winner_id is not None and match.winner_id not in occupants:
            problems.append(
                f"Match {match.match_id} winner {match.winner_id} is not an occupant"
            )
        if match.is_completed != (match.winner_id is not None):
            problems.append(f"Match {match.match_id} status disagrees with winner")
    return problems


__all__ = [
    "MatchIndex",
    "MatchPosition",
    "feeder_position",
    "matches_in_round",
    "next_match_id",
    "next_power_of_two",
    "round_count",
    "round_start_ids",
    "validate_bracket_shape",
]
