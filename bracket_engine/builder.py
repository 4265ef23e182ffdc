from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from .errors import NoParticipantsError
from .lookup import (
    matches_in_round,
    next_match_id,
    next_power_of_two,
    round_count,
    round_start_ids,
)
from .models import (
    BracketMatch,
    BracketRound,
    BracketSlot,
    BracketState,
    Participant,
    utc_now_iso,
)
from .propagation import advance_in_place

log = logging.getLogger(__name__)


def effective_capacity(requested_capacity: int | None, participant_count: int) -> int:
    """Clamp the configured capacity so it never drops below the entrant count."""
    if requested_capacity is None or requested_capacity <= 0:
        return participant_count
    return max(requested_capacity, participant_count)


def _slot_for(participant: Participant) -> BracketSlot:
    return BracketSlot.assigned(participant.participant_id, participant.display_name)


def _build_first_round(
    entrants: Sequence[Participant],
    perfect_size: int,
    starts: dict[int, int],
    num_rounds: int,
) -> tuple[BracketRound, list[tuple[int, str]], list[int]]:
    matches: list[BracketMatch] = []
    byes: list[tuple[int, str]] = []
    placeholder_ids: list[int] = []
    for index in range(matches_in_round(perfect_size, 1)):
        match_id = starts[1] + index
        following = next_match_id(starts, num_rounds, 1, index)
        first = entrants[index * 2] if index * 2 < len(entrants) else None
        second = entrants[index * 2 + 1] if index * 2 + 1 < len(entrants) else None
        if first is not None and second is not None:
            match = BracketMatch(
                match_id=match_id,
                round_number=1,
                slot_one=_slot_for(first),
                slot_two=_slot_for(second),
                next_match_id=following,
            )
        elif first is not None:
            match = BracketMatch(
                match_id=match_id,
                round_number=1,
                slot_one=_slot_for(first),
                slot_two=BracketSlot.bye(),
                next_match_id=following,
            )
            match.record_winner(first.participant_id)
            byes.append((match_id, first.participant_id))
        else:
            match = BracketMatch(
                match_id=match_id,
                round_number=1,
                slot_one=BracketSlot.empty(),
                slot_two=BracketSlot.empty(),
                next_match_id=following,
            )
            placeholder_ids.append(match_id)
        matches.append(match)
    return BracketRound(number=1, matches=matches), byes, placeholder_ids


def build_bracket(
    participants: Sequence[Participant],
    requested_capacity: int | None = None,
    *,
    rng: random.Random | None = None,
    event_id: str = "",
) -> BracketState:
    """Seed a single-elimination bracket from a random shuffle of ``participants``.

    Byes are resolved before the bracket is returned, including byes that
    cascade through several rounds. Placeholder first-round matches, created
    when the capacity exceeds the entrant count, forward a bye downstream.
    """
    if not participants:
        raise NoParticipantsError("Cannot generate a bracket without participants")

    entrants = list(participants)
    (rng or random.Random()).shuffle(entrants)
    created_at = utc_now_iso()

    if len(entrants) == 1:
        sole = entrants[0]
        log.info(
            "Event %s has a single entrant; %s wins outright",
            event_id,
            sole.participant_id,
        )
        return BracketState(
            event_id=event_id,
            rounds=[],
            created_at=created_at,
            updated_at=created_at,
            sole_entrant_id=sole.participant_id,
            sole_entrant_name=sole.display_name,
        )

    size = effective_capacity(requested_capacity, len(entrants))
    num_rounds = round_count(size)
    perfect_size = next_power_of_two(size)
    starts = round_start_ids(perfect_size, num_rounds)

    first_round, byes, placeholder_ids = _build_first_round(
        entrants, perfect_size, starts, num_rounds
    )
    rounds = [first_round]
    for round_number in range(2, num_rounds + 1):
        rounds.append(
            BracketRound(
                number=round_number,
                matches=[
                    BracketMatch(
                        match_id=starts[round_number] + index,
                        round_number=round_number,
                        slot_one=BracketSlot.empty(),
                        slot_two=BracketSlot.empty(),
                        next_match_id=next_match_id(
                            starts, num_rounds, round_number, index
                        ),
                    )
                    for index in range(matches_in_round(perfect_size, round_number))
                ],
            )
        )

    state = BracketState(
        event_id=event_id,
        rounds=rounds,
        created_at=created_at,
        updated_at=created_at,
    )
    log.info(
        "Built bracket for event %s: %s entrants, %s rounds, %s matches, %s byes",
        event_id,
        len(entrants),
        num_rounds,
        perfect_size - 1,
        perfect_size - len(entrants),
    )

    for match_id, winner_id in byes:
        advance_in_place(state, match_id, winner_id)
    for match_id in placeholder_ids:
        advance_in_place(state, match_id)
    return state


__all__ = ["build_bracket", "effective_capacity"]
