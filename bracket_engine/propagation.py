"""Apply and clear match results, carrying winners through the bracket.

Every operation here is a pure function over a :class:`BracketState`: the
input bracket is cloned, the clone is mutated and returned inside a
:class:`PropagationOutcome`.

Winners are written into the successor match using the positional parity of
the source match within its round (even index feeds slot one, odd index feeds
slot two). When the sibling match already claimed that slot the winner takes
the opposite slot instead, so applying two sibling results in either order
yields the same pair of occupants. A successor left with one occupant facing a
bye resolves itself, and the cascade keeps going through a worklist.

The bracket is persisted as one document, so two concurrent read-modify-write
cycles on the same event lose one update. Callers must serialize writes per
event; see :class:`bracket_engine.service.EventLocks` and the versioned
``BracketStorage.save_bracket``.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from .errors import InvalidWinnerError, MatchLockedError, MatchNotFoundError
from .lookup import feeder_position
from .models import BracketMatch, BracketSlot, BracketState

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InconsistentSlotState:
    """Both successor slots were held by other participants; the write was dropped."""

    source_match_id: int
    target_match_id: int
    participant_id: str | None
    occupants: tuple[str | None, str | None]

    def describe(self) -> str:
        incoming = self.participant_id or "Bye"
        return (
            f"Dropped {incoming} from match {self.source_match_id}: match "
            f"{self.target_match_id} already holds {self.occupants[0]} and "
            f"{self.occupants[1]}"
        )


@dataclass(slots=True)
class PropagationOutcome:
    bracket: BracketState
    tournament_complete: bool = False
    champion_id: str | None = None
    auto_advanced: list[int] = field(default_factory=list)
    cleared: list[int] = field(default_factory=list)
    warnings: list[InconsistentSlotState] = field(default_factory=list)


def _require_match(state: BracketState, match_id: int) -> BracketMatch:
    match = state.find_match(match_id)
    if match is None:
        raise MatchNotFoundError(match_id)
    return match


def _expected_position(state: BracketState, match_id: int) -> int:
    position = state.index().position(match_id)
    if position is None:  # pragma: no cover - guarded by _require_match
        raise MatchNotFoundError(match_id)
    return feeder_position(position.match_index)


def _place(
    source: BracketMatch,
    target: BracketMatch,
    expected: int,
    incoming: BracketSlot,
    outcome: PropagationOutcome,
) -> bool:
    """Write ``incoming`` into ``target``; return True when a slot changed."""
    opposite = 1 - expected
    expected_slot = target.slot(expected)
    opposite_slot = target.slot(opposite)

    if incoming.is_assigned:
        if expected_slot.holds(incoming.participant_id):
            return False
        if opposite_slot.holds(incoming.participant_id):
            log.debug(
                "Match %s winner already sits in slot %s of match %s",
                source.match_id,
                opposite + 1,
                target.match_id,
            )
            return False
    elif expected_slot.is_bye:
        return False

    if expected_slot.is_empty:
        expected_slot.adopt_from(incoming)
        log.debug(
            "Placed %s in slot %s of match %s",
            incoming.label(),
            expected + 1,
            target.match_id,
        )
        return True
    if opposite_slot.is_empty:
        opposite_slot.adopt_from(incoming)
        log.debug(
            "Slot %s of match %s already taken; placed %s in slot %s",
            expected + 1,
            target.match_id,
            incoming.label(),
            opposite + 1,
        )
        return True

    warning = InconsistentSlotState(
        source_match_id=source.match_id,
        target_match_id=target.match_id,
        participant_id=incoming.participant_id,
        occupants=(target.slot_one.participant_id, target.slot_two.participant_id),
    )
    log.warning(warning.describe())
    outcome.warnings.append(warning)
    return False


def _run_cascade(
    state: BracketState,
    queue: deque[tuple[int, str | None]],
    outcome: PropagationOutcome,
) -> None:
    """Drain ``(match_id, winner_id)`` entries; a None winner forwards a bye."""
    while queue:
        match_id, winner_id = queue.popleft()
        match = _require_match(state, match_id)
        if winner_id is not None:
            match.record_winner(winner_id)
            winner = match.winner_slot()
            incoming = winner.copy() if winner is not None else BracketSlot.bye()
        else:
            incoming = BracketSlot.bye()

        if match.is_final:
            if winner_id is not None:
                outcome.tournament_complete = True
                outcome.champion_id = winner_id
                log.info("Match %s was the final; champion %s", match_id, winner_id)
            continue

        target = _require_match(state, match.next_match_id)
        expected = _expected_position(state, match_id)
        if not _place(match, target, expected, incoming, outcome):
            continue
        if target.is_completed:
            continue

        if target.slot_one.is_bye and target.slot_two.is_bye:
            log.debug("Match %s has no entrants; forwarding bye", target.match_id)
            queue.append((target.match_id, None))
            continue
        auto_winner = target.bye_winner()
        if auto_winner is not None:
            log.debug(
                "Auto-advancing %s through bye in match %s",
                auto_winner,
                target.match_id,
            )
            outcome.auto_advanced.append(target.match_id)
            queue.append((target.match_id, auto_winner))


def _clear_cascade(
    state: BracketState, match_id: int, outcome: PropagationOutcome
) -> None:
    queue: deque[int] = deque([match_id])
    while queue:
        match = _require_match(state, queue.popleft())
        previous = match.winner_id
        if previous is None:
            continue
        match.reset()
        outcome.cleared.append(match.match_id)
        if match.is_final:
            continue
        target = _require_match(state, match.next_match_id)
        position = target.position_of(previous)
        if position is None:
            continue
        target.slot(position).clear()
        log.debug(
            "Removed %s from slot %s of match %s",
            previous,
            position + 1,
            target.match_id,
        )
        if target.winner_id is not None:
            queue.append(target.match_id)
        else:
            target.reset()


def advance_in_place(
    state: BracketState, match_id: int, winner_id: str | None = None
) -> PropagationOutcome:
    """Propagate a decided match (or a bye when ``winner_id`` is None) in place."""
    outcome = PropagationOutcome(bracket=state)
    queue: deque[tuple[int, str | None]] = deque([(match_id, winner_id)])
    _run_cascade(state, queue, outcome)
    return outcome


def apply_result(
    bracket: BracketState, match_id: int, winner_id: str | None
) -> PropagationOutcome:
    """Record ``winner_id`` for ``match_id`` and carry it forward.

    Passing ``winner_id=None`` clears the result instead. A winner cannot be
    reported while the other slot still waits for an upstream result.
    Re-applying the same winner is a no-op; reporting a different winner for a
    decided match first clears the earlier result and its downstream effects.
    """
    if winner_id is None:
        return clear_result(bracket, match_id)

    state = bracket.clone()
    match = _require_match(state, match_id)
    winner_id = str(winner_id)
    position = match.position_of(winner_id)
    if position is None:
        raise InvalidWinnerError(match_id, winner_id)
    if match.slot(1 - position).is_empty:
        raise InvalidWinnerError(
            match_id,
            winner_id,
            f"Match {match_id} is still waiting for an opponent",
        )

    cleared: list[int] = []
    if match.winner_id is not None and match.winner_id != winner_id:
        log.info(
            "Replacing winner of match %s: %s -> %s",
            match_id,
            match.winner_id,
            winner_id,
        )
        replaced = PropagationOutcome(bracket=state)
        _clear_cascade(state, match_id, replaced)
        cleared = replaced.cleared

    outcome = advance_in_place(state, match_id, winner_id)
    outcome.cleared = cleared
    return outcome


def clear_result(bracket: BracketState, match_id: int) -> PropagationOutcome:
    """Remove the recorded winner of ``match_id`` and undo what it propagated.

    Only a downstream slot still holding this match's winner is emptied; a slot
    filled by the sibling match is never touched. A downstream match that was
    already decided is cleared in turn.
    """
    state = bracket.clone()
    match = _require_match(state, match_id)
    if match.has_bye:
        raise MatchLockedError(f"Match {match_id} was decided by a bye")
    outcome = PropagationOutcome(bracket=state)
    if match.winner_id is None:
        log.debug("Match %s has no winner to clear", match_id)
        return outcome
    _clear_cascade(state, match_id, outcome)
    return outcome


__all__ = [
    "InconsistentSlotState",
    "PropagationOutcome",
    "advance_in_place",
    "apply_result",
    "clear_result",
]
