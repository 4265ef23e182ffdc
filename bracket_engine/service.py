"""Orchestrates bracket generation and result reporting for events.

The engine functions in :mod:`bracket_engine.builder` and
:mod:`bracket_engine.propagation` are pure. This layer wires them to the
collaborators that own participants, the stored bracket document, match
detail overlays and the event lifecycle.

Every mutation is read-document, mutate, write-document. Writers for the same
event must be serialized: the service takes a per-event lock from
:class:`EventLocks`, and the repository is expected to reject stale writes
(``BracketStorage`` checks the document version). The service never retries a
rejected write; that decision belongs to the caller.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .builder import build_bracket
from .config import BracketSettings
from .errors import (
    BracketNotFoundError,
    InvalidValueError,
    MatchLockedError,
    MatchNotFoundError,
    NoParticipantsError,
    UnknownParticipantError,
)
from .models import (
    BracketMatch,
    BracketSlot,
    BracketState,
    EventRecord,
    EventStatus,
    MatchDetail,
    Participant,
    Registration,
)
from .propagation import PropagationOutcome, apply_result, clear_result
from .render import render_bracket
from .storage import BracketStorage, create_storage
from .validation import (
    clean_optional_text,
    normalize_event_id,
    normalize_participant_id,
    parse_capacity,
    parse_match_id,
    parse_schedule_datetime,
    parse_slot_position,
)

log = logging.getLogger(__name__)

# Event statuses whose brackets still have matches worth listing for players.
ACTIVE_EVENT_STATUSES = frozenset({"upcoming", EventStatus.IN_PROGRESS.value.lower()})


class ParticipantSource(Protocol):
    def list_registered_participants(self, event_id: str) -> list[Participant]: ...

    def list_user_registrations(self, user_id: str) -> list[Registration]: ...


class BracketRepository(Protocol):
    def load_bracket(self, event_id: str) -> BracketState | None: ...

    def save_bracket(self, bracket: BracketState) -> None: ...

    def delete_bracket(self, event_id: str) -> bool: ...


class MatchDetailStore(Protocol):
    def get_details(self, event_id: str) -> dict[int, MatchDetail]: ...

    def get_detail(self, event_id: str, match_id: int) -> MatchDetail | None: ...

    def upsert_detail(self, detail: MatchDetail) -> None: ...

    def clear_all_details(self, event_id: str) -> int: ...

    def reset_scheduled_times(self, event_id: str) -> int: ...


class EventStore(Protocol):
    def get_event(self, event_id: str) -> EventRecord | None: ...

    def mark_event_status(self, event_id: str, status: EventStatus) -> None: ...


class EventLocks:
    """One lock per event id, guarding the read-modify-write of its bracket."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_event(self, event_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(event_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[event_id] = lock
            return lock

    @contextmanager
    def hold(self, event_id: str) -> Iterator[None]:
        with self.for_event(event_id):
            yield


@dataclass(frozen=True, slots=True)
class UpcomingMatch:
    event_id: str
    match_id: int
    round_number: int
    participant_name: str
    opponent_id: str | None
    opponent_name: str
    scheduled_time: str | None = None
    location: str | None = None
    event_name: str = ""
    ready_to_play: bool = False


def with_details(
    bracket: BracketState, details: dict[int, MatchDetail]
) -> BracketState:
    """Return a copy of ``bracket`` carrying the schedule/location/notes overlay."""
    merged = bracket.clone()
    for match in merged.all_matches():
        detail = details.get(match.match_id)
        if detail is None:
            continue
        match.scheduled_time = detail.scheduled_time
        match.location = detail.location
        match.notes = detail.notes
    return merged


def _display_name(slot: BracketSlot, names: dict[str, str]) -> str:
    if slot.is_assigned and slot.participant_id is not None:
        return names.get(slot.participant_id, slot.label())
    return slot.label()


def _upcoming_for(
    bracket: BracketState,
    participant_id: str,
    names: dict[str, str],
    event_name: str = "",
) -> list[UpcomingMatch]:
    upcoming: list[UpcomingMatch] = []
    for match in bracket.all_matches():
        if match.is_completed:
            continue
        position = match.position_of(participant_id)
        if position is None:
            continue
        own = match.slot(position)
        opponent = match.slot(1 - position)
        upcoming.append(
            UpcomingMatch(
                event_id=bracket.event_id,
                match_id=match.match_id,
                round_number=match.round_number,
                participant_name=_display_name(own, names),
                opponent_id=opponent.participant_id,
                opponent_name=_display_name(opponent, names),
                scheduled_time=match.scheduled_time,
                location=match.location,
                event_name=event_name,
                ready_to_play=opponent.is_assigned,
            )
        )
    return upcoming


def _schedule_sort_key(entry: UpcomingMatch) -> tuple[int, datetime, int, int]:
    if entry.scheduled_time:
        parsed = datetime.fromisoformat(entry.scheduled_time.replace("Z", "+00:00"))
        return (0, parsed, entry.round_number, entry.match_id)
    return (1, datetime.min, entry.round_number, entry.match_id)


def _locate_first_round(
    bracket: BracketState, participant_id: str
) -> tuple[BracketMatch, int] | None:
    if not bracket.rounds:
        return None
    for match in bracket.rounds[0].matches:
        position = match.position_of(participant_id)
        if position is not None:
            return match, position
    return None


class BracketService:
    def __init__(
        self,
        participants: ParticipantSource,
        brackets: BracketRepository,
        details: MatchDetailStore,
        events: EventStore,
        *,
        locks: EventLocks | None = None,
        rng: random.Random | None = None,
        default_capacity: int | None = None,
        invalidate_details_on_regenerate: bool = True,
    ) -> None:
        self._participants = participants
        self._brackets = brackets
        self._details = details
        self._events = events
        self._locks = locks or EventLocks()
        self._rng = rng
        self._default_capacity = default_capacity
        self._invalidate_details = invalidate_details_on_regenerate

    @classmethod
    def from_storage(cls, storage: BracketStorage, **kwargs) -> BracketService:
        return cls(storage, storage, storage, storage, **kwargs)

    @classmethod
    def from_settings(
        cls,
        settings: BracketSettings,
        storage: BracketStorage | None = None,
        **kwargs,
    ) -> BracketService:
        """Build a service whose defaults come from ``BRACKET_*`` settings."""
        kwargs.setdefault("default_capacity", settings.default_capacity)
        kwargs.setdefault(
            "invalidate_details_on_regenerate",
            settings.invalidate_details_on_regenerate,
        )
        return cls.from_storage(storage or create_storage(settings), **kwargs)

    def _participant_names(self, event_id: str) -> dict[str, str]:
        return {
            participant.participant_id: participant.display_name
            for participant in self._participants.list_registered_participants(
                event_id
            )
        }

    def _require_open_first_round(
        self, bracket: BracketState, match_id: int
    ) -> BracketMatch:
        match = bracket.find_match(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        if match.round_number != 1:
            raise MatchLockedError(
                f"Match {match_id} is not in the first round; later rounds are "
                "filled by results only"
            )
        if match.winner_id is not None:
            raise MatchLockedError(f"Match {match_id} already has a winner")
        return match

    def _require_bracket(self, event_id: str) -> BracketState:
        bracket = self._brackets.load_bracket(event_id)
        if bracket is None:
            raise BracketNotFoundError(event_id)
        return bracket

    # ----- Generation -----
    def generate_bracket(
        self, event_id: str, requested_capacity: object = None
    ) -> BracketState:
        """Seed a fresh bracket, replacing any existing one wholesale."""
        event_id = normalize_event_id(event_id)
        participants = self._participants.list_registered_participants(event_id)
        if not participants:
            raise NoParticipantsError(
                f"No participants registered for event {event_id}"
            )
        capacity = parse_capacity(requested_capacity)
        if capacity is None:
            capacity = self._default_capacity
        with self._locks.hold(event_id):
            existing = self._brackets.load_bracket(event_id)
            bracket = build_bracket(
                participants, capacity, rng=self._rng, event_id=event_id
            )
            if existing is not None:
                bracket.version = existing.version
                log.info("Replacing existing bracket for event %s", event_id)
                if self._invalidate_details:
                    removed = self._details.clear_all_details(event_id)
                    if removed:
                        log.info(
                            "Dropped %s match detail entries for event %s",
                            removed,
                            event_id,
                        )
            self._brackets.save_bracket(bracket)

        if bracket.is_complete:
            self._events.mark_event_status(event_id, EventStatus.COMPLETED)
        else:
            self._events.mark_event_status(event_id, EventStatus.IN_PROGRESS)
        return bracket

    # ----- Reads -----
    def get_bracket(self, event_id: str) -> BracketState:
        event_id = normalize_event_id(event_id)
        bracket = self._require_bracket(event_id)
        return with_details(bracket, self._details.get_details(event_id))

    def champion(self, event_id: str) -> BracketSlot | None:
        return self._require_bracket(normalize_event_id(event_id)).champion()

    def render_text(self, event_id: str, *, shrink_completed: bool = False) -> str:
        return render_bracket(
            self.get_bracket(event_id), shrink_completed=shrink_completed
        )

    def upcoming_matches(
        self, event_id: str, participant_id: str
    ) -> list[UpcomingMatch]:
        """Undecided matches the participant already occupies, soonest first."""
        participant_id = normalize_participant_id(participant_id)
        bracket = self.get_bracket(event_id)
        upcoming = _upcoming_for(
            bracket, participant_id, self._participant_names(bracket.event_id)
        )
        upcoming.sort(key=_schedule_sort_key)
        return upcoming

    def upcoming_matches_for_user(self, user_id: str) -> list[UpcomingMatch]:
        """Undecided matches across active events for a captain or team member."""
        user_id = normalize_participant_id(user_id)
        by_event: dict[str, Registration] = {}
        for registration in self._participants.list_user_registrations(user_id):
            by_event.setdefault(registration.event_id, registration)

        upcoming: list[UpcomingMatch] = []
        for event_id, registration in by_event.items():
            event = self._events.get_event(event_id)
            if event is None:
                continue
            if event.status.strip().lower() not in ACTIVE_EVENT_STATUSES:
                log.debug("Skipping event %s with status %s", event_id, event.status)
                continue
            bracket = self._brackets.load_bracket(event_id)
            if bracket is None:
                continue
            bracket = with_details(bracket, self._details.get_details(event_id))
            upcoming.extend(
                _upcoming_for(
                    bracket,
                    registration.registration_id,
                    self._participant_names(event_id),
                    event.name,
                )
            )
        upcoming.sort(key=_schedule_sort_key)
        return upcoming

    # ----- Results -----
    def report_result(
        self, event_id: str, match_id: object, winner_id: object
    ) -> PropagationOutcome:
        event_id = normalize_event_id(event_id)
        parsed_match = parse_match_id(match_id)
        winner = normalize_participant_id(winner_id)
        with self._locks.hold(event_id):
            bracket = self._require_bracket(event_id)
            outcome = apply_result(bracket, parsed_match, winner)
            self._brackets.save_bracket(outcome.bracket)

        for warning in outcome.warnings:
            log.warning("Event %s: %s", event_id, warning.describe())
        if outcome.tournament_complete:
            self._events.mark_event_status(event_id, EventStatus.COMPLETED)
        elif outcome.cleared and bracket.is_complete:
            self._events.mark_event_status(event_id, EventStatus.IN_PROGRESS)
        return outcome

    def clear_result(self, event_id: str, match_id: object) -> PropagationOutcome:
        event_id = normalize_event_id(event_id)
        parsed_match = parse_match_id(match_id)
        with self._locks.hold(event_id):
            bracket = self._require_bracket(event_id)
            outcome = clear_result(bracket, parsed_match)
            if not outcome.cleared:
                return outcome
            self._brackets.save_bracket(outcome.bracket)

        if bracket.is_complete and not outcome.bracket.is_complete:
            self._events.mark_event_status(event_id, EventStatus.IN_PROGRESS)
        return outcome

    def swap_participants(self, event_id: str, match_id: object) -> BracketMatch:
        """Exchange the two slots of an undecided first-round match."""
        event_id = normalize_event_id(event_id)
        parsed_match = parse_match_id(match_id)
        with self._locks.hold(event_id):
            bracket = self._require_bracket(event_id)
            match = self._require_open_first_round(bracket, parsed_match)
            first = match.slot_one.copy()
            match.slot_one.adopt_from(match.slot_two)
            match.slot_two.adopt_from(first)
            self._brackets.save_bracket(bracket)
        return match

    def reassign_first_round_slot(
        self,
        event_id: str,
        match_id: object,
        position: object,
        other_participant_id: object,
    ) -> BracketState:
        """Change who occupies one slot of an undecided first-round match.

        ``position`` is 1 or 2. When ``other_participant_id`` already plays in
        another undecided first-round match the two slots are exchanged. A
        registered participant who is not placed yet replaces the occupant,
        who drops out of the bracket. Bye and empty slots cannot be changed.
        """
        event_id = normalize_event_id(event_id)
        parsed_match = parse_match_id(match_id)
        index = parse_slot_position(position)
        other_id = normalize_participant_id(other_participant_id)
        with self._locks.hold(event_id):
            bracket = self._require_bracket(event_id)
            match = self._require_open_first_round(bracket, parsed_match)
            slot = match.slot(index)
            if not slot.is_assigned:
                raise MatchLockedError(
                    f"Slot {index + 1} of match {parsed_match} holds no "
                    "participant and cannot be reassigned"
                )
            if slot.holds(other_id):
                raise InvalidValueError(
                    f"Participant {other_id} already holds that slot"
                )

            located = _locate_first_round(bracket, other_id)
            if located is not None:
                other_match, other_index = located
                if other_match.winner_id is not None:
                    raise MatchLockedError(
                        f"Match {other_match.match_id} already has a winner"
                    )
                other_slot = other_match.slot(other_index)
                previous = slot.copy()
                slot.adopt_from(other_slot)
                other_slot.adopt_from(previous)
                log.info(
                    "Event %s: exchanged %s (match %s) with %s (match %s)",
                    event_id,
                    previous.participant_id,
                    parsed_match,
                    other_id,
                    other_match.match_id,
                )
            else:
                names = self._participant_names(event_id)
                if other_id not in names:
                    raise UnknownParticipantError(event_id, other_id)
                log.info(
                    "Event %s: %s replaces %s in match %s",
                    event_id,
                    other_id,
                    slot.participant_id,
                    parsed_match,
                )
                slot.adopt_from(BracketSlot.assigned(other_id, names[other_id]))
            self._brackets.save_bracket(bracket)
        return bracket

    # ----- Tear-down -----
    def delete_bracket(self, event_id: str) -> bool:
        event_id = normalize_event_id(event_id)
        with self._locks.hold(event_id):
            deleted = self._brackets.delete_bracket(event_id)
            self._details.clear_all_details(event_id)
        if deleted:
            log.info("Deleted bracket for event %s", event_id)
        return deleted

    # ----- Match details -----
    def get_match_detail(self, event_id: str, match_id: object) -> MatchDetail | None:
        return self._details.get_detail(
            normalize_event_id(event_id), parse_match_id(match_id)
        )

    def update_match_detail(
        self,
        event_id: str,
        match_id: object,
        *,
        scheduled_time: str | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> MatchDetail:
        """Create or replace the overlay for one match; never touches results."""
        event_id = normalize_event_id(event_id)
        parsed_match = parse_match_id(match_id)
        bracket = self._require_bracket(event_id)
        if bracket.find_match(parsed_match) is None:
            raise MatchNotFoundError(parsed_match)
        detail = MatchDetail(
            event_id=event_id,
            match_id=parsed_match,
            scheduled_time=parse_schedule_datetime(scheduled_time),
            location=clean_optional_text(location, field="Location", limit=200),
            notes=clean_optional_text(notes, field="Notes"),
        )
        self._details.upsert_detail(detail)
        return detail

    def reset_schedule(self, event_id: str) -> int:
        event_id = normalize_event_id(event_id)
        count = self._details.reset_scheduled_times(event_id)
        log.info("Reset %s scheduled times for event %s", count, event_id)
        return count


__all__ = [
    "BracketRepository",
    "BracketService",
    "EventLocks",
    "EventStore",
    "MatchDetailStore",
    "ParticipantSource",
    "UpcomingMatch",
    "with_details",
]
