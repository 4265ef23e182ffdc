from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import ClassVar

from .lookup import MatchIndex

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
TBD_LABEL = "TBD"
BYE_LABEL = "Bye"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (ms precision)."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


def _optional_str(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(value)  # type: ignore[call-overload]


class SlotState(str, Enum):
    EMPTY = "empty"
    BYE = "bye"
    ASSIGNED = "assigned"


class MatchStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class EventStatus(str, Enum):
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TeamType(str, Enum):
    SOLO = "solo"
    DUO = "duo"
    TEAM = "team"


@dataclass(frozen=True, slots=True)
class Participant:
    participant_id: str
    display_name: str
    team_member_ids: frozenset[str] = frozenset()


@dataclass(slots=True)
class BracketSlot:
    state: SlotState = SlotState.EMPTY
    participant_id: str | None = None
    name: str | None = None

    @classmethod
    def empty(cls) -> BracketSlot:
        return cls()

    @classmethod
    def bye(cls) -> BracketSlot:
        return cls(state=SlotState.BYE)

    @classmethod
    def assigned(cls, participant_id: str, name: str) -> BracketSlot:
        return cls(state=SlotState.ASSIGNED, participant_id=participant_id, name=name)

    @property
    def is_empty(self) -> bool:
        return self.state is SlotState.EMPTY

    @property
    def is_bye(self) -> bool:
        return self.state is SlotState.BYE

    @property
    def is_assigned(self) -> bool:
        return self.state is SlotState.ASSIGNED

    def holds(self, participant_id: str | None) -> bool:
        return (
            participant_id is not None
            and self.is_assigned
            and self.participant_id == participant_id
        )

    def label(self) -> str:
        if self.is_assigned:
            return self.name or ""
        if self.is_bye:
            return BYE_LABEL
        return TBD_LABEL

    def copy(self) -> BracketSlot:
        return BracketSlot(
            state=self.state, participant_id=self.participant_id, name=self.name
        )

    def adopt_from(self, other: BracketSlot) -> None:
        self.state = other.state
        self.participant_id = other.participant_id
        self.name = other.name

    def clear(self) -> None:
        self.state = SlotState.EMPTY
        self.participant_id = None
        self.name = None

    def to_fields(self, position: int) -> dict[str, object]:
        return {
            f"participant{position}Id": self.participant_id,
            f"participant{position}Name": self.label(),
        }

    @classmethod
    def from_fields(cls, data: dict[str, object], position: int) -> BracketSlot:
        participant_id = _optional_str(data.get(f"participant{position}Id"))
        raw_name = data.get(f"participant{position}Name")
        if participant_id is not None:
            return cls.assigned(participant_id, str(raw_name or ""))
        if raw_name == BYE_LABEL:
            return cls.bye()
        return cls.empty()


@dataclass(slots=True)
class BracketMatch:
    match_id: int
    round_number: int
    slot_one: BracketSlot
    slot_two: BracketSlot
    next_match_id: int | None = None
    winner_id: str | None = None
    status: MatchStatus = MatchStatus.PENDING
    scheduled_time: str | None = None
    location: str | None = None
    notes: str | None = None

    @property
    def slots(self) -> tuple[BracketSlot, BracketSlot]:
        return (self.slot_one, self.slot_two)

    @property
    def is_completed(self) -> bool:
        return self.status is MatchStatus.COMPLETED

    @property
    def is_final(self) -> bool:
        return self.next_match_id is None

    @property
    def has_bye(self) -> bool:
        return self.slot_one.is_bye or self.slot_two.is_bye

    @property
    def is_void(self) -> bool:
        """Unplayable match: an unfilled opening pair, or bye against bye."""
        one, two = self.slots
        if one.is_bye and two.is_bye:
            return True
        return self.round_number == 1 and one.is_empty and two.is_empty

    def slot(self, position: int) -> BracketSlot:
        return self.slots[position]

    def position_of(self, participant_id: str | None) -> int | None:
        for position, slot in enumerate(self.slots):
            if slot.holds(participant_id):
                return position
        return None

    def winner_slot(self) -> BracketSlot | None:
        position = self.position_of(self.winner_id)
        if position is None:
            return None
        return self.slots[position]

    def record_winner(self, winner_id: str) -> None:
        self.winner_id = winner_id
        self.status = MatchStatus.COMPLETED

    def reset(self) -> None:
        self.winner_id = None
        self.status = MatchStatus.PENDING

    def bye_winner(self) -> str | None:
        """Return the occupant that advances automatically against a bye."""
        one, two = self.slots
        if one.is_assigned and two.is_bye:
            return one.participant_id
        if two.is_assigned and one.is_bye:
            return two.participant_id
        return None

    def to_document(self, *, include_details: bool = True) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.match_id,
            "round": self.round_number,
        }
        data.update(self.slot_one.to_fields(1))
        data.update(self.slot_two.to_fields(2))
        data.update(
            {
                "winnerId": self.winner_id,
                "status": self.status.value,
                "nextMatchId": self.next_match_id,
            }
        )
        if include_details:
            if self.scheduled_time is not None:
                data["scheduledTime"] = self.scheduled_time
            if self.location is not None:
                data["location"] = self.location
            if self.notes is not None:
                data["notes"] = self.notes
        return data

    @classmethod
    def from_document(
        cls, data: dict[str, object], default_round: int = 1
    ) -> BracketMatch:
        winner_id = _optional_str(data.get("winnerId"))
        raw_round = data.get("round")
        round_number = (
            int(raw_round)  # type: ignore[call-overload]
            if raw_round is not None
            else default_round
        )
        return cls(
            match_id=int(data["id"]),  # type: ignore[call-overload]
            round_number=round_number,
            slot_one=BracketSlot.from_fields(data, 1),
            slot_two=BracketSlot.from_fields(data, 2),
            next_match_id=_optional_int(data.get("nextMatchId")),
            winner_id=winner_id,
            status=(
                MatchStatus.COMPLETED if winner_id is not None else MatchStatus.PENDING
            ),
            scheduled_time=_optional_str(data.get("scheduledTime")),
            location=_optional_str(data.get("location")),
            notes=_optional_str(data.get("notes")),
        )


@dataclass(slots=True)
class BracketRound:
    number: int
    matches: list[BracketMatch]

    def to_document(self, *, include_details: bool = True) -> list[dict[str, object]]:
        return [
            match.to_document(include_details=include_details)
            for match in self.matches
        ]

    @classmethod
    def from_document(
        cls, number: int, data: Iterable[dict[str, object]]
    ) -> BracketRound:
        return cls(
            number=number,
            matches=[BracketMatch.from_document(item, number) for item in data],
        )

    @property
    def is_decided(self) -> bool:
        return all(match.is_completed or match.is_void for match in self.matches)


def rounds_from_document(raw: object) -> list[BracketRound]:
    """Decode stored rounds; accepts JSON strings and the legacy ``rounds`` wrapper."""
    if isinstance(raw, str):
        raw = json.loads(raw) if raw.strip() else []
    if isinstance(raw, dict):
        raw = raw.get("rounds", [])
    if not isinstance(raw, list):
        return []
    return [
        BracketRound.from_document(number, round_data)
        for number, round_data in enumerate(raw, start=1)
    ]


@dataclass(slots=True)
class BracketState:
    event_id: str
    rounds: list[BracketRound]
    created_at: str = ""
    updated_at: str = ""
    version: int = 0
    sole_entrant_id: str | None = None
    sole_entrant_name: str | None = None
    _index: MatchIndex | None = field(
        default=None, init=False, repr=False, compare=False
    )

    PK_TEMPLATE: ClassVar[str] = "EVENT#%s"
    SK_VALUE: ClassVar[str] = "BRACKET"

    @classmethod
    def key(cls, event_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % event_id, "sk": cls.SK_VALUE}

    def to_document(
        self, *, include_details: bool = True
    ) -> list[list[dict[str, object]]]:
        return [
            round_.to_document(include_details=include_details)
            for round_ in self.rounds
        ]

    def to_item(self, *, include_details: bool = False) -> dict[str, object]:
        item: dict[str, object] = self.key(self.event_id)
        item.update(
            {
                "event_id": self.event_id,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "version": self.version,
                "matches": self.to_document(include_details=include_details),
            }
        )
        if self.sole_entrant_id is not None:
            item["sole_entrant_id"] = self.sole_entrant_id
            item["sole_entrant_name"] = self.sole_entrant_name or ""
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> BracketState:
        event_id = str(item.get("event_id") or str(item["pk"]).split("#", 1)[1])
        return cls(
            event_id=event_id,
            rounds=rounds_from_document(item.get("matches", [])),
            created_at=str(item.get("created_at", "")),
            updated_at=str(item.get("updated_at", "")),
            version=int(item.get("version", 0) or 0),  # type: ignore[call-overload]
            sole_entrant_id=_optional_str(item.get("sole_entrant_id")),
            sole_entrant_name=_optional_str(item.get("sole_entrant_name")),
        )

    def clone(self) -> BracketState:
        return BracketState.from_item(self.to_item(include_details=True))

    def index(self) -> MatchIndex:
        if self._index is None:
            self._index = MatchIndex(self.rounds)
        return self._index

    def find_match(self, match_id: int) -> BracketMatch | None:
        position = self.index().position(match_id)
        if position is None:
            return None
        return self.rounds[position.round_index].matches[position.match_index]

    def all_matches(self) -> Iterator[BracketMatch]:
        for round_ in self.rounds:
            yield from round_.matches

    @property
    def total_matches(self) -> int:
        return sum(len(round_.matches) for round_ in self.rounds)

    def final_match(self) -> BracketMatch | None:
        if not self.rounds or not self.rounds[-1].matches:
            return None
        return self.rounds[-1].matches[-1]

    def champion(self) -> BracketSlot | None:
        if not self.rounds:
            if self.sole_entrant_id is None:
                return None
            return BracketSlot.assigned(
                self.sole_entrant_id, self.sole_entrant_name or ""
            )
        final = self.final_match()
        if final is None:
            return None
        return final.winner_slot()

    @property
    def is_complete(self) -> bool:
        return self.champion() is not None


@dataclass(slots=True)
class MatchDetail:
    event_id: str
    match_id: int
    scheduled_time: str | None = None
    location: str | None = None
    notes: str | None = None
    updated_at: str = ""

    PK_TEMPLATE: ClassVar[str] = "EVENT#%s"
    SK_TEMPLATE: ClassVar[str] = "DETAIL#%06d"
    SK_PREFIX: ClassVar[str] = "DETAIL#"

    @classmethod
    def key(cls, event_id: str, match_id: int) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % event_id, "sk": cls.SK_TEMPLATE % match_id}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.event_id, self.match_id)
        item.update(
            {
                "event_id": self.event_id,
                "match_id": self.match_id,
                "updated_at": self.updated_at,
            }
        )
        if self.scheduled_time is not None:
            item["scheduled_time"] = self.scheduled_time
        if self.location is not None:
            item["location"] = self.location
        if self.notes is not None:
            item["notes"] = self.notes
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> MatchDetail:
        event_id = str(item.get("event_id") or str(item["pk"]).split("#", 1)[1])
        raw_match = item.get("match_id") or str(item["sk"]).split("#", 1)[1]
        return cls(
            event_id=event_id,
            match_id=int(raw_match),  # type: ignore[call-overload]
            scheduled_time=_optional_str(item.get("scheduled_time")),
            location=_optional_str(item.get("location")),
            notes=_optional_str(item.get("notes")),
            updated_at=str(item.get("updated_at", "")),
        )

    @property
    def is_blank(self) -> bool:
        return (
            self.scheduled_time is None
            and self.location is None
            and self.notes is None
        )


@dataclass(slots=True)
class TeamMember:
    user_id: str
    username: str

    def to_dict(self) -> dict[str, object]:
        return {"user_id": self.user_id, "username": self.username}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> TeamMember:
        return cls(
            user_id=str(data.get("user_id", "")),
            username=str(data.get("username", "")),
        )


@dataclass(slots=True)
class Registration:
    event_id: str
    registration_id: str
    user_id: str
    username: str
    registered_at: str
    status: str = "registered"
    team_name: str | None = None
    notes: str | None = None
    members: list[TeamMember] = field(default_factory=list)

    PK_TEMPLATE: ClassVar[str] = "EVENT#%s"
    SK_TEMPLATE: ClassVar[str] = "REGISTRATION#%s"
    SK_PREFIX: ClassVar[str] = "REGISTRATION#"
    ACTIVE_STATUS: ClassVar[str] = "registered"

    @classmethod
    def key(cls, event_id: str, registration_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % event_id,
            "sk": cls.SK_TEMPLATE % registration_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.event_id, self.registration_id)
        item.update(
            {
                "event_id": self.event_id,
                "registration_id": self.registration_id,
                "user_id": self.user_id,
                "username": self.username,
                "registered_at": self.registered_at,
                "status": self.status,
                "members": [member.to_dict() for member in self.members],
            }
        )
        if self.team_name is not None:
            item["team_name"] = self.team_name
        if self.notes is not None:
            item["notes"] = self.notes
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Registration:
        event_id = str(item.get("event_id") or str(item["pk"]).split("#", 1)[1])
        registration_id = str(
            item.get("registration_id") or str(item["sk"]).split("#", 1)[1]
        )
        members_data: Iterable[dict[str, object]] = (
            item.get("members") or []  # type: ignore[assignment]
        )
        return cls(
            event_id=event_id,
            registration_id=registration_id,
            user_id=str(item.get("user_id", "")),
            username=str(item.get("username", "")),
            registered_at=str(item.get("registered_at", "")),
            status=str(item.get("status", cls.ACTIVE_STATUS)),
            team_name=_optional_str(item.get("team_name")),
            notes=_optional_str(item.get("notes")),
            members=[TeamMember.from_dict(data) for data in members_data],
        )

    @property
    def is_active(self) -> bool:
        return self.status == self.ACTIVE_STATUS

    def includes_user(self, user_id: str) -> bool:
        if self.user_id == user_id:
            return True
        return any(member.user_id == user_id for member in self.members)


@dataclass(slots=True)
class EventRecord:
    event_id: str
    name: str
    team_type: TeamType = TeamType.SOLO
    status: str = "Upcoming"
    registration_limit: int | None = None
    updated_at: str = ""

    PK_TEMPLATE: ClassVar[str] = "EVENT#%s"
    SK_VALUE: ClassVar[str] = "EVENT"

    @classmethod
    def key(cls, event_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % event_id, "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.event_id)
        item.update(
            {
                "event_id": self.event_id,
                "name": self.name,
                "team_type": self.team_type.value,
                "status": self.status,
                "updated_at": self.updated_at,
            }
        )
        if self.registration_limit is not None:
            item["registration_limit"] = self.registration_limit
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> EventRecord:
        event_id = str(item.get("event_id") or str(item["pk"]).split("#", 1)[1])
        raw_team_type = str(item.get("team_type", TeamType.SOLO.value)).lower()
        try:
            team_type = TeamType(raw_team_type)
        except ValueError:  # pragma: no cover - defensive
            team_type = TeamType.SOLO
        return cls(
            event_id=event_id,
            name=str(item.get("name", "")),
            team_type=team_type,
            status=str(item.get("status", "Upcoming")),
            registration_limit=_optional_int(item.get("registration_limit")),
            updated_at=str(item.get("updated_at", "")),
        )


__all__ = [
    "BYE_LABEL",
    "ISO_FORMAT",
    "TBD_LABEL",
    "BracketMatch",
    "BracketRound",
    "BracketSlot",
    "BracketState",
    "EventRecord",
    "EventStatus",
    "MatchDetail",
    "MatchStatus",
    "Participant",
    "Registration",
    "SlotState",
    "TeamMember",
    "TeamType",
    "rounds_from_document",
    "utc_now_iso",
]
