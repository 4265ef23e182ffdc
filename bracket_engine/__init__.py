"""Single-elimination bracket engine."""

from .builder import build_bracket, effective_capacity
from .errors import (
    BracketError,
    BracketNotFoundError,
    ConcurrentUpdateError,
    InvalidValueError,
    InvalidWinnerError,
    MatchLockedError,
    MatchNotFoundError,
    NoParticipantsError,
    UnknownParticipantError,
)
from .models import (
    BracketMatch,
    BracketRound,
    BracketSlot,
    BracketState,
    EventRecord,
    EventStatus,
    MatchDetail,
    MatchStatus,
    Participant,
    Registration,
    SlotState,
    TeamMember,
    TeamType,
    utc_now_iso,
)
from .propagation import (
    InconsistentSlotState,
    PropagationOutcome,
    apply_result,
    clear_result,
)
from .service import BracketService, EventLocks, UpcomingMatch
from .storage import BracketStorage, create_storage

__all__ = [
    "BracketError",
    "BracketMatch",
    "BracketNotFoundError",
    "BracketRound",
    "BracketService",
    "BracketSlot",
    "BracketState",
    "BracketStorage",
    "ConcurrentUpdateError",
    "EventLocks",
    "EventRecord",
    "EventStatus",
    "InconsistentSlotState",
    "InvalidValueError",
    "InvalidWinnerError",
    "MatchDetail",
    "MatchLockedError",
    "MatchNotFoundError",
    "MatchStatus",
    "NoParticipantsError",
    "Participant",
    "PropagationOutcome",
    "Registration",
    "SlotState",
    "TeamMember",
    "TeamType",
    "UnknownParticipantError",
    "UpcomingMatch",
    "apply_result",
    "build_bracket",
    "clear_result",
    "create_storage",
    "effective_capacity",
    "utc_now_iso",
]
