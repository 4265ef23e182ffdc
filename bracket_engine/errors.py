from __future__ import annotations


class BracketError(ValueError):
    """Base exception for bracket engine failures."""


class InvalidValueError(BracketError):
    """Raised when raw input cannot be parsed into an engine value."""


class NoParticipantsError(BracketError):
    """Raised when a bracket is generated without any registered participants."""


class MatchNotFoundError(BracketError):
    """Raised when a match id is not part of the bracket."""

    def __init__(self, match_id: int) -> None:
        super().__init__(f"Match {match_id} not found in bracket")
        self.match_id = match_id


class InvalidWinnerError(BracketError):
    """Raised when the reported winner does not occupy either slot of the match."""

    def __init__(
        self, match_id: int, winner_id: str, reason: str | None = None
    ) -> None:
        super().__init__(
            reason or f"Participant {winner_id} is not playing in match {match_id}"
        )
        self.match_id = match_id
        self.winner_id = winner_id


class MatchLockedError(BracketError):
    """Raised when a match cannot be edited in its current state."""


class UnknownParticipantError(BracketError):
    """Raised when a participant id is not registered for the event."""

    def __init__(self, event_id: str, participant_id: str) -> None:
        super().__init__(
            f"Participant {participant_id} is not registered for event {event_id}"
        )
        self.event_id = event_id
        self.participant_id = participant_id


class BracketNotFoundError(BracketError):
    """Raised when no bracket has been generated for an event."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Bracket not found for event {event_id}")
        self.event_id = event_id


class ConcurrentUpdateError(BracketError):
    """Raised when a bracket document changed between read and write."""

    def __init__(self, event_id: str, expected_version: int) -> None:
        super().__init__(
            f"Bracket for event {event_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.event_id = event_id
        self.expected_version = expected_version


__all__ = [
    "BracketError",
    "InvalidValueError",
    "NoParticipantsError",
    "MatchNotFoundError",
    "InvalidWinnerError",
    "MatchLockedError",
    "UnknownParticipantError",
    "BracketNotFoundError",
    "ConcurrentUpdateError",
]
