"""Turn event registrations into bracket participants."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import Participant, Registration, TeamType

log = logging.getLogger(__name__)

DUO_PARTNER_PREFIX = "Duo partner:"
UNKNOWN_NAME = "Unknown"


def _partner_from_notes(notes: str | None) -> str | None:
    if not notes or DUO_PARTNER_PREFIX not in notes:
        return None
    partner = notes.split(DUO_PARTNER_PREFIX, 1)[1].strip()
    return partner or None


def compose_display_name(registration: Registration, team_type: TeamType) -> str:
    """Return the label shown in the bracket for one registration.

    Team and duo entries prefer an explicit team name, then "Captain & Partner"
    built from the team members, then a partner named in the registration
    notes. Solo entries always use the username.
    """
    captain = registration.username.strip() or UNKNOWN_NAME
    if team_type is TeamType.SOLO:
        return captain

    if registration.team_name and registration.team_name.strip():
        return registration.team_name.strip()

    partner = next(
        (
            member
            for member in registration.members
            if member.user_id != registration.user_id and member.username.strip()
        ),
        None,
    )
    if partner is not None:
        return f"{captain} & {partner.username.strip()}"

    noted_partner = _partner_from_notes(registration.notes)
    if noted_partner is not None:
        return f"{captain} & {noted_partner}"
    return captain


def registration_to_participant(
    registration: Registration, team_type: TeamType
) -> Participant:
    member_ids = frozenset(
        member.user_id for member in registration.members if member.user_id
    )
    return Participant(
        participant_id=registration.registration_id,
        display_name=compose_display_name(registration, team_type),
        team_member_ids=member_ids,
    )


def participants_from_registrations(
    registrations: Iterable[Registration], team_type: TeamType
) -> list[Participant]:
    """One participant per active registration, in registration order."""
    participants: list[Participant] = []
    seen: set[str] = set()
    for registration in registrations:
        if not registration.is_active:
            continue
        if registration.registration_id in seen:
            log.warning(
                "Skipping duplicate registration %s for event %s",
                registration.registration_id,
                registration.event_id,
            )
            continue
        seen.add(registration.registration_id)
        participants.append(registration_to_participant(registration, team_type))
    return participants


__all__ = [
    "compose_display_name",
    "participants_from_registrations",
    "registration_to_participant",
]
