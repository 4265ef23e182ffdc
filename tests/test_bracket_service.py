import threading

import pytest
from conftest import KeepOrder, make_registration

from bracket_engine import (
    BracketNotFoundError,
    BracketService,
    EventLocks,
    EventRecord,
    EventStatus,
    InvalidValueError,
    MatchLockedError,
    MatchNotFoundError,
    NoParticipantsError,
    TeamMember,
    TeamType,
    UnknownParticipantError,
    UpcomingMatch,
)
from bracket_engine.config import read_settings
from bracket_engine.service import _schedule_sort_key


def _event_status(storage, event_id: str = "evt") -> str:
    return storage.get_event(event_id).status


def _occupants(bracket, match_id: int) -> tuple[str | None, str | None]:
    match = bracket.find_match(match_id)
    return (match.slot_one.participant_id, match.slot_two.participant_id)


def test_generate_marks_event_in_progress(service, storage, register):
    register("evt", 4)

    bracket = service.generate_bracket("evt")

    assert bracket.version == 1
    assert storage.load_bracket("evt").to_document() == bracket.to_document()
    assert _event_status(storage) == "In Progress"


def test_generate_without_registrations_fails(service):
    with pytest.raises(NoParticipantsError):
        service.generate_bracket("evt")


def test_generate_rejects_bad_capacity(service, register):
    register("evt", 2)

    with pytest.raises(InvalidValueError):
        service.generate_bracket("evt", "lots")


def test_generate_uses_default_capacity(storage, register):
    register("evt", 2)
    service = BracketService.from_storage(
        storage, rng=KeepOrder(), default_capacity=8
    )

    bracket = service.generate_bracket("evt")

    assert bracket.total_matches == 7


def test_single_registration_completes_event(service, storage, register):
    register("evt", 1)

    bracket = service.generate_bracket("evt")

    assert bracket.rounds == []
    assert service.champion("evt").participant_id == "p1"
    assert _event_status(storage) == "Completed"


def test_reporting_final_completes_event(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")

    service.report_result("evt", 1, "p1")
    service.report_result("evt", "2", "p4")
    outcome = service.report_result("evt", 3, "p4")

    assert outcome.tournament_complete is True
    assert outcome.champion_id == "p4"
    assert _event_status(storage) == "Completed"
    assert storage.load_bracket("evt").version == 4


def test_clearing_final_reopens_event(service, storage, register):
    register("evt", 2)
    service.generate_bracket("evt")
    service.report_result("evt", 1, "p2")
    assert _event_status(storage) == "Completed"

    outcome = service.clear_result("evt", 1)

    assert outcome.cleared == [1]
    assert service.champion("evt") is None
    assert _event_status(storage) == "In Progress"


def test_replacing_final_winner_keeps_event_completed(service, storage, register):
    register("evt", 2)
    service.generate_bracket("evt")
    service.report_result("evt", 1, "p2")

    outcome = service.report_result("evt", 1, "p1")

    assert outcome.cleared == [1]
    assert outcome.champion_id == "p1"
    assert _event_status(storage) == "Completed"


def test_clearing_undecided_match_skips_write(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")

    outcome = service.clear_result("evt", 1)

    assert outcome.cleared == []
    assert storage.load_bracket("evt").version == 1


def test_report_result_requires_bracket(service):
    with pytest.raises(BracketNotFoundError):
        service.report_result("evt", 1, "p1")


def test_report_result_validates_input(service, register):
    register("evt", 2)
    service.generate_bracket("evt")

    with pytest.raises(InvalidValueError):
        service.report_result("evt", "first", "p1")
    with pytest.raises(InvalidValueError):
        service.report_result("evt", 1, "  ")
    with pytest.raises(InvalidValueError):
        service.report_result("", 1, "p1")


def test_from_settings_uses_environment_defaults(monkeypatch, storage, register):
    monkeypatch.setenv("BRACKET_TABLE_NAME", "brackets")
    monkeypatch.setenv("BRACKET_DEFAULT_CAPACITY", "8")
    monkeypatch.setenv("BRACKET_INVALIDATE_DETAILS", "false")
    monkeypatch.setattr(
        "bracket_engine.service.create_storage", lambda _settings: storage
    )
    register("evt", 2)
    service = BracketService.from_settings(read_settings(), rng=KeepOrder())

    assert service.generate_bracket("evt").total_matches == 7
    service.update_match_detail("evt", 1, location="Court 1")
    service.generate_bracket("evt")

    assert service.get_match_detail("evt", 1).location == "Court 1"
    assert service.get_match_detail("evt", "2") is None


def test_regenerate_drops_details_and_keeps_version_chain(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.update_match_detail("evt", 1, location="Court 1")

    bracket = service.generate_bracket("evt")

    assert bracket.version == 2
    assert storage.get_details("evt") == {}


def test_regenerate_can_keep_details(storage, register):
    register("evt", 4)
    service = BracketService.from_storage(
        storage, rng=KeepOrder(), invalidate_details_on_regenerate=False
    )
    service.generate_bracket("evt")
    service.update_match_detail("evt", 1, location="Court 1")

    service.generate_bracket("evt")

    assert storage.get_detail("evt", 1).location == "Court 1"


def test_detail_overlay_merges_without_touching_results(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")

    detail = service.update_match_detail(
        "evt", "1", scheduled_time="2024-05-01 18:00", location=" Court 1 "
    )
    service.report_result("evt", 1, "p1")

    assert detail.scheduled_time == "2024-05-01T18:00:00.000000Z"
    merged = service.get_bracket("evt").find_match(1)
    assert merged.scheduled_time == "2024-05-01T18:00:00.000000Z"
    assert merged.location == "Court 1"
    assert merged.winner_id == "p1"
    stored_match = storage.load_bracket("evt").find_match(1)
    assert stored_match.location is None
    assert stored_match.winner_id == "p1"


def test_detail_for_unknown_match_is_rejected(service, register):
    register("evt", 4)
    service.generate_bracket("evt")

    with pytest.raises(MatchNotFoundError):
        service.update_match_detail("evt", 9, notes="?")


def test_detail_rejects_bad_schedule(service, register):
    register("evt", 2)
    service.generate_bracket("evt")

    with pytest.raises(InvalidValueError):
        service.update_match_detail("evt", 1, scheduled_time="tomorrow")


def test_swap_participants_before_result(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")

    match = service.swap_participants("evt", 1)

    assert match.slot_one.participant_id == "p2"
    assert match.slot_two.participant_id == "p1"
    assert storage.load_bracket("evt").find_match(1).slot_one.holds("p2")

    service.report_result("evt", 1, "p2")
    with pytest.raises(MatchLockedError):
        service.swap_participants("evt", 1)


def test_swap_is_limited_to_first_round(service, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.report_result("evt", 1, "p1")
    service.report_result("evt", 2, "p3")

    with pytest.raises(MatchLockedError, match="first round"):
        service.swap_participants("evt", 3)


def test_reassign_exchanges_with_other_first_round_match(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")

    bracket = service.reassign_first_round_slot("evt", 1, 2, "p3")

    assert _occupants(bracket, 1) == ("p1", "p3")
    assert _occupants(bracket, 2) == ("p2", "p4")
    assert _occupants(storage.load_bracket("evt"), 2) == ("p2", "p4")


def test_reassign_places_unseeded_registration(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")
    storage.save_registration(make_registration("evt", 5))

    bracket = service.reassign_first_round_slot("evt", "1", "1", "p5")

    match = bracket.find_match(1)
    assert match.slot_one.holds("p5")
    assert match.slot_one.name == "Player 5"
    assert all(entry.position_of("p1") is None for entry in bracket.all_matches())
    assert storage.load_bracket("evt").version == 2


def test_reassign_rejects_locked_matches(service, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.report_result("evt", 2, "p3")

    with pytest.raises(MatchLockedError, match="first round"):
        service.reassign_first_round_slot("evt", 3, 1, "p1")
    with pytest.raises(MatchLockedError, match="Match 2 already has a winner"):
        service.reassign_first_round_slot("evt", 1, 2, "p3")
    with pytest.raises(MatchLockedError, match="Match 2 already has a winner"):
        service.reassign_first_round_slot("evt", 2, 1, "p1")

    service.report_result("evt", 1, "p1")
    with pytest.raises(MatchLockedError):
        service.reassign_first_round_slot("evt", 1, 1, "p2")


def test_reassign_rejects_bye_and_empty_slots(service, register):
    register("evt", 5)
    service.generate_bracket("evt", 8)

    with pytest.raises(MatchLockedError):
        service.reassign_first_round_slot("evt", 3, 2, "p1")
    with pytest.raises(MatchLockedError, match="holds no participant"):
        service.reassign_first_round_slot("evt", 4, 1, "p1")


def test_reassign_rejects_bad_targets(service, register):
    register("evt", 4)
    service.generate_bracket("evt")

    with pytest.raises(UnknownParticipantError):
        service.reassign_first_round_slot("evt", 1, 1, "stranger")
    with pytest.raises(InvalidValueError):
        service.reassign_first_round_slot("evt", 1, 1, "p1")
    with pytest.raises(InvalidValueError):
        service.reassign_first_round_slot("evt", 1, 3, "p3")
    with pytest.raises(MatchNotFoundError):
        service.reassign_first_round_slot("evt", 9, 1, "p3")


def test_upcoming_matches_follow_participant(service, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.update_match_detail("evt", 1, scheduled_time="2024-05-01T18:00")

    upcoming = service.upcoming_matches("evt", "p1")
    assert [(entry.match_id, entry.opponent_id) for entry in upcoming] == [(1, "p2")]
    assert upcoming[0].scheduled_time == "2024-05-01T18:00:00.000000Z"

    service.report_result("evt", 1, "p1")
    upcoming = service.upcoming_matches("evt", "p1")
    assert [(entry.match_id, entry.opponent_name) for entry in upcoming] == [
        (3, "TBD")
    ]
    assert upcoming[0].opponent_id is None
    assert service.upcoming_matches("evt", "p2") == []


def test_upcoming_sort_puts_scheduled_matches_first():
    def entry(match_id: int, round_number: int, scheduled: str | None):
        return UpcomingMatch(
            event_id="evt",
            match_id=match_id,
            round_number=round_number,
            participant_name="A",
            opponent_id=None,
            opponent_name="TBD",
            scheduled_time=scheduled,
        )

    entries = [
        entry(4, 1, None),
        entry(7, 3, "2024-05-02T10:00:00.000000Z"),
        entry(2, 1, None),
        entry(5, 2, "2024-05-01T10:00:00.000000Z"),
    ]

    ordered = sorted(entries, key=_schedule_sort_key)

    assert [item.match_id for item in ordered] == [5, 7, 2, 4]


def _team_registration(event_id: str, index: int):
    return make_registration(
        event_id,
        index,
        team_name=f"Team {index}",
        members=[
            TeamMember(f"u{index}", f"Player {index}"),
            TeamMember(f"m{index}", f"Member {index}"),
        ],
    )


def test_team_member_sees_team_matches_in_active_events(service, storage):
    for event_id, name in (("cup", "Spring Cup"), ("old", "Winter Cup")):
        storage.save_event(
            EventRecord(event_id=event_id, name=name, team_type=TeamType.TEAM)
        )
        for index in range(1, 5):
            storage.save_registration(_team_registration(event_id, index))
        service.generate_bracket(event_id)
    storage.mark_event_status("old", EventStatus.COMPLETED)
    service.update_match_detail("cup", 2, location="Court 2")

    upcoming = service.upcoming_matches_for_user("m3")

    assert [(entry.event_id, entry.match_id) for entry in upcoming] == [("cup", 2)]
    entry = upcoming[0]
    assert entry.event_name == "Spring Cup"
    assert (entry.participant_name, entry.opponent_name) == ("Team 3", "Team 4")
    assert entry.location == "Court 2"
    assert entry.ready_to_play is True

    service.report_result("cup", 2, "p3")
    (entry,) = service.upcoming_matches_for_user("m3")
    assert (entry.match_id, entry.opponent_name) == (3, "TBD")
    assert entry.ready_to_play is False
    assert service.upcoming_matches_for_user("m4") == []
    assert service.upcoming_matches_for_user("nobody") == []


def test_reset_schedule_keeps_other_details(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.update_match_detail(
        "evt", 1, scheduled_time="2024-05-01T18:00", location="Court 1"
    )
    service.update_match_detail("evt", 2, notes="Bo3")

    assert service.reset_schedule("evt") == 1

    detail = storage.get_detail("evt", 1)
    assert detail.scheduled_time is None
    assert detail.location == "Court 1"


def test_delete_bracket_removes_details(service, storage, register):
    register("evt", 4)
    service.generate_bracket("evt")
    service.update_match_detail("evt", 1, notes="Bo3")

    assert service.delete_bracket("evt") is True
    assert service.delete_bracket("evt") is False
    assert storage.get_details("evt") == {}
    with pytest.raises(BracketNotFoundError):
        service.get_bracket("evt")


def test_render_text_includes_champion(service, register):
    register("evt", 2)
    service.generate_bracket("evt")
    service.report_result("evt", 1, "p1")

    text = service.render_text("evt")

    assert text.startswith("Final")
    assert text.endswith("Champion: Player 1")


def test_event_locks_share_lock_per_event():
    locks = EventLocks()

    assert locks.for_event("a") is locks.for_event("a")
    assert locks.for_event("a") is not locks.for_event("b")


def test_concurrent_reports_do_not_lose_updates(service, storage, register):
    register("evt", 8)
    service.generate_bracket("evt")
    winners = {1: "p1", 2: "p3", 3: "p5", 4: "p7"}

    threads = [
        threading.Thread(target=service.report_result, args=("evt", match_id, winner))
        for match_id, winner in winners.items()
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    bracket = storage.load_bracket("evt")
    assert {
        match_id: bracket.find_match(match_id).winner_id for match_id in winners
    } == winners
    assert bracket.version == 5
