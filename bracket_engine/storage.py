from __future__ import annotations

import logging
from typing import Any

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from .config import BracketSettings
from .errors import ConcurrentUpdateError
from .models import (
    BracketState,
    EventRecord,
    EventStatus,
    MatchDetail,
    Participant,
    Registration,
    TeamType,
    utc_now_iso,
)
from .participants import participants_from_registrations

log = logging.getLogger(__name__)

_CONDITIONAL_FAILED = "ConditionalCheckFailedException"


class BracketStorage:
    """Single-table DynamoDB store for events, registrations, brackets and details.

    A bracket is one item holding the whole document. ``save_bracket`` writes
    conditionally on the stored ``version`` so a lost update surfaces as
    :class:`ConcurrentUpdateError` instead of silently overwriting.
    """

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Bracket table is not configured")

    def _query_prefix(self, event_id: str, prefix: str) -> list[dict[str, Any]]:
        self.ensure_table()
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": Key("pk").eq(EventRecord.PK_TEMPLATE % event_id)
            & Key("sk").begins_with(prefix),
            "Select": "ALL_ATTRIBUTES",
        }
        items: list[dict[str, Any]] = []
        while True:
            resp = self._table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return items

    # ----- Events -----
    def get_event(self, event_id: str) -> EventRecord | None:
        self.ensure_table()
        resp = self._table.get_item(Key=EventRecord.key(event_id))
        item = resp.get("Item")
        if not item:
            return None
        return EventRecord.from_item(item)

    def save_event(self, event: EventRecord) -> None:
        self.ensure_table()
        self._table.put_item(Item=event.to_item())

    def mark_event_status(self, event_id: str, status: EventStatus) -> None:
        event = self.get_event(event_id) or EventRecord(event_id=event_id, name="")
        if event.status == status.value:
            return
        log.info(
            "Event %s status %s -> %s", event_id, event.status or "-", status.value
        )
        event.status = status.value
        event.updated_at = utc_now_iso()
        self.save_event(event)

    # ----- Registrations -----
    def save_registration(self, registration: Registration) -> None:
        self.ensure_table()
        self._table.put_item(Item=registration.to_item())

    def list_registrations(self, event_id: str) -> list[Registration]:
        items = self._query_prefix(event_id, Registration.SK_PREFIX)
        registrations = [Registration.from_item(item) for item in items]
        registrations.sort(
            key=lambda entry: (entry.registered_at, entry.registration_id)
        )
        return registrations

    def list_user_registrations(self, user_id: str) -> list[Registration]:
        """Active registrations across events where ``user_id`` is captain or member."""
        self.ensure_table()
        kwargs: dict[str, Any] = {
            "FilterExpression": Attr("sk").begins_with(Registration.SK_PREFIX)
        }
        registrations: list[Registration] = []
        while True:
            resp = self._table.scan(**kwargs)
            for item in resp.get("Items", []):
                registration = Registration.from_item(item)
                if registration.is_active and registration.includes_user(user_id):
                    registrations.append(registration)
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        registrations.sort(
            key=lambda entry: (entry.registered_at, entry.registration_id)
        )
        return registrations

    def list_registered_participants(self, event_id: str) -> list[Participant]:
        event = self.get_event(event_id)
        team_type = event.team_type if event is not None else TeamType.SOLO
        return participants_from_registrations(
            self.list_registrations(event_id), team_type
        )

    # ----- Brackets -----
    def load_bracket(self, event_id: str) -> BracketState | None:
        self.ensure_table()
        resp = self._table.get_item(Key=BracketState.key(event_id))
        item = resp.get("Item")
        if not item:
            return None
        return BracketState.from_item(item)

    def save_bracket(self, bracket: BracketState) -> None:
        self.ensure_table()
        expected = bracket.version
        item = bracket.to_item()
        item["version"] = expected + 1
        item["updated_at"] = utc_now_iso()
        if expected == 0:
            condition: dict[str, Any] = {
                "ConditionExpression": "attribute_not_exists(pk)"
            }
        else:
            condition = {
                "ConditionExpression": "#version = :expected",
                "ExpressionAttributeNames": {"#version": "version"},
                "ExpressionAttributeValues": {":expected": expected},
            }
        try:
            self._table.put_item(Item=item, **condition)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == _CONDITIONAL_FAILED:
                raise ConcurrentUpdateError(bracket.event_id, expected) from exc
            raise
        bracket.version = expected + 1
        bracket.updated_at = str(item["updated_at"])

    def delete_bracket(self, event_id: str) -> bool:
        self.ensure_table()
        try:
            self._table.delete_item(
                Key=BracketState.key(event_id),
                ConditionExpression="attribute_exists(pk)",
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == _CONDITIONAL_FAILED:
                return False
            raise
        return True

    # ----- Match details -----
    def get_details(self, event_id: str) -> dict[int, MatchDetail]:
        items = self._query_prefix(event_id, MatchDetail.SK_PREFIX)
        details = [MatchDetail.from_item(item) for item in items]
        return {detail.match_id: detail for detail in details}

    def get_detail(self, event_id: str, match_id: int) -> MatchDetail | None:
        self.ensure_table()
        resp = self._table.get_item(Key=MatchDetail.key(event_id, match_id))
        item = resp.get("Item")
        if not item:
            return None
        return MatchDetail.from_item(item)

    def upsert_detail(self, detail: MatchDetail) -> None:
        self.ensure_table()
        detail.updated_at = utc_now_iso()
        self._table.put_item(Item=detail.to_item())

    def clear_all_details(self, event_id: str) -> int:
        details = self.get_details(event_id)
        for match_id in details:
            self._table.delete_item(Key=MatchDetail.key(event_id, match_id))
        return len(details)

    def reset_scheduled_times(self, event_id: str) -> int:
        reset = 0
        for detail in self.get_details(event_id).values():
            if detail.scheduled_time is None:
                continue
            detail.scheduled_time = None
            self.upsert_detail(detail)
            reset += 1
        return reset


def create_storage(settings: BracketSettings) -> BracketStorage:
    if not settings.table_name:
        raise RuntimeError("BRACKET_TABLE_NAME is not set")
    dynamodb = boto3.resource("dynamodb", region_name=settings.aws_region)
    return BracketStorage(dynamodb.Table(settings.table_name))


__all__ = ["BracketStorage", "create_storage"]
