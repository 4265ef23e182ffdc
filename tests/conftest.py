from __future__ import annotations

import random

import pytest
from botocore.exceptions import ClientError

from bracket_engine import (
    BracketService,
    BracketStorage,
    EventLocks,
    Participant,
    Registration,
)


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB ``Table`` resource."""

    def __init__(self, *, page_size: int | None = None) -> None:
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.page_size = page_size
        self.query_calls = 0
        self.scan_calls = 0

    def get_item(self, *, Key):
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": dict(item) if item is not None else None}

    def put_item(
        self,
        *,
        Item,
        ConditionExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
    ):
        del ExpressionAttributeNames
        item_key = (Item["pk"], Item["sk"])
        existing = self.items.get(item_key)
        if ConditionExpression == "attribute_not_exists(pk)":
            if existing is not None:
                raise _conditional_failure("PutItem")
        elif ConditionExpression == "#version = :expected":
            expected = (ExpressionAttributeValues or {})[":expected"]
            if existing is None or existing.get("version") != expected:
                raise _conditional_failure("PutItem")
        self.items[item_key] = dict(Item)

    def query(
        self,
        *,
        KeyConditionExpression,
        Select="COUNT",
        ExclusiveStartKey=None,
        **_kwargs,
    ):
        self.query_calls += 1
        pk_value = None
        sk_prefix = ""
        for condition in KeyConditionExpression._values:  # type: ignore[attr-defined]
            key, value = condition._values  # type: ignore[attr-defined]
            if key.name == "pk":  # pragma: no branch - helper
                pk_value = value
            elif key.name == "sk":
                sk_prefix = value
        matching_keys = [
            key
            for key in sorted(self.items)
            if key[0] == pk_value and key[1].startswith(sk_prefix)
        ]
        if ExclusiveStartKey is not None:
            start = (ExclusiveStartKey["pk"], ExclusiveStartKey["sk"])
            matching_keys = [key for key in matching_keys if key > start]
        last_key = None
        if self.page_size is not None and len(matching_keys) > self.page_size:
            matching_keys = matching_keys[: self.page_size]
            last_key = {"pk": matching_keys[-1][0], "sk": matching_keys[-1][1]}
        items = [self.items[key] for key in matching_keys]
        if Select == "COUNT":
            return {"Count": len(items)}
        response: dict[str, object] = {
            "Items": [dict(item) for item in items],
            "Count": len(items),
        }
        if last_key is not None:
            response["LastEvaluatedKey"] = last_key
        return response

    def scan(self, *, FilterExpression=None, ExclusiveStartKey=None, **_kwargs):
        self.scan_calls += 1
        matching_keys = sorted(self.items)
        if FilterExpression is not None:
            attribute, prefix = FilterExpression._values  # type: ignore[attr-defined]
            matching_keys = [
                key
                for key in matching_keys
                if str(self.items[key].get(attribute.name, "")).startswith(prefix)
            ]
        if ExclusiveStartKey is not None:
            start = (ExclusiveStartKey["pk"], ExclusiveStartKey["sk"])
            matching_keys = [key for key in matching_keys if key > start]
        response: dict[str, object] = {}
        if self.page_size is not None and len(matching_keys) > self.page_size:
            matching_keys = matching_keys[: self.page_size]
            response["LastEvaluatedKey"] = {
                "pk": matching_keys[-1][0],
                "sk": matching_keys[-1][1],
            }
        response["Items"] = [dict(self.items[key]) for key in matching_keys]
        return response

    def delete_item(self, *, Key, ConditionExpression=None):
        item_key = (Key["pk"], Key["sk"])
        if item_key not in self.items:
            if ConditionExpression == "attribute_exists(pk)":
                raise _conditional_failure("DeleteItem")
            return {}
        self.items.pop(item_key)
        return {}


class KeepOrder(random.Random):
    """Random source whose shuffle leaves entrants in registration order."""

    def shuffle(self, x) -> None:  # type: ignore[override]
        return None


def make_participants(count: int) -> list[Participant]:
    return [
        Participant(participant_id=f"p{index}", display_name=f"Player {index}")
        for index in range(1, count + 1)
    ]


def make_registration(event_id: str, index: int, **overrides) -> Registration:
    data: dict[str, object] = {
        "event_id": event_id,
        "registration_id": f"p{index}",
        "user_id": f"u{index}",
        "username": f"Player {index}",
        "registered_at": f"2024-01-01T00:{index // 60:02d}:{index % 60:02d}.000Z",
    }
    data.update(overrides)
    return Registration(**data)  # type: ignore[arg-type]


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table: FakeTable) -> BracketStorage:
    return BracketStorage(table)


@pytest.fixture
def service(storage: BracketStorage) -> BracketService:
    return BracketService.from_storage(storage, locks=EventLocks(), rng=KeepOrder())


@pytest.fixture
def register(storage: BracketStorage):
    def _register(event_id: str, count: int) -> list[Registration]:
        registrations = [
            make_registration(event_id, index) for index in range(1, count + 1)
        ]
        for registration in registrations:
            storage.save_registration(registration)
        return registrations

    return _register
