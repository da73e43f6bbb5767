"""
Unit tests for the DynamoDB key-value store and consent helpers.

Run against moto's mocked DynamoDB.
"""

import json
import time
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from responder.exceptions import StoreError
from responder.models.consent import ArchivedEmail, ConsentRecord
from responder.tools.dynamodb import ConsentStore, KeyValueStore


@pytest.fixture
def kv(mock_dynamodb) -> KeyValueStore:
    return KeyValueStore(mock_dynamodb)


@pytest.fixture
def store(kv) -> ConsentStore:
    return ConsentStore(kv)


class TestKeyValueStore:
    """Tests for KeyValueStore get/put/delete."""

    def test_get_missing_returns_none(self, kv):
        assert kv.get("consent:nobody@example.org") is None

    def test_put_then_get(self, kv):
        assert kv.put("k", '{"a": 1}') is True

        assert kv.get("k") == '{"a": 1}'
        assert kv.get("k", as_json=True) == {"a": 1}

    def test_get_as_json_non_json(self, kv):
        kv.put("k", "plain text")
        assert kv.get("k", as_json=True) is None

    def test_put_with_ttl_sets_expiry(self, kv, mock_dynamodb):
        before = int(time.time())
        kv.put("k", "v", ttl_seconds=60)

        item = mock_dynamodb.get_item(Key={"PK": "k"})["Item"]
        assert before + 60 <= int(item["expires_at"]) <= int(time.time()) + 60

    def test_put_without_ttl_has_no_expiry(self, kv, mock_dynamodb):
        kv.put("email:1:abc", "{}")
        item = mock_dynamodb.get_item(Key={"PK": "email:1:abc"})["Item"]
        assert "expires_at" not in item

    def test_expired_item_is_absent(self, kv, mock_dynamodb):
        """Items past expires_at are absent even before DynamoDB evicts them."""
        mock_dynamodb.put_item(
            Item={"PK": "k", "value": "v", "expires_at": int(time.time()) - 1}
        )
        assert kv.get("k") is None

    def test_injected_clock(self, mock_dynamodb, frozen_time):
        kv = KeyValueStore(mock_dynamodb, clock=lambda: frozen_time)
        kv.put("k", "v", ttl_seconds=10)

        assert KeyValueStore(mock_dynamodb, clock=lambda: frozen_time + 9).get("k") == "v"
        assert KeyValueStore(mock_dynamodb, clock=lambda: frozen_time + 10).get("k") is None

    def test_only_if_absent_blocks_live_item(self, kv):
        assert kv.put("k", "first", ttl_seconds=60, only_if_absent=True) is True
        assert kv.put("k", "second", ttl_seconds=60, only_if_absent=True) is False
        assert kv.get("k") == "first"

    def test_only_if_absent_overwrites_expired_item(self, kv, mock_dynamodb):
        mock_dynamodb.put_item(
            Item={"PK": "k", "value": "old", "expires_at": int(time.time()) - 1}
        )
        assert kv.put("k", "new", ttl_seconds=60, only_if_absent=True) is True
        assert kv.get("k") == "new"

    def test_only_if_absent_replaces_seen_value(self, kv, mock_dynamodb):
        mock_dynamodb.put_item(
            Item={"PK": "k", "value": "{garbage", "expires_at": int(time.time()) + 3600}
        )

        assert kv.put("k", "new", ttl_seconds=60, only_if_absent=True, replaces="{garbage") is True
        assert kv.get("k") == "new"

    def test_only_if_absent_keeps_changed_value(self, kv):
        kv.put("k", "written-meanwhile", ttl_seconds=60)

        assert kv.put("k", "new", ttl_seconds=60, only_if_absent=True, replaces="{garbage") is False
        assert kv.get("k") == "written-meanwhile"

    def test_delete(self, kv):
        kv.put("k", "v")
        assert kv.delete("k") is True
        assert kv.get("k") is None

    def test_delete_missing_is_ok(self, kv):
        assert kv.delete("missing") is True

    def test_conditional_delete_matches(self, kv):
        kv.put("k", "v")
        assert kv.delete("k", expected_value="v") is True
        assert kv.get("k") is None

    def test_conditional_delete_mismatch(self, kv):
        kv.put("k", "v2")
        assert kv.delete("k", expected_value="v1") is False
        assert kv.get("k") == "v2"

    def test_conditional_delete_missing(self, kv):
        assert kv.delete("k", expected_value="v") is False

    def test_client_error_raises_store_error(self):
        table = MagicMock()
        table.get_item.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "GetItem",
        )

        with pytest.raises(StoreError) as exc_info:
            KeyValueStore(table).get("k")

        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "k"


class TestConsentStore:
    """Tests for ConsentStore."""

    def test_load_absent(self, store):
        assert store.load("a@x.com") is None

    def test_open_challenge_and_load(self, store, mock_dynamodb):
        record = ConsentRecord(code="AB12CD34")

        assert store.open_challenge("A@X.com", record, 86400) is True

        item = mock_dynamodb.get_item(Key={"PK": "consent:a@x.com"})["Item"]
        assert json.loads(item["value"]) == {"stage": "PENDING", "code": "AB12CD34"}
        assert store.load("a@x.com") == record

    def test_second_challenge_rejected(self, store):
        store.open_challenge("a@x.com", ConsentRecord(code="AB12CD34"), 86400)

        assert store.open_challenge("a@x.com", ConsentRecord(code="ZZ99ZZ99"), 86400) is False
        assert store.load("a@x.com").code == "AB12CD34"

    def test_malformed_record_loads_as_none(self, store, mock_dynamodb):
        mock_dynamodb.put_item(Item={"PK": "consent:a@x.com", "value": "{broken"})
        assert store.load("a@x.com") is None

    def test_read_keeps_raw_value(self, store, mock_dynamodb):
        mock_dynamodb.put_item(Item={"PK": "consent:a@x.com", "value": "{broken"})

        stored = store.read("a@x.com")

        assert stored.record is None
        assert stored.raw == "{broken"

    def test_read_absent(self, store):
        stored = store.read("a@x.com")
        assert stored.record is None
        assert stored.raw is None

    def test_open_challenge_overwrites_malformed_record(self, store, mock_dynamodb):
        mock_dynamodb.put_item(
            Item={
                "PK": "consent:a@x.com",
                "value": "{broken",
                "expires_at": int(time.time()) + 3600,
            }
        )
        raw = store.read("a@x.com").raw

        assert store.open_challenge("a@x.com", ConsentRecord(code="AB12CD34"), 86400, replaces=raw) is True
        assert store.load("a@x.com").code == "AB12CD34"

    def test_open_challenge_without_replaces_respects_live_item(self, store, mock_dynamodb):
        mock_dynamodb.put_item(Item={"PK": "consent:a@x.com", "value": "{broken"})

        assert store.open_challenge("a@x.com", ConsentRecord(code="AB12CD34"), 86400) is False

    def test_resolve_compact_json_record(self, store, mock_dynamodb):
        """Records written with other JSON formatting resolve on the raw value read."""
        compact = '{"stage":"PENDING","code":"AB12CD34"}'
        mock_dynamodb.put_item(Item={"PK": "consent:a@x.com", "value": compact})
        stored = store.read("a@x.com")

        assert stored.record == ConsentRecord(code="AB12CD34")
        assert store.resolve("a@x.com", stored.record, stored_value=stored.raw) is True
        assert store.load("a@x.com") is None

    def test_resolve_deletes_matching_record(self, store):
        record = ConsentRecord(code="AB12CD34")
        store.open_challenge("a@x.com", record, 86400)

        assert store.resolve("a@x.com", record) is True
        assert store.load("a@x.com") is None

    def test_resolve_twice_only_first_wins(self, store):
        record = ConsentRecord(code="AB12CD34")
        store.open_challenge("a@x.com", record, 86400)

        assert store.resolve("a@x.com", record) is True
        assert store.resolve("a@x.com", record) is False

    def test_archive(self, store, mock_dynamodb):
        archived = ArchivedEmail(from_address="a@x.com", subject="hi")

        key = store.archive(archived)

        assert key.startswith("email:")
        item = mock_dynamodb.get_item(Key={"PK": key})["Item"]
        assert json.loads(item["value"])["from"] == "a@x.com"
        assert "expires_at" not in item
