"""
DynamoDB Tools

A small key-value store over one DynamoDB table, plus typed consent helpers.

Table layout:
    PK          (S, hash key)  store key, e.g. consent:a@x.com
    value       (S)            serialized JSON value
    expires_at  (N, optional)  epoch seconds; the table's TTL attribute
"""

import json
import time
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import ClientError
import structlog

from responder.config import Settings, get_settings
from responder.exceptions import StoreError
from responder.models.consent import ArchivedEmail, ConsentRecord, consent_key

log = structlog.get_logger()

# "value" is a DynamoDB reserved word
_NAMES = {"#pk": "PK", "#value": "value", "#expires_at": "expires_at"}


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response["Error"]["Code"] == "ConditionalCheckFailedException"


class KeyValueStore:
    """
    get/put/delete over a DynamoDB table with per-item TTL.

    DynamoDB evicts expired items lazily, so reads treat an item whose
    expires_at has passed as absent. Expiry is decided here and nowhere else.
    """

    def __init__(self, table: Any, *, clock=time.time) -> None:
        self._table = table
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "KeyValueStore":
        settings = settings or get_settings()
        dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
        return cls(dynamodb.Table(settings.dynamodb_table_name))

    def _now(self) -> int:
        return int(self._clock())

    def _is_live(self, item: dict[str, Any]) -> bool:
        expires_at = item.get("expires_at")
        return expires_at is None or int(expires_at) > self._now()

    def get(self, key: str, *, as_json: bool = False) -> Any:
        """
        Read a value.

        Args:
            key: Store key
            as_json: Decode the stored string as JSON (None if it is not JSON)

        Returns:
            Raw string, decoded JSON, or None when absent or expired

        Raises:
            StoreError: On DynamoDB failure
        """
        try:
            response = self._table.get_item(Key={"PK": key}, ConsistentRead=True)
        except ClientError as e:
            log.error("dynamodb_get_failed", key=key, error=str(e))
            raise StoreError(operation="get", key=key, error_message=str(e)) from e

        item = response.get("Item")
        if not item or not self._is_live(item):
            return None

        value = item.get("value")
        if not as_json:
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            log.warning("store_value_not_json", key=key)
            return None

    def put(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
        replaces: str | None = None,
    ) -> bool:
        """
        Write a value.

        Args:
            key: Store key
            value: Serialized value
            ttl_seconds: Lifetime of the item (None = no expiry)
            only_if_absent: Fail the write if a live item already exists
            replaces: With only_if_absent, a live item still holding exactly
                this value may be overwritten

        Returns:
            True if written, False if only_if_absent found a live item

        Raises:
            StoreError: On DynamoDB failure
        """
        now = self._now()
        item: dict[str, Any] = {"PK": key, "value": value}
        if ttl_seconds is not None:
            item["expires_at"] = now + ttl_seconds

        put_params: dict[str, Any] = {"Item": item}
        if only_if_absent:
            condition = "attribute_not_exists(#pk) OR #expires_at <= :now"
            names = {
                "#pk": _NAMES["#pk"],
                "#expires_at": _NAMES["#expires_at"],
            }
            values: dict[str, Any] = {":now": now}
            if replaces is not None:
                condition += " OR #value = :seen"
                names["#value"] = _NAMES["#value"]
                values[":seen"] = replaces
            put_params["ConditionExpression"] = condition
            put_params["ExpressionAttributeNames"] = names
            put_params["ExpressionAttributeValues"] = values

        try:
            self._table.put_item(**put_params)
        except ClientError as e:
            if only_if_absent and _is_conditional_failure(e):
                log.info("store_put_skipped_live_item", key=key)
                return False
            log.error("dynamodb_put_failed", key=key, error=str(e))
            raise StoreError(operation="put", key=key, error_message=str(e)) from e

        log.debug("store_put", key=key, ttl_seconds=ttl_seconds)
        return True

    def delete(self, key: str, *, expected_value: str | None = None) -> bool:
        """
        Delete a key.

        Args:
            key: Store key
            expected_value: Only delete if the stored value still equals this

        Returns:
            True if deleted (or unconditional), False if the value changed

        Raises:
            StoreError: On DynamoDB failure
        """
        delete_params: dict[str, Any] = {"Key": {"PK": key}}
        if expected_value is not None:
            delete_params["ConditionExpression"] = "#value = :expected"
            delete_params["ExpressionAttributeNames"] = {"#value": _NAMES["#value"]}
            delete_params["ExpressionAttributeValues"] = {":expected": expected_value}

        try:
            self._table.delete_item(**delete_params)
        except ClientError as e:
            if expected_value is not None and _is_conditional_failure(e):
                log.info("store_delete_skipped_value_changed", key=key)
                return False
            log.error("dynamodb_delete_failed", key=key, error=str(e))
            raise StoreError(operation="delete", key=key, error_message=str(e)) from e

        log.debug("store_delete", key=key)
        return True


@dataclass(frozen=True)
class StoredConsent:
    """A consent record as read, with the raw stored string (None if absent)."""

    record: ConsentRecord | None
    raw: str | None


class ConsentStore:
    """Consent records and the inbound archive on top of a KeyValueStore."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def read(self, sender: str) -> StoredConsent:
        """
        Current record for a sender plus the stored string it came from.

        Malformed values yield record=None but keep their raw string, so a
        later challenge can overwrite exactly that value.
        """
        key = consent_key(sender)
        raw = self.kv.get(key)
        record = ConsentRecord.from_value(raw)
        log.info(
            "consent_loaded",
            key=key,
            stage=record.stage.value if record else None,
            malformed=raw is not None and record is None,
        )
        return StoredConsent(record=record, raw=raw if isinstance(raw, str) else None)

    def load(self, sender: str) -> ConsentRecord | None:
        """Current record for a sender; malformed values count as absent."""
        return self.read(sender).record

    def open_challenge(
        self,
        sender: str,
        record: ConsentRecord,
        ttl_seconds: int,
        *,
        replaces: str | None = None,
    ) -> bool:
        """
        Persist a new PENDING record unless a live one appeared meanwhile.

        replaces is the raw value read before deciding (e.g. a malformed
        record); a live item still holding it is overwritten.
        """
        return self.kv.put(
            consent_key(sender),
            record.to_value(),
            ttl_seconds=ttl_seconds,
            only_if_absent=True,
            replaces=replaces,
        )

    def resolve(
        self,
        sender: str,
        record: ConsentRecord,
        *,
        stored_value: str | None = None,
    ) -> bool:
        """
        Delete the record only if it is still the one that was read.

        Matches on stored_value (the string actually read) when given, so
        records written with other JSON formatting resolve too.
        """
        expected = stored_value if stored_value is not None else record.to_value()
        return self.kv.delete(consent_key(sender), expected_value=expected)

    def archive(self, email: ArchivedEmail) -> str:
        """Write an archive entry; returns its key."""
        self.kv.put(email.key, email.to_value())
        log.info("email_archived", key=email.key)
        return email.key
