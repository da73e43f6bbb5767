"""
Pytest Configuration and Shared Fixtures

Provides moto AWS mocking, sample emails and SES events, and settings.
"""

import os
from typing import Any

import boto3
import pytest
from moto import mock_aws

# Set test environment before importing application modules
os.environ["AUTOREPLY_DYNAMODB_TABLE_NAME"] = "TestAutoReplyStore"
os.environ["AUTOREPLY_REPLY_FROM_ADDRESS"] = "me@example.com"
os.environ["AUTOREPLY_AWS_REGION"] = "us-west-2"
os.environ["AWS_DEFAULT_REGION"] = "us-west-2"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

from responder.config import Settings, get_settings  # noqa: E402
from tests.utils.event_generator import MockEventGenerator  # noqa: E402

TABLE_NAME = "TestAutoReplyStore"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; reset around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# --- Time Fixtures ---


@pytest.fixture
def frozen_time() -> int:
    """Fixed Unix timestamp for deterministic tests."""
    return 1738800000  # 2025-02-06 00:00:00 UTC


# --- AWS Mocking Fixtures ---


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    return {
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "region_name": "us-west-2",
    }


def _create_store_table(dynamodb):
    table = dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[{"AttributeName": "PK", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "PK", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    table.meta.client.get_waiter("table_exists").wait(TableName=TABLE_NAME)
    table.meta.client.update_time_to_live(
        TableName=TABLE_NAME,
        TimeToLiveSpecification={"Enabled": True, "AttributeName": "expires_at"},
    )
    return table


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """
    Create the mocked key-value table.

    Yields the boto3 Table resource so tests can inspect raw items.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        yield _create_store_table(dynamodb)


@pytest.fixture
def mock_s3(aws_credentials):
    """Create a mocked S3 bucket for SES-stored emails."""
    with mock_aws():
        s3 = boto3.client("s3", **aws_credentials)
        s3.create_bucket(
            Bucket="test-inbound-emails",
            CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
        )
        yield s3


# --- Settings Fixtures ---


@pytest.fixture
def settings() -> Settings:
    """Explicit settings used by handler tests."""
    return Settings(
        dynamodb_table_name=TABLE_NAME,
        aws_region="us-west-2",
        reply_from_address="me@example.com",
        contact_identifier="wx-private-42",
        forward_to=None,
        consent_ttl_seconds=86400,
    )


# --- Email Fixtures ---


@pytest.fixture
def event_generator() -> MockEventGenerator:
    """Seeded generator for emails and SES events."""
    return MockEventGenerator(seed=42)


@pytest.fixture
def sample_email_raw() -> bytes:
    """Raw MIME email for parsing tests."""
    return (
        b"From: Alice Example <alice@example.org>\r\n"
        b"To: me@example.com\r\n"
        b"Subject: Re: Auto-reply\r\n"
        b"Date: Thu, 06 Feb 2025 10:30:00 -0500\r\n"
        b"Message-ID: <abc123@mail.example.org>\r\n"
        b'Content-Type: text/plain; charset="UTF-8"\r\n'
        b"\r\n"
        b"YES AB12CD34\r\n"
        b"\r\n"
        b"> Thanks for your message.\r\n"
    )


@pytest.fixture
def sample_ses_notification(event_generator, sample_email_raw) -> dict[str, Any]:
    """SES notification embedding sample_email_raw."""
    return event_generator.ses_notification(sample_email_raw)
