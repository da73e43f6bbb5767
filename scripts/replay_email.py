#!/usr/bin/env python3
"""
Replay Script: feed a raw .eml file through the auto-responder

This script can:
1. Show how a message would be classified and parsed (no AWS calls)
2. Run the full pipeline in-process against moto-mocked DynamoDB and SES
3. Run the full pipeline against real AWS resources

Usage:
    # Dry run - classification, parsed choice and code only
    python scripts/replay_email.py message.eml --dry-run

    # Full pipeline against mocked AWS; replay several files in order
    python scripts/replay_email.py first.eml reply.eml --local

    # Full pipeline against real AWS (requires credentials)
    python scripts/replay_email.py message.eml --aws --create-table
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import boto3  # noqa: E402

from lambdas.process_inbound_email.email_parser import (  # noqa: E402
    get_body_text,
    inbound_from_ses_notification,
    parse_raw_email,
)
from lambdas.process_inbound_email.handler import lambda_handler  # noqa: E402
from responder.choice_parser import parse_choice  # noqa: E402
from responder.classifier import classify_message  # noqa: E402
from responder.config import Settings, get_settings  # noqa: E402
from tests.utils.event_generator import MockEventGenerator  # noqa: E402


def create_table(settings: Settings) -> None:
    """Create the key-value table with TTL on expires_at, if missing."""
    client = boto3.client("dynamodb", **settings.dynamodb_config)
    existing = client.list_tables().get("TableNames", [])
    if settings.dynamodb_table_name in existing:
        print(f"  [OK] Table {settings.dynamodb_table_name} exists")
        return

    client.create_table(
        TableName=settings.dynamodb_table_name,
        KeySchema=[{"AttributeName": "PK", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "PK", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=settings.dynamodb_table_name)
    client.update_time_to_live(
        TableName=settings.dynamodb_table_name,
        TimeToLiveSpecification={"Enabled": True, "AttributeName": "expires_at"},
    )
    print(f"  [OK] Created table {settings.dynamodb_table_name}")


class Replayer:
    """Builds SES notifications from .eml files and runs them."""

    def __init__(self, recipient: str | None = None):
        self.recipient = recipient
        self.generator = MockEventGenerator()

    def notification_for(self, path: Path) -> dict[str, Any]:
        raw = path.read_bytes()
        recipients = [self.recipient] if self.recipient else None
        return self.generator.ses_notification(raw, recipients=recipients)

    def describe(self, path: Path) -> None:
        """Print classification and parse results without touching AWS."""
        inbound = inbound_from_ses_notification(self.notification_for(path))
        classification = classify_message(
            inbound.header("Auto-Submitted"),
            inbound.header("Precedence"),
        )
        parsed = parse_choice(get_body_text(parse_raw_email(inbound.read_raw())))

        print(f"\n{path.name}")
        print(f"  sender:   {inbound.sender or '(none)'}")
        print(f"  to:       {inbound.to_address}")
        print(f"  eligible: {classification.eligible} ({classification.reason.value})")
        print(f"  choice:   {parsed.choice.value if parsed.choice else '-'}")
        print(f"  code:     {parsed.code or '-'}")

    def run(self, path: Path) -> dict[str, Any]:
        event = self.generator.sns_event(self.notification_for(path))
        response = lambda_handler(event, None)
        print(f"\n{path.name} -> {response['statusCode']}")
        print(f"  {json.dumps(json.loads(response['body']), indent=2)}")
        return response


def run_local(replayer: Replayer, paths: list[Path]) -> None:
    """Run against moto; the sending identity is verified automatically."""
    from moto import mock_aws

    with mock_aws():
        settings = get_settings()
        create_table(settings)
        ses = boto3.client("ses", **settings.ses_config)
        for address in filter(None, [settings.reply_from_address, *settings.reply_from_map.values()]):
            ses.verify_email_identity(EmailAddress=address)
        for path in paths:
            replayer.run(path)

        sent = ses.get_send_quota().get("SentLast24Hours", 0)
        print(f"\n  [LOCAL] SES messages sent: {int(sent)}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Replay raw emails through the consent auto-responder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s msg.eml --dry-run          Show classification and parsed reply
  %(prog)s a.eml b.eml --local        Run the pipeline against mocked AWS
  %(prog)s msg.eml --aws              Run the pipeline against real AWS
        """,
    )
    parser.add_argument("emails", nargs="+", type=Path, help="Raw .eml files, replayed in order")

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Classify and parse only",
    )
    mode_group.add_argument(
        "--local",
        action="store_true",
        help="Run against moto-mocked DynamoDB and SES",
    )
    mode_group.add_argument(
        "--aws",
        action="store_true",
        help="Run against real AWS resources (requires credentials)",
    )

    parser.add_argument(
        "--to",
        dest="recipient",
        help="Override the receiving address (defaults to the To header)",
    )
    parser.add_argument(
        "--create-table",
        action="store_true",
        help="With --aws, create the DynamoDB table if missing",
    )

    args = parser.parse_args()

    missing = [path for path in args.emails if not path.exists()]
    if missing:
        parser.error(f"File not found: {missing[0]}")

    if args.local:
        mode = "local"
    elif args.aws:
        mode = "aws"
    else:
        mode = "dry-run"

    replayer = Replayer(recipient=args.recipient)

    if mode == "dry-run":
        for path in args.emails:
            replayer.describe(path)
    elif mode == "local":
        run_local(replayer, args.emails)
    else:
        if args.create_table:
            create_table(get_settings())
        for path in args.emails:
            replayer.run(path)


if __name__ == "__main__":
    main()
