"""
ProcessInboundEmail Lambda Handler

Main entry point of the consent auto-responder.

Trigger: SNS topic subscribed to an SES inbound receipt rule
Output: at most one SES reply per inbound email

Flow:
1. Parse SNS notification into an InboundEmail
2. Parse the raw source (failure degrades to an empty body)
3. Archive the email (background)
4. Skip auto-generated and bulk mail
5. Forward a copy to the operator inbox (background, if configured)
6. Parse YES/NO and code from the body, load the sender's consent record
7. Evaluate the consent state machine and apply its decision
"""

import json
import logging
import os
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from lambdas.process_inbound_email.background import BackgroundTasks
from lambdas.process_inbound_email.email_parser import (
    InboundEmail,
    ParsedEmail,
    get_body_text,
    inbound_from_ses_notification,
    parse_raw_email,
)
from responder.choice_parser import parse_choice
from responder.classifier import classify_message
from responder.config import Settings, get_settings
from responder.exceptions import EmailParseError, SESError
from responder.models.consent import ArchivedEmail
from responder.state_machine import (
    ConsentAction,
    ConsentDecision,
    ReplyTemplates,
    evaluate_consent,
)
from responder.tools.dynamodb import ConsentStore, KeyValueStore
from responder.tools.email import forward_email, send_reply

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.getLogger().setLevel(os.environ.get("AUTOREPLY_LOG_LEVEL", "INFO").upper())

log = structlog.get_logger()


def _get_ses_client(settings: Settings):
    """Get SES client, shared by the reply path and the forward task."""
    return boto3.client("ses", **settings.ses_config)


def _result(status: str, **detail: Any) -> dict[str, Any]:
    return {"status": status, **detail}


def _parse_source(inbound: InboundEmail) -> ParsedEmail:
    """Parse the raw source; any failure yields an empty result."""
    parsed = ParsedEmail()
    parse_error: Exception | None = None
    try:
        parsed = parse_raw_email(inbound.read_raw())
    except (EmailParseError, ClientError, BotoCoreError, ValueError) as e:
        # Continue without a body: YES/NO detection will simply find nothing
        parse_error = e

    log.info(
        "email_parse_meta",
        content_type=inbound.header("Content-Type") or "",
        raw_size=inbound.raw_size,
        parse_error=(
            {"name": type(parse_error).__name__, "message": str(parse_error)}
            if parse_error
            else None
        ),
        text_length=len(parsed.text),
        html_length=len(parsed.html),
    )
    return parsed


def _archive_email(store: ConsentStore, archived: ArchivedEmail) -> str:
    return store.archive(archived)


def _forward_copy(
    inbound: InboundEmail,
    *,
    to_address: str,
    from_address: str,
    ses_client,
) -> str:
    message_id = forward_email(
        inbound.read_raw(),
        to_address=to_address,
        from_address=from_address,
        client=ses_client,
    )
    log.info("email_forwarded", to=to_address, message_id=message_id)
    return message_id


def _send_decision_reply(
    decision: ConsentDecision,
    *,
    from_address: str,
    in_reply_to: str,
    ses_client,
) -> bool:
    """Send the decision's reply. Delivery failures are logged, never raised."""
    if decision.reply is None:
        return False
    try:
        send_reply(
            from_address,
            decision.sender,
            decision.reply.subject,
            decision.reply.body,
            in_reply_to=in_reply_to,
            client=ses_client,
        )
    except SESError as e:
        log.error(
            "reply_failed",
            to=decision.sender,
            action=decision.action.value,
            error_type=type(e).__name__,
            error=str(e),
            **e.context,
        )
        return False

    log.info("reply_sent", to=decision.sender, action=decision.action.value)
    return True


def apply_decision(
    decision: ConsentDecision,
    store: ConsentStore,
    *,
    from_address: str,
    in_reply_to: str,
    ses_client,
    stored_value: str | None = None,
) -> dict[str, Any]:
    """
    Perform the store mutation and reply a decision asks for.

    Both store writes are conditional on stored_value, the raw value read
    before deciding, so two concurrent messages from the same sender can
    neither issue two codes nor consume one code twice.
    """
    action = decision.action

    if action == ConsentAction.CHALLENGE:
        if not store.open_challenge(
            decision.sender,
            decision.next_record,
            decision.ttl_seconds,
            replaces=stored_value,
        ):
            log.info("challenge_already_pending", key=decision.key)
            return _result("processed", action=ConsentAction.SUPPRESS.value, replied=False)
    elif action.removes_record:
        if not store.resolve(decision.sender, decision.current_record, stored_value=stored_value):
            log.info("consent_already_resolved", key=decision.key, action=action.value)
            return _result("processed", action=ConsentAction.SUPPRESS.value, replied=False)
    else:
        return _result("processed", action=action.value, replied=False)

    # The record change above is final even if the reply cannot be delivered
    replied = _send_decision_reply(
        decision,
        from_address=from_address,
        in_reply_to=in_reply_to,
        ses_client=ses_client,
    )
    return _result("processed", action=action.value, replied=replied)


def _respond(
    inbound: InboundEmail,
    parsed: ParsedEmail,
    settings: Settings,
    tasks: BackgroundTasks,
    ses_client,
) -> dict[str, Any]:
    classification = classify_message(
        inbound.header("Auto-Submitted"),
        inbound.header("Precedence"),
    )
    if not classification.eligible:
        log.info(
            "email_skipped",
            reason=classification.reason.value,
            detail=classification.detail,
        )
        return _result("skipped", reason=classification.reason.value)

    reply_from = settings.resolve_reply_from(inbound.to_address)

    if settings.forward_to:
        tasks.submit(
            "forward",
            _forward_copy,
            inbound,
            to_address=settings.forward_to,
            from_address=reply_from or inbound.to_address,
            ses_client=ses_client,
        )

    sender = inbound.sender
    log.info("email_sender", sender=sender)
    if not sender:
        return _result("skipped", reason="MISSING_SENDER")
    if not reply_from:
        log.warning("reply_from_not_configured", to=inbound.to_address)
        return _result("skipped", reason="MISSING_REPLY_FROM")

    body_text = get_body_text(parsed)
    choice = parse_choice(body_text)
    log.info(
        "email_parsed",
        choice=choice.choice.value if choice.choice else None,
        code_present=choice.code is not None,
        text_size=len(body_text),
    )

    store = ConsentStore(KeyValueStore.from_settings(settings))
    stored = store.read(sender)
    in_reply_to = inbound.header("Message-ID") or parsed.message_id or ""
    log.debug("email_reply_meta", in_reply_to_raw=in_reply_to)

    templates = ReplyTemplates.from_settings(settings)
    decision = evaluate_consent(
        sender,
        choice,
        stored.record,
        templates=templates,
        ttl_seconds=settings.consent_ttl_seconds,
    )
    if decision.action == ConsentAction.DISCLOSE and not templates.contact_identifier:
        log.warning("contact_identifier_not_configured", key=decision.key)

    return apply_decision(
        decision,
        store,
        from_address=reply_from,
        in_reply_to=in_reply_to,
        ses_client=ses_client,
        stored_value=stored.raw,
    )


def process_inbound_email(
    inbound: InboundEmail,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Run the full auto-responder pipeline for one inbound email.

    Archival and forwarding run in the background and are drained before
    this returns; their failures never change the result.
    """
    settings = settings or get_settings()

    log.info(
        "email_received",
        from_address=inbound.from_address,
        to=inbound.to_address,
        subject=inbound.subject,
        size=inbound.raw_size,
        ses_message_id=inbound.ses_message_id,
    )

    parsed = _parse_source(inbound)
    archived = ArchivedEmail(
        from_address=inbound.from_address,
        to_address=inbound.to_address,
        reply_to=inbound.reply_to,
        subject=inbound.subject,
        headers=inbound.headers,
        text=parsed.text,
        html=parsed.html,
    )
    ses_client = _get_ses_client(settings)

    with BackgroundTasks() as tasks:
        tasks.submit(
            "archive",
            _archive_email,
            ConsentStore(KeyValueStore.from_settings(settings)),
            archived,
        )
        return _respond(inbound, parsed, settings, tasks, ses_client)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda handler for inbound emails.

    Args:
        event: SNS event containing SES notification
        context: Lambda context

    Returns:
        Response dict with processing status. Never raises, so SES never
        treats the message as failed.
    """
    request_id = getattr(context, "aws_request_id", "local")

    log.info(
        "processing_inbound_email",
        request_id=request_id,
        event_keys=list(event.keys()),
    )

    try:
        # Handle SNS Records format (Lambda trigger)
        if "Records" in event:
            results = [_process_sns_record(record) for record in event["Records"]]
            return {
                "statusCode": 200,
                "body": json.dumps({"results": results}),
            }

        # Handle direct SNS message (for testing)
        if "Message" in event:
            return {
                "statusCode": 200,
                "body": json.dumps(_process_notification(json.loads(event["Message"]))),
            }

        # Handle raw SES notification (for testing)
        if "mail" in event:
            return {
                "statusCode": 200,
                "body": json.dumps(_process_notification(event)),
            }

        log.error("unknown_event_format", event_keys=list(event.keys()))
        return {
            "statusCode": 400,
            "body": json.dumps({"error": "Unknown event format"}),
        }

    except Exception as e:
        log.error("lambda_handler_failed", error=str(e), exc_info=True)
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e)}),
        }


def _process_sns_record(record: dict[str, Any]) -> dict[str, Any]:
    """Process a single SNS record from Lambda event."""
    message = record.get("Sns", {}).get("Message", "{}")

    try:
        notification = json.loads(message)
    except json.JSONDecodeError as e:
        log.error("sns_message_parse_failed", error=str(e))
        return _result("error", reason="INVALID_SNS_MESSAGE")

    return _process_notification(notification)


def _process_notification(notification: dict[str, Any]) -> dict[str, Any]:
    """Process one SES notification; only "Received" mail is answered."""
    notification_type = notification.get("notificationType", "Received")

    if notification_type != "Received":
        log.info(
            "received_delivery_notification",
            type=notification_type,
            message_id=notification.get("mail", {}).get("messageId"),
        )
        return _result("skipped", reason=f"{notification_type.upper()}_NOTIFICATION")

    inbound = inbound_from_ses_notification(notification)
    return process_inbound_email(inbound)
