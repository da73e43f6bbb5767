"""
Email Tools

Reply composition and SES raw sending for the auto-responder.
Every reply carries loop-prevention headers so other auto-responders stay quiet.
"""

import re
from email import message_from_bytes
from email.headerregistry import Address
from email.message import EmailMessage
from email.policy import default as default_policy
from email.utils import formatdate, make_msgid, parseaddr

import boto3
from botocore.exceptions import ClientError
import structlog

from responder.config import get_settings
from responder.exceptions import SESError

log = structlog.get_logger()

MESSAGE_ID_PATTERN = re.compile(r"<[^>]+>")

LOOP_PREVENTION_HEADERS = {
    "Auto-Submitted": "auto-replied",
    "X-Auto-Response-Suppress": "All",
}

# Headers SES rejects or that would misattribute a forwarded message
_FORWARD_DROP_HEADERS = ("Return-Path", "Sender", "DKIM-Signature", "Message-ID")


def _get_client():
    """Get SES client."""
    settings = get_settings()
    return boto3.client("ses", **settings.ses_config)


def normalize_message_id(value: str | None) -> str:
    """
    Normalize a Message-ID for threading headers.

    Keeps the first <...> group if present, otherwise wraps the bare id.
    Returns "" for empty input.
    """
    raw = (value or "").strip()
    if not raw:
        return ""
    match = MESSAGE_ID_PATTERN.search(raw)
    if match:
        return match.group(0)
    return f"<{raw}>"


def build_reply_message(
    from_address: str,
    to_address: str,
    subject: str,
    text: str,
    *,
    in_reply_to: str | None = None,
) -> EmailMessage:
    """
    Build a plain-text auto-reply.

    Args:
        from_address: Address the reply is sent as
        to_address: Recipient (the original sender)
        subject: Reply subject
        text: Plain-text body
        in_reply_to: Message-ID of the message being answered

    Returns:
        EmailMessage ready for SES SendRawEmail
    """
    msg = EmailMessage()
    msg["From"] = from_address
    msg["To"] = to_address
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=False)
    domain = from_address.rpartition("@")[2] or None
    msg["Message-ID"] = make_msgid(domain=domain)

    reply_id = normalize_message_id(in_reply_to)
    if reply_id:
        msg["In-Reply-To"] = reply_id
        msg["References"] = reply_id

    for name, value in LOOP_PREVENTION_HEADERS.items():
        msg[name] = value

    msg.set_content(text, charset="utf-8")
    return msg


def send_raw_message(
    message: EmailMessage,
    *,
    source: str,
    destinations: list[str],
    operation: str = "send",
    client=None,
) -> str:
    """
    Send a composed message via SES SendRawEmail.

    Returns:
        SES message ID

    Raises:
        SESError: If send fails
    """
    settings = get_settings()
    client = client or _get_client()

    send_params = {
        "Source": source,
        "Destinations": destinations,
        "RawMessage": {"Data": message.as_bytes()},
    }
    if settings.ses_configuration_set:
        send_params["ConfigurationSetName"] = settings.ses_configuration_set

    try:
        response = client.send_raw_email(**send_params)
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        error_message = e.response["Error"]["Message"]

        log.error(
            "ses_send_failed",
            operation=operation,
            to=destinations,
            error_code=error_code,
            error_message=error_message,
        )

        raise SESError(
            operation=operation,
            recipient=", ".join(destinations),
            error_message=f"{error_code}: {error_message}",
        ) from e

    message_id = response["MessageId"]
    log.info("ses_email_sent", operation=operation, message_id=message_id, to=destinations)
    return message_id


def send_reply(
    from_address: str,
    to_address: str,
    subject: str,
    text: str,
    *,
    in_reply_to: str | None = None,
    client=None,
) -> str:
    """Compose and send an auto-reply; returns the SES message ID."""
    message = build_reply_message(
        from_address,
        to_address,
        subject,
        text,
        in_reply_to=in_reply_to,
    )
    return send_raw_message(
        message,
        source=from_address,
        destinations=[to_address],
        client=client,
    )


def build_forward_message(raw_email: bytes, *, from_address: str) -> EmailMessage:
    """
    Rewrite an inbound message so SES will relay it.

    SES only sends from verified identities, so From becomes the forwarding
    address and the original From is preserved as Reply-To.
    """
    msg = message_from_bytes(raw_email, policy=default_policy)

    original_from = str(msg.get("From", ""))
    if original_from and not msg.get("Reply-To"):
        msg["Reply-To"] = original_from

    for header in _FORWARD_DROP_HEADERS:
        del msg[header]

    del msg["From"]
    name, addr = parseaddr(original_from)
    label = name or addr
    if label:
        msg["From"] = Address(display_name=f"{label} via auto-responder", addr_spec=from_address)
    else:
        msg["From"] = from_address
    return msg


def forward_email(
    raw_email: bytes,
    *,
    to_address: str,
    from_address: str,
    client=None,
) -> str:
    """
    Forward a copy of an inbound message to the operator inbox.

    Returns:
        SES message ID

    Raises:
        SESError: If send fails
    """
    message = build_forward_message(raw_email, from_address=from_address)
    return send_raw_message(
        message,
        source=from_address,
        destinations=[to_address],
        operation="forward",
        client=client,
    )
