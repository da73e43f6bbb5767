"""
Email Parser Module

Turns SES/SNS receipt notifications into InboundEmail objects and raw MIME
into plain text for the choice parser.

Body extraction prefers text/plain and falls back to HTML converted to text.
"""

import base64
import binascii
import email
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.policy import default as default_policy
from email.utils import parseaddr
from typing import Any

import boto3
import structlog
from botocore.exceptions import ClientError
from bs4 import BeautifulSoup

from responder.config import get_settings
from responder.exceptions import EmailParseError

log = structlog.get_logger()


@dataclass
class ParsedEmail:
    """Text content of a raw message."""

    text: str = ""
    html: str = ""
    message_id: str = ""


@dataclass
class InboundEmail:
    """
    One inbound email as delivered by SES.

    The raw source is either embedded in the notification or stored in S3
    by the receipt rule; read_raw() hides the difference.
    """

    from_address: str
    to_address: str
    reply_to: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    raw_size: int = 0
    raw_bytes: bytes | None = None
    s3_bucket: str | None = None
    s3_key: str | None = None
    ses_message_id: str = ""

    def header(self, name: str) -> str | None:
        """First value of a header, matched case-insensitively."""
        return _first_header(self.headers, name)

    @property
    def subject(self) -> str:
        return self.header("Subject") or ""

    @property
    def sender(self) -> str:
        """Address replies and consent state are keyed on."""
        return self.reply_to or self.from_address

    def read_raw(self) -> bytes:
        """
        Raw MIME source of the message.

        Raises:
            ClientError: If fetching from S3 fails
            ValueError: If the notification carried no source at all
        """
        if self.raw_bytes is None and self.s3_bucket and self.s3_key:
            self.raw_bytes = fetch_email_from_s3(self.s3_bucket, self.s3_key)
            self.raw_size = len(self.raw_bytes)
        if self.raw_bytes is None:
            raise ValueError("Email content not embedded and no S3 location given")
        return self.raw_bytes


def _get_s3_client():
    """Get S3 client."""
    settings = get_settings()
    return boto3.client("s3", **settings.s3_config)


def fetch_email_from_s3(bucket: str, key: str) -> bytes:
    """
    Fetch raw email content from S3.

    Used when SES stores emails in S3 rather than embedding in SNS.

    Raises:
        ClientError: If S3 get fails
    """
    log.info("fetching_email_from_s3", bucket=bucket, key=key)

    client = _get_s3_client()

    try:
        response = client.get_object(Bucket=bucket, Key=key)
        content = response["Body"].read()
    except ClientError as e:
        log.error("s3_fetch_failed", bucket=bucket, key=key, error=str(e))
        raise

    log.debug("email_fetched_from_s3", bucket=bucket, key=key, size_bytes=len(content))
    return content


def extract_address(header_value: str | None) -> str:
    """
    Extract the bare address from a header value.

    Handles "John Doe <john@example.com>", "<john@example.com>" and
    "john@example.com".
    """
    if not header_value:
        return ""
    _, addr = parseaddr(header_value)
    return addr.strip()


def _decode_content(content: str) -> bytes:
    """SES embeds content either base64 encoded or as UTF-8 MIME text."""
    try:
        return base64.b64decode("".join(content.split()), validate=True)
    except (binascii.Error, ValueError):
        return content.encode("utf-8")


def _headers_from_raw(raw_email: bytes) -> list[tuple[str, str]]:
    msg = email.message_from_bytes(raw_email, policy=default_policy)
    return [(name, str(value)) for name, value in msg.items()]


def inbound_from_ses_notification(notification: dict[str, Any]) -> InboundEmail:
    """
    Build an InboundEmail from an SES "Received" notification.

    Args:
        notification: Decoded SES notification (the SNS Message body)

    Returns:
        InboundEmail with addressing, headers and raw source (or S3 location)
    """
    mail = notification.get("mail", {})
    receipt = notification.get("receipt", {})
    common = mail.get("commonHeaders", {})

    headers = [
        (h.get("name", ""), h.get("value", ""))
        for h in mail.get("headers", [])
        if h.get("name")
    ]

    raw_bytes: bytes | None = None
    content = notification.get("content")
    if content:
        raw_bytes = _decode_content(content)
        if not headers:
            headers = _headers_from_raw(raw_bytes)

    s3_bucket = s3_key = None
    action = receipt.get("action", {})
    if action.get("type") == "S3":
        s3_bucket = action.get("bucketName")
        s3_key = action.get("objectKey") or action.get("objectKeyPrefix")

    recipients = receipt.get("recipients") or mail.get("destination") or []

    from_address = mail.get("source", "")
    if not from_address:
        from_list = common.get("from") or []
        from_address = extract_address(from_list[0]) if from_list else ""

    reply_to_list = common.get("replyTo") or []
    reply_to = extract_address(reply_to_list[0]) if reply_to_list else ""
    if not reply_to:
        reply_to = extract_address(_first_header(headers, "Reply-To"))

    return InboundEmail(
        from_address=from_address,
        to_address=recipients[0] if recipients else "",
        reply_to=reply_to,
        headers=headers,
        raw_size=len(raw_bytes) if raw_bytes is not None else 0,
        raw_bytes=raw_bytes,
        s3_bucket=s3_bucket,
        s3_key=s3_key,
        ses_message_id=mail.get("messageId", ""),
    )


def _first_header(headers: list[tuple[str, str]], name: str) -> str | None:
    wanted = name.lower()
    return next((value for key, value in headers if key.lower() == wanted), None)


def _part_text(part: EmailMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        # Unknown or lying charset
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_raw_email(raw_email: str | bytes) -> ParsedEmail:
    """
    Parse raw email content (MIME format) into text, HTML and Message-ID.

    Raises:
        EmailParseError: If the source cannot be parsed
    """
    raw_bytes = raw_email.encode("utf-8") if isinstance(raw_email, str) else raw_email

    try:
        msg = email.message_from_bytes(raw_bytes, policy=default_policy)
        text_part = msg.get_body(preferencelist=("plain",))
        html_part = msg.get_body(preferencelist=("html",))
        return ParsedEmail(
            text=_part_text(text_part) if text_part is not None else "",
            html=_part_text(html_part) if html_part is not None else "",
            message_id=str(msg.get("Message-ID", "") or ""),
        )
    except Exception as e:
        raise EmailParseError(f"{type(e).__name__}: {e}") from e


def html_to_text(html: str) -> str:
    """Convert HTML to plain text, keeping block boundaries as line breaks."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


def get_body_text(parsed: ParsedEmail) -> str:
    """Plain text of a parsed email: text part, else converted HTML, else ""."""
    plain = (parsed.text or "").strip()
    if plain:
        return plain
    html = (parsed.html or "").strip()
    if not html:
        return ""
    return html_to_text(html)
