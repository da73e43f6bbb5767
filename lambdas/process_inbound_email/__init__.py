"""
ProcessInboundEmail Lambda

Consent auto-responder for inbound email received via SES → SNS.
Archives every email, forwards eligible ones to the operator, and runs the
per-sender YES/NO + code confirmation before disclosing the contact ID.

Flow:
    Sender email
    → SES Receipt Rule
    → SNS Topic
    → This Lambda
    → SES reply (challenge or disclosure)
"""

from lambdas.process_inbound_email.background import BackgroundTasks
from lambdas.process_inbound_email.email_parser import (
    InboundEmail,
    ParsedEmail,
    get_body_text,
    inbound_from_ses_notification,
    parse_raw_email,
)
from lambdas.process_inbound_email.handler import lambda_handler, process_inbound_email

__all__ = [
    "BackgroundTasks",
    "InboundEmail",
    "ParsedEmail",
    "get_body_text",
    "inbound_from_ses_notification",
    "lambda_handler",
    "parse_raw_email",
    "process_inbound_email",
]
