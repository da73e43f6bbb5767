# Consent Auto-Responder
"""
Shared components of the consent auto-responder.

This package provides:
- Message classification (loop prevention)
- Choice/code parsing of reply bodies
- The consent state machine
- Pydantic models for stored values
- DynamoDB key-value store and SES mail tools
- Configuration management
- Custom exceptions
"""

from responder.choice_parser import Choice, ParsedChoice, parse_choice
from responder.classifier import ClassificationReason, InboundClassification, classify_message
from responder.config import Settings, get_settings
from responder.exceptions import (
    AutoReplyError,
    EmailParseError,
    SESError,
    StoreError,
)
from responder.state_machine import (
    ConsentAction,
    ConsentDecision,
    ReplyContent,
    ReplyTemplates,
    evaluate_consent,
)

__all__ = [
    # Classification and parsing
    "Choice",
    "ParsedChoice",
    "parse_choice",
    "ClassificationReason",
    "InboundClassification",
    "classify_message",
    # State machine
    "ConsentAction",
    "ConsentDecision",
    "ReplyContent",
    "ReplyTemplates",
    "evaluate_consent",
    # Exceptions
    "AutoReplyError",
    "EmailParseError",
    "SESError",
    "StoreError",
    # Config
    "Settings",
    "get_settings",
]
