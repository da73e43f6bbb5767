# Shared Tools
"""
Store and mail tools used by the inbound email Lambda.
"""

from responder.tools.dynamodb import (
    ConsentStore,
    KeyValueStore,
    StoredConsent,
)
from responder.tools.email import (
    build_reply_message,
    forward_email,
    normalize_message_id,
    send_raw_message,
    send_reply,
)

__all__ = [
    # DynamoDB tools
    "ConsentStore",
    "KeyValueStore",
    "StoredConsent",
    # Email tools
    "build_reply_message",
    "forward_email",
    "normalize_message_id",
    "send_raw_message",
    "send_reply",
]
