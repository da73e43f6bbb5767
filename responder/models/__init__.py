# Store Models
"""
Pydantic models for values persisted in the key-value store.
"""

from responder.models.consent import (
    ArchivedEmail,
    ConsentRecord,
    ConsentStage,
    consent_key,
    generate_code,
    normalize_sender,
)

__all__ = [
    "ArchivedEmail",
    "ConsentRecord",
    "ConsentStage",
    "consent_key",
    "generate_code",
    "normalize_sender",
]
