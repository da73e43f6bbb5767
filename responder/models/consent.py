"""
Consent Store Models

Pydantic models for the values kept in the key-value store.

Keys:
    consent:<lower-cased sender>   -> ConsentRecord (expires with the challenge TTL)
    email:<epoch ms>:<uuid>        -> ArchivedEmail (no expiry)
"""

import json
import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Final
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import structlog

log = structlog.get_logger()

CODE_LENGTH: Final[int] = 8
CODE_ALPHABET: Final[str] = string.ascii_uppercase + string.digits

CONSENT_KEY_PREFIX: Final[str] = "consent:"
EMAIL_KEY_PREFIX: Final[str] = "email:"


def generate_code() -> str:
    """Generate a one-time confirmation code (8 uppercase alphanumerics)."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_sender(sender: str) -> str:
    """Identity used for consent state: trimmed, lower-cased address."""
    return sender.strip().lower()


def consent_key(sender: str) -> str:
    """Store key for a sender's consent record."""
    return f"{CONSENT_KEY_PREFIX}{normalize_sender(sender)}"


# =====================================================
# Consent Stage
# =====================================================


class ConsentStage(str, Enum):
    """
    Stage of a stored consent record.

    PENDING is the only stored stage. A sender without a record has no active
    challenge; deleting the record is how a challenge completes.
    """

    PENDING = "PENDING"


# =====================================================
# Consent Record
# =====================================================


class ConsentRecord(BaseModel):
    """Outstanding challenge for one sender."""

    model_config = ConfigDict(frozen=True)

    stage: ConsentStage = Field(default=ConsentStage.PENDING, description="Record stage")
    code: str = Field(
        ...,
        pattern=r"^[A-Z0-9]{8}$",
        description="One-time confirmation code",
    )

    @property
    def is_pending(self) -> bool:
        return self.stage == ConsentStage.PENDING

    def to_value(self) -> str:
        """Serialize for the store. Output is deterministic for equal records."""
        return json.dumps({"stage": self.stage.value, "code": self.code})

    @classmethod
    def from_value(cls, raw: Any) -> "ConsentRecord | None":
        """
        Parse a stored value.

        Accepts the raw JSON string or an already decoded dict. Anything
        absent or malformed yields None, which restarts the challenge flow.
        """
        if raw is None:
            return None
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                log.warning("consent_record_not_json")
                return None
        if not isinstance(raw, dict):
            log.warning("consent_record_not_object", value_type=type(raw).__name__)
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            log.warning("consent_record_invalid", error_count=e.error_count())
            return None


# =====================================================
# Archived Email
# =====================================================


class ArchivedEmail(BaseModel):
    """Write-once audit copy of an inbound email."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Archive entry id")
    stored_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO timestamp of receipt",
    )
    received_ms: int = Field(
        default_factory=lambda: int(time.time() * 1000),
        exclude=True,
        description="Epoch milliseconds used in the store key",
    )
    from_address: str = Field(default="", alias="from")
    to_address: str = Field(default="", alias="to")
    reply_to: str = Field(default="", alias="replyTo")
    subject: str = ""
    headers: list[tuple[str, str]] = Field(default_factory=list)
    text: str = ""
    html: str = ""

    @property
    def key(self) -> str:
        return f"{EMAIL_KEY_PREFIX}{self.received_ms}:{self.id}"

    def to_value(self) -> str:
        """Serialize for the store."""
        return self.model_dump_json(by_alias=True)
