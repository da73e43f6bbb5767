"""
Consent State Machine

Decides what to do with an inbound message given the sender's stored consent
record. Pure: the caller owns the store and performs the write or delete the
decision asks for.

Observable states per sender:
    (no record) --first eligible message--> PENDING
    PENDING --matching code + YES/NO--> (no record)
    PENDING --TTL elapses in the store--> (no record)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from responder.choice_parser import Choice, ParsedChoice
from responder.config import Settings
from responder.models.consent import (
    ConsentRecord,
    ConsentStage,
    consent_key,
    generate_code,
)

log = structlog.get_logger()

CODE_PLACEHOLDER = "<code>"
CONTACT_PLACEHOLDER = "<contact>"


class ConsentAction(str, Enum):
    """Outcome of evaluating one inbound message."""

    CHALLENGE = "CHALLENGE"
    """No record: issue a code and send the informational reply."""

    DISCLOSE = "DISCLOSE"
    """Matching code + YES: reveal the contact identifier, drop the record."""

    DECLINE = "DECLINE"
    """Matching code + NO: drop the record silently."""

    SUPPRESS = "SUPPRESS"
    """PENDING without a valid confirmation: do nothing."""

    @property
    def removes_record(self) -> bool:
        return self in (ConsentAction.DISCLOSE, ConsentAction.DECLINE)


@dataclass(frozen=True)
class ReplyTemplates:
    """Texts used to build replies."""

    info_template: str
    challenge_subject: str
    disclosure_template: str
    disclosure_subject: str
    not_configured_text: str
    contact_identifier: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReplyTemplates":
        return cls(
            info_template=settings.info_template,
            challenge_subject=settings.challenge_subject,
            disclosure_template=settings.disclosure_template,
            disclosure_subject=settings.disclosure_subject,
            not_configured_text=settings.not_configured_text,
            contact_identifier=settings.contact_identifier,
        )

    def challenge_text(self, code: str) -> str:
        return self.info_template.replace(CODE_PLACEHOLDER, code)

    def disclosure_text(self) -> str:
        if not self.contact_identifier:
            return self.not_configured_text
        return self.disclosure_template.replace(CONTACT_PLACEHOLDER, self.contact_identifier)


@dataclass(frozen=True)
class ReplyContent:
    """Subject and plain-text body of a reply to send."""

    subject: str
    body: str


@dataclass(frozen=True)
class ConsentDecision:
    """What the caller must do for this message."""

    action: ConsentAction
    sender: str
    key: str
    current_record: ConsentRecord | None = None
    next_record: ConsentRecord | None = None
    ttl_seconds: int | None = None
    reply: ReplyContent | None = None


def _is_confirmation(record: ConsentRecord, parsed: ParsedChoice) -> bool:
    return (
        record.stage == ConsentStage.PENDING
        and parsed.code is not None
        and parsed.code == record.code
        and parsed.choice is not None
    )


def evaluate_consent(
    sender: str,
    parsed: ParsedChoice,
    record: ConsentRecord | None,
    *,
    templates: ReplyTemplates,
    ttl_seconds: int,
    generate_code: Callable[[], str] = generate_code,
) -> ConsentDecision:
    """
    Evaluate one inbound message against the sender's consent record.

    Args:
        sender: Address state is keyed on (reply-to, else from)
        parsed: Choice and code found in the body
        record: Current record, None if absent or expired
        templates: Reply texts
        ttl_seconds: Lifetime of a newly issued challenge
        generate_code: Code generator

    Returns:
        ConsentDecision describing the reply and the store mutation

    Raises:
        ValueError: If sender is empty
    """
    if not sender or not sender.strip():
        raise ValueError("sender must be a non-empty address")

    key = consent_key(sender)

    if record is not None and record.is_pending:
        if not _is_confirmation(record, parsed):
            # A pending challenge is never re-issued or rotated
            decision = ConsentDecision(
                action=ConsentAction.SUPPRESS,
                sender=sender,
                key=key,
                current_record=record,
                next_record=record,
            )
        elif parsed.choice == Choice.YES:
            decision = ConsentDecision(
                action=ConsentAction.DISCLOSE,
                sender=sender,
                key=key,
                current_record=record,
                reply=ReplyContent(
                    subject=templates.disclosure_subject,
                    body=templates.disclosure_text(),
                ),
            )
        else:
            decision = ConsentDecision(
                action=ConsentAction.DECLINE,
                sender=sender,
                key=key,
                current_record=record,
            )
    else:
        code = generate_code()
        decision = ConsentDecision(
            action=ConsentAction.CHALLENGE,
            sender=sender,
            key=key,
            next_record=ConsentRecord(stage=ConsentStage.PENDING, code=code),
            ttl_seconds=ttl_seconds,
            reply=ReplyContent(
                subject=templates.challenge_subject,
                body=templates.challenge_text(code),
            ),
        )

    log.info(
        "consent_decision",
        key=key,
        action=decision.action.value,
        choice=parsed.choice.value if parsed.choice else None,
        code_present=parsed.code is not None,
        had_record=record is not None,
    )
    return decision
