"""
Message Classifier

Header heuristics deciding whether an inbound email may trigger an automatic
reply. Machine-generated mail and list traffic never get one, so the responder
cannot end up in a reply loop with another auto-responder.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Final

BULK_PRECEDENCE: Final[frozenset[str]] = frozenset({"bulk", "junk", "list"})


class ClassificationReason(str, Enum):
    """Why a message was (not) eligible."""

    ELIGIBLE = "ELIGIBLE"
    AUTO_SUBMITTED = "AUTO_SUBMITTED"
    BULK_PRECEDENCE = "BULK_PRECEDENCE"


@dataclass(frozen=True)
class InboundClassification:
    """Eligibility of a single inbound message."""

    eligible: bool
    reason: ClassificationReason
    detail: str = ""


def classify_message(
    auto_submitted: str | None,
    precedence: str | None,
) -> InboundClassification:
    """
    Classify a message from its Auto-Submitted and Precedence headers.

    Args:
        auto_submitted: Raw Auto-Submitted header value (None if absent)
        precedence: Raw Precedence header value (None if absent)

    Returns:
        InboundClassification; only ELIGIBLE messages may be answered
    """
    auto = (auto_submitted or "").strip().lower()
    if auto and auto != "no":
        return InboundClassification(
            eligible=False,
            reason=ClassificationReason.AUTO_SUBMITTED,
            detail=auto,
        )

    prec = (precedence or "").strip().lower()
    if prec in BULK_PRECEDENCE:
        return InboundClassification(
            eligible=False,
            reason=ClassificationReason.BULK_PRECEDENCE,
            detail=prec,
        )

    return InboundClassification(eligible=True, reason=ClassificationReason.ELIGIBLE)
