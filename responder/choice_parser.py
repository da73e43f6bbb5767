"""
Choice Parser

Extracts a YES/NO decision and the 8-character confirmation code from the
free-form text of a reply. The whole body is scanned, so codes survive in the
quoted original that most mail clients append below the reply.
"""

import re
from dataclasses import dataclass
from enum import Enum

# ASCII word boundaries so CJK characters next to a token still delimit it
YES_PATTERN = re.compile(r"\bYES\b", re.ASCII)
NO_PATTERN = re.compile(r"\bNO\b", re.ASCII)
YES_CJK_PATTERN = re.compile(r"(^|\s)是(\s|$)")
NO_CJK_PATTERN = re.compile(r"(^|\s)否(\s|$)")

CODE_PATTERN = re.compile(r"\b[A-Z0-9]{8}\b", re.ASCII)


class Choice(str, Enum):
    """Binary consent decision."""

    YES = "YES"
    NO = "NO"


@dataclass(frozen=True)
class ParsedChoice:
    """Decision and code found in a reply body (either may be missing)."""

    choice: Choice | None = None
    code: str | None = None


def extract_choice(text: str | None) -> Choice | None:
    """Return YES/NO if the text states one. YES wins when both appear."""
    original = text or ""
    normalized = original.strip().upper()

    if YES_PATTERN.search(normalized) or YES_CJK_PATTERN.search(original):
        return Choice.YES
    if NO_PATTERN.search(normalized) or NO_CJK_PATTERN.search(original):
        return Choice.NO
    return None


def extract_code(text: str | None) -> str | None:
    """Return the first standalone 8-character uppercase alphanumeric token."""
    match = CODE_PATTERN.search((text or "").upper())
    return match.group(0) if match else None


def parse_choice(text: str | None) -> ParsedChoice:
    """Parse both the decision and the confirmation code from a body."""
    return ParsedChoice(choice=extract_choice(text), code=extract_code(text))
