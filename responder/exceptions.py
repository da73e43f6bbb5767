"""
Custom Exceptions for the Consent Auto-Responder

All exceptions carry the context needed for structured logging.
None of them ever escape the Lambda handler.
"""

from dataclasses import dataclass
from typing import Any


class AutoReplyError(Exception):
    """Base exception for the auto-responder."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


@dataclass
class StoreError(AutoReplyError):
    """Key-value store operation failed."""

    operation: str  # "get", "put", "delete"
    key: str

    def __init__(
        self,
        operation: str,
        key: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.key = key
        super().__init__(
            f"Store {operation} failed for key '{key}': {error_message or 'Unknown error'}",
            operation=operation,
            key=key,
            error_message=error_message,
        )


@dataclass
class SESError(AutoReplyError):
    """SES email operation failed."""

    operation: str  # "send", "forward"
    recipient: str | None = None

    def __init__(
        self,
        operation: str,
        recipient: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.recipient = recipient
        super().__init__(
            f"SES {operation} failed{f' for {recipient}' if recipient else ''}: "
            f"{error_message or 'Unknown error'}",
            operation=operation,
            recipient=recipient,
            error_message=error_message,
        )


@dataclass
class EmailParseError(AutoReplyError):
    """Raw message could not be turned into text/HTML."""

    reason: str

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to parse email: {reason}", reason=reason)
