"""
Configuration Management

Pydantic-settings based configuration for the consent auto-responder.
All settings can be overridden via environment variables.
"""

from functools import lru_cache
from typing import Any, Literal

from email_validator import EmailNotValidError, validate_email
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONSENT_TTL_SECONDS = 24 * 60 * 60

DEFAULT_INFO_TEMPLATE = "\n".join([
    "Thanks for your message. This is an automatic reply.",
    "",
    "If you would like my private contact ID, reply to this email with:",
    "YES <code>",
    "If not, reply with:",
    "NO <code>",
    "",
    "(The code <code> is valid for 24 hours.)",
])

DEFAULT_DISCLOSURE_TEMPLATE = "Confirmed. My contact ID is: <contact>"

DEFAULT_NOT_CONFIGURED_TEXT = (
    "Confirmed, but no contact ID is configured on this mailbox yet. "
    "Please reach out again later."
)


def _check_address(value: str) -> str:
    """Syntax-only RFC 5321 check; deliverability is never probed."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: '{value}'") from e
    return value


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with AUTOREPLY_ and are case-insensitive.
    Example: AUTOREPLY_REPLY_FROM_ADDRESS=me@example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOREPLY_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Reply content
    info_template: str = Field(
        default=DEFAULT_INFO_TEMPLATE,
        description="Challenge reply text; every <code> is replaced by the issued code",
    )
    challenge_subject: str = Field(
        default="Auto-reply: please confirm whether you want my contact ID",
        description="Subject of the challenge reply",
    )
    contact_identifier: str | None = Field(
        default=None,
        description="Private contact identifier disclosed after a YES confirmation",
    )
    disclosure_template: str = Field(
        default=DEFAULT_DISCLOSURE_TEMPLATE,
        description="Disclosure reply text; <contact> is replaced by the identifier",
    )
    disclosure_subject: str = Field(
        default="Confirmed: contact ID",
        description="Subject of the disclosure reply",
    )
    not_configured_text: str = Field(
        default=DEFAULT_NOT_CONFIGURED_TEXT,
        description="Reply text used when a YES arrives but no identifier is configured",
    )

    # Addressing
    forward_to: str | None = Field(
        default=None,
        description="Operator inbox that receives a copy of every eligible email",
    )
    reply_from_address: str | None = Field(
        default=None,
        description="Address replies are sent as",
    )
    reply_from_map: dict[str, str] = Field(
        default_factory=dict,
        description="Declared recipient -> reply-from address (JSON in env)",
    )

    # Consent state
    consent_ttl_seconds: int = Field(
        default=DEFAULT_CONSENT_TTL_SECONDS,
        description="Lifetime of a pending challenge",
    )

    # DynamoDB Configuration
    dynamodb_table_name: str = Field(
        default="AutoReplyStore",
        description="DynamoDB table used as key-value store for consent and archive",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint URL (for local development)",
    )

    # SES Configuration
    ses_configuration_set: str | None = Field(
        default=None,
        description="SES configuration set for tracking",
    )
    ses_endpoint_url: str | None = Field(
        default=None,
        description="SES endpoint URL (for local development)",
    )

    # S3 Configuration (SES receipt rules may store raw mail in S3)
    s3_endpoint_url: str | None = Field(
        default=None,
        description="S3 endpoint URL (for local development)",
    )

    # AWS Configuration
    aws_region: str = Field(
        default="us-west-2",
        description="AWS region",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("consent_ttl_seconds", mode="before")
    @classmethod
    def _ttl_or_default(cls, value: Any) -> int:
        try:
            ttl = int(str(value).strip())
        except (TypeError, ValueError):
            return DEFAULT_CONSENT_TTL_SECONDS
        return ttl if ttl > 0 else DEFAULT_CONSENT_TTL_SECONDS

    @field_validator("contact_identifier", "forward_to", "reply_from_address", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("forward_to", "reply_from_address")
    @classmethod
    def _valid_address(cls, value: str | None) -> str | None:
        return _check_address(value) if value else value

    @field_validator("reply_from_map")
    @classmethod
    def _normalize_reply_from_map(cls, value: dict[str, str]) -> dict[str, str]:
        return {
            recipient.strip().lower(): _check_address(sender.strip())
            for recipient, sender in value.items()
        }

    def resolve_reply_from(self, recipient: str | None) -> str | None:
        """Address to reply as for mail delivered to ``recipient``."""
        if recipient:
            mapped = self.reply_from_map.get(recipient.strip().lower())
            if mapped:
                return mapped
        return self.reply_from_address

    @property
    def dynamodb_config(self) -> dict:
        """DynamoDB client configuration."""
        config = {"region_name": self.aws_region}
        if self.dynamodb_endpoint_url and self.dynamodb_endpoint_url != "mock":
            config["endpoint_url"] = self.dynamodb_endpoint_url
        return config

    @property
    def s3_config(self) -> dict:
        """S3 client configuration."""
        config = {"region_name": self.aws_region}
        if self.s3_endpoint_url and self.s3_endpoint_url != "mock":
            config["endpoint_url"] = self.s3_endpoint_url
        return config

    @property
    def ses_config(self) -> dict:
        """SES client configuration."""
        config = {"region_name": self.aws_region}
        if self.ses_endpoint_url and self.ses_endpoint_url != "mock":
            config["endpoint_url"] = self.ses_endpoint_url
        return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache so the environment is read and validated once per cold start.
    Call get_settings.cache_clear() in tests after changing the environment.
    """
    return Settings()
