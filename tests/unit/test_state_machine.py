"""
Test Consent State Machine

Unit tests for the pure consent decision function.
Covers the challenge, resolve and suppress transitions and their edge cases.
"""

import pytest

from responder.choice_parser import Choice, ParsedChoice
from responder.models.consent import ConsentRecord, ConsentStage
from responder.state_machine import (
    ConsentAction,
    ReplyTemplates,
    evaluate_consent,
)

SENDER = "Alice@Example.org"


@pytest.fixture
def templates() -> ReplyTemplates:
    return ReplyTemplates(
        info_template="Reply YES <code> or NO <code>.",
        challenge_subject="Please confirm",
        disclosure_template="My ID: <contact>",
        disclosure_subject="Confirmed",
        not_configured_text="No ID configured.",
        contact_identifier="wx-private-42",
    )


@pytest.fixture
def pending() -> ConsentRecord:
    return ConsentRecord(stage=ConsentStage.PENDING, code="AB12CD34")


def _evaluate(parsed, record, templates, **kwargs):
    return evaluate_consent(
        SENDER,
        parsed,
        record,
        templates=templates,
        ttl_seconds=86400,
        generate_code=kwargs.pop("generate_code", lambda: "NEWCODE1"),
        **kwargs,
    )


class TestChallenge:
    """No record: a new challenge is issued."""

    def test_first_contact_issues_challenge(self, templates):
        decision = _evaluate(ParsedChoice(), None, templates)

        assert decision.action == ConsentAction.CHALLENGE
        assert decision.key == "consent:alice@example.org"
        assert decision.next_record == ConsentRecord(code="NEWCODE1")
        assert decision.ttl_seconds == 86400
        assert decision.reply.subject == "Please confirm"
        assert decision.reply.body == "Reply YES NEWCODE1 or NO NEWCODE1."

    def test_confirmation_without_record_restarts_challenge(self, templates):
        """A YES + code after the record is gone starts over with a new code."""
        decision = _evaluate(ParsedChoice(Choice.YES, "AB12CD34"), None, templates)

        assert decision.action == ConsentAction.CHALLENGE
        assert decision.next_record.code == "NEWCODE1"

    def test_generator_called_once(self, templates):
        calls = []

        def gen():
            calls.append(1)
            return "ZZ99ZZ99"

        _evaluate(ParsedChoice(), None, templates, generate_code=gen)
        assert len(calls) == 1


class TestResolve:
    """PENDING record with matching code and a choice."""

    def test_yes_discloses(self, templates, pending):
        decision = _evaluate(ParsedChoice(Choice.YES, "AB12CD34"), pending, templates)

        assert decision.action == ConsentAction.DISCLOSE
        assert decision.action.removes_record is True
        assert decision.next_record is None
        assert decision.current_record == pending
        assert decision.reply.subject == "Confirmed"
        assert decision.reply.body == "My ID: wx-private-42"

    def test_yes_without_identifier_still_replies(self, templates, pending):
        unconfigured = ReplyTemplates(
            info_template=templates.info_template,
            challenge_subject=templates.challenge_subject,
            disclosure_template=templates.disclosure_template,
            disclosure_subject=templates.disclosure_subject,
            not_configured_text=templates.not_configured_text,
            contact_identifier=None,
        )
        decision = _evaluate(ParsedChoice(Choice.YES, "AB12CD34"), pending, unconfigured)

        assert decision.action == ConsentAction.DISCLOSE
        assert decision.reply.body == "No ID configured."

    def test_no_declines_silently(self, templates, pending):
        decision = _evaluate(ParsedChoice(Choice.NO, "AB12CD34"), pending, templates)

        assert decision.action == ConsentAction.DECLINE
        assert decision.action.removes_record is True
        assert decision.reply is None
        assert decision.next_record is None


class TestSuppress:
    """PENDING record without a valid confirmation."""

    @pytest.mark.parametrize(
        "parsed",
        [
            ParsedChoice(),
            ParsedChoice(Choice.YES, None),
            ParsedChoice(Choice.YES, "ZZ99ZZ99"),
            ParsedChoice(None, "AB12CD34"),
            ParsedChoice(Choice.NO, "ZZ99ZZ99"),
        ],
    )
    def test_no_reply_and_no_change(self, templates, pending, parsed):
        decision = _evaluate(parsed, pending, templates)

        assert decision.action == ConsentAction.SUPPRESS
        assert decision.action.removes_record is False
        assert decision.reply is None
        assert decision.next_record == pending

    def test_pending_never_rotates_code(self, templates, pending):
        def gen():
            raise AssertionError("code must not be generated while pending")

        decision = _evaluate(ParsedChoice(), pending, templates, generate_code=gen)
        assert decision.action == ConsentAction.SUPPRESS


class TestValidation:
    """Input validation."""

    @pytest.mark.parametrize("sender", ["", "   "])
    def test_empty_sender_raises(self, templates, sender):
        with pytest.raises(ValueError, match="sender"):
            evaluate_consent(
                sender,
                ParsedChoice(),
                None,
                templates=templates,
                ttl_seconds=86400,
            )


class TestReplyTemplates:
    """Tests for ReplyTemplates."""

    def test_from_settings(self, settings):
        templates = ReplyTemplates.from_settings(settings)

        assert templates.contact_identifier == "wx-private-42"
        assert "<code>" in templates.info_template
        assert "ZZ99ZZ99" in templates.challenge_text("ZZ99ZZ99")
        assert "<code>" not in templates.challenge_text("ZZ99ZZ99")

    def test_disclosure_text(self, templates):
        assert templates.disclosure_text() == "My ID: wx-private-42"
