"""
Unit tests for field validation and re-engagement strategies.
"""
import pytest

from interview.validation import (
    ValidationResponse,
    determine_strategy,
    generate_validation_feedback,
    validate_field_value,
)


class TestValidateFieldValue:
    """Type-specific validation."""

    @pytest.mark.unit
    def test_email_normalized(self):
        """Should accept and lowercase a valid email."""
        result = validate_field_value("email", " Anna@Example.com ")
        assert result.is_valid is True
        assert result.extracted_value == "anna@example.com"

    @pytest.mark.unit
    @pytest.mark.parametrize("value,reason", [
        ("anna@example", "email_incomplete"),
        ("annaexample.com", "email_invalid_format"),
        ("", "field_no_value_extracted"),
        (None, "field_no_value_extracted"),
    ])
    def test_email_rejected(self, value, reason):
        """Should name the reason for an invalid email."""
        result = validate_field_value("email", value)
        assert result.is_valid is False
        assert result.reason == reason

    @pytest.mark.unit
    def test_phone(self):
        """Should require at least ten digits."""
        assert validate_field_value("phone", "+39 333 123 4567").is_valid is True
        assert validate_field_value("phone", "12345").reason == "phone_invalid_format"

    @pytest.mark.unit
    def test_url(self):
        assert validate_field_value("url", "https://www.site.com/path").is_valid is True
        assert validate_field_value("url", "not a url").reason == "url_invalid_format"

    @pytest.mark.unit
    def test_free_text(self):
        """Should accept any non-empty value for names and text."""
        assert validate_field_value("name", "Anna").is_valid is True
        assert validate_field_value("text", "anything").extracted_value == "anything"


class TestFeedback:
    """Localized feedback messages."""

    @pytest.mark.unit
    def test_known_reason(self):
        response = ValidationResponse(is_valid=False, reason="email_invalid_format")
        assert generate_validation_feedback(response, "en").startswith("Please enter a valid email address")

    @pytest.mark.unit
    def test_valid_has_no_feedback(self):
        assert generate_validation_feedback(ValidationResponse(is_valid=True), "en") == ""

    @pytest.mark.unit
    def test_unknown_reason_falls_back(self):
        """Should use the generic message for unknown reasons."""
        response = ValidationResponse(is_valid=False, reason="something_else")
        assert generate_validation_feedback(response, "it") == "Per favore, fornisci una risposta valida."


class TestStrategy:
    """Strategy by reason and attempt."""

    @pytest.mark.unit
    @pytest.mark.parametrize("reason,attempt,strategy", [
        ("email_invalid_format", 1, "give_example"),
        ("intent_unclear", 1, "ask_differently"),
        ("field_no_value_extracted", 1, "explain_better"),
        ("field_no_value_extracted", 2, "skip_field"),
        ("user_skip_requested", 2, "skip_field"),
        ("email_invalid_format", 2, "move_on"),
        ("email_invalid_format", 3, "skip_field"),
    ])
    def test_failed_validation(self, reason, attempt, strategy):
        """Should escalate with the attempt number."""
        response = ValidationResponse(is_valid=False, reason=reason)
        assert determine_strategy(response, attempt) == strategy

    @pytest.mark.unit
    def test_valid_moves_on(self):
        assert determine_strategy(ValidationResponse(is_valid=True)) == "move_on"
