"""
Validation responses for data collection.

A failed validation carries a reason; the reason and the attempt number
decide the re-engagement strategy (give an example, ask differently,
skip the field or move on).
"""
import re
from dataclasses import dataclass
from typing import Optional

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[a-z]{2,}$', re.IGNORECASE)
URL_PATTERN = re.compile(r'^(?:https?://)?(?:www\.)?[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,}(?:[/?#]\S*)?$', re.IGNORECASE)

FEEDBACK_MESSAGES = {
    "email_invalid_format": {
        "it": "Per favore, inserisci un indirizzo email valido (ad esempio: nome@dominio.com)",
        "en": "Please enter a valid email address (for example: name@domain.com)",
    },
    "email_incomplete": {
        "it": "L'indirizzo email sembra incompleto. Puoi fornire l'email completa?",
        "en": "The email address seems incomplete. Could you provide the complete email?",
    },
    "phone_invalid_format": {
        "it": "Per favore, inserisci un numero di telefono valido con almeno 10 cifre",
        "en": "Please enter a valid phone number with at least 10 digits",
    },
    "url_invalid_format": {
        "it": "Per favore, inserisci un URL valido (ad esempio: https://www.sito.com)",
        "en": "Please enter a valid URL (for example: https://www.site.com)",
    },
    "field_no_value_extracted": {
        "it": "Non sono riuscito a estrarre il valore dal tuo messaggio. Puoi riprovare?",
        "en": "I couldn't extract a value from your message. Could you try again?",
    },
    "intent_unclear": {
        "it": "La tua risposta non è del tutto chiara. Puoi fornire più dettagli?",
        "en": "Your response isn't quite clear. Could you provide more details?",
    },
    "intent_neutral": {
        "it": "La tua risposta non sembra dare una risposta diretta. Puoi essere più specifico?",
        "en": "Your response doesn't seem to give a direct answer. Could you be more specific?",
    },
    "response_too_brief": {
        "it": "La tua risposta è troppo breve. Puoi fornire maggiori informazioni?",
        "en": "Your response is too brief. Could you provide more information?",
    },
    "clarification_needed": {
        "it": "Abbiamo bisogno di chiarimenti sulla tua risposta. Puoi spiegare meglio?",
        "en": "We need clarification on your response. Could you explain better?",
    },
    "user_skip_requested": {
        "it": "Hai richiesto di saltare questo campo.",
        "en": "You requested to skip this field.",
    },
}

FALLBACK_FEEDBACK = {
    "it": "Per favore, fornisci una risposta valida.",
    "en": "Please provide a valid response.",
}

FORMAT_REASONS = {"email_invalid_format", "email_incomplete", "phone_invalid_format", "url_invalid_format"}
UNCLEAR_REASONS = {"intent_unclear", "intent_neutral", "response_too_brief", "clarification_needed"}


@dataclass
class ValidationResponse:
    is_valid: bool
    reason: Optional[str] = None
    confidence: str = "none"  # high | low | none
    extracted_value: Optional[str] = None


def validate_field_value(field_type: str, value: Optional[str]) -> ValidationResponse:
    """
    Validate an extracted field value against its type.

    Args:
        field_type: name, email, phone, url or text
        value: The extracted value (None when nothing was found)

    Returns:
        ValidationResponse with a failure reason when invalid
    """
    candidate = (value or "").strip()
    if not candidate:
        return ValidationResponse(is_valid=False, reason="field_no_value_extracted")

    if field_type == "email":
        if EMAIL_PATTERN.match(candidate):
            return ValidationResponse(is_valid=True, confidence="high", extracted_value=candidate.lower())
        if "@" in candidate:
            local, _, domain = candidate.partition("@")
            if local and (not domain or "." not in domain):
                return ValidationResponse(is_valid=False, reason="email_incomplete", extracted_value=candidate)
        return ValidationResponse(is_valid=False, reason="email_invalid_format", extracted_value=candidate)

    if field_type == "phone":
        digits = re.sub(r'\D', '', candidate)
        if len(digits) >= 10:
            return ValidationResponse(is_valid=True, confidence="high", extracted_value=candidate)
        return ValidationResponse(is_valid=False, reason="phone_invalid_format", extracted_value=candidate)

    if field_type == "url":
        if URL_PATTERN.match(candidate):
            return ValidationResponse(is_valid=True, confidence="high", extracted_value=candidate)
        return ValidationResponse(is_valid=False, reason="url_invalid_format", extracted_value=candidate)

    return ValidationResponse(is_valid=True, confidence="high", extracted_value=candidate)


def generate_validation_feedback(response: ValidationResponse, language: str) -> str:
    """User-facing feedback for a failed validation, empty when valid."""
    if response.is_valid:
        return ""
    lang = "it" if (language or "en").lower().startswith("it") else "en"
    if response.reason in FEEDBACK_MESSAGES:
        return FEEDBACK_MESSAGES[response.reason][lang]
    return FALLBACK_FEEDBACK[lang]


def determine_strategy(response: ValidationResponse, attempt: int = 1, max_attempts: int = 2) -> str:
    """
    Pick the re-engagement strategy for a validation result.

    Returns:
        move_on, skip_field, give_example, ask_differently or explain_better
    """
    if response.is_valid:
        return "move_on"
    if attempt > max_attempts:
        return "skip_field"
    if attempt == 1:
        if response.reason in FORMAT_REASONS:
            return "give_example"
        if response.reason in UNCLEAR_REASONS:
            return "ask_differently"
        return "explain_better"
    if attempt == 2 and response.reason in ("field_no_value_extracted", "user_skip_requested"):
        return "skip_field"
    return "move_on"
