"""
Post-processing safety nets for assistant replies.

Each layer returns a GuardResult; run_post_processing applies the layers
that belong to the current supervisor status and stops at the first failure.
"""
import re
import logging
from dataclasses import dataclass
from typing import List, Optional

from models.schemas import SupervisorStatus
from utils.cleaning import COMPLETION_TAG, ResponseCleaner

logger = logging.getLogger(__name__)

GOODBYE_PATTERN_IT = re.compile(r'arrivederci|addio|a presto|ci vediamo|\bciao\b|ti saluto|vi saluto|buona giornata', re.IGNORECASE)
GOODBYE_PATTERN_EN = re.compile(r'goodbye|farewell|see you|\bbye\b|signing off|have a (?:great|good|nice) day', re.IGNORECASE)

CONTACT_PATTERN_IT = re.compile(r'\b(?:e-?mail|telefono|cellulare|whatsapp|linkedin|recapit\w*|indirizzo)\b', re.IGNORECASE)
CONTACT_PATTERN_EN = re.compile(r'\b(?:e-?mail|phone|whatsapp|linkedin|contact details|contact info\w*|address)\b', re.IGNORECASE)

PROMO_PATTERN = re.compile(r'https?://|www\.|\bpromozione\b|\bdiscount\b|\bofferta\b|\bsconto\b|\bcheck out\b', re.IGNORECASE)

CONTINUE_PATTERN_IT = re.compile(r'continuar|proseguir|allungare|estender|altre|minuti|ancora', re.IGNORECASE)
CONTINUE_PATTERN_EN = re.compile(r'continue|extend|longer|more|minutes|further|still', re.IGNORECASE)

TOPIC_STATUSES = (
    SupervisorStatus.SCANNING,
    SupervisorStatus.TRANSITION,
    SupervisorStatus.START_DEEP,
    SupervisorStatus.DEEPENING,
)
DATA_STATUSES = (SupervisorStatus.DATA_COLLECTION_CONSENT, SupervisorStatus.DATA_COLLECTION)
FINAL_STATUSES = (SupervisorStatus.COMPLETE_WITHOUT_DATA, SupervisorStatus.FINAL_GOODBYE)


@dataclass
class GuardResult:
    is_valid: bool = True
    reason: Optional[str] = None
    regeneration_required: bool = False


def _fail(reason: str) -> GuardResult:
    return GuardResult(is_valid=False, reason=reason, regeneration_required=True)


def _is_it(language: str) -> bool:
    return (language or "en").lower().startswith("it")


def is_goodbye(text: str, language: str) -> bool:
    pattern = GOODBYE_PATTERN_IT if _is_it(language) else GOODBYE_PATTERN_EN
    return bool(pattern.search(text or ""))


def is_contact_request(text: str, language: str) -> bool:
    pattern = CONTACT_PATTERN_IT if _is_it(language) else CONTACT_PATTERN_EN
    return bool(pattern.search(text or ""))


def validate_topic_phase_closure(text: str, language: str) -> GuardResult:
    """A topic reply must ask a question and must not close, ask for contacts or promote."""
    if "?" not in text:
        return _fail("missing_question")
    if ResponseCleaner.has_completion_tag(text):
        return _fail("completion_tag_in_topic_phase")
    if is_goodbye(text, language):
        return _fail("goodbye_in_topic_phase")
    if is_contact_request(text, language):
        return _fail("premature_contact_request")
    if PROMO_PATTERN.search(text):
        return _fail("promotional_content")
    return GuardResult()


def check_duplicate_question(text: str, recent_questions: List[str]) -> GuardResult:
    """Reject a reply whose first sentence shares more than 60% of its words with a recent question."""
    sentences = [s for s in re.split(r'[.!?]+', text or "") if len(s.strip()) > 10]
    if not sentences:
        return GuardResult()

    current = sentences[0].strip()[:100].lower()
    words = set(current.split())
    for recent in recent_questions[-3:]:
        recent_words = set((recent or "").lower().split())
        if not recent_words:
            continue
        overlap = len(words & recent_words)
        if overlap / max(len(words), len(recent_words)) > 0.6:
            return _fail("duplicate_question")
    return GuardResult()


def validate_extension_offer(text: str, language: str) -> GuardResult:
    pattern = CONTINUE_PATTERN_IT if _is_it(language) else CONTINUE_PATTERN_EN
    if "?" not in text or not pattern.search(text):
        return _fail("invalid_extension_offer")
    if ResponseCleaner.has_completion_tag(text):
        return _fail("completion_tag_in_extension_offer")
    return GuardResult()


def validate_data_collection(text: str, status: SupervisorStatus, language: str = "en", has_all_data: bool = False) -> GuardResult:
    if status not in DATA_STATUSES:
        return GuardResult()
    if not has_all_data and is_goodbye(text, language):
        return _fail("goodbye_before_all_data")
    if "?" not in text:
        return _fail("missing_question_in_data_collection")
    return GuardResult()


def validate_completion(text: str, status: SupervisorStatus) -> GuardResult:
    """The completion tag is only allowed on the final turn."""
    if not ResponseCleaner.has_completion_tag(text):
        return GuardResult()
    if status not in FINAL_STATUSES:
        return _fail("completion_tag_in_non_final_phase")
    return GuardResult()


def run_post_processing(
    text: str,
    status: SupervisorStatus,
    language: str,
    recent_questions: Optional[List[str]] = None,
    has_all_data: bool = False,
) -> GuardResult:
    """
    Apply the safety nets for the reply's supervisor status.

    Args:
        text: Candidate assistant reply
        status: Supervisor status the reply was generated for
        language: Conversation language
        recent_questions: Questions asked recently, oldest first
        has_all_data: Whether every contact field is already collected

    Returns:
        The first failing GuardResult, or a valid one
    """
    if status in TOPIC_STATUSES:
        result = validate_topic_phase_closure(text, language)
        if not result.is_valid:
            return result
        result = check_duplicate_question(text, recent_questions or [])
        if not result.is_valid:
            return result

    if status == SupervisorStatus.DEEP_OFFER_ASK:
        result = validate_extension_offer(text, language)
        if not result.is_valid:
            return result

    if status in DATA_STATUSES:
        result = validate_data_collection(text, status, language, has_all_data)
        if not result.is_valid:
            return result

    result = validate_completion(text, status)
    if not result.is_valid:
        logger.warning(f"Completion tag rejected for status {status.value}")
    return result


# ============================================================
# Text normalisation
# ============================================================

def normalize_single_question(text: str) -> str:
    """Keep everything up to the first question mark; make sure the reply ends with one."""
    compact = " ".join((text or "").split())
    if not compact:
        return ""
    if "?" in compact:
        return compact[:compact.index("?") + 1]
    return compact.rstrip(".!;: ") + "?"


def replace_literal_topic_title(text: str, topic_label: str, replacement: str) -> str:
    """Swap a verbatim topic title for a more natural cue (case-insensitive)."""
    if not text or not topic_label or not replacement:
        return text
    return re.sub(re.escape(topic_label), replacement, text, flags=re.IGNORECASE)


def strip_completion_tag(text: str) -> str:
    return ResponseCleaner.strip_completion_tag(text)


def ensure_completion_tag(text: str) -> str:
    clean = (text or "").strip()
    if ResponseCleaner.has_completion_tag(clean):
        return clean
    return f"{clean} {COMPLETION_TAG}".strip()
