"""
User-turn classification: clarification and off-topic signals, extension and
consent intents, explicit closure requests and contact field extraction.

Deterministic checks run first; the LLM is only consulted when they are
inconclusive, and every LLM failure degrades to a neutral result.
"""
import re
import logging
from typing import Dict, List, Optional, Tuple

from llm.client import llm_client
from llm.prompts import Prompts
from models.schemas import (
    CandidateField,
    InterviewPhase,
    IntentContext,
    TopicBlock,
    UserIntent,
    UserTurnSignal,
)
from interview.anchors import (
    build_message_anchors,
    build_topic_anchors,
    get_generic_topic_anchors,
    has_any_anchor_overlap,
    is_italian,
)
from utils.cleaning import PromptSanitizer, count_words

logger = logging.getLogger(__name__)


EXTENSION_OFFER_IT = re.compile(
    r"\b(ti va di continuare|vuoi continuare|qualche minuto in più|hai ancora qualche minuto|hai disponibilità"
    r"|estendere(?:\s+l')?\s*intervista|proseguire|ulteriori? domande? di approfondimento)\b",
    re.IGNORECASE,
)
EXTENSION_OFFER_EN = re.compile(
    r"\b(would you like to continue|do you want to continue|few more minutes|are you available"
    r"|extend the interview|continue for a few more minutes|follow-up questions|deep-dive questions)\b",
    re.IGNORECASE,
)

CLARIFICATION_GENERIC = re.compile(r'^(boh|eh|mh|hmm|\?+|ok\??)$', re.IGNORECASE)
CLARIFICATION_IT = re.compile(
    r"\b(non capisco|non ho capito|non mi [eè] chiaro|puoi chiarire|puoi spiegare meglio|cosa intendi"
    r"|intendi dire|ti riferisci|in che senso|parli di|quale dei due)\b",
    re.IGNORECASE,
)
CLARIFICATION_EN = re.compile(
    r"\b(i don't understand|i do not understand|not clear|can you clarify|can you explain|what do you mean"
    r"|do you mean|are you referring to|which one)\b",
    re.IGNORECASE,
)

QUESTION_STARTERS_IT = re.compile(r'^(come|cosa|perch[eé]|quando|dove|chi|quale|quali|quanto|in che modo|mi spieghi|puoi spiegare)', re.IGNORECASE)
QUESTION_STARTERS_EN = re.compile(r'^(how|what|why|when|where|who|which|can you|could you|would you|please explain)', re.IGNORECASE)

OFF_TOPIC_IT = re.compile(
    r'\b(che ore|che tempo|meteo|oroscopo|barzelletta|storia divertente|chi sei|come stai|quanti anni hai|dove vivi'
    r'|che modello usi|chatgpt|openai|calcio|sport|borsa|bitcoin|criptovalute|ricetta)\b',
    re.IGNORECASE,
)
OFF_TOPIC_EN = re.compile(
    r'\b(what time|weather|horoscope|joke|funny story|who are you|how are you|how old are you|where do you live'
    r'|what model do you use|chatgpt|openai|football|soccer|sports|stock market|bitcoin|crypto|recipe)\b',
    re.IGNORECASE,
)
META_QUESTION_IT = re.compile(r'\b(tu|ti|te|sei|puoi)\b', re.IGNORECASE)
META_QUESTION_EN = re.compile(r'\b(you|your|are you|can you)\b', re.IGNORECASE)

CLARIFICATION_HANDLED_IT = re.compile(r'\b(per chiarire|intendo|mi riferivo|in altre parole|pi[uù] chiaramente|cio[eè]|parlavo di)\b', re.IGNORECASE)
CLARIFICATION_HANDLED_EN = re.compile(r'\b(to clarify|i meant|i was referring to|in other words|more clearly|that is|i was talking about)\b', re.IGNORECASE)
SCOPE_HANDLED_IT = re.compile(r"\b(fuori(?:\s+dallo)?\s+scopo|esula dallo scopo|nell'ambito di questa intervista|restiamo su|torniamo a|per questa intervista)\b", re.IGNORECASE)
SCOPE_HANDLED_EN = re.compile(r"\b(out of scope|outside the scope|for this interview|let's stay on|let's get back to|within this interview)\b", re.IGNORECASE)

# Deterministic extension-offer answers
DEEP_OFFER_REFUSE = {
    'no', 'no grazie', 'direi di no', 'anche no', 'non ora',
    'meglio di no', 'preferisco di no', 'stop', 'basta',
    'no thanks', 'no thank you', 'not now', 'not really', "i'd rather not",
}
DEEP_OFFER_ACCEPT = {
    'si', 'sì', 'yes', 'ok', 'va bene', 'certo', 'volontieri',
    'continuiamo', 'proseguiamo', 'andiamo avanti',
    'sure', 'yes please', 'of course', "let's continue", 'why not',
}
DEEP_OFFER_REFUSE_PATTERN = re.compile(
    r"\b(non voglio continuare|non continuare|abbiamo gia parlato troppo|chiudiamo qui|fermiamoci|preferisco chiudere"
    r"|don't want to continue|let's stop|i have to go|stop here|let's wrap up)\b",
    re.IGNORECASE,
)
DEEP_OFFER_ACCEPT_PATTERN = re.compile(
    r"\b(voglio continuare|possiamo continuare|continuiamo|proseguiamo|andiamo avanti|estendiamo"
    r"|happy to continue|we can continue|let's continue|keep going|go on)\b",
    re.IGNORECASE,
)

CONSENT_REFUSE = {'no', 'no grazie', 'preferisco di no', 'meglio di no', 'no thanks', 'no thank you', "i'd rather not", 'not now'}
CONSENT_ACCEPT = {'si', 'sì', 'yes', 'ok', 'va bene', 'certo', 'sure', 'of course', 'yes please', 'volentieri', 'volontieri'}

EXPLICIT_CLOSURE_PATTERN = re.compile(
    r"\b(voglio (?:finire|terminare|smettere|chiudere)|possiamo (?:finire|chiudere)|chiudiamo qui|fermiamoci qui|basta cos[iì]"
    r"|i want to (?:stop|end|finish|quit)|can we (?:stop|end|finish)|let's (?:stop|end|finish)|stop the interview|end the interview"
    r"|i have to go|i need to go)\b",
    re.IGNORECASE,
)

SKIP_PATTERN = re.compile(
    r"\b(preferisco non (?:dirlo|rispondere|darlo)|passa oltre|non ce l'ho|non voglio darlo"
    r"|prefer not to (?:say|share)|rather not (?:say|share)|i don't have one|skip this(?: one)?)\b",
    re.IGNORECASE,
)
# Bare keywords only count as the whole reply: "Skip Johnson" is a name
SKIP_WORD_PATTERN = re.compile(
    r"^\s*(?:skip|pass|salta|passo|next)(?:\s+(?:it|pure|oltre|please|grazie|thanks))?\s*[.!]*\s*$",
    re.IGNORECASE,
)

EMAIL_PATTERN = re.compile(r'[\w.+-]+@[\w-]+(?:\.[\w-]+)+')
PHONE_PATTERN = re.compile(r'\+?\d[\d\s().-]{7,}\d')
URL_PATTERN = re.compile(r'(?:https?://)?(?:www\.)?[\w-]+(?:\.[\w-]+)+(?:/[^\s]*)?', re.IGNORECASE)

FIELD_DESCRIPTIONS: Dict[str, Tuple[str, str]] = {
    "name": ("Name of the person (can be first name only, or full name)", "Nome della persona (può essere solo nome, o nome e cognome)"),
    "fullName": ("Name of the person (can be first name only, or full name)", "Nome della persona (può essere solo nome, o nome e cognome)"),
    "email": ("Email address", "Indirizzo email"),
    "phone": ("Phone number", "Numero di telefono"),
    "company": ("Company or organization name", "Nome dell'azienda o organizzazione"),
    "linkedin": ("LinkedIn or social profile URL", "URL del profilo LinkedIn o social"),
    "portfolio": ("Portfolio or personal website URL", "URL del portfolio o sito web personale"),
    "role": ("Job role or position", "Ruolo o posizione lavorativa"),
    "location": ("City or location", "Città o località"),
    "budget": ("Available budget", "Budget disponibile"),
    "availability": ("Time availability", "Disponibilità temporale"),
}


# ============================================================
# Deterministic signals
# ============================================================

def normalize_intent_text(message: str) -> str:
    text = (message or "").strip().lower()
    text = re.sub(r'[!?.,;:()\[\]"]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def is_extension_offer_question(message: str, language: str) -> bool:
    text = (message or "").strip().lower()
    if not text or '?' not in text:
        return False
    pattern = EXTENSION_OFFER_IT if is_italian(language) else EXTENSION_OFFER_EN
    return bool(pattern.search(text))


def is_clarification_signal(message: str, language: str) -> bool:
    """The user is asking what the previous question meant."""
    text = (message or "").strip().lower()
    if not text:
        return False
    if CLARIFICATION_GENERIC.match(text):
        return True
    pattern = CLARIFICATION_IT if is_italian(language) else CLARIFICATION_EN
    if pattern.search(text):
        return True
    # Short either/or question ("price or quality?")
    words = text.split()
    return '?' in text and len(words) <= 12 and bool(re.search(r'\b(o|or)\b', text))


def is_likely_user_question(message: str, language: str) -> bool:
    text = (message or "").strip().lower()
    if not text:
        return False
    if '?' in text:
        return True
    pattern = QUESTION_STARTERS_IT if is_italian(language) else QUESTION_STARTERS_EN
    return bool(pattern.match(text))


def detect_user_turn_signal(
    user_message: str,
    language: str,
    phase: InterviewPhase,
    current_topic: Optional[TopicBlock],
    target_topic: Optional[TopicBlock],
    interview_objective: str = "",
) -> UserTurnSignal:
    """
    Classify the user turn in topic phases.

    Returns:
        CLARIFICATION, OFF_TOPIC_QUESTION, or NONE for a regular answer
    """
    user_message = (user_message or "").strip()
    if not user_message or phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
        return UserTurnSignal.NONE

    if is_clarification_signal(user_message, language):
        return UserTurnSignal.CLARIFICATION

    if not is_likely_user_question(user_message, language):
        return UserTurnSignal.NONE

    user_roots = build_message_anchors(user_message, language).anchor_roots
    overlaps_topic = (
        has_any_anchor_overlap(user_roots, build_topic_anchors(current_topic, language).anchor_roots)
        or has_any_anchor_overlap(user_roots, build_topic_anchors(target_topic, language).anchor_roots)
        or has_any_anchor_overlap(user_roots, build_message_anchors(interview_objective, language).anchor_roots)
    )
    if overlaps_topic:
        return UserTurnSignal.NONE

    italian = is_italian(language)
    if (OFF_TOPIC_IT if italian else OFF_TOPIC_EN).search(user_message):
        return UserTurnSignal.OFF_TOPIC_QUESTION

    meta = META_QUESTION_IT if italian else META_QUESTION_EN
    if count_words(user_message) <= 10 and meta.search(user_message):
        return UserTurnSignal.OFF_TOPIC_QUESTION

    return UserTurnSignal.NONE


def is_clarification_handled_response(response: str, language: str) -> bool:
    pattern = CLARIFICATION_HANDLED_IT if is_italian(language) else CLARIFICATION_HANDLED_EN
    return bool(pattern.search(response or "")) and '?' in (response or "")


def is_scope_boundary_handled_response(response: str, language: str) -> bool:
    pattern = SCOPE_HANDLED_IT if is_italian(language) else SCOPE_HANDLED_EN
    return bool(pattern.search(response or "")) and '?' in (response or "")


def has_meaningful_topic_overlap(
    user_message: str,
    next_topic: Optional[TopicBlock],
    language: str,
) -> Tuple[bool, List[str]]:
    """
    Check whether the user already touched the next topic, ignoring generic anchors.

    Returns:
        Tuple of (has_signal, overlapping words)
    """
    user_message = (user_message or "").strip()
    if not user_message or next_topic is None or is_clarification_signal(user_message, language):
        return False, []

    generic = get_generic_topic_anchors(language)
    user_anchors = [a for a in build_message_anchors(user_message, language).anchors if a not in generic]
    topic_anchors = [a for a in build_topic_anchors(next_topic, language).anchors if a not in generic]

    overlaps: List[str] = []
    for u in user_anchors:
        for t in topic_anchors:
            if u == t:
                match = u
            elif len(u) >= 8 and len(t) >= 8 and (u.startswith(t[:8]) or t.startswith(u[:8])):
                match = u if len(u) <= len(t) else t
            else:
                continue
            if match not in overlaps:
                overlaps.append(match)
    if overlaps:
        return True, overlaps

    lower_user = user_message.lower()
    label_tokens = [
        token for token in re.split(r'[\W_]+', next_topic.label.lower())
        if len(token) >= 4 and token not in generic
    ]
    hits = [token for token in label_tokens if token in lower_user]
    return bool(hits), hits


def is_usable_bridge_snippet(snippet: str, language: str) -> bool:
    """A user snippet is worth bridging from when it carries real content."""
    clean = re.sub(r'\s+', ' ', snippet or "").strip()
    if not clean or is_clarification_signal(clean, language):
        return False
    if count_words(clean) < 3:
        return False
    low_signal = (
        re.compile(r"\b(te l['’]?ho gi[aà] detto|non capisco|preferisco non dirlo|boh|ok|s[iì]|no)\b", re.IGNORECASE)
        if is_italian(language)
        else re.compile(r"\b(i already told you|i don.t understand|prefer not to say|ok|yes|no)\b", re.IGNORECASE)
    )
    return not low_signal.search(clean)


def detect_deep_offer_intent_fast_path(message: str, language: str) -> Optional[UserIntent]:
    """Deterministic answer to the extension offer, or None when inconclusive."""
    if is_clarification_signal(message, language):
        return UserIntent.NEUTRAL

    normalized = normalize_intent_text(message)
    if normalized in DEEP_OFFER_REFUSE:
        return UserIntent.REFUSE
    if normalized in DEEP_OFFER_ACCEPT:
        return UserIntent.ACCEPT
    if DEEP_OFFER_REFUSE_PATTERN.search(normalized):
        return UserIntent.REFUSE
    if DEEP_OFFER_ACCEPT_PATTERN.search(normalized):
        return UserIntent.ACCEPT
    return None


def detect_consent_intent_fast_path(message: str) -> Optional[UserIntent]:
    normalized = normalize_intent_text(message)
    if normalized in CONSENT_REFUSE:
        return UserIntent.REFUSE
    if normalized in CONSENT_ACCEPT:
        return UserIntent.ACCEPT
    # An email or phone number given directly is an implicit yes
    if EMAIL_PATTERN.search(message or "") or PHONE_PATTERN.search(message or ""):
        return UserIntent.ACCEPT
    return None


def detect_explicit_closure_fast_path(message: str) -> bool:
    return bool(EXPLICIT_CLOSURE_PATTERN.search(message or ""))


def is_skip_request(message: str) -> bool:
    text = message or ""
    return bool(SKIP_WORD_PATTERN.match(text) or SKIP_PATTERN.search(text))


def extract_field_deterministic(field_type: str, message: str) -> Optional[str]:
    """Pattern-based extraction for structured field types."""
    text = message or ""
    if field_type == "email":
        match = EMAIL_PATTERN.search(text)
        return match.group().rstrip('.') if match else None
    if field_type == "phone":
        match = PHONE_PATTERN.search(text)
        return re.sub(r'\s+', ' ', match.group()).strip() if match else None
    if field_type == "url":
        for match in URL_PATTERN.finditer(text):
            value = match.group().rstrip('.,')
            if '@' not in text[max(0, match.start() - 1):match.end()]:
                return value
    return None


# ============================================================
# LLM-backed classification
# ============================================================

class IntentClassifier:
    """
    LLM-backed intent and field classification with deterministic fast paths.
    """

    def __init__(self, llm=None):
        self.llm = llm or llm_client

    def check_user_intent(self, message: str, language: str, context: IntentContext) -> UserIntent:
        """
        Classify a reply as ACCEPT / REFUSE / NEUTRAL for a yes/no context.

        Args:
            message: The user message
            language: Conversation language
            context: Which yes/no question the user is answering

        Returns:
            The detected intent (NEUTRAL on failure)
        """
        if context == IntentContext.DEEP_OFFER:
            fast = detect_deep_offer_intent_fast_path(message, language)
            if fast is not None:
                return fast
        elif context == IntentContext.CONSENT:
            fast = detect_consent_intent_fast_path(message)
            if fast is not None:
                return fast

        prompt = Prompts.classify_user_intent(PromptSanitizer.sanitize(message), language, context.value)
        result, is_valid = self.llm.generate_json(prompt, max_tokens=120, temperature=0.0)
        if not is_valid or not result:
            logger.warning(f"Intent check failed for context {context.value}, defaulting to NEUTRAL")
            return UserIntent.NEUTRAL

        try:
            return UserIntent(str(result.get("intent", "NEUTRAL")).upper())
        except ValueError:
            return UserIntent.NEUTRAL

    def detect_explicit_closure_intent(self, message: str, language: str) -> Dict[str, object]:
        """
        Strictly detect an explicit request to end the interview now.

        Returns:
            Dict with wants_to_conclude, confidence and reason
        """
        text = (message or "").strip()
        if not text:
            return {"wants_to_conclude": False, "confidence": "low", "reason": "empty_message"}
        if detect_explicit_closure_fast_path(text):
            return {"wants_to_conclude": True, "confidence": "high", "reason": "explicit_stop_phrase"}

        # Long content answers are never closure requests
        if count_words(text) > 25:
            return {"wants_to_conclude": False, "confidence": "high", "reason": "content_answer"}

        prompt = Prompts.classify_closure_intent(PromptSanitizer.sanitize(text), language)
        result, is_valid = self.llm.generate_json(prompt, max_tokens=120, temperature=0.0)
        if not is_valid or not result:
            return {"wants_to_conclude": False, "confidence": "low", "reason": "detection_error"}

        return {
            "wants_to_conclude": bool(result.get("wants_to_conclude", False)),
            "confidence": str(result.get("confidence", "low")),
            "reason": str(result.get("reason", "")),
        }

    def extract_field_from_message(
        self,
        field: CandidateField,
        message: str,
        language: str,
    ) -> Tuple[Optional[str], str]:
        """
        Extract a single candidate field value from a free-text reply.

        Returns:
            Tuple of (value or None, confidence: high | low | none)
        """
        deterministic = extract_field_deterministic(field.type, message)
        if deterministic:
            return deterministic, "high"

        descriptions = FIELD_DESCRIPTIONS.get(field.id)
        if descriptions:
            description = descriptions[1] if is_italian(language) else descriptions[0]
        else:
            description = field.label or field.id

        prompt = Prompts.extract_field(field.id, description, PromptSanitizer.sanitize(message, 1000))
        result, is_valid = self.llm.generate_json(prompt, max_tokens=120, temperature=0.0)
        if is_valid and result:
            value = result.get("extracted_value")
            confidence = str(result.get("confidence", "none"))
            if value:
                return str(value).strip(), confidence if confidence in ("high", "low") else "low"
            return None, "none"

        logger.warning(f"Field extraction failed for '{field.id}', using heuristic")
        return self._heuristic_field(field, message)

    def _heuristic_field(self, field: CandidateField, message: str) -> Tuple[Optional[str], str]:
        text = (message or "").strip().strip('.!')
        if not text or is_skip_request(text):
            return None, "none"
        if field.type == "name":
            words = text.split()
            if 1 <= len(words) <= 4 and not any(ch.isdigit() for ch in text):
                return text, "low"
            return None, "none"
        if field.type == "text" and count_words(text) <= 12:
            return text, "low"
        return None, "none"


# Global classifier instance
intent_classifier = IntentClassifier()
