"""
Answer signal scoring and topic turn budgets.

The signal score drives elastic turn allocation during SCAN: rich answers
earn extra turns on a topic, thin answers move the interview along.
"""
import re
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from models.schemas import InterviewPhase, TopicBudget, SupervisorStatus, UserTurnSignal
from utils.config import config

logger = logging.getLogger(__name__)


@dataclass
class SignalResult:
    """Signal score of one user answer."""
    score: float
    band: str  # high | medium | low
    snippet: str


def _patterns(*expressions: str):
    return [re.compile(e, re.IGNORECASE) for e in expressions]


# Keyword cues per language: cause/effect, example, impact
SIGNAL_CUES = {
    "it": {
        "cause_effect": _patterns(r'\bperch[eé]\b', r'\bquindi\b', r'\bdi conseguenza\b', r'\bha portato\b'),
        "example": _patterns(r'\bad esempio\b', r'\bper esempio\b', r'\bcaso\b', r'\bepisodio\b'),
        "impact": _patterns(r'\bdecision', r'\btempo\b', r'\bcosto\b', r'\bqualit[aà]\b', r'\bmercato\b'),
    },
    "en": {
        "cause_effect": _patterns(r'\bbecause\b', r'\btherefore\b', r'\bas a result\b', r'\bled to\b'),
        "example": _patterns(r'\bfor example\b', r'\bfor instance\b', r'\bcase\b', r'\bincident\b'),
        "impact": _patterns(r'\bdecision\b', r'\btime\b', r'\bcost\b', r'\bquality\b', r'\bmarket\b'),
    },
}

ENGAGEMENT_CUES = {
    "it": {
        "example": re.compile(r'\b(ad esempio|per esempio|ad es\.|esempio)\b', re.IGNORECASE),
        "specificity": re.compile(r'\b(srl|spa|s\.p\.a|snc|sas|societ[aà]|azienda|cliente|fornitore)\b', re.IGNORECASE),
        "emotion": re.compile(r'\b(adoro|odio|frustrante|entusiasmante|deluso|soddisfatto|preoccupato)\b', re.IGNORECASE),
    },
    "en": {
        "example": re.compile(r'\b(for example|for instance|e\.g\.)', re.IGNORECASE),
        "specificity": re.compile(r'\b(ltd|inc|llc|gmbh|company|client|customer|supplier)\b', re.IGNORECASE),
        "emotion": re.compile(r'\b(love|hate|frustrating|exciting|disappointed|satisfied|concerned)\b', re.IGNORECASE),
    },
}

NUMBER_PATTERN = re.compile(r'\b\d{1,4}\b')

HIGH_SIGNAL = 0.5
MEDIUM_SIGNAL = 0.25


def _lang(language: Optional[str]) -> str:
    return "it" if (language or "en").lower().startswith("it") else "en"


def _word_count(text: str) -> int:
    return len(text.split())


def extract_snippet(text: str, max_len: int = 120) -> str:
    """First sentence when it is long enough, otherwise the whole text, truncated with an ellipsis."""
    clean = " ".join((text or "").split())
    if not clean:
        return ""
    first_sentence = re.split(r'[.!?]', clean)[0].strip()
    snippet = first_sentence if len(first_sentence) >= 20 else clean
    return snippet[:max_len - 1] + "…" if len(snippet) > max_len else snippet


def signal_band(score: float) -> str:
    if score >= HIGH_SIGNAL:
        return "high"
    if score >= MEDIUM_SIGNAL:
        return "medium"
    return "low"


def compute_signal_score(message: str, language: str) -> SignalResult:
    """
    Score how much usable substance an answer carries.

    Args:
        message: The user's answer
        language: Conversation language

    Returns:
        SignalResult with the clamped score, its band and a snippet
    """
    text = (message or "").strip()
    if not text:
        return SignalResult(score=0.0, band="low", snippet="")

    cues = SIGNAL_CUES[_lang(language)]
    length_score = min(1.0, _word_count(text) / 55)
    has_cause_effect = 1 if any(p.search(text) for p in cues["cause_effect"]) else 0
    has_example = 1 if any(p.search(text) for p in cues["example"]) else 0
    has_impact = 1 if any(p.search(text) for p in cues["impact"]) else 0
    has_numbers = 1 if NUMBER_PATTERN.search(text) else 0

    score = (
        length_score * 0.42
        + has_cause_effect * 0.22
        + has_example * 0.18
        + has_impact * 0.12
        + has_numbers * 0.06
    )
    score = max(0.0, min(1.0, score))
    return SignalResult(score=score, band=signal_band(score), snippet=extract_snippet(text))


def compute_engagement_score(text: str, language: str) -> float:
    """0-1 engagement estimate from length, examples, numbers, specificity and emotion."""
    clean = (text or "").strip()
    if not clean:
        return 0.0

    cues = ENGAGEMENT_CUES[_lang(language)]
    score = (
        min(1.0, _word_count(clean) / 60) * 0.4
        + (0.2 if cues["example"].search(clean) else 0)
        + (0.15 if NUMBER_PATTERN.search(clean) else 0)
        + (0.15 if cues["specificity"].search(clean) else 0)
        + (0.1 if cues["emotion"].search(clean) else 0)
    )
    return max(0.0, min(1.0, score))


# ============================================================
# Topic budgets
# ============================================================

def compute_budget_action(band: str, turns_used: int, budget: TopicBudget) -> str:
    """
    Decide what to do on a SCAN topic after an answer.

    Args:
        band: Signal band of the answer
        turns_used: Completed turns on the topic, including the current one
        budget: The topic's budget

    Returns:
        "continue", "bonus" or "advance"
    """
    if turns_used < budget.min_turns:
        return "continue"
    if turns_used < budget.max_turns:
        return "advance" if band == "low" else "continue"
    if band == "high" and budget.bonus_turns_granted < config.interview.max_bonus_turns_per_topic:
        return "bonus"
    return "advance"


def steal_bonus_turn(current_topic_id: str, budgets: Dict[str, TopicBudget]) -> Optional[str]:
    """
    Take one max turn from a topic that has not been touched yet.

    Returns:
        The donor topic ID, or None when no topic can spare a turn
    """
    for topic_id, budget in budgets.items():
        if topic_id == current_topic_id:
            continue
        if budget.turns_used == 0 and budget.max_turns > budget.min_turns:
            budget.max_turns = max(1, budget.max_turns - 1)
            logger.info(f"Bonus turn for {current_topic_id} taken from {topic_id} (max_turns now {budget.max_turns})")
            return topic_id
    return None


def should_use_critical_model(
    phase: InterviewPhase,
    supervisor_status: Optional[SupervisorStatus],
    user_turn_signal: UserTurnSignal,
    user_message: Optional[str],
    language: str,
) -> Dict[str, object]:
    """
    Pick the stronger model for the turns that matter most.

    Returns:
        {"use_critical": bool, "reason": str}
    """
    if phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
        return {"use_critical": False, "reason": "not_topic_phase"}
    if user_turn_signal == UserTurnSignal.CLARIFICATION:
        return {"use_critical": True, "reason": "clarification_turn"}
    if user_turn_signal == UserTurnSignal.OFF_TOPIC_QUESTION:
        return {"use_critical": True, "reason": "scope_recovery_turn"}
    if supervisor_status in (SupervisorStatus.TRANSITION, SupervisorStatus.START_DEEP):
        return {"use_critical": True, "reason": "topic_transition_turn"}

    message = (user_message or "").strip()
    high_signal = _word_count(message) >= 35 or (bool(message) and compute_engagement_score(message, language) >= 0.28)
    if supervisor_status == SupervisorStatus.DEEPENING and high_signal:
        return {"use_critical": True, "reason": "high_signal_deepening"}

    return {"use_critical": False, "reason": "standard_turn"}
