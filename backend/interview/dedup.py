"""
Repeated-question detection and bridge-opener bookkeeping.

A candidate reply is a duplicate when its primary (last) question matches a
question already asked, exactly or by token/character similarity.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from utils.cleaning import normalize_text
from utils.config import config
from interview.anchors import is_italian

STOPWORDS_IT = {
    'che', 'chi', 'come', 'con', 'del', 'della', 'delle', 'degli', 'dei', 'dello',
    'dopo', 'fare', 'fatto', 'fra', 'gli', 'hai', 'hanno', 'ho', 'il', 'in', 'la',
    'le', 'lo', 'ma', 'mi', 'nei', 'nel', 'nella', 'nelle', 'non', 'per', 'piu',
    'puoi', 'quale', 'quali', 'quello', 'questa', 'questo', 'se', 'si', 'sono',
    'su', 'sul', 'sulla', 'tra', 'tu', 'un', 'una', 'uno',
}

STOPWORDS_EN = {
    'about', 'an', 'and', 'are', 'as', 'at', 'can', 'could', 'did', 'do', 'does',
    'for', 'from', 'how', 'in', 'is', 'it', 'of', 'on', 'or', 'the', 'this', 'that',
    'to', 'was', 'were', 'what', 'when', 'where', 'which', 'why', 'with', 'would', 'you',
}

GENERIC_BRIDGE_OPENERS_IT = [
    re.compile(p, re.IGNORECASE) for p in (
        r'^capisco\b', r'^chiaro\b', r'^perfetto\b', r'^ottimo\b', r'^bene\b', r'^grazie\b',
        r'^molto interessante\b', r'^e un punto importante\b', r'^è un punto importante\b',
        r'^quello che dici\b',
    )
]

GENERIC_BRIDGE_OPENERS_EN = [
    re.compile(p, re.IGNORECASE) for p in (
        r'^i see\b', r'^got it\b', r'^perfect\b', r'^great\b', r'^thanks\b',
        r'^very interesting\b', r"^that'?s an important point\b",
    )
]


@dataclass
class DuplicateQuestionMatch:
    is_duplicate: bool = False
    matched_question: Optional[str] = None
    similarity: float = 0.0
    reason: str = "none"  # none | exact | high_similarity | same_prefix


def extract_questions(text: str) -> List[str]:
    """Every '?'-terminated clause, keeping only the last sentence before each '?'."""
    compact = re.sub(r'\s+', ' ', text or '').strip()
    if '?' not in compact:
        return []
    questions = []
    # The piece after the last '?' is not a question
    for piece in compact.split('?')[:-1]:
        piece = piece.strip()
        if not piece:
            continue
        parts = [p.strip() for p in re.split(r'[.!]', piece) if p.strip()]
        questions.append(f"{parts[-1] if parts else piece}?")
    return questions


def get_primary_question(text: str) -> str:
    questions = extract_questions(text)
    return questions[-1] if questions else ""


def informative_tokens(text: str, language: str) -> List[str]:
    stopwords = STOPWORDS_IT if is_italian(language) else STOPWORDS_EN
    return [t for t in normalize_text(text).split(' ') if len(t) >= 3 and t not in stopwords]


def token_jaccard(a: List[str], b: List[str]) -> float:
    if not a or not b:
        return 0.0
    a_set, b_set = set(a), set(b)
    union = len(a_set | b_set)
    return len(a_set & b_set) / union if union else 0.0


def _ngrams(text: str, n: int) -> List[str]:
    clean = normalize_text(text).replace(' ', '')
    if not clean:
        return []
    if len(clean) <= n:
        return [clean]
    return [clean[i:i + n] for i in range(len(clean) - n + 1)]


def dice_coefficient(a: str, b: str, n: int = 3) -> float:
    """Character n-gram Dice coefficient (multiset intersection)."""
    a_grams = _ngrams(a, n)
    b_grams = _ngrams(b, n)
    if not a_grams or not b_grams:
        return 0.0
    counts: Dict[str, int] = {}
    for gram in a_grams:
        counts[gram] = counts.get(gram, 0) + 1
    intersection = 0
    for gram in b_grams:
        if counts.get(gram, 0) > 0:
            intersection += 1
            counts[gram] -= 1
    return 2 * intersection / (len(a_grams) + len(b_grams))


def same_prefix(a: List[str], b: List[str], min_prefix_tokens: int = 4) -> bool:
    if len(a) < min_prefix_tokens or len(b) < min_prefix_tokens:
        return False
    return a[:min_prefix_tokens] == b[:min_prefix_tokens]


def find_duplicate_question_match(
    candidate_response: str,
    history_assistant_messages: List[str],
    language: str = "en",
) -> DuplicateQuestionMatch:
    """
    Compare the candidate's primary question against recent assistant questions.

    Args:
        candidate_response: The reply about to be sent
        history_assistant_messages: Previous assistant messages, oldest first
        language: Conversation language

    Returns:
        The best duplicate match (exact matches return immediately)
    """
    candidate_question = get_primary_question(candidate_response)
    candidate_norm = normalize_text(candidate_question)
    if not candidate_norm:
        return DuplicateQuestionMatch()

    candidate_tokens = informative_tokens(candidate_question, language)
    best = DuplicateQuestionMatch()

    history = (history_assistant_messages or [])[-config.interview.history_dedup_window:]
    for message in reversed(history):
        for question in extract_questions(message):
            question_norm = normalize_text(question)
            if not question_norm:
                continue
            if question_norm == candidate_norm:
                return DuplicateQuestionMatch(True, question, 1.0, "exact")

            tokens = informative_tokens(question, language)
            jaccard = token_jaccard(candidate_tokens, tokens)
            dice = dice_coefficient(candidate_norm, question_norm)
            min_len = min(len(candidate_tokens), len(tokens))

            high_similarity = min_len >= 5 and (jaccard >= 0.72 or dice >= 0.87)
            prefix_duplicate = min_len >= 5 and same_prefix(candidate_tokens, tokens) and jaccard >= 0.45

            if high_similarity or prefix_duplicate:
                score = max(jaccard, dice)
                if not best.is_duplicate or score > best.similarity:
                    best = DuplicateQuestionMatch(
                        True, question, score,
                        "same_prefix" if prefix_duplicate else "high_similarity",
                    )

    return best


# ============================================================
# Bridge openers
# ============================================================

def extract_bridge_stem(text: str) -> str:
    """Normalized first clause of a reply (text before the first sentence end or comma)."""
    compact = (text or "").strip()
    if not compact:
        return ""
    first_sentence = re.split(r'[?!.]', compact)[0] or compact
    return normalize_text(first_sentence.split(',')[0])


def collect_recent_bridge_stems(messages: List[Dict[str, str]], limit: int = 14) -> List[str]:
    """Distinct opening stems of recent assistant messages, newest first."""
    assistant = [m for m in messages if m.get("role") == "assistant"][-(limit * 2):]
    seen = set()
    stems = []
    for message in reversed(assistant):
        stem = extract_bridge_stem(message.get("content", ""))
        if not stem or stem in seen:
            continue
        seen.add(stem)
        stems.append(stem)
        if len(stems) >= limit:
            break
    return stems


def starts_with_generic_bridge_opener(text: str, language: str) -> bool:
    first_sentence = re.split(r'[?!.]', (text or "").strip())[0].strip()
    patterns = GENERIC_BRIDGE_OPENERS_IT if is_italian(language) else GENERIC_BRIDGE_OPENERS_EN
    return any(p.search(first_sentence) for p in patterns)
