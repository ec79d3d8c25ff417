"""
Lexical topic anchors.
Anchors are the content words of a topic (label + sub-goals) or of a message;
anchor roots (first 6 chars) give a cheap stem-like overlap test.
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

from models.schemas import TopicBlock

TOKEN_PATTERN = re.compile(r'[^\W_]+', re.UNICODE)

STOPWORDS_IT = {
    'il', 'lo', 'la', 'i', 'gli', 'le', 'un', 'uno', 'una',
    'di', 'a', 'da', 'in', 'su', 'per', 'con', 'tra', 'fra',
    'del', 'dello', 'della', 'dei', 'degli', 'delle',
    'al', 'allo', 'alla', 'ai', 'agli', 'alle',
    'che', 'e', 'o', 'ma', 'non', 'piu', 'meno', 'come',
    'quale', 'quali', 'questa', 'questo', 'questi', 'queste',
    'cosa', 'chi', 'dove', 'quando', 'perche', 'cioe',
}

STOPWORDS_EN = {
    'the', 'a', 'an', 'and', 'or', 'to', 'of', 'in', 'on', 'for', 'with', 'without',
    'by', 'at', 'from', 'is', 'are', 'be', 'this', 'that', 'these', 'those',
    'what', 'which', 'who', 'whom', 'where', 'when', 'why', 'how',
}

# Italian verbs, modals and discourse markers that never carry topic content
FUNCTIONAL_WORDS_IT = {
    'cerco', 'cerca', 'cerchi', 'trovo', 'trova', 'voglio', 'vuole', 'vuoi',
    'posso', 'puoi', 'deve', 'devo', 'dobbiamo', 'vado', 'andiamo', 'viene',
    'vengo', 'resto', 'rimane', 'rimango', 'sento', 'vedo', 'provo',
    'compro', 'servo', 'piace', 'manca', 'basta', 'sembra', 'succede',
    'stato', 'stata', 'fatto', 'fatta', 'detto', 'detta',
    'vorrei', 'dovrei', 'potrei', 'avrei', 'sarei',
    'ancora', 'anche', 'bene', 'male', 'molto', 'poco', 'quasi', 'sempre',
    'spesso', 'magari', 'forse', 'sicuro', 'proprio', 'tipo', 'tanto',
    'abbastanza', 'addirittura', 'comunque', 'invece', 'tuttavia', 'quindi',
    'pero', 'allora', 'certo', 'certa', 'ovvio', 'ovvia',
    'subito', 'prima', 'dopo', 'ormai', 'appena', 'niente', 'nulla',
}

GERUND_SUFFIX_IT = re.compile(r'(?:ando|endo)$', re.IGNORECASE)

GENERIC_TOPIC_ANCHORS_IT = {
    'tema', 'temi', 'aspetto', 'aspetti', 'punto', 'punti',
    'progetto', 'progetti', 'iniziativa', 'iniziative', 'azienda', 'aziende',
    'soluzione', 'soluzioni', 'impatto', 'valore', 'processo', 'processi',
    'sistema', 'sistemi', 'approccio', 'uso',
}

GENERIC_TOPIC_ANCHORS_EN = {
    'topic', 'topics', 'aspect', 'aspects', 'point', 'points',
    'project', 'projects', 'initiative', 'initiatives', 'company', 'companies',
    'solution', 'solutions', 'impact', 'value', 'process', 'processes',
    'system', 'systems', 'approach', 'usage', 'use',
}


@dataclass
class Anchors:
    anchors: List[str] = field(default_factory=list)
    anchor_roots: List[str] = field(default_factory=list)


def is_italian(language: Optional[str]) -> bool:
    return (language or 'en').lower().startswith('it')


def extract_tokens(text: str) -> List[str]:
    if not text:
        return []
    return TOKEN_PATTERN.findall(text)


def _unique(items: List[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def _to_anchors(tokens: List[str], limit: int) -> Anchors:
    limited = _unique(tokens)[:limit]
    return Anchors(anchors=limited, anchor_roots=[a[:6] for a in limited])


def build_topic_anchors(topic: Optional[TopicBlock], language: str) -> Anchors:
    """Content words of a topic label and its sub-goals (max 6)."""
    if topic is None:
        return Anchors()

    source = " ".join([topic.label, *topic.sub_goals])
    stopwords = STOPWORDS_IT if is_italian(language) else STOPWORDS_EN

    kept = []
    for token in extract_tokens(source):
        lower = token.lower()
        if len(lower) < 4:
            # Short tokens survive only as acronyms (CRM, KPI, AI)
            if len(token) >= 2 and re.fullmatch(r'[A-Z]+', token):
                kept.append(lower)
            continue
        if lower in stopwords:
            continue
        kept.append(lower)

    return _to_anchors(kept, 6)


def is_italian_functional_word(token: str) -> bool:
    return token in FUNCTIONAL_WORDS_IT or bool(GERUND_SUFFIX_IT.search(token))


def build_message_anchors(text: str, language: str) -> Anchors:
    """Content words of a free-text message (max 4)."""
    if not text:
        return Anchors()
    italian = is_italian(language)
    stopwords = STOPWORDS_IT if italian else STOPWORDS_EN

    kept = []
    for token in extract_tokens(text):
        lower = token.lower()
        if len(lower) < 4 or lower in stopwords:
            continue
        if italian and is_italian_functional_word(lower):
            continue
        kept.append(lower)

    return _to_anchors(kept, 4)


def response_mentions_anchors(response_text: str, anchor_roots: List[str]) -> bool:
    if not response_text or not anchor_roots:
        return False
    lower = response_text.lower()
    return any(root and root in lower for root in anchor_roots)


def has_any_anchor_overlap(source: List[str], target: List[str]) -> bool:
    if not source or not target:
        return False
    target_set = set(target)
    return any(root in target_set for root in source)


def get_generic_topic_anchors(language: str) -> Set[str]:
    return GENERIC_TOPIC_ANCHORS_IT if is_italian(language) else GENERIC_TOPIC_ANCHORS_EN


def build_natural_topic_cue(topic_label: str, language: str) -> str:
    """A short, non-literal way to refer to a topic in a question."""
    italian = is_italian(language)
    anchors = build_message_anchors((topic_label or "").strip(), language).anchors
    if not anchors:
        return 'questo tema' if italian else 'this topic'
    best = sorted(anchors, key=len, reverse=True)[0]
    return best if italian else f"this aspect about {best}"
