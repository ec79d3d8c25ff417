"""
Response cleaning and input sanitizing utilities for LLM traffic.

ResponseCleaner normalizes interviewer output (reasoning blocks, stray markup,
multiple questions, JSON extraction). PromptSanitizer neutralizes prompt
injection attempts in user-provided text before it is interpolated into prompts.
"""
import re
import unicodedata
from typing import Dict, List, Optional, Tuple

COMPLETION_TAG = "INTERVIEW_COMPLETED"


class ResponseCleaner:
    """
    Cleans LLM responses before they are shown to the interviewee.
    """

    REASONING_BLOCK = re.compile(r'<think>.*?</think>', re.DOTALL | re.IGNORECASE)
    DANGLING_THINK_TAG = re.compile(r'</?\s*think\s*>', re.IGNORECASE)
    SPEAKER_PREFIX = re.compile(r'^\s*(?:assistant|interviewer|intervistatore|bot)\s*:\s*', re.IGNORECASE)
    COMPLETION_TAG_PATTERN = re.compile(r'\[?\s*' + COMPLETION_TAG + r'\s*\]?', re.IGNORECASE)

    @classmethod
    def strip_reasoning(cls, text: str) -> str:
        """Remove reasoning blocks and dangling think tags."""
        if not text:
            return ""
        cleaned = cls.REASONING_BLOCK.sub('', text)
        # A reasoning block that was never closed swallows the rest of the output
        if re.search(r'<think>', cleaned, re.IGNORECASE):
            cleaned = re.split(r'<think>', cleaned, flags=re.IGNORECASE)[0]
        cleaned = cls.DANGLING_THINK_TAG.sub('', cleaned)
        return cleaned

    @classmethod
    def clean_interviewer_response(cls, text: str) -> Tuple[str, bool]:
        """
        Full cleaning pipeline for interviewer responses.

        Returns:
            Tuple of (cleaned_text, is_valid)
        """
        if not text:
            return "", False

        cleaned = cls.strip_reasoning(text)
        cleaned = cls.SPEAKER_PREFIX.sub('', cleaned.strip())

        # Remove wrapping quotes the model sometimes adds
        if len(cleaned) >= 2 and cleaned[0] in '"“' and cleaned[-1] in '"”':
            cleaned = cleaned[1:-1]

        # Collapse whitespace but keep paragraph breaks readable
        cleaned = re.sub(r'[ \t]+', ' ', cleaned)
        cleaned = re.sub(r'\n{3,}', '\n\n', cleaned).strip()

        if len(cleaned) < 2:
            return "", False

        return cleaned, True

    @classmethod
    def has_completion_tag(cls, text: str) -> bool:
        return bool(text) and COMPLETION_TAG in text.upper()

    @classmethod
    def strip_completion_tag(cls, text: str) -> str:
        if not text:
            return ""
        return re.sub(r'\s{2,}', ' ', cls.COMPLETION_TAG_PATTERN.sub('', text)).strip()

    @classmethod
    def extract_questions(cls, text: str) -> List[str]:
        """Split text into question sentences (everything ending with '?')."""
        if not text:
            return []
        questions = []
        for match in re.findall(r'[^.!?\n]*\?', text):
            match = match.strip()
            if match and len(match) > 1:
                questions.append(match)
        return questions

    @classmethod
    def extract_first_question(cls, text: str) -> Optional[str]:
        """Extract the first question from response."""
        for question in cls.extract_questions(text):
            if len(question.split()) >= 3:
                return question
        return None

    @classmethod
    def clean_json_response(cls, text: str) -> str:
        """Clean response and extract JSON content."""
        cleaned = cls.strip_reasoning(text or "")
        cleaned = re.sub(r'```(?:json)?', '', cleaned)

        # Remove ALL content before the first {
        cleaned = re.sub(r'^.*?(?=\{)', '', cleaned, flags=re.DOTALL)

        # Find JSON object
        json_match = re.search(r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}', cleaned, re.DOTALL)
        if json_match:
            return json_match.group()

        return "{}"


class PromptSanitizer:
    """
    Neutralizes prompt injection attempts in user text.
    """

    INJECTION_PATTERNS = [
        # Direct instruction overrides
        re.compile(r'(?:ignore|disregard|forget|override)\s+(?:all\s+)?(?:previous|prior|above|earlier)\s+(?:instructions?|prompts?|rules?|context)', re.IGNORECASE),
        # Role-play / identity swaps
        re.compile(r'you\s+are\s+now\s+(?:a|an|the)\b', re.IGNORECASE),
        re.compile(r'act\s+as\s+(?:a|an|if)\b', re.IGNORECASE),
        re.compile(r'pretend\s+(?:you\s+are|to\s+be)\b', re.IGNORECASE),
        re.compile(r'from\s+now\s+on\s+you\s+(?:are|will|must|should)\b', re.IGNORECASE),
        re.compile(r'new\s+instructions?:\s*', re.IGNORECASE),
        re.compile(r'system\s*:\s*', re.IGNORECASE),
        # Prompt extraction
        re.compile(r'repeat\s+(?:your|the|all)\s+(?:instructions?|prompts?|system\s+message)', re.IGNORECASE),
        re.compile(r'show\s+(?:me\s+)?(?:your|the)\s+(?:instructions?|prompts?|system\s+message|rules)', re.IGNORECASE),
        re.compile(r'what\s+(?:are|were)\s+your\s+(?:instructions?|prompts?|system\s+message|rules)', re.IGNORECASE),
        re.compile(r'(?:output|print)\s+(?:your|the)\s+(?:instructions?|prompts?|system)', re.IGNORECASE),
        # Block delimiters
        re.compile(r'```\s*(?:system|assistant|instructions?)\b', re.IGNORECASE),
        re.compile(r'\[SYSTEM\]', re.IGNORECASE),
        re.compile(r'\[INST\]', re.IGNORECASE),
        re.compile(r'<<\s*SYS\s*>>', re.IGNORECASE),
        re.compile(r'<\|im_start\|>', re.IGNORECASE),
    ]

    # Keeps \n, \t and \r
    CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')
    ZERO_WIDTH = re.compile('[\u200b\u200c\u200d\u200e\u200f\ufeff]')

    @classmethod
    def sanitize(cls, value, max_length: int = 4000) -> str:
        """
        Sanitize a single end-user input before prompt interpolation.

        Args:
            value: Raw user value (non-strings are converted)
            max_length: Truncation length; an ellipsis marks truncated text

        Returns:
            Sanitized text
        """
        if value is None:
            return ""
        cleaned = value if isinstance(value, str) else str(value)
        cleaned = cls.CONTROL_CHARS.sub('', cleaned)
        cleaned = cls.ZERO_WIDTH.sub('', cleaned)

        for pattern in cls.INJECTION_PATTERNS:
            cleaned = pattern.sub('[FILTERED]', cleaned)

        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length] + '…'

        return cleaned.strip()

    @classmethod
    def sanitize_transcript(
        cls,
        messages: List[Dict[str, str]],
        max_total_length: int = 8000,
        max_message_length: int = 2000,
    ) -> str:
        """Format messages as 'ROLE: content' lines, stopping at the length budget."""
        lines = []
        total = 0
        for msg in messages:
            role = str(msg.get("role", "")).upper()
            content = cls.sanitize(msg.get("content", ""), max_message_length)
            line = f"{role}: {content}"
            if total + len(line) > max_total_length:
                break
            lines.append(line)
            total += len(line) + 1
        return "\n".join(lines)

    @classmethod
    def sanitize_config(cls, value, max_length: int = 1000) -> str:
        """Lighter sanitizing for admin-provided bot configuration."""
        if value is None:
            return ""
        cleaned = value if isinstance(value, str) else str(value)
        cleaned = cls.CONTROL_CHARS.sub('', cleaned)
        cleaned = cls.ZERO_WIDTH.sub('', cleaned)
        return cleaned[:max_length].strip()


def normalize_text(text: str) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    without_accents = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    without_punct = re.sub(r"[^\w\s]", " ", without_accents)
    return re.sub(r"\s+", " ", without_punct).strip()


def count_words(text: str) -> int:
    return len([w for w in re.split(r"\s+", (text or "").strip()) if w])


def sanitize_user_snippet(text: str, max_words: int = 10) -> str:
    """First words of a user message with punctuation removed, for paraphrase hints."""
    compact = re.sub(r"\s+", " ", text or "").strip()
    if not compact:
        return ""
    without_punct = re.sub(r"[?!.,;:()\[\]{}\"“”'‘’`]", "", compact).strip()
    return " ".join(without_punct.split()[:max_words])
