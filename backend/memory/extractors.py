"""
Fact extraction utilities for interview answers.
Extracts numbers, roles, organisations, tools, pain points and goals,
and estimates user fatigue and communication tone.
"""
import re
import logging
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, asdict, field
from datetime import datetime

logger = logging.getLogger(__name__)

EMOJI_PATTERN = re.compile('[\U0001F300-\U0001FAFF\u2600-\u27BF]')


@dataclass
class ExtractedFact:
    """Represents an extracted fact from an interview answer."""
    type: str  # metric, role, organisation, tool, pain_point, goal
    content: str
    confidence: float  # 0.0 to 1.0
    topic_label: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractionResult:
    facts: List[ExtractedFact] = field(default_factory=list)
    fatigue_score: float = 0.0
    tone: Optional[str] = None


class FactExtractor:
    """
    Extracts structured facts from interview answers.
    """

    # Common business tools
    TOOL_KEYWORDS = {
        'excel', 'google sheets', 'salesforce', 'hubspot', 'sap', 'oracle', 'zoho',
        'slack', 'teams', 'trello', 'jira', 'asana', 'notion', 'monday',
        'shopify', 'wordpress', 'woocommerce', 'stripe', 'quickbooks',
        'crm', 'erp', 'chatgpt', 'power bi', 'tableau', 'google analytics',
        'linkedin', 'instagram', 'facebook', 'tiktok', 'whatsapp',
    }

    METRIC_PATTERN = re.compile(
        r'\b\d+(?:[.,]\d+)?\s*(?:%|percent|per cento|k|mila|million[ei]?|€|euro|\$|dollars?|'
        r'clients?|clienti|customers?|employees|dipendenti|people|persone|hours?|ore|days?|giorni|'
        r'weeks?|settimane|months?|mesi|years?|anni)\b',
        re.IGNORECASE,
    )

    ROLE_PATTERNS = [
        r"\b(?:i am|i'm|i work as|as (?:a|an|the))\s+(?:a |an |the )?((?:head of |chief )?[a-z]+(?: [a-z]+)?(?: manager| director| officer| lead| owner| founder| consultant| engineer| designer)?)\b",
        r"\b(?:sono|lavoro come|faccio (?:il|la|l'))\s+(?:il |la |un |una |l')?([a-zà-ù]+(?: [a-zà-ù]+)?)\b",
    ]

    ORGANISATION_PATTERNS = [
        r"\b(?:at|for|with|founded|run)\s+([A-Z][\w&.-]+(?:\s+(?:[A-Z][\w&.-]+|S\.?p\.?A\.?|srl|Srl|Ltd|Inc|LLC))*)",
        r"\b(?:presso|per|con|in)\s+([A-Z][\w&.-]+(?:\s+(?:[A-Z][\w&.-]+|S\.?p\.?A\.?|srl|Srl))*)",
    ]

    PAIN_INDICATORS = [
        'problem', 'issue', 'difficult', 'struggle', 'frustrat', 'bottleneck', 'slow', 'expensive',
        'waste', 'lack of', 'missing', 'hard to',
        'problema', 'difficolt', 'fatica', 'lent', 'costoso', 'spreco', 'manca', 'mancanza', 'complicat',
    ]

    GOAL_INDICATORS = [
        'want to', 'would like to', 'goal', 'aim to', 'plan to', 'hope to', 'objective', 'need to',
        'vorrei', 'vogliamo', 'obiettivo', 'puntiamo', 'speriamo', 'abbiamo bisogno', 'dobbiamo',
    ]

    # Short, dismissive or impatient replies
    FATIGUE_MARKERS = [
        'boh', 'non so', "i don't know", 'dunno', 'whatever', 'no idea', 'niente', 'nothing',
        'same as before', 'come prima', 'già detto', 'already said', 'basta', 'enough',
        'quanto manca', 'how much longer', 'how long', 'ok', 'si', 'sì', 'yes', 'no',
    ]

    FORMAL_MARKERS = ['lei ', 'gentile', 'cordiali', 'regards', 'dear', 'sincerely', 'pertanto', 'therefore']
    CASUAL_MARKERS = ['ciao', 'hey', 'lol', 'haha', 'tipo', 'cmq', 'gonna', 'wanna', 'yeah', 'yep', '!']

    def extract_facts(self, message: str, topic_label: str = "") -> ExtractionResult:
        """
        Extract facts from an interview answer.

        Args:
            message: The user's answer
            topic_label: Label of the topic being discussed

        Returns:
            ExtractionResult with facts, a fatigue score and a tone guess
        """
        text = (message or "").strip()
        if not text:
            return ExtractionResult(fatigue_score=1.0, tone="brief")

        lower = text.lower()
        facts: List[ExtractedFact] = []
        facts.extend(self._extract_metrics(text, topic_label))
        facts.extend(self._extract_roles(lower, topic_label))
        facts.extend(self._extract_organisations(text, topic_label))
        facts.extend(self._extract_tools(lower, topic_label))
        facts.extend(self._extract_sentences(text, topic_label))

        result = ExtractionResult(
            facts=self._dedupe(facts),
            fatigue_score=self.estimate_fatigue(text),
            tone=self.detect_tone(text),
        )
        logger.info(f"Extracted {len(result.facts)} facts (fatigue={result.fatigue_score:.2f}, tone={result.tone})")
        return result

    def _extract_metrics(self, text: str, topic_label: str) -> List[ExtractedFact]:
        """Quantities with a unit (40%, 12 clients, 3 months)."""
        facts = []
        for match in self.METRIC_PATTERN.finditer(text):
            start = max(0, match.start() - 40)
            window = text[start:match.end() + 20].strip()
            facts.append(ExtractedFact(
                type='metric',
                content=window,
                confidence=0.8,
                topic_label=topic_label,
            ))
        return facts

    def _extract_roles(self, lower: str, topic_label: str) -> List[ExtractedFact]:
        facts = []
        for pattern in self.ROLE_PATTERNS:
            for match in re.findall(pattern, lower):
                role = match.strip()
                if len(role) > 2:
                    facts.append(ExtractedFact(type='role', content=role, confidence=0.5, topic_label=topic_label))
        return facts

    def _extract_organisations(self, text: str, topic_label: str) -> List[ExtractedFact]:
        facts = []
        for pattern in self.ORGANISATION_PATTERNS:
            for match in re.findall(pattern, text):
                name = match.strip(" .,")
                if len(name) > 1:
                    facts.append(ExtractedFact(
                        type='organisation',
                        content=name,
                        confidence=0.55,
                        topic_label=topic_label,
                    ))
        return facts

    def _extract_tools(self, lower: str, topic_label: str) -> List[ExtractedFact]:
        """Extract mentioned tools."""
        facts = []
        for tool in sorted(self.TOOL_KEYWORDS):
            if re.search(rf'\b{re.escape(tool)}\b', lower):
                facts.append(ExtractedFact(type='tool', content=tool, confidence=0.9, topic_label=topic_label))
        return facts

    def _extract_sentences(self, text: str, topic_label: str) -> List[ExtractedFact]:
        """Whole sentences that state a pain point or a goal."""
        facts = []
        for sentence in re.split(r'(?<=[.!?])\s+', text):
            sentence = sentence.strip()
            if len(sentence.split()) < 4:
                continue
            lower = sentence.lower()
            if any(indicator in lower for indicator in self.PAIN_INDICATORS):
                facts.append(ExtractedFact(
                    type='pain_point',
                    content=sentence[:200],
                    confidence=0.7,
                    topic_label=topic_label,
                ))
            elif any(indicator in lower for indicator in self.GOAL_INDICATORS):
                facts.append(ExtractedFact(type='goal', content=sentence[:200], confidence=0.7, topic_label=topic_label))
        return facts

    @staticmethod
    def _dedupe(facts: List[ExtractedFact]) -> List[ExtractedFact]:
        seen = set()
        unique = []
        for fact in facts:
            key = (fact.type, fact.content.lower())
            if key not in seen:
                seen.add(key)
                unique.append(fact)
        return unique

    def estimate_fatigue(self, text: str) -> float:
        """0.0 (engaged) to 1.0 (tired) for a single message."""
        lower = text.lower().strip(" .!?")
        words = len(text.split())
        score = 0.0
        if words <= 2:
            score += 0.5
        elif words <= 5:
            score += 0.3
        elif words >= 25:
            score -= 0.2
        if lower in self.FATIGUE_MARKERS or any(m in lower for m in self.FATIGUE_MARKERS if len(m) > 4):
            score += 0.4
        return max(0.0, min(1.0, score))

    def detect_tone(self, text: str) -> Optional[str]:
        """formal | casual | brief | verbose"""
        lower = text.lower()
        words = len(text.split())
        if words <= 4:
            return "brief"
        if any(marker in lower for marker in self.CASUAL_MARKERS) or EMOJI_PATTERN.search(text):
            return "casual"
        if any(marker in lower for marker in self.FORMAL_MARKERS):
            return "formal"
        if words >= 60:
            return "verbose"
        return None


# Global instance
fact_extractor = FactExtractor()
