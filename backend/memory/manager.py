"""
Conversation memory: facts, fatigue and tone tracked across user turns,
plus retrieval of stored facts for prompt context.
"""
import logging
from typing import Dict, List, Optional

from models.schemas import CollectedFact, ConversationMemory
from utils.config import config
from .extractors import fact_extractor, FactExtractor, EMOJI_PATTERN
from .vector_db import memory_store, MemoryStore

logger = logging.getLogger(__name__)


class ConversationMemoryManager:
    """
    Keeps the per-conversation memory up to date and renders it for prompts.
    """

    TONE_INSTRUCTIONS = {
        "en": {
            "formal": "Keep a formal and professional register.",
            "casual": "Use a conversational, friendly tone.",
            "brief": "User prefers short answers. Ask concise questions.",
            "verbose": "User is talkative. You can ask more complex questions.",
        },
        "it": {
            "formal": "Mantieni un registro formale e professionale.",
            "casual": "Usa un tono colloquiale e amichevole.",
            "brief": "L'utente preferisce risposte brevi. Fai domande concise e dirette.",
            "verbose": "L'utente è loquace. Puoi permetterti domande più articolate.",
        },
    }

    def __init__(self, store: Optional[MemoryStore] = None, extractor: Optional[FactExtractor] = None):
        self.store = store or memory_store
        self.extractor = extractor or fact_extractor

    def update_after_user_response(
        self,
        memory: ConversationMemory,
        session_id: str,
        user_message: str,
        topic_id: Optional[str],
        topic_label: str,
        phase: str,
    ) -> ConversationMemory:
        """
        Fold one user answer into the memory.

        Args:
            memory: Memory to update in place
            session_id: Conversation ID (vector store key)
            user_message: The user's answer
            topic_id: Current topic ID
            topic_label: Current topic label
            phase: Current phase value

        Returns:
            The updated memory
        """
        extraction = self.extractor.extract_facts(user_message, topic_label)

        new_facts = [
            CollectedFact(content=f.content, type=f.type, topic_id=topic_id, confidence=f.confidence)
            for f in extraction.facts
        ]
        memory.facts.extend(new_facts)

        memory.user_turns += 1
        turns = memory.user_turns
        memory.avg_response_length = round(
            (memory.avg_response_length * (turns - 1) + len(user_message)) / turns, 1
        )
        memory.fatigue_score = memory.fatigue_score * 0.7 + extraction.fatigue_score * 0.3
        memory.detected_tone = extraction.tone or memory.detected_tone
        memory.uses_emoji = memory.uses_emoji or bool(EMOJI_PATTERN.search(user_message))

        if new_facts:
            self.store.store_facts(
                session_id=session_id,
                facts=[f.to_dict() for f in extraction.facts],
                phase=phase,
            )

        logger.debug(f"Memory updated for {session_id}: {len(memory.facts)} facts, fatigue={memory.fatigue_score:.2f}")
        return memory

    def mark_topic_explored(self, memory: ConversationMemory, topic_id: str, engagement: float) -> None:
        """Remember the best engagement seen for a topic."""
        memory.topics_explored[topic_id] = max(engagement, memory.topics_explored.get(topic_id, 0.0))

    @staticmethod
    def engagement_label(score: float) -> str:
        if score > 0.6:
            return "HIGH"
        if score > 0.3:
            return "MEDIUM"
        return "LOW"

    def format_for_prompt(
        self,
        memory: ConversationMemory,
        language: str = "en",
        topic_labels: Optional[Dict[str, str]] = None,
        key_insights: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Render the memory as a system-prompt block.

        Args:
            memory: Conversation memory
            language: "en" or "it"
            topic_labels: Topic ID to label mapping
            key_insights: Topic ID to best user snippet mapping

        Returns:
            Prompt block, empty when there is nothing to say
        """
        italian = (language or "en").lower().startswith("it")
        topic_labels = topic_labels or {}
        key_insights = key_insights or {}
        sections: List[str] = []

        facts = [f for f in memory.facts if f.confidence >= config.memory.min_prompt_confidence]
        if facts:
            facts_text = "\n".join(f"- {f.content}" for f in facts[-12:])
            if italian:
                sections.append(f"## INFORMAZIONI GIÀ RACCOLTE\n{facts_text}\n\n"
                                "NON chiedere nuovamente informazioni su questi temi. Se devi approfondire, parti da quello che già sai.")
            else:
                sections.append(f"## FACTS ALREADY COLLECTED\n{facts_text}\n\n"
                                "Do NOT ask again about these topics. If you need to deepen, start from what you know.")

        if memory.topics_explored:
            lines = []
            for topic_id, score in memory.topics_explored.items():
                line = f"- {topic_labels.get(topic_id, topic_id)} (engagement: {self.engagement_label(score)})"
                if key_insights.get(topic_id):
                    line += f"\n  Key insight: \"{key_insights[topic_id]}\""
                lines.append(line)
            header = "## TOPIC ESPLORATI" if italian else "## TOPICS EXPLORED"
            sections.append(f"{header}\n" + "\n".join(lines))

        if memory.fatigue_score > config.memory.fatigue_warning_threshold:
            if italian:
                sections.append(f"## ATTENZIONE: SEGNALI DI FATICA\n"
                                f"L'utente mostra segni di stanchezza (score: {memory.fatigue_score:.2f}).\n"
                                "- Fai domande più brevi e dirette\n"
                                "- Salta gli approfondimenti non essenziali")
            else:
                sections.append(f"## FATIGUE SIGNALS DETECTED\n"
                                f"User shows signs of fatigue (score: {memory.fatigue_score:.2f}).\n"
                                "- Ask shorter, more direct questions\n"
                                "- Skip non-essential deepening")

        if memory.detected_tone:
            instructions = self.TONE_INSTRUCTIONS["it" if italian else "en"]
            style = instructions.get(memory.detected_tone, "")
            if memory.uses_emoji:
                style += ("\nL'utente usa emoji, puoi usarle occasionalmente." if italian
                          else "\nUser uses emoji, you can use them occasionally.")
            header = "## STILE COMUNICATIVO RILEVATO" if italian else "## DETECTED COMMUNICATION STYLE"
            sections.append(f"{header}\n{style}")

        return "\n\n".join(sections)

    def get_relevant_context(self, session_id: str, query: str, n_results: Optional[int] = None) -> str:
        """
        Retrieve stored facts similar to the query.

        Returns:
            Formatted context string for the LLM
        """
        if not query:
            return ""
        relevant_facts = self.store.retrieve_relevant(
            session_id=session_id,
            query=query,
            n_results=n_results or config.memory.rag_top_k,
        )
        if not relevant_facts:
            return ""

        context_parts = ["Relevant information from the interview so far:"]
        for fact in relevant_facts:
            content = fact.get('content', '')
            if content:
                context_parts.append(f"- {content}")
        return "\n".join(context_parts)

    def get_session_summary(self, memory: ConversationMemory) -> Dict[str, object]:
        """Facts grouped by type, for reports."""
        grouped: Dict[str, List[str]] = {}
        for fact in memory.facts:
            grouped.setdefault(fact.type, [])
            if fact.content not in grouped[fact.type]:
                grouped[fact.type].append(fact.content)
        return {
            "facts_by_type": grouped,
            "fatigue_score": round(memory.fatigue_score, 2),
            "detected_tone": memory.detected_tone,
            "avg_response_length": memory.avg_response_length,
            "uses_emoji": memory.uses_emoji,
        }

    def clear_session(self, session_id: str) -> bool:
        return self.store.clear_session(session_id)


# Global instance
memory_manager = ConversationMemoryManager()
