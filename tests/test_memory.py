"""
Unit tests for fact extraction, the vector store wrapper and the
conversation memory manager.
"""
from unittest.mock import MagicMock

import pytest

from memory import vector_db
from memory.extractors import FactExtractor
from memory.manager import ConversationMemoryManager
from memory.vector_db import MemoryStore
from models.schemas import CollectedFact, ConversationMemory


@pytest.fixture
def extractor() -> FactExtractor:
    return FactExtractor()


@pytest.fixture
def chroma_client(monkeypatch) -> MagicMock:
    """In-memory chromadb client replaced by a mock."""
    client = MagicMock()
    monkeypatch.setattr(vector_db.chromadb, "Client", MagicMock(return_value=client))
    return client


class TestFactExtractor:
    """Rule-based fact extraction."""

    @pytest.mark.unit
    def test_empty_message(self, extractor):
        """Should treat an empty answer as fatigued and brief."""
        result = extractor.extract_facts("   ")
        assert result.facts == []
        assert result.fatigue_score == 1.0
        assert result.tone == "brief"

    @pytest.mark.unit
    def test_tools_and_metrics(self, extractor):
        """Should find known tools and quantities with a unit."""
        result = extractor.extract_facts(
            "We use Excel and Salesforce, and we lost 12 clients last year.", "Current tools"
        )
        tools = {f.content for f in result.facts if f.type == "tool"}
        assert {"excel", "salesforce"} <= tools
        metrics = [f.content for f in result.facts if f.type == "metric"]
        assert any("12 clients" in m for m in metrics)
        assert all(f.topic_label == "Current tools" for f in result.facts)

    @pytest.mark.unit
    def test_pain_point_sentence(self, extractor):
        """Should keep a sentence that states a problem."""
        result = extractor.extract_facts("Reconciliation is slow and very expensive for us.")
        assert [f.type for f in result.facts] == ["pain_point"]

    @pytest.mark.unit
    def test_organisation(self, extractor):
        result = extractor.extract_facts("I look after finance at Acme Ltd these days")
        assert "Acme Ltd" in [f.content for f in result.facts if f.type == "organisation"]

    @pytest.mark.unit
    def test_duplicates_removed(self, extractor):
        """Should keep one fact per type and content."""
        result = extractor.extract_facts("Excel here, excel there, EXCEL everywhere in the office")
        assert [f.content for f in result.facts if f.type == "tool"] == ["excel"]

    @pytest.mark.unit
    def test_fatigue(self, extractor):
        """Should rate short dismissive answers as tired."""
        assert extractor.estimate_fatigue("ok") == pytest.approx(0.9)
        assert extractor.estimate_fatigue("word " * 30) == 0.0

    @pytest.mark.unit
    def test_tone(self, extractor):
        assert extractor.detect_tone("fine") == "brief"
        assert extractor.detect_tone("hey, we mostly use spreadsheets") == "casual"
        assert extractor.detect_tone("Dear team, therefore we decided to migrate") == "formal"


class TestMemoryStore:
    """chromadb wrapper."""

    @pytest.mark.unit
    def test_disabled_store(self):
        """Should degrade every call to an empty result."""
        store = MemoryStore(enabled=False)
        assert store.is_available is False
        assert store.store_facts("s1", [{"content": "x"}], "SCAN") == []
        assert store.retrieve_relevant("s1", "x") == []
        assert store.count() == 0
        assert store.clear_session("s1") is False

    @pytest.mark.unit
    def test_initialization_failure(self, monkeypatch):
        """Should disable itself when chromadb cannot start."""
        monkeypatch.setattr(vector_db.chromadb, "Client", MagicMock(side_effect=RuntimeError("boom")))
        assert MemoryStore(persist_dir="", enabled=True).is_available is False

    @pytest.mark.unit
    def test_store_facts(self, chroma_client):
        """Should add one document per fact with session metadata."""
        store = MemoryStore(persist_dir="", enabled=True)
        ids = store.store_facts("s1", [{"content": "Uses Excel", "type": "tool"}], "SCAN")
        assert len(ids) == 1
        collection = chroma_client.get_or_create_collection.return_value
        kwargs = collection.add.call_args.kwargs
        assert kwargs["documents"] == ["Uses Excel"]
        assert kwargs["metadatas"][0]["session_id"] == "s1"
        assert kwargs["metadatas"][0]["fact_type"] == "tool"

    @pytest.mark.unit
    def test_retrieve_relevant(self, chroma_client):
        """Should filter by session and phase and pair documents with metadata."""
        collection = chroma_client.get_or_create_collection.return_value
        collection.query.return_value = {"documents": [["Uses Excel"]], "metadatas": [[{"phase": "SCAN"}]]}
        store = MemoryStore(persist_dir="", enabled=True)
        facts = store.retrieve_relevant("s1", "tools", n_results=2, phase_filter="SCAN")
        assert facts == [{"content": "Uses Excel", "metadata": {"phase": "SCAN"}}]
        assert collection.query.call_args.kwargs["where"] == {"$and": [{"session_id": "s1"}, {"phase": "SCAN"}]}

    @pytest.mark.unit
    def test_query_error(self, chroma_client):
        """Should return an empty list when the query fails."""
        chroma_client.get_or_create_collection.return_value.query.side_effect = RuntimeError("down")
        assert MemoryStore(persist_dir="", enabled=True).retrieve_relevant("s1", "x") == []

    @pytest.mark.unit
    def test_count_and_clear(self, chroma_client):
        """Should count and delete a session's documents."""
        collection = chroma_client.get_or_create_collection.return_value
        collection.get.return_value = {"ids": ["a", "b"]}
        store = MemoryStore(persist_dir="", enabled=True)
        assert store.count("s1") == 2
        assert store.clear_session("s1") is True
        collection.delete.assert_called_once_with(ids=["a", "b"])


class TestConversationMemoryManager:
    """Memory updates and prompt rendering."""

    @pytest.mark.unit
    def test_update_stores_facts(self, memory, memory_store_mock):
        """Should add facts, update averages and persist the facts."""
        conv = ConversationMemory()
        memory.update_after_user_response(conv, "s1", "We use Excel for everything", "t1", "Current tools", "SCAN")
        assert conv.user_turns == 1
        assert conv.avg_response_length == float(len("We use Excel for everything"))
        assert any(f.content == "excel" and f.topic_id == "t1" for f in conv.facts)
        memory_store_mock.store_facts.assert_called_once()
        assert memory_store_mock.store_facts.call_args.kwargs["phase"] == "SCAN"

    @pytest.mark.unit
    def test_update_without_facts(self, memory, memory_store_mock):
        """Should smooth fatigue and skip the store when nothing was found."""
        conv = ConversationMemory()
        memory.update_after_user_response(conv, "s1", "ok", "t1", "Current tools", "SCAN")
        assert conv.fatigue_score == pytest.approx(0.27)
        assert conv.detected_tone == "brief"
        memory_store_mock.store_facts.assert_not_called()

    @pytest.mark.unit
    def test_topic_engagement_keeps_best(self, memory):
        conv = ConversationMemory()
        memory.mark_topic_explored(conv, "t1", 0.8)
        memory.mark_topic_explored(conv, "t1", 0.2)
        assert conv.topics_explored == {"t1": 0.8}

    @pytest.mark.unit
    def test_empty_prompt_block(self, memory):
        assert memory.format_for_prompt(ConversationMemory()) == ""

    @pytest.mark.unit
    def test_prompt_block(self, memory):
        """Should render confident facts, topics, fatigue and style."""
        conv = ConversationMemory(
            facts=[
                CollectedFact(content="Uses Excel", confidence=0.9),
                CollectedFact(content="maybe moving", confidence=0.3),
            ],
            topics_explored={"t1": 0.8},
            fatigue_score=0.7,
            detected_tone="brief",
        )
        block = memory.format_for_prompt(
            conv, "en", topic_labels={"t1": "Current tools"}, key_insights={"t1": "we lose hours"}
        )
        assert "- Uses Excel" in block
        assert "maybe moving" not in block
        assert "- Current tools (engagement: HIGH)" in block
        assert 'Key insight: "we lose hours"' in block
        assert "FATIGUE SIGNALS DETECTED" in block
        assert "User prefers short answers" in block

    @pytest.mark.unit
    def test_italian_prompt_block(self, memory):
        conv = ConversationMemory(facts=[CollectedFact(content="Usa Excel", confidence=0.9)])
        assert "INFORMAZIONI GIÀ RACCOLTE" in memory.format_for_prompt(conv, "it")

    @pytest.mark.unit
    def test_relevant_context(self, memory, memory_store_mock):
        """Should format retrieved facts and skip empty queries."""
        memory_store_mock.retrieve_relevant.return_value = [{"content": "Uses Excel"}]
        assert memory.get_relevant_context("s1", "tools") == (
            "Relevant information from the interview so far:\n- Uses Excel"
        )
        memory_store_mock.retrieve_relevant.reset_mock()
        assert memory.get_relevant_context("s1", "") == ""
        memory_store_mock.retrieve_relevant.assert_not_called()

    @pytest.mark.unit
    def test_session_summary(self, memory):
        conv = ConversationMemory(facts=[
            CollectedFact(content="excel", type="tool"),
            CollectedFact(content="excel", type="tool"),
        ])
        assert memory.get_session_summary(conv)["facts_by_type"] == {"tool": ["excel"]}

    @pytest.mark.unit
    def test_default_store_is_global(self):
        assert ConversationMemoryManager().store is vector_db.memory_store
