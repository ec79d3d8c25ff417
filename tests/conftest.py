"""
Pytest configuration and shared fixtures.

The vector store is disabled through the environment before any backend
module is imported; the LLM is replaced by a scripted fake.
"""
import os

os.environ["MEMORY_ENABLED"] = "false"

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from interview.agents import AgentController
from interview.intent import IntentClassifier
from interview.plan import build_base_interview_plan
from interview.state import InterviewStateMachine
from llm.client import LLMResponse, llm_client
from memory.manager import ConversationMemoryManager
from models.schemas import BotConfig, CandidateField, TopicBlock


class FakeLLM:
    """
    Scripted stand-in for LLMClient.

    Text replies are consumed in order; an empty string or an exhausted
    script is an invalid response. JSON replies are matched by a marker
    substring of the prompt; unmatched prompts fail like a server error.
    """

    def __init__(self, texts: Optional[List[str]] = None, json_rules: Optional[Dict[str, Any]] = None):
        self.texts = list(texts or [])
        self.json_rules = dict(json_rules or {})
        self.text_calls: List[Dict[str, Any]] = []
        self.json_calls: List[str] = []

    def generate_text(self, messages, max_tokens=300, temperature=0.7, model=None):
        self.text_calls.append({"messages": messages, "model": model})
        if not self.texts:
            return "", False
        text = self.texts.pop(0)
        return (text, True) if text else ("", False)

    def generate_json(self, prompt, max_tokens=300, temperature=0.0, model=None):
        self.json_calls.append(prompt)
        for marker, result in self.json_rules.items():
            if marker in prompt:
                return (result, True) if result is not None else (None, False)
        return None, False


def make_topics() -> List[TopicBlock]:
    return [
        TopicBlock(id="t1", label="Current tools", order_index=0,
                   sub_goals=["tools used today", "main frustrations"]),
        TopicBlock(id="t2", label="Buying process", order_index=1,
                   sub_goals=["who decides", "budget"]),
        TopicBlock(id="t3", label="Future needs", order_index=2,
                   sub_goals=["wish list"]),
    ]


def make_bot(**overrides) -> BotConfig:
    data = {
        "id": "bot-test",
        "name": "Accounting Discovery",
        "research_goal": "Understand how small firms choose accounting software",
        "target_audience": "Owners of small businesses",
        "language": "en",
        "max_duration_mins": 10,
        "topics": make_topics(),
    }
    data.update(overrides)
    return BotConfig(**data)


def make_state(bot: BotConfig, llm: Optional[FakeLLM] = None) -> InterviewStateMachine:
    state = InterviewStateMachine(
        bot=bot,
        plan=build_base_interview_plan(bot),
        classifier=IntentClassifier(llm or FakeLLM()),
    )
    state.set_effective_duration(0)
    return state


@pytest.fixture(autouse=True)
def offline_llm(monkeypatch):
    """The global client never reaches the network during tests."""
    monkeypatch.setattr(
        llm_client,
        "generate",
        lambda *args, **kwargs: LLMResponse(content="", is_valid=False, raw_response={"error": "offline"}),
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def bot() -> BotConfig:
    return make_bot()


@pytest.fixture
def data_bot() -> BotConfig:
    return make_bot(
        id="bot-data",
        collect_candidate_data=True,
        candidate_fields=[
            CandidateField(id="name", label="name", type="name"),
            CandidateField(id="email", label="email address", type="email"),
        ],
    )


@pytest.fixture
def state(bot, fake_llm) -> InterviewStateMachine:
    machine = make_state(bot, fake_llm)
    machine.initial_insight()
    return machine


@pytest.fixture
def data_state(data_bot, fake_llm) -> InterviewStateMachine:
    machine = make_state(data_bot, fake_llm)
    machine.initial_insight()
    return machine


@pytest.fixture
def memory_store_mock() -> MagicMock:
    store = MagicMock()
    store.retrieve_relevant.return_value = []
    store.store_facts.return_value = []
    return store


@pytest.fixture
def memory(memory_store_mock) -> ConversationMemoryManager:
    return ConversationMemoryManager(store=memory_store_mock)


@pytest.fixture
def controller(fake_llm, memory) -> AgentController:
    return AgentController(llm=fake_llm, memory=memory)
