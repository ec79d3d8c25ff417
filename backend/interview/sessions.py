"""
In-memory store for interview bots, their plans and live conversations.
"""
import logging
import threading
from typing import Dict, List, Optional

from models.schemas import BotConfig, CreateBotRequest
from interview.plan import PlanRecord, PlanService
from interview.state import InterviewStateMachine

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """No conversation with the given ID."""


class BotNotFoundError(LookupError):
    """No interview bot with the given ID."""


class InterviewCompletedError(Exception):
    """The conversation is already completed and accepts no more turns."""


class SessionStore:
    """
    Bots by ID, plans by bot ID and conversations by conversation ID.
    """

    def __init__(self):
        self.bots: Dict[str, BotConfig] = {}
        self.plans: Dict[str, PlanRecord] = {}
        self.sessions: Dict[str, InterviewStateMachine] = {}
        self._lock = threading.Lock()
        self._session_locks: Dict[str, threading.Lock] = {}
        self.plan_service = PlanService(self)

    # ========================================
    # Bots
    # ========================================

    def create_bot(self, request: CreateBotRequest) -> BotConfig:
        bot = BotConfig(**request.model_dump())
        with self._lock:
            self.bots[bot.id] = bot
        self.plan_service.get_or_create(bot)
        logger.info(f"Registered bot {bot.id} ({len(bot.topics)} topics, {bot.max_duration_mins} min)")
        return bot

    def get_bot(self, bot_id: str) -> BotConfig:
        bot = self.bots.get(bot_id)
        if bot is None:
            raise BotNotFoundError(f"Bot {bot_id} not found")
        return bot

    # ========================================
    # Conversations
    # ========================================

    def create_session(self, bot_id: str, classifier=None) -> InterviewStateMachine:
        """
        Start a conversation for a bot using the bot's current plan.

        Args:
            bot_id: The interview bot
            classifier: Optional intent classifier for the state machine

        Returns:
            The new conversation state
        """
        bot = self.get_bot(bot_id)
        plan = self.plan_service.get_or_create(bot)
        session = InterviewStateMachine(bot=bot, plan=plan, classifier=classifier)
        with self._lock:
            self.sessions[session.conversation_id] = session
            self._session_locks[session.conversation_id] = threading.Lock()
        logger.info(f"Started conversation {session.conversation_id} for bot {bot_id} (plan v{plan.version})")
        return session

    def get_session(self, conversation_id: str) -> InterviewStateMachine:
        session = self.sessions.get(conversation_id)
        if session is None:
            raise SessionNotFoundError(f"Conversation {conversation_id} not found")
        return session

    def session_lock(self, conversation_id: str) -> threading.Lock:
        """Serializes the turns of one conversation; hold it for the whole turn."""
        with self._lock:
            if conversation_id not in self.sessions:
                raise SessionNotFoundError(f"Conversation {conversation_id} not found")
            return self._session_locks.setdefault(conversation_id, threading.Lock())

    def delete_session(self, conversation_id: str) -> InterviewStateMachine:
        with self._lock:
            session = self.sessions.pop(conversation_id, None)
            self._session_locks.pop(conversation_id, None)
        if session is None:
            raise SessionNotFoundError(f"Conversation {conversation_id} not found")
        logger.info(f"Deleted conversation {conversation_id}")
        return session

    def list_sessions(self, bot_id: Optional[str] = None) -> List[InterviewStateMachine]:
        if bot_id is None:
            return list(self.sessions.values())
        return [s for s in self.sessions.values() if s.bot.id == bot_id]


# Global store instance
session_store = SessionStore()
