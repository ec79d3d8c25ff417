"""
Pydantic models for the interview engine.
Covers bot configuration, interview plans, runtime state pieces and API payloads.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field, field_validator


# ============================================================
# Enums
# ============================================================

class InterviewPhase(str, Enum):
    """Interview phases, in canonical progression order."""
    SCAN = "SCAN"
    DEEP = "DEEP"
    DEEP_OFFER = "DEEP_OFFER"
    DATA_COLLECTION = "DATA_COLLECTION"
    COMPLETED = "COMPLETED"

    @classmethod
    def get_order(cls) -> List["InterviewPhase"]:
        return [cls.SCAN, cls.DEEP, cls.DEEP_OFFER, cls.DATA_COLLECTION, cls.COMPLETED]

    @property
    def is_topic_phase(self) -> bool:
        return self in (InterviewPhase.SCAN, InterviewPhase.DEEP)


class UserIntent(str, Enum):
    ACCEPT = "ACCEPT"
    REFUSE = "REFUSE"
    NEUTRAL = "NEUTRAL"


class IntentContext(str, Enum):
    CONSENT = "consent"
    DEEP_OFFER = "deep_offer"
    STOP_CONFIRMATION = "stop_confirmation"


class PhaseAction(str, Enum):
    ASK_DEEP_OFFER = "ASK_DEEP_OFFER"
    ASK_TOPIC_QUESTION = "ASK_TOPIC_QUESTION"
    ASK_DATA_CONSENT = "ASK_DATA_CONSENT"
    ASK_MISSING_FIELD = "ASK_MISSING_FIELD"
    START_DEEP = "START_DEEP"
    COMPLETE_WITHOUT_DATA = "COMPLETE_WITHOUT_DATA"
    COMPLETE_INTERVIEW = "COMPLETE_INTERVIEW"
    NO_OP = "NO_OP"


class CompletionGuardAction(str, Enum):
    ASK_CONSENT = "ask_consent"
    ASK_MISSING_FIELD = "ask_missing_field"
    ALLOW_COMPLETION = "allow_completion"


class SupervisorStatus(str, Enum):
    """What the interviewer should do on the next assistant turn."""
    SCANNING = "SCANNING"
    TRANSITION = "TRANSITION"
    START_DEEP = "START_DEEP"
    DEEPENING = "DEEPENING"
    DEEP_OFFER_ASK = "DEEP_OFFER_ASK"
    DATA_COLLECTION_CONSENT = "DATA_COLLECTION_CONSENT"
    DATA_COLLECTION = "DATA_COLLECTION"
    COMPLETE_WITHOUT_DATA = "COMPLETE_WITHOUT_DATA"
    FINAL_GOODBYE = "FINAL_GOODBYE"
    CONFIRM_STOP = "CONFIRM_STOP"


class UserTurnSignal(str, Enum):
    NONE = "none"
    CLARIFICATION = "clarification"
    OFF_TOPIC_QUESTION = "off_topic_question"


# ============================================================
# Bot configuration
# ============================================================

class TopicBlock(BaseModel):
    """A research topic the interview must cover."""
    id: str = Field(default_factory=lambda: f"topic-{uuid.uuid4().hex[:8]}")
    label: str
    description: str = ""
    order_index: int = 0
    sub_goals: List[str] = Field(default_factory=list)
    max_turns: Optional[int] = None


class CandidateField(BaseModel):
    """A contact/profile field collected at the end of the interview."""
    id: str
    label: str = ""
    type: str = "text"  # name, email, phone, url, text
    required: bool = True

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        allowed = {"name", "email", "phone", "url", "text"}
        if v not in allowed:
            raise ValueError(f"Unsupported field type '{v}', expected one of {sorted(allowed)}")
        return v


class BotConfig(BaseModel):
    """Interview bot definition: goal, audience, topics and data collection."""
    id: str = Field(default_factory=lambda: f"bot-{uuid.uuid4().hex[:12]}")
    name: str
    research_goal: str
    target_audience: str = ""
    tone: str = "professional and warm"
    language: str = "en"
    max_duration_mins: int = Field(default=10, ge=1, le=180)
    topics: List[TopicBlock]
    collect_candidate_data: bool = False
    candidate_fields: List[CandidateField] = Field(default_factory=list)
    knowledge_text: str = ""
    manual_guide: str = ""
    interview_objective: str = ""
    introduction_message: Optional[str] = None

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: List[TopicBlock]) -> List[TopicBlock]:
        if not v:
            raise ValueError("An interview bot needs at least one topic")
        return v

    @field_validator("language")
    @classmethod
    def normalize_language(cls, v: str) -> str:
        return (v or "en").strip().lower()[:2] or "en"

    @property
    def sorted_topics(self) -> List[TopicBlock]:
        return sorted(self.topics, key=lambda t: t.order_index)

    @property
    def should_collect_data(self) -> bool:
        return self.collect_candidate_data and bool(self.candidate_fields)


# ============================================================
# Interview plan
# ============================================================

class PlanTopic(BaseModel):
    topic_id: str
    label: str
    order_index: int = 0
    sub_goals: List[str] = Field(default_factory=list)
    min_turns: int = 1
    max_turns: int = 1


class PlanMeta(BaseModel):
    generated_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    max_duration_mins: int
    total_time_sec: int
    per_topic_time_sec: float
    seconds_per_turn: int
    topics_signature: str


class ScanPlan(BaseModel):
    topics: List[PlanTopic] = Field(default_factory=list)


class DeepPlan(BaseModel):
    strategy: str = "uncovered_subgoals_first"
    max_turns_per_topic: int = 2
    fallback_turns: int = 2
    topics: List[PlanTopic] = Field(default_factory=list)


class InterviewPlan(BaseModel):
    version: int = 1
    meta: PlanMeta
    scan: ScanPlan
    deep: DeepPlan


class ScanTopicOverride(BaseModel):
    min_turns: Optional[float] = None
    max_turns: Optional[float] = None


class DeepTopicOverride(BaseModel):
    max_turns: Optional[float] = None


class ScanOverrides(BaseModel):
    topics: Dict[str, ScanTopicOverride] = Field(default_factory=dict)


class DeepOverrides(BaseModel):
    max_turns_per_topic: Optional[float] = None
    fallback_turns: Optional[float] = None
    topics: Dict[str, DeepTopicOverride] = Field(default_factory=dict)


class InterviewPlanOverrides(BaseModel):
    scan: ScanOverrides = Field(default_factory=ScanOverrides)
    deep: DeepOverrides = Field(default_factory=DeepOverrides)


# ============================================================
# Runtime state pieces
# ============================================================

class TopicBudget(BaseModel):
    """Elastic turn budget for a topic during SCAN."""
    base_turns: int
    min_turns: int
    max_turns: int
    turns_used: int = 0
    bonus_turns_granted: int = 0


class InterestingTopic(BaseModel):
    topic_id: str
    topic_label: str
    engagement_score: float
    best_snippet: str = ""


class SupervisorInsight(BaseModel):
    """Instruction for the next assistant turn produced by the state machine."""
    status: SupervisorStatus
    next_sub_goal: Optional[str] = None
    focus_point: Optional[str] = None
    next_topic: Optional[str] = None
    transition_mode: Optional[str] = None  # bridge | clean_pivot
    engaging_snippet: Optional[str] = None
    extension_preview: List[str] = Field(default_factory=list)
    field_id: Optional[str] = None
    retry_strategy: Optional[str] = None
    feedback: Optional[str] = None
    stop_reason: Optional[str] = None


class ChatMessage(BaseModel):
    role: str  # user | assistant
    content: str
    phase: InterviewPhase
    topic_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class CandidateProfile(BaseModel):
    """Structured contact data collected with explicit consent."""
    fields: Dict[str, str] = Field(default_factory=dict)
    skipped_fields: List[str] = Field(default_factory=list)
    consent_given: Optional[bool] = None
    data_collection_refused: bool = False


class CollectedFact(BaseModel):
    content: str
    type: str = "general"
    topic_id: Optional[str] = None
    confidence: float = 0.7


class ConversationMemory(BaseModel):
    facts: List[CollectedFact] = Field(default_factory=list)
    topics_explored: Dict[str, float] = Field(default_factory=dict)
    fatigue_score: float = 0.0
    detected_tone: Optional[str] = None
    avg_response_length: float = 0.0
    uses_emoji: bool = False
    user_turns: int = 0


class TurnQuality(BaseModel):
    """Qualitative evaluation of one assistant turn."""
    phase: InterviewPhase
    topic_id: Optional[str] = None
    passed: bool
    score: int
    checks: Dict[str, bool] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)


# ============================================================
# API payloads
# ============================================================

class CreateBotRequest(BaseModel):
    name: str
    research_goal: str
    target_audience: str = ""
    tone: str = "professional and warm"
    language: str = "en"
    max_duration_mins: int = Field(default=10, ge=1, le=180)
    topics: List[TopicBlock]
    collect_candidate_data: bool = False
    candidate_fields: List[CandidateField] = Field(default_factory=list)
    knowledge_text: str = ""
    manual_guide: str = ""
    interview_objective: str = ""
    introduction_message: Optional[str] = None


class StartConversationRequest(BaseModel):
    bot_id: str


class ChatRequest(BaseModel):
    conversation_id: str
    message: str = Field(min_length=1, max_length=8000)
    effective_duration_seconds: Optional[int] = Field(default=None, ge=0)


class ChatResponse(BaseModel):
    conversation_id: str
    text: str
    phase: InterviewPhase
    current_topic_id: Optional[str] = None
    supervisor_status: SupervisorStatus
    is_completed: bool
    candidate_profile: Optional[Dict[str, Any]] = None


class PlanOverridesRequest(InterviewPlanOverrides):
    pass
