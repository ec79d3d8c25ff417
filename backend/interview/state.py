"""
Interview state machine for a single conversation.
Tracks phase, topic budgets, deep planning, the extension offer,
data collection and the transcript.
"""
import uuid
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from models.schemas import (
    BotConfig,
    CandidateField,
    CandidateProfile,
    ChatMessage,
    ConversationMemory,
    IntentContext,
    InterestingTopic,
    InterviewPhase,
    InterviewPlan,
    PhaseAction,
    SupervisorInsight,
    SupervisorStatus,
    TopicBlock,
    TopicBudget,
    TurnQuality,
    UserIntent,
    UserTurnSignal,
)
from interview.phases import (
    InterviewPhases,
    PhaseSimulatorState,
    PhaseTransitionResult,
    on_completion_tag,
    on_deep_completed,
    on_deep_offer_user_intent,
    on_scan_completed,
    should_offer_continuation_after_deep,
)
from interview.plan import (
    build_deep_plan,
    build_extension_preview_hints,
    get_deep_topics,
    get_remaining_sub_goals,
    select_deep_focus_point,
)
from interview.scoring import (
    compute_budget_action,
    compute_engagement_score,
    compute_signal_score,
    steal_bonus_turn,
)
from interview.intent import extract_field_deterministic, intent_classifier, is_skip_request, is_usable_bridge_snippet
from interview.validation import (
    ValidationResponse,
    determine_strategy,
    generate_validation_feedback,
    validate_field_value,
)
from utils.config import config

logger = logging.getLogger(__name__)


class InterviewStateMachine:
    """
    Manages the state of one interview conversation.
    Each handler consumes a user turn and returns the SupervisorInsight
    that tells the interviewer what to do next.
    """

    def __init__(
        self,
        bot: BotConfig,
        plan: InterviewPlan,
        conversation_id: Optional[str] = None,
        classifier=None,
    ):
        """
        Initialize a new conversation.

        Args:
            bot: The interview bot configuration
            plan: The merged interview plan for the bot
            conversation_id: Optional existing ID
            classifier: Intent classifier (defaults to the global one)
        """
        self.conversation_id = conversation_id or f"conv-{uuid.uuid4().hex[:12]}"
        self.bot = bot
        self.plan = plan
        self.language = bot.language
        self.classifier = classifier or intent_classifier

        # Phase tracking
        self.phase = InterviewPhase.SCAN
        self.topic_index = 0
        self.turn_in_topic = 0

        # Timing
        self.started_at = datetime.now()
        self.completed_at: Optional[datetime] = None
        self.effective_duration_sec: Optional[float] = None
        self.effective_reported_at: Optional[datetime] = None

        # SCAN budgets and coverage
        self.topic_budgets: Dict[str, TopicBudget] = {
            pt.topic_id: TopicBudget(base_turns=pt.max_turns, min_turns=pt.min_turns, max_turns=pt.max_turns)
            for pt in plan.scan.topics
        }
        self.sub_goal_history: Dict[str, List[str]] = {}
        self.interesting_topics: Dict[str, InterestingTopic] = {}
        self.pending_sub_goal: Optional[str] = None
        self.last_engagement: float = 0.0

        # DEEP
        self.deep_order: List[str] = []
        self.deep_turns_by_topic: Dict[str, int] = {}
        self.deep_topic_index = 0
        self.deep_turn_in_topic = 0

        # Extension offer
        self.deep_accepted: Optional[bool] = None
        self.extension_return: Optional[Dict[str, Any]] = None
        self.extension_offer_attempts = 0

        # Data collection
        self.consent_given: Optional[bool] = None
        self.data_collection_refused = False
        self.consent_attempts = 0
        self.field_attempts: Dict[str, int] = {}
        self.candidate_profile = CandidateProfile()

        # Stop confirmation
        self.pending_stop_confirmation = False
        self.stop_resume_insight: Optional[SupervisorInsight] = None

        # Transcript, memory and evaluation
        self.messages: List[ChatMessage] = []
        self.memory = ConversationMemory()
        self.quality_turns: List[TurnQuality] = []
        self.last_insight: Optional[SupervisorInsight] = None
        self.runtime_knowledge: Optional[Dict[str, Any]] = None

    # ========================================
    # Conversation Management
    # ========================================

    def add_user_message(self, content: str) -> ChatMessage:
        topic = self.current_topic()
        message = ChatMessage(role="user", content=content, phase=self.phase, topic_id=topic.id if topic else None)
        self.messages.append(message)
        return message

    def add_assistant_message(self, content: str) -> ChatMessage:
        topic = self.current_topic()
        message = ChatMessage(role="assistant", content=content, phase=self.phase, topic_id=topic.id if topic else None)
        self.messages.append(message)
        return message

    def assistant_messages(self) -> List[str]:
        return [m.content for m in self.messages if m.role == "assistant"]

    def last_assistant_message(self) -> Optional[str]:
        assistant = self.assistant_messages()
        return assistant[-1] if assistant else None

    def last_user_message(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return None

    def transcript(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        messages = self.messages[-limit:] if limit else self.messages
        return [{"role": m.role, "content": m.content} for m in messages]

    @property
    def is_completed(self) -> bool:
        return self.phase == InterviewPhase.COMPLETED

    # ========================================
    # Time
    # ========================================

    def set_effective_duration(self, seconds: Optional[float]):
        """
        Client-reported active interview time.

        A turn without a report advances the last reported value by the wall
        clock time since that report; with no report at all the wall clock
        since the start is used.
        """
        now = datetime.now()
        if seconds is not None:
            self.effective_duration_sec = max(0.0, float(seconds))
        elif self.effective_duration_sec is not None and self.effective_reported_at is not None:
            self.effective_duration_sec += max(0.0, (now - self.effective_reported_at).total_seconds())
        self.effective_reported_at = now

    def elapsed_seconds(self) -> float:
        if self.effective_duration_sec is not None:
            return self.effective_duration_sec
        return (datetime.now() - self.started_at).total_seconds()

    def time_budget_seconds(self) -> float:
        budget = self.bot.max_duration_mins * 60
        if self.deep_accepted is True:
            budget += config.interview.extension_minutes * 60
        return float(budget)

    def remaining_seconds(self) -> float:
        return self.time_budget_seconds() - self.elapsed_seconds()

    # ========================================
    # Topics and fields
    # ========================================

    def topics(self) -> List[TopicBlock]:
        return self.bot.sorted_topics

    def deep_topics(self) -> List[TopicBlock]:
        return get_deep_topics(self.topics(), self.deep_order)

    def current_topic(self) -> Optional[TopicBlock]:
        if self.phase == InterviewPhase.SCAN:
            topics = self.topics()
            return topics[self.topic_index] if self.topic_index < len(topics) else None
        if self.phase == InterviewPhase.DEEP:
            deep = self.deep_topics()
            return deep[self.deep_topic_index] if self.deep_topic_index < len(deep) else None
        return None

    def current_turn_limit(self) -> int:
        topic = self.current_topic()
        if topic is None:
            return 1
        if self.phase == InterviewPhase.DEEP:
            return self.deep_turns_by_topic.get(topic.id, 1)
        budget = self.topic_budgets.get(topic.id)
        return budget.max_turns if budget else 1

    def mark_sub_goal_used(self, topic_id: str, sub_goal: Optional[str]):
        if not sub_goal:
            return
        used = self.sub_goal_history.setdefault(topic_id, [])
        if sub_goal not in used:
            used.append(sub_goal)

    def _consume_pending_sub_goal(self):
        topic = self.current_topic()
        if topic is not None:
            self.mark_sub_goal_used(topic.id, self.pending_sub_goal)
        self.pending_sub_goal = None

    def _next_sub_goal(self, topic: TopicBlock) -> Optional[str]:
        remaining = get_remaining_sub_goals(topic, self.sub_goal_history)
        return remaining[0] if remaining else None

    def get_field(self, field_id: Optional[str]) -> Optional[CandidateField]:
        return next((f for f in self.bot.candidate_fields if f.id == field_id), None)

    def missing_field(self) -> Optional[str]:
        """First configured field that is neither collected nor skipped."""
        if not self.bot.should_collect_data:
            return None
        for candidate_field in self.bot.candidate_fields:
            if (candidate_field.id not in self.candidate_profile.fields
                    and candidate_field.id not in self.candidate_profile.skipped_fields):
                return candidate_field.id
        return None

    def has_all_data(self) -> bool:
        return self.missing_field() is None

    def _simulator_state(self) -> PhaseSimulatorState:
        return PhaseSimulatorState(
            phase=self.phase,
            should_collect_data=self.bot.should_collect_data,
            candidate_field_ids=[f.id for f in self.bot.candidate_fields],
            deep_accepted=self.deep_accepted,
            consent_given=self.consent_given,
            data_collection_refused=self.data_collection_refused,
            missing_field=self.missing_field(),
            remaining_sec=self.remaining_seconds(),
        )

    def _interesting_list(self) -> List[InterestingTopic]:
        return list(self.interesting_topics.values())

    def _preview_hints(self) -> List[str]:
        start = self.deep_topic_index if self.phase == InterviewPhase.DEEP else 0
        return build_extension_preview_hints(
            self.topics(),
            self.deep_order or None,
            self.sub_goal_history,
            self._interesting_list(),
            objective=self.bot.interview_objective,
            language=self.language,
            start_index=start,
        )

    # ========================================
    # Insights
    # ========================================

    def _scanning_insight(self, topic: TopicBlock, snippet: Optional[str] = None) -> SupervisorInsight:
        self.pending_sub_goal = self._next_sub_goal(topic)
        return SupervisorInsight(
            status=SupervisorStatus.SCANNING,
            next_sub_goal=self.pending_sub_goal,
            focus_point=snippet or None,
            next_topic=topic.label,
        )

    def _deep_focus_insight(self, topic: TopicBlock, status: SupervisorStatus,
                            user_message: str = "", transition_mode: Optional[str] = None) -> SupervisorInsight:
        remaining = get_remaining_sub_goals(topic, self.sub_goal_history)
        interest = self.interesting_topics.get(topic.id)
        snippet = interest.best_snippet if interest else ""
        focus = select_deep_focus_point(
            topic,
            remaining,
            engaging_snippet=snippet,
            objective=self.bot.interview_objective,
            last_user_message=user_message,
            language=self.language,
        )
        self.pending_sub_goal = focus if focus in remaining else None
        return SupervisorInsight(
            status=status,
            next_sub_goal=self.pending_sub_goal,
            focus_point=focus,
            next_topic=topic.label,
            transition_mode=transition_mode,
            engaging_snippet=snippet or None,
        )

    def initial_insight(self) -> SupervisorInsight:
        topic = self.current_topic()
        insight = self._scanning_insight(topic)
        self.last_insight = insight
        return insight

    # ========================================
    # SCAN
    # ========================================

    def handle_scan_turn(self, user_message: str,
                         user_turn_signal: UserTurnSignal = UserTurnSignal.NONE) -> SupervisorInsight:
        """
        Consume a SCAN answer and decide between staying, bonus turn and advancing.

        Args:
            user_message: The user's answer
            user_turn_signal: Clarification / off-topic signal for this turn

        Returns:
            SupervisorInsight for the next assistant turn
        """
        topic = self.current_topic()
        if topic is None:
            return self._complete_scan()

        # Clarifications and off-topic questions do not consume the topic budget
        if user_turn_signal != UserTurnSignal.NONE:
            return SupervisorInsight(
                status=SupervisorStatus.SCANNING,
                next_sub_goal=self.pending_sub_goal,
                next_topic=topic.label,
            )

        self._consume_pending_sub_goal()
        budget = self.topic_budgets.setdefault(topic.id, TopicBudget(base_turns=1, min_turns=1, max_turns=1))
        budget.turns_used += 1
        self.turn_in_topic = budget.turns_used

        signal = compute_signal_score(user_message, self.language)
        engagement = compute_engagement_score(user_message, self.language)
        self.last_engagement = engagement
        current = self.interesting_topics.get(topic.id)
        if current is None or engagement > current.engagement_score:
            self.interesting_topics[topic.id] = InterestingTopic(
                topic_id=topic.id,
                topic_label=topic.label,
                engagement_score=round(engagement, 3),
                best_snippet=signal.snippet,
            )

        action = compute_budget_action(signal.band, budget.turns_used, budget)
        if action == "bonus":
            donor = steal_bonus_turn(topic.id, self.topic_budgets)
            if donor is not None:
                budget.max_turns += 1
                budget.bonus_turns_granted += 1
                action = "continue"
            else:
                action = "advance"
        logger.info(
            f"SCAN {topic.id}: signal={signal.score} ({signal.band}), "
            f"turns={budget.turns_used}/{budget.max_turns}, action={action}"
        )

        if action == "continue":
            return self._scanning_insight(topic, signal.snippet)

        self.topic_index += 1
        self.turn_in_topic = 0
        next_topic = self.current_topic()
        if next_topic is None:
            return self._complete_scan()

        bridge = signal.band != "low" and is_usable_bridge_snippet(signal.snippet, self.language)
        self.pending_sub_goal = self._next_sub_goal(next_topic)
        return SupervisorInsight(
            status=SupervisorStatus.TRANSITION,
            next_sub_goal=self.pending_sub_goal,
            next_topic=next_topic.label,
            transition_mode="bridge" if bridge else "clean_pivot",
            engaging_snippet=signal.snippet if bridge else None,
        )

    def _complete_scan(self) -> SupervisorInsight:
        result = on_scan_completed(self._simulator_state())
        logger.info(f"SCAN completed for {self.conversation_id}: {result.action.value}")

        if result.action == PhaseAction.START_DEEP:
            return self._start_deep(self.remaining_seconds())
        if self.deep_accepted is True:
            # The extension is already used up
            return self._finish_topics()

        self.extension_return = {"phase": InterviewPhase.DEEP, "resume_deep": False}
        return self._offer_extension()

    # ========================================
    # DEEP
    # ========================================

    def _start_deep(self, remaining_sec: Optional[float]) -> SupervisorInsight:
        self.phase = InterviewPhase.DEEP
        self.deep_order, self.deep_turns_by_topic = build_deep_plan(
            self.topics(),
            self.plan,
            self.sub_goal_history,
            self._interesting_list(),
            remaining_sec=remaining_sec,
            objective=self.bot.interview_objective,
            language=self.language,
        )
        self.deep_topic_index = 0
        self.deep_turn_in_topic = 0
        topic = self.current_topic()
        if topic is None:
            return self._finish_topics()
        return self._deep_focus_insight(topic, SupervisorStatus.START_DEEP)

    def handle_deep_turn(self, user_message: str,
                         user_turn_signal: UserTurnSignal = UserTurnSignal.NONE) -> SupervisorInsight:
        """
        Consume a DEEP answer against the per-topic deep turn allocation.

        Returns:
            SupervisorInsight for the next assistant turn
        """
        topic = self.current_topic()
        if topic is None:
            return self._complete_deep()

        if user_turn_signal != UserTurnSignal.NONE:
            return SupervisorInsight(
                status=SupervisorStatus.DEEPENING,
                next_sub_goal=self.pending_sub_goal,
                focus_point=self.last_insight.focus_point if self.last_insight else None,
                next_topic=topic.label,
            )

        self._consume_pending_sub_goal()
        self.deep_turn_in_topic += 1
        allowed = self.deep_turns_by_topic.get(topic.id, 1)
        logger.info(f"DEEP {topic.id}: turn {self.deep_turn_in_topic}/{allowed}")

        if self.deep_turn_in_topic < allowed:
            return self._deep_focus_insight(topic, SupervisorStatus.DEEPENING, user_message)

        self.deep_topic_index += 1
        self.deep_turn_in_topic = 0
        next_topic = self.current_topic()
        if next_topic is None:
            return self._complete_deep()

        signal = compute_signal_score(user_message, self.language)
        bridge = signal.band != "low" and is_usable_bridge_snippet(signal.snippet, self.language)
        return self._deep_focus_insight(
            next_topic,
            SupervisorStatus.TRANSITION,
            user_message,
            transition_mode="bridge" if bridge else "clean_pivot",
        )

    def _complete_deep(self) -> SupervisorInsight:
        remaining = self.remaining_seconds()
        if should_offer_continuation_after_deep(remaining, self.deep_accepted):
            logger.info(f"DEEP completed with {int(remaining)}s left, offering continuation")
            self.extension_return = {"phase": InterviewPhase.DEEP, "resume_deep": False}
            return self._offer_extension()
        return self._finish_topics()

    # ========================================
    # Time expiry and extension offer
    # ========================================

    def handle_time_expiry(self) -> Optional[SupervisorInsight]:
        """
        Interrupt SCAN/DEEP when the time budget is exhausted.

        Returns:
            An insight when the phase changed, otherwise None
        """
        if self.phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
            return None
        if self.remaining_seconds() > 0:
            return None

        # The interrupted sub-goal stays open so a resumed topic asks it again
        if self.deep_accepted is not True:
            logger.info(f"Time expired in {self.phase.value} for {self.conversation_id}, offering extension")
            if self.phase == InterviewPhase.SCAN:
                self.extension_return = {"phase": InterviewPhase.SCAN, "topic_index": self.topic_index}
            else:
                self.extension_return = {"phase": InterviewPhase.DEEP, "resume_deep": True}
            return self._offer_extension()

        logger.info(f"Extension exhausted for {self.conversation_id}")
        return self._finish_topics()

    def _offer_extension(self) -> SupervisorInsight:
        preview = self._preview_hints()
        self.phase = InterviewPhase.DEEP_OFFER
        self.deep_accepted = False
        self.extension_offer_attempts = 1
        self.pending_sub_goal = None
        return SupervisorInsight(status=SupervisorStatus.DEEP_OFFER_ASK, extension_preview=preview)

    def handle_deep_offer_turn(self, user_message: str) -> SupervisorInsight:
        """
        Resolve the user's answer to the extension offer.

        Accepting resumes at the stored return point with the extended budget;
        refusing (or two unanswered offers) moves on to data collection.
        """
        intent = self.classifier.check_user_intent(user_message, self.language, IntentContext.DEEP_OFFER)
        result = on_deep_offer_user_intent(self._simulator_state(), intent)
        logger.info(f"Extension offer answer for {self.conversation_id}: {intent.value} -> {result.action.value}")

        if intent == UserIntent.ACCEPT:
            self.deep_accepted = True
            return self._resume_after_extension()

        if intent == UserIntent.NEUTRAL:
            if self.extension_offer_attempts < config.interview.max_extension_offer_attempts:
                self.extension_offer_attempts += 1
                return SupervisorInsight(status=SupervisorStatus.DEEP_OFFER_ASK, extension_preview=self._preview_hints())
            logger.info("Extension offer left unanswered, moving on")
            result = on_deep_offer_user_intent(self._simulator_state(), UserIntent.REFUSE)

        return self._enter_data_collection(result)

    def _resume_after_extension(self) -> SupervisorInsight:
        point = self.extension_return or {"phase": InterviewPhase.DEEP, "resume_deep": False}
        self.extension_return = None

        if point["phase"] == InterviewPhase.SCAN:
            self.phase = InterviewPhase.SCAN
            self.topic_index = point.get("topic_index", self.topic_index)
            topic = self.current_topic()
            if topic is not None:
                return self._scanning_insight(topic)
            return self._complete_scan()

        self.phase = InterviewPhase.DEEP
        if point.get("resume_deep") and self.current_topic() is not None:
            return self._deep_focus_insight(self.current_topic(), SupervisorStatus.START_DEEP)
        return self._start_deep(self.remaining_seconds())

    # ========================================
    # DATA COLLECTION
    # ========================================

    def _finish_topics(self) -> SupervisorInsight:
        return self._enter_data_collection(on_deep_completed(self._simulator_state()))

    def _enter_data_collection(self, result: PhaseTransitionResult) -> SupervisorInsight:
        self.pending_sub_goal = None
        if result.action == PhaseAction.ASK_DATA_CONSENT:
            self.phase = InterviewPhase.DATA_COLLECTION
            self.consent_given = False
            self.consent_attempts = 1
            logger.info(f"Data collection: asking consent for {self.conversation_id}")
            return SupervisorInsight(status=SupervisorStatus.DATA_COLLECTION_CONSENT)
        return self.complete()

    def handle_data_collection_turn(self, user_message: str) -> SupervisorInsight:
        """
        Consent first, then one field at a time with validation and retries.

        Returns:
            SupervisorInsight for the next assistant turn
        """
        if self.consent_given is not True:
            return self._handle_consent(user_message)

        field_id = self.missing_field()
        candidate_field = self.get_field(field_id)
        if candidate_field is None:
            return self.complete()

        value, confidence = self.classifier.extract_field_from_message(candidate_field, user_message, self.language)
        validation = validate_field_value(candidate_field.type, value)
        if validation.is_valid and confidence == "none":
            validation = ValidationResponse(is_valid=False, reason="field_no_value_extracted")

        if validation.is_valid:
            self.candidate_profile.fields[field_id] = validation.extracted_value
            return self._next_field_or_complete()

        if is_skip_request(user_message):
            logger.info(f"Field {field_id} skipped on request")
            self.candidate_profile.skipped_fields.append(field_id)
            return self._next_field_or_complete()

        attempt = self.field_attempts.get(field_id, 0) + 1
        self.field_attempts[field_id] = attempt
        strategy = determine_strategy(validation, attempt, config.interview.max_field_attempts)
        if not candidate_field.required:
            strategy = "skip_field"
        logger.info(f"Field {field_id} attempt {attempt}: valid={validation.is_valid} strategy={strategy}")

        if strategy in ("move_on", "skip_field"):
            self.candidate_profile.skipped_fields.append(field_id)
            return self._next_field_or_complete()

        return SupervisorInsight(
            status=SupervisorStatus.DATA_COLLECTION,
            field_id=field_id,
            retry_strategy=strategy,
            feedback=generate_validation_feedback(validation, self.language),
        )

    def _handle_consent(self, user_message: str) -> SupervisorInsight:
        intent = self.classifier.check_user_intent(user_message, self.language, IntentContext.CONSENT)
        logger.info(f"Consent answer for {self.conversation_id}: {intent.value}")

        if intent == UserIntent.NEUTRAL and self.consent_attempts < config.interview.max_consent_attempts:
            self.consent_attempts += 1
            return SupervisorInsight(status=SupervisorStatus.DATA_COLLECTION_CONSENT)

        if intent != UserIntent.ACCEPT:
            self.data_collection_refused = True
            self.candidate_profile.consent_given = False
            self.candidate_profile.data_collection_refused = True
            return self.complete()

        self.consent_given = True
        self.candidate_profile.consent_given = True
        # Contact data given together with the consent
        for candidate_field in self.bot.candidate_fields:
            validation = validate_field_value(candidate_field.type, extract_field_deterministic(candidate_field.type, user_message))
            if candidate_field.type in ("email", "phone", "url") and validation.is_valid:
                self.candidate_profile.fields[candidate_field.id] = validation.extracted_value
        return self._next_field_or_complete()

    def _next_field_or_complete(self) -> SupervisorInsight:
        field_id = self.missing_field()
        if field_id:
            return SupervisorInsight(status=SupervisorStatus.DATA_COLLECTION, field_id=field_id)
        return self.complete()

    # ========================================
    # Stop requests and completion
    # ========================================

    def handle_stop_request(self, user_message: str) -> Optional[SupervisorInsight]:
        """
        Explicit closure handling: ask for confirmation, then wrap up or resume.

        Returns:
            An insight when the turn was a stop request or its confirmation, otherwise None
        """
        if self.pending_stop_confirmation:
            self.pending_stop_confirmation = False
            intent = self.classifier.check_user_intent(user_message, self.language, IntentContext.STOP_CONFIRMATION)
            logger.info(f"Stop confirmation for {self.conversation_id}: {intent.value}")
            if intent == UserIntent.ACCEPT:
                insight = self._finish_topics()
                insight.stop_reason = "user_requested"
                return insight
            resume = (self.stop_resume_insight or self.initial_insight()).model_copy()
            resume.stop_reason = "resumed"
            self.pending_sub_goal = resume.next_sub_goal
            return resume

        if self.phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
            return None

        closure = self.classifier.detect_explicit_closure_intent(user_message, self.language)
        if not closure.get("wants_to_conclude") or closure.get("confidence") == "low":
            return None

        logger.info(f"Explicit closure request in {self.conversation_id}: {closure.get('reason')}")
        self.pending_stop_confirmation = True
        self.stop_resume_insight = self.last_insight
        return SupervisorInsight(status=SupervisorStatus.CONFIRM_STOP, stop_reason=str(closure.get("reason", "")))

    def complete(self, reason: Optional[str] = None) -> SupervisorInsight:
        """
        Close the conversation through the completion guard.

        Returns:
            FINAL_GOODBYE or COMPLETE_WITHOUT_DATA, or a data-collection insight
            when the guard still requires consent or a field
        """
        if reason is None:
            result = on_completion_tag(self._simulator_state())
            if result.action == PhaseAction.ASK_DATA_CONSENT:
                return self._enter_data_collection(result)
            if result.action == PhaseAction.ASK_MISSING_FIELD:
                self.phase = InterviewPhase.DATA_COLLECTION
                return SupervisorInsight(status=SupervisorStatus.DATA_COLLECTION, field_id=self.missing_field())
            status = (
                SupervisorStatus.FINAL_GOODBYE
                if result.action == PhaseAction.COMPLETE_INTERVIEW and self.candidate_profile.fields
                else SupervisorStatus.COMPLETE_WITHOUT_DATA
            )
        else:
            status = SupervisorStatus.COMPLETE_WITHOUT_DATA

        self.phase = InterviewPhase.COMPLETED
        self.completed_at = datetime.now()
        self.pending_sub_goal = None
        logger.info(f"Conversation {self.conversation_id} completed ({status.value})")
        return SupervisorInsight(status=status, stop_reason=reason)

    # ========================================
    # Serialization
    # ========================================

    def get_status(self) -> Dict[str, Any]:
        """Get current interview status."""
        topic = self.current_topic()
        topic_count = len(self.deep_topics()) if self.phase == InterviewPhase.DEEP else len(self.topics())
        topic_position = self.deep_topic_index if self.phase == InterviewPhase.DEEP else self.topic_index
        return {
            "conversation_id": self.conversation_id,
            "bot_id": self.bot.id,
            "phase": self.phase.value,
            "phase_progress": InterviewPhases.get_phase_progress(
                self.phase,
                topic_position,
                topic_count,
                self.elapsed_seconds(),
                self.time_budget_seconds(),
            ),
            "current_topic_id": topic.id if topic else None,
            "current_topic_label": topic.label if topic else None,
            "turn_in_topic": self.deep_turn_in_topic if self.phase == InterviewPhase.DEEP else self.turn_in_topic,
            "remaining_sec": max(0, int(self.remaining_seconds())),
            "deep_accepted": self.deep_accepted,
            "consent_given": self.consent_given,
            "missing_field": self.missing_field(),
            "supervisor_status": self.last_insight.status.value if self.last_insight else None,
            "message_count": len(self.messages),
            "is_completed": self.is_completed,
        }

    def to_snapshot(self) -> Dict[str, Any]:
        """Full internal state for debugging."""
        return {
            **self.get_status(),
            "plan_version": self.plan.version,
            "topic_index": self.topic_index,
            "topic_budgets": {k: v.model_dump() for k, v in self.topic_budgets.items()},
            "sub_goal_history": self.sub_goal_history,
            "interesting_topics": [t.model_dump() for t in self.interesting_topics.values()],
            "deep_order": self.deep_order,
            "deep_turns_by_topic": self.deep_turns_by_topic,
            "deep_topic_index": self.deep_topic_index,
            "extension_return": (
                {**self.extension_return, "phase": self.extension_return["phase"].value}
                if self.extension_return else None
            ),
            "extension_offer_attempts": self.extension_offer_attempts,
            "data_collection_refused": self.data_collection_refused,
            "field_attempts": self.field_attempts,
            "candidate_profile": self.candidate_profile.model_dump(),
            "pending_stop_confirmation": self.pending_stop_confirmation,
            "last_insight": self.last_insight.model_dump(mode="json") if self.last_insight else None,
            "runtime_knowledge_source": (self.runtime_knowledge or {}).get("source"),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
