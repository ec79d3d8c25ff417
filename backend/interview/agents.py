"""
Agent orchestration for the interview engine.
Coordinates the Interviewer (reply generation) and the Supervisor
(advisory sub-goal tracking) around the per-conversation state machine.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from llm.client import llm_client
from llm.prompts import PromptBuilder, Prompts, extract_last_assistant_question, get_fallback
from memory.manager import memory_manager
from interview.anchors import build_natural_topic_cue
from interview.dedup import collect_recent_bridge_stems, find_duplicate_question_match
from interview.guards import (
    FINAL_STATUSES,
    TOPIC_STATUSES,
    ensure_completion_tag,
    is_contact_request,
    is_goodbye,
    normalize_single_question,
    replace_literal_topic_title,
    run_post_processing,
    strip_completion_tag,
)
from interview.intent import (
    IntentClassifier,
    detect_user_turn_signal,
    intent_classifier,
    is_clarification_handled_response,
    is_extension_offer_question,
    is_scope_boundary_handled_response,
)
from interview.phases import should_intercept_deep_offer_closure, should_intercept_topic_phase_closure
from interview.plan import get_remaining_sub_goals
from interview.planner import (
    MicroPlannerInput,
    build_fallback_runtime_knowledge,
    build_manual_knowledge_prompt_block,
    build_micro_planner_decision,
    build_micro_planner_prompt_block,
    build_runtime_knowledge_prompt_block,
)
from interview.quality import evaluate_turn_quality
from interview.scoring import should_use_critical_model
from interview.sessions import InterviewCompletedError
from interview.state import InterviewStateMachine
from models.schemas import (
    ChatResponse,
    InterviewPhase,
    SupervisorInsight,
    SupervisorStatus,
    TopicBlock,
    UserTurnSignal,
)
from utils.cleaning import PromptSanitizer, ResponseCleaner
from utils.config import config

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Outcome of one processed turn."""
    text: str
    phase: InterviewPhase
    supervisor_status: SupervisorStatus
    is_completed: bool
    current_topic_id: Optional[str] = None
    candidate_profile: Optional[Dict[str, Any]] = None

    def to_response(self, conversation_id: str) -> ChatResponse:
        return ChatResponse(
            conversation_id=conversation_id,
            text=self.text,
            phase=self.phase,
            current_topic_id=self.current_topic_id,
            supervisor_status=self.supervisor_status,
            is_completed=self.is_completed,
            candidate_profile=self.candidate_profile,
        )


class InterviewerAgent:
    """
    Generates every assistant message: topic questions, the extension offer,
    consent and field questions, and the closing.
    """

    def __init__(self, llm=None, memory=None):
        self.llm = llm or llm_client
        self.memory = memory or memory_manager

    # ========================================
    # Topic questions
    # ========================================

    def generate_opening(self, state: InterviewStateMachine, insight: SupervisorInsight) -> str:
        """
        First message: short introduction plus the first SCAN question.
        """
        question = self._generate_topic_text(state, insight, "", UserTurnSignal.NONE)
        if question is None:
            question = self._fallback_topic_question(state, state.current_topic(), insight, UserTurnSignal.NONE)
            if not state.bot.introduction_message:
                return get_fallback("opening", state.language, question=question[0].lower() + question[1:])
        if state.bot.introduction_message:
            return f"{state.bot.introduction_message.strip()} {question}"
        return question

    def generate_topic_response(
        self,
        state: InterviewStateMachine,
        insight: SupervisorInsight,
        user_message: str,
        user_turn_signal: UserTurnSignal = UserTurnSignal.NONE,
    ) -> str:
        """
        Generate a SCAN/DEEP reply.

        The full interviewer prompt runs first; a reply that fails the guards
        or repeats an earlier question is regenerated once with the focused
        question-only prompt, then replaced by a template.

        Args:
            state: Conversation state
            insight: Supervisor instruction for this turn
            user_message: The user's last answer (empty for the opening)
            user_turn_signal: Clarification / off-topic signal

        Returns:
            The assistant reply
        """
        text = self._generate_topic_text(state, insight, user_message, user_turn_signal)
        if text is not None:
            return text
        logger.warning(f"Topic reply fell back to template ({state.conversation_id})")
        return self._fallback_topic_question(state, state.current_topic(), insight, user_turn_signal)

    def _generate_topic_text(
        self,
        state: InterviewStateMachine,
        insight: SupervisorInsight,
        user_message: str,
        user_turn_signal: UserTurnSignal,
    ) -> Optional[str]:
        topic = state.current_topic()
        language = state.language
        if topic is None:
            return None

        cue = build_natural_topic_cue(topic.label, language)
        history = state.assistant_messages()
        recent_questions = [
            q for q in (extract_last_assistant_question(m) for m in history[-config.interview.recent_questions_window:]) if q
        ]
        previous = state.last_assistant_message()
        stems = collect_recent_bridge_stems(state.transcript())

        model = None
        choice = should_use_critical_model(state.phase, insight.status, user_turn_signal, user_message, language)
        if choice["use_critical"]:
            model = config.llm.critical_model
            logger.info(f"Using critical model for {state.conversation_id}: {choice['reason']}")

        system_prompt = PromptBuilder.build(
            state.bot,
            topic,
            state.topic_index,
            state.elapsed_seconds(),
            state.time_budget_seconds(),
            insight,
            extra_blocks=self._topic_blocks(state, topic, insight, user_message, user_turn_signal, previous, stems),
        )
        messages = [{"role": "system", "content": system_prompt}]
        for message in state.transcript(limit=12):
            content = message["content"]
            if message["role"] == "user":
                content = PromptSanitizer.sanitize(content, config.interview.max_user_input_chars)
            messages.append({"role": message["role"], "content": content})
        if len(messages) == 1:
            messages.append({"role": "user", "content": "(The interview starts now. Greet briefly and ask the first question.)"})

        text, is_valid = self.llm.generate_text(messages, max_tokens=300, temperature=0.7, model=model)
        if is_valid:
            text = self._finalize_topic_text(text, topic, cue)
            if self._topic_text_ok(state, text, insight.status, recent_questions, history, user_turn_signal):
                return text

        logger.info(f"Regenerating topic reply with question-only prompt ({state.conversation_id})")
        for _ in range(config.interview.max_regeneration_attempts):
            prompt = Prompts.question_only(
                language,
                topic.label,
                topic_cue=cue,
                sub_goal=insight.next_sub_goal or insight.focus_point,
                last_user_message=user_message or None,
                previous_question=extract_last_assistant_question(previous),
                avoid_stems=stems,
                bridge_hint=Prompts.user_bridge_hint(user_message, language) if user_message else None,
                diagnostic_hint=Prompts.soft_diagnostic_hint(
                    language, user_message, user_turn_signal == UserTurnSignal.CLARIFICATION
                ),
                require_acknowledgment=bool(user_message),
                transition_mode=insight.transition_mode,
            )
            text, is_valid = self.llm.generate_text(
                [{"role": "user", "content": prompt}], max_tokens=180, temperature=0.4, model=model
            )
            if is_valid:
                text = self._finalize_topic_text(text, topic, cue)
                if self._topic_text_ok(state, text, insight.status, recent_questions, history, user_turn_signal):
                    return text

        return None

    def _topic_blocks(
        self,
        state: InterviewStateMachine,
        topic: TopicBlock,
        insight: SupervisorInsight,
        user_message: str,
        user_turn_signal: UserTurnSignal,
        previous: Optional[str],
        stems: List[str],
    ) -> List[str]:
        language = state.language
        decision = build_micro_planner_decision(MicroPlannerInput(
            language=language,
            phase=state.phase,
            topic=topic,
            used_sub_goals=state.sub_goal_history.get(topic.id, []),
            turn_in_topic=(state.deep_turn_in_topic if state.phase == InterviewPhase.DEEP else state.turn_in_topic) + 1,
            max_turns_in_topic=state.current_turn_limit(),
            user_message=user_message,
            user_turn_signal=user_turn_signal,
            manual_guide=state.bot.manual_guide,
            runtime_knowledge=state.runtime_knowledge,
        ))
        topic_labels = {t.id: t.label for t in state.topics()}
        key_insights = {k: v.best_snippet for k, v in state.interesting_topics.items()}

        blocks = [
            Prompts.runtime_semantic_context(
                language,
                state.phase.value,
                topic.label,
                user_message,
                previous,
                transition_mode=insight.transition_mode,
                recent_bridge_stems=stems,
                clarification_requested=user_turn_signal == UserTurnSignal.CLARIFICATION,
            ),
            build_micro_planner_prompt_block(language, state.phase, topic.label, decision),
            build_manual_knowledge_prompt_block(state.bot.manual_guide, state.phase, language, topic),
            build_runtime_knowledge_prompt_block(state.runtime_knowledge, state.phase, language, topic),
            self.memory.format_for_prompt(state.memory, language, topic_labels, key_insights),
            self.memory.get_relevant_context(state.conversation_id, user_message),
            Prompts.soft_diagnostic_hint(language, user_message, user_turn_signal == UserTurnSignal.CLARIFICATION),
        ]
        if user_turn_signal == UserTurnSignal.OFF_TOPIC_QUESTION:
            blocks.append(
                "The user asked something outside the scope of this interview. Say briefly that it is out of scope, "
                f"then bring the conversation back to \"{topic.label}\" with one question."
            )
        return blocks

    @staticmethod
    def _finalize_topic_text(text: str, topic: TopicBlock, cue: str) -> str:
        text = replace_literal_topic_title(text, topic.label, cue) if len(topic.label.split()) > 2 else text
        return normalize_single_question(text)

    def _topic_text_ok(
        self,
        state: InterviewStateMachine,
        text: str,
        status: SupervisorStatus,
        recent_questions: List[str],
        history: List[str],
        user_turn_signal: UserTurnSignal = UserTurnSignal.NONE,
    ) -> bool:
        language = state.language
        guard = run_post_processing(text, status, language, recent_questions)
        if not guard.is_valid:
            logger.warning(f"Topic reply rejected: {guard.reason}")
            return False

        if user_turn_signal == UserTurnSignal.CLARIFICATION and not is_clarification_handled_response(text, language):
            logger.warning("Topic reply ignores the clarification request")
            return False
        if user_turn_signal == UserTurnSignal.OFF_TOPIC_QUESTION and not is_scope_boundary_handled_response(text, language):
            logger.warning("Topic reply does not address the out-of-scope question")
            return False

        intercept = should_intercept_topic_phase_closure(
            phase=state.phase,
            is_goodbye_response=is_goodbye(text, language),
            is_goodbye_with_question="?" in text,
            has_no_question="?" not in text,
            is_premature_contact_request=is_contact_request(text, language),
            has_completion_tag=ResponseCleaner.has_completion_tag(text),
        )
        if intercept:
            logger.warning("Topic reply intercepted as premature closure")
            return False

        duplicate = find_duplicate_question_match(text, history, language)
        if duplicate.is_duplicate:
            logger.warning(f"Topic reply repeats an earlier question ({duplicate.reason})")
            return False
        return True

    @staticmethod
    def _fallback_topic_question(
        state: InterviewStateMachine,
        topic: Optional[TopicBlock],
        insight: SupervisorInsight,
        user_turn_signal: UserTurnSignal,
    ) -> str:
        language = state.language
        cue = build_natural_topic_cue(topic.label if topic else "", language)
        if user_turn_signal == UserTurnSignal.CLARIFICATION:
            return get_fallback("clarification", language, cue=cue)
        if user_turn_signal == UserTurnSignal.OFF_TOPIC_QUESTION:
            return get_fallback("scope_recovery", language, cue=cue)

        # (question, sub-goal it asks about), preferred first
        candidates: List[Tuple[str, Optional[str]]] = []
        if insight.status in (SupervisorStatus.DEEPENING, SupervisorStatus.START_DEEP) and insight.focus_point:
            candidates.append((get_fallback("deepen_question", language, focus=insight.focus_point), insight.next_sub_goal))
        sub_goals = [insight.next_sub_goal] if insight.next_sub_goal else []
        if topic is not None:
            sub_goals += [g for g in get_remaining_sub_goals(topic, state.sub_goal_history) if g not in sub_goals]
        for sub_goal in sub_goals:
            candidates.append((get_fallback("sub_goal_question", language, cue=cue, sub_goal=sub_goal), sub_goal))
            candidates.append((get_fallback("sub_goal_question_alt", language, cue=cue, sub_goal=sub_goal), sub_goal))
        candidates.append((get_fallback("topic_question", language, cue=cue), insight.next_sub_goal))
        candidates.append((get_fallback("topic_question_alt", language, cue=cue), insight.next_sub_goal))

        history = state.assistant_messages()
        for question, sub_goal in candidates:
            if find_duplicate_question_match(question, history, language).is_duplicate:
                continue
            if sub_goal != insight.next_sub_goal:
                logger.info(f"Fallback question rotated to sub-goal '{sub_goal}'")
                state.pending_sub_goal = sub_goal
            return question
        return candidates[0][0]

    # ========================================
    # Non-topic messages
    # ========================================

    def generate_deep_offer(self, state: InterviewStateMachine, insight: SupervisorInsight) -> str:
        """Extension offer; always ends up as a yes/no continuation question."""
        language = state.language
        prompt = Prompts.deep_offer_only(language, insight.extension_preview)
        text, is_valid = self.llm.generate_text([{"role": "user", "content": prompt}], max_tokens=200, temperature=0.5)
        if is_valid:
            text = normalize_single_question(text)
            intercept = should_intercept_deep_offer_closure(
                phase=InterviewPhase.DEEP_OFFER,
                is_goodbye_response=is_goodbye(text, language),
                is_goodbye_with_question="?" in text,
                has_no_question="?" not in text,
                has_completion_tag=ResponseCleaner.has_completion_tag(text),
            )
            guard = run_post_processing(text, SupervisorStatus.DEEP_OFFER_ASK, language)
            if not intercept and guard.is_valid and is_extension_offer_question(text, language):
                return text
            logger.warning(f"Extension offer rejected ({guard.reason or 'not a continuation question'}), using template")

        if insight.extension_preview:
            return get_fallback("deep_offer_with_hint", language, hint=insight.extension_preview[0])
        return get_fallback("deep_offer", language)

    def generate_consent_question(self, state: InterviewStateMachine) -> str:
        language = state.language
        text, is_valid = self.llm.generate_text(
            [{"role": "user", "content": Prompts.consent_question_only(language)}], max_tokens=160, temperature=0.5
        )
        if is_valid:
            text = normalize_single_question(text)
            guard = run_post_processing(text, SupervisorStatus.DATA_COLLECTION_CONSENT, language, has_all_data=state.has_all_data())
            if guard.is_valid:
                return text
        return get_fallback("consent", language)

    def generate_field_question(self, state: InterviewStateMachine, insight: SupervisorInsight) -> str:
        language = state.language
        candidate_field = state.get_field(insight.field_id)
        label = (candidate_field.label or candidate_field.id) if candidate_field else (insight.field_id or "")
        text, is_valid = self.llm.generate_text(
            [{"role": "user", "content": Prompts.field_question_only(language, label, insight.feedback)}],
            max_tokens=120,
            temperature=0.4,
        )
        if is_valid:
            text = normalize_single_question(text)
            guard = run_post_processing(text, SupervisorStatus.DATA_COLLECTION, language, has_all_data=state.has_all_data())
            if guard.is_valid:
                return text
        question = get_fallback("field", language, label=label)
        return f"{insight.feedback} {question}" if insight.feedback else question

    def generate_closing(self, state: InterviewStateMachine, insight: SupervisorInsight) -> str:
        key = "closing_with_data" if state.candidate_profile.fields else "closing"
        return ensure_completion_tag(get_fallback(key, state.language))


class SupervisorAgent:
    """
    Advisory LLM check on which sub-goals the user already answered.
    """

    def __init__(self, llm=None):
        self.llm = llm or llm_client

    def evaluate_topic_progress(
        self,
        state: InterviewStateMachine,
        topic: TopicBlock,
    ) -> Tuple[SupervisorInsight, List[str]]:
        """
        Ask the topic supervisor for covered sub-goals and the next focus.

        Returns:
            Tuple of (advisory insight, covered sub-goals). The insight status is
            TRANSITION when there is no usable advice.
        """
        remaining = get_remaining_sub_goals(topic, state.sub_goal_history)
        if not remaining:
            return SupervisorInsight(status=SupervisorStatus.TRANSITION), []

        transcript = PromptSanitizer.sanitize_transcript(
            state.transcript(limit=4),
            config.interview.max_transcript_chars,
            config.interview.max_transcript_message_chars,
        )
        prompt = Prompts.topic_supervisor(topic, remaining, transcript, state.language)
        result, is_valid = self.llm.generate_json(prompt, max_tokens=200, temperature=0.0)
        if not is_valid or not isinstance(result, dict):
            logger.warning(f"Topic supervisor failed for {topic.id}")
            return SupervisorInsight(status=SupervisorStatus.TRANSITION), []

        covered = [sg for sg in (result.get("covered_sub_goals") or []) if sg in remaining]
        next_sub_goal = result.get("next_sub_goal")
        if next_sub_goal not in remaining or next_sub_goal in covered:
            next_sub_goal = None
        focus_point = result.get("focus_point") or None
        status = SupervisorStatus.DEEPENING if state.phase == InterviewPhase.DEEP else SupervisorStatus.SCANNING
        return SupervisorInsight(status=status, next_sub_goal=next_sub_goal, focus_point=focus_point), covered


class AgentController:
    """
    Orchestrates the agents and the state machine for each turn.
    """

    def __init__(self, llm=None, memory=None):
        self.interviewer = InterviewerAgent(llm, memory)
        self.supervisor = SupervisorAgent(llm)
        self.classifier = IntentClassifier(llm) if llm is not None else intent_classifier
        self.memory = memory or memory_manager

    def start_interview(self, state: InterviewStateMachine) -> TurnResult:
        """
        Produce the opening message of a new conversation.

        Returns:
            TurnResult with the opening question
        """
        if state.runtime_knowledge is None and not state.bot.manual_guide:
            state.runtime_knowledge = build_fallback_runtime_knowledge(
                state.topics(), state.language, summary=state.bot.research_goal
            )
        insight = state.initial_insight()
        text = self.interviewer.generate_opening(state, insight)
        state.add_assistant_message(text)
        return self._result(state, text, insight)

    def process_turn(
        self,
        state: InterviewStateMachine,
        user_message: str,
        effective_duration: Optional[float] = None,
    ) -> TurnResult:
        """
        Process one user turn end to end.

        Args:
            state: Conversation state
            user_message: The user's message
            effective_duration: Client-reported interview time in seconds

        Returns:
            TurnResult for the API
        """
        if state.is_completed:
            raise InterviewCompletedError(f"Conversation {state.conversation_id} is already completed")

        state.set_effective_duration(effective_duration)
        phase_before = state.phase
        topic_before = state.current_topic()
        language = state.language

        # Step 1: Record and remember
        state.add_user_message(user_message)
        self.memory.update_after_user_response(
            state.memory,
            state.conversation_id,
            user_message,
            topic_before.id if topic_before else None,
            topic_before.label if topic_before else "",
            phase_before.value,
        )
        user_turn_signal = detect_user_turn_signal(
            user_message, language, phase_before, topic_before, topic_before, state.bot.interview_objective
        )

        # Steps 2-4: stop request, time expiry, phase handler
        insight = state.handle_stop_request(user_message)
        if insight is None:
            insight = state.handle_time_expiry()
        if insight is None:
            insight = self._handle_phase(state, user_message, user_turn_signal)

        if phase_before == InterviewPhase.SCAN and topic_before is not None and user_turn_signal == UserTurnSignal.NONE:
            self.memory.mark_topic_explored(state.memory, topic_before.id, state.last_engagement)

        if insight.status in (SupervisorStatus.SCANNING, SupervisorStatus.DEEPENING) and user_turn_signal == UserTurnSignal.NONE:
            self._apply_supervisor_advice(state, insight)

        logger.info(
            f"Turn {state.conversation_id}: {phase_before.value} -> {state.phase.value} ({insight.status.value})"
        )

        # Step 5: Reply
        previous_assistant = state.last_assistant_message()
        text = self._respond(state, insight, user_message, user_turn_signal)
        state.last_insight = insight

        # Step 6: Quality
        if insight.status not in FINAL_STATUSES and insight.status != SupervisorStatus.CONFIRM_STOP:
            topic = state.current_topic()
            state.quality_turns.append(evaluate_turn_quality(
                state.phase,
                topic.label if topic else "",
                user_message,
                text,
                previous_assistant,
                language,
                topic.id if topic else None,
            ))

        # Step 7: Record the reply
        state.add_assistant_message(text)
        return self._result(state, text, insight)

    def end_interview(self, state: InterviewStateMachine, reason: str = "ended_by_client") -> TurnResult:
        """Close a conversation on request, without the data-collection guard."""
        if state.is_completed:
            raise InterviewCompletedError(f"Conversation {state.conversation_id} is already completed")
        insight = state.complete(reason=reason)
        text = strip_completion_tag(self.interviewer.generate_closing(state, insight))
        state.last_insight = insight
        state.add_assistant_message(text)
        return self._result(state, text, insight)

    def _handle_phase(
        self,
        state: InterviewStateMachine,
        user_message: str,
        user_turn_signal: UserTurnSignal,
    ) -> SupervisorInsight:
        if state.phase == InterviewPhase.SCAN:
            return state.handle_scan_turn(user_message, user_turn_signal)
        if state.phase == InterviewPhase.DEEP:
            return state.handle_deep_turn(user_message, user_turn_signal)
        if state.phase == InterviewPhase.DEEP_OFFER:
            return state.handle_deep_offer_turn(user_message)
        if state.phase == InterviewPhase.DATA_COLLECTION:
            return state.handle_data_collection_turn(user_message)
        return state.complete()

    def _apply_supervisor_advice(self, state: InterviewStateMachine, insight: SupervisorInsight):
        topic = state.current_topic()
        if topic is None:
            return
        advice, covered = self.supervisor.evaluate_topic_progress(state, topic)
        if advice.status == SupervisorStatus.TRANSITION:
            return
        for sub_goal in covered:
            if sub_goal != insight.next_sub_goal:
                state.mark_sub_goal_used(topic.id, sub_goal)
        if advice.next_sub_goal:
            insight.next_sub_goal = advice.next_sub_goal
            state.pending_sub_goal = advice.next_sub_goal
        if advice.focus_point and not insight.focus_point:
            insight.focus_point = advice.focus_point

    def _respond(
        self,
        state: InterviewStateMachine,
        insight: SupervisorInsight,
        user_message: str,
        user_turn_signal: UserTurnSignal,
    ) -> str:
        language = state.language
        if insight.status in TOPIC_STATUSES:
            if insight.stop_reason == "resumed":
                question = self.interviewer.generate_topic_response(state, insight, "")
                return get_fallback("resume", language, question=question)
            return self.interviewer.generate_topic_response(state, insight, user_message, user_turn_signal)
        if insight.status == SupervisorStatus.DEEP_OFFER_ASK:
            return self.interviewer.generate_deep_offer(state, insight)
        if insight.status == SupervisorStatus.DATA_COLLECTION_CONSENT:
            return self.interviewer.generate_consent_question(state)
        if insight.status == SupervisorStatus.DATA_COLLECTION:
            return self.interviewer.generate_field_question(state, insight)
        if insight.status == SupervisorStatus.CONFIRM_STOP:
            return get_fallback("confirm_stop", language)
        return strip_completion_tag(self.interviewer.generate_closing(state, insight))

    @staticmethod
    def _result(state: InterviewStateMachine, text: str, insight: SupervisorInsight) -> TurnResult:
        topic = state.current_topic()
        profile = None
        if state.bot.should_collect_data and (state.is_completed or state.phase == InterviewPhase.DATA_COLLECTION):
            profile = state.candidate_profile.model_dump()
        return TurnResult(
            text=text,
            phase=state.phase,
            supervisor_status=insight.status,
            is_completed=state.is_completed,
            current_topic_id=topic.id if topic else None,
            candidate_profile=profile,
        )


# Global controller instance
agent_controller = AgentController()
