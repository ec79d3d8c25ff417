"""
Tests for the interviewer, the topic supervisor and the turn controller.
"""
import pytest

from conftest import FakeLLM, make_bot, make_state, make_topics
from interview.agents import AgentController, SupervisorAgent, TurnResult
from interview.anchors import build_natural_topic_cue
from interview.dedup import find_duplicate_question_match
from interview.sessions import InterviewCompletedError
from llm.prompts import get_fallback
from models.schemas import InterviewPhase, SupervisorStatus, UserTurnSignal
from utils.config import config

MEDIUM_ANSWER = "We use spreadsheets because the accounting package is too expensive for a team of our size"
SCRIPTED_REPLY = "Spreadsheets can take a lot of effort. Who usually decides when your team buys new software?"
OPENING_QUESTION = "What tools does your team use for bookkeeping today?"


@pytest.fixture
def started(controller, state):
    controller.start_interview(state)
    return state


class TestOpening:
    """First assistant message."""

    @pytest.mark.unit
    def test_fallback_opening(self, controller, state):
        """Should greet and ask about the first sub-goal when the LLM fails."""
        result = controller.start_interview(state)
        assert result.text.startswith("Hi, and thanks for taking the time.")
        assert "tools used today" in result.text
        assert result.phase == InterviewPhase.SCAN
        assert result.current_topic_id == "t1"
        assert state.assistant_messages() == [result.text]

    @pytest.mark.unit
    def test_runtime_knowledge_without_guide(self, controller, state):
        """Should build fallback topic knowledge when the bot has no guide."""
        controller.start_interview(state)
        assert state.runtime_knowledge is not None

    @pytest.mark.unit
    def test_guide_skips_runtime_knowledge(self, fake_llm, memory):
        machine = make_state(make_bot(manual_guide="Ask about month-end close first."), fake_llm)
        AgentController(llm=fake_llm, memory=memory).start_interview(machine)
        assert machine.runtime_knowledge is None

    @pytest.mark.unit
    def test_llm_opening_with_introduction(self, memory):
        """Should prefix the configured introduction to the generated question."""
        llm = FakeLLM(texts=[OPENING_QUESTION])
        machine = make_state(make_bot(introduction_message="Welcome to our study."), llm)
        result = AgentController(llm=llm, memory=memory).start_interview(machine)
        assert result.text == f"Welcome to our study. {OPENING_QUESTION}"


class TestProcessTurn:
    """End-to-end user turns."""

    @pytest.mark.unit
    def test_scripted_reply(self, fake_llm, controller, started):
        """Should move to the next topic and use the generated reply."""
        fake_llm.texts.append(SCRIPTED_REPLY)
        result = controller.process_turn(started, "We mostly rely on spreadsheets and a shared drive")
        assert result.text == SCRIPTED_REPLY
        assert result.supervisor_status == SupervisorStatus.TRANSITION
        assert result.current_topic_id == "t2"
        assert len(started.quality_turns) == 1
        assert [m.role for m in started.messages] == ["assistant", "user", "assistant"]

    @pytest.mark.unit
    def test_transition_uses_critical_model(self, fake_llm, controller, started):
        fake_llm.texts.append(SCRIPTED_REPLY)
        controller.process_turn(started, "ok")
        assert fake_llm.text_calls[-1]["model"] == config.llm.critical_model

    @pytest.mark.unit
    def test_clarification(self, fake_llm, controller, started):
        """Should answer a clarification with the critical model and keep the budget."""
        result = controller.process_turn(started, "what do you mean?")
        assert fake_llm.text_calls[-1]["model"] == config.llm.critical_model
        assert result.text == get_fallback("clarification", "en", cue=build_natural_topic_cue("Current tools", "en"))
        assert started.topic_budgets["t1"].turns_used == 0

    @pytest.mark.unit
    def test_generated_clarification(self, fake_llm, controller, started):
        """Should keep a generated reply that clarifies before asking again."""
        reply = "To clarify, I meant the software you use today. Which one matters most to you?"
        fake_llm.texts.append(reply)
        assert controller.process_turn(started, "what do you mean?").text == reply

    @pytest.mark.unit
    def test_clarification_ignored_by_llm(self, fake_llm, controller, started):
        """Should fall back when the generated reply skips the clarification."""
        fake_llm.texts.append("Which accounting package do you rely on most?")
        result = controller.process_turn(started, "what do you mean?")
        assert result.text == get_fallback("clarification", "en", cue=build_natural_topic_cue("Current tools", "en"))

    @pytest.mark.unit
    def test_repeated_question_replaced(self, memory):
        """Should drop generated replies that repeat an earlier question."""
        llm = FakeLLM(texts=[OPENING_QUESTION])
        machine = make_state(make_bot(), llm)
        controller = AgentController(llm=llm, memory=memory)
        controller.start_interview(machine)

        llm.texts.extend([f"Got it. {OPENING_QUESTION}", OPENING_QUESTION])
        result = controller.process_turn(machine, MEDIUM_ANSWER)
        assert llm.texts == []
        assert result.supervisor_status == SupervisorStatus.SCANNING
        assert "main frustrations" in result.text

    @pytest.mark.unit
    def test_memory_updated(self, controller, started, memory_store_mock):
        controller.process_turn(started, "We use Excel for all our invoices and payroll")
        assert started.memory.user_turns == 1
        memory_store_mock.store_facts.assert_called_once()

    @pytest.mark.unit
    def test_completed_conversation_rejected(self, controller, started):
        controller.end_interview(started)
        with pytest.raises(InterviewCompletedError):
            controller.process_turn(started, "hello?")


class TestFallbackQuestion:
    """Template questions used when generation fails."""

    @pytest.mark.unit
    def test_repeated_template_rotated(self, controller, state):
        """Should not send a template question the user has already seen."""
        cue = build_natural_topic_cue("Current tools", "en")
        asked = [
            get_fallback("sub_goal_question", "en", cue=cue, sub_goal="tools used today"),
            get_fallback("sub_goal_question_alt", "en", cue=cue, sub_goal="tools used today"),
        ]
        for text in asked:
            state.add_assistant_message(text)

        question = controller.interviewer._fallback_topic_question(
            state, state.current_topic(), state.last_insight, UserTurnSignal.NONE
        )
        assert question not in asked
        assert not find_duplicate_question_match(question, state.assistant_messages(), "en").is_duplicate

    @pytest.mark.unit
    def test_first_template_kept_without_history(self, controller, state):
        question = controller.interviewer._fallback_topic_question(
            state, state.current_topic(), state.last_insight, UserTurnSignal.NONE
        )
        cue = build_natural_topic_cue("Current tools", "en")
        assert question == get_fallback("sub_goal_question", "en", cue=cue, sub_goal="tools used today")


class TestSupervisorAdvice:
    """Advisory sub-goal tracking."""

    @pytest.mark.unit
    def test_covered_sub_goal_marked(self, memory):
        """Should record sub-goals the user already covered."""
        topics = make_topics()
        topics[0].sub_goals = ["tools used today", "main frustrations", "workarounds"]
        llm = FakeLLM(json_rules={"You supervise": {
            "covered_sub_goals": ["workarounds"], "next_sub_goal": "main frustrations",
        }})
        machine = make_state(make_bot(topics=topics), llm)
        controller = AgentController(llm=llm, memory=memory)
        controller.start_interview(machine)
        result = controller.process_turn(machine, MEDIUM_ANSWER)
        assert result.supervisor_status == SupervisorStatus.SCANNING
        assert machine.sub_goal_history["t1"] == ["tools used today", "workarounds"]
        assert machine.pending_sub_goal == "main frustrations"

    @pytest.mark.unit
    def test_evaluate_filters_unknown_goals(self, state):
        """Should ignore sub-goals that are not pending."""
        state.handle_scan_turn(MEDIUM_ANSWER)
        supervisor = SupervisorAgent(FakeLLM(json_rules={"You supervise": {
            "covered_sub_goals": ["main frustrations", "ghost"], "next_sub_goal": "ghost", "focus_point": "month-end",
        }}))
        advice, covered = supervisor.evaluate_topic_progress(state, state.current_topic())
        assert covered == ["main frustrations"]
        assert advice.status == SupervisorStatus.SCANNING
        assert advice.next_sub_goal is None
        assert advice.focus_point == "month-end"

    @pytest.mark.unit
    def test_evaluate_failure(self, state):
        advice, covered = SupervisorAgent(FakeLLM()).evaluate_topic_progress(state, state.current_topic())
        assert advice.status == SupervisorStatus.TRANSITION
        assert covered == []

    @pytest.mark.unit
    def test_nothing_left_to_evaluate(self, state):
        """Should skip the LLM when every sub-goal is covered."""
        llm = FakeLLM()
        topic = state.current_topic()
        state.sub_goal_history[topic.id] = list(topic.sub_goals)
        advice, _ = SupervisorAgent(llm).evaluate_topic_progress(state, topic)
        assert advice.status == SupervisorStatus.TRANSITION
        assert llm.json_calls == []


class TestExtensionOffer:
    """Time expiry through the controller."""

    @pytest.mark.unit
    def test_offer_then_refusal(self, controller, started):
        """Should offer more time and then close without a completion tag."""
        offer = controller.process_turn(started, "ok", effective_duration=601)
        assert offer.supervisor_status == SupervisorStatus.DEEP_OFFER_ASK
        assert offer.phase == InterviewPhase.DEEP_OFFER
        assert "continue" in offer.text

        done = controller.process_turn(started, "no thanks", effective_duration=610)
        assert done.is_completed is True
        assert done.supervisor_status == SupervisorStatus.COMPLETE_WITHOUT_DATA
        assert "INTERVIEW_COMPLETED" not in done.text
        assert done.text.startswith("Thank you very much for your time")

    @pytest.mark.unit
    def test_generated_offer_must_ask_to_continue(self, fake_llm, started):
        """Should replace an offer that is not a continuation question."""
        started.set_effective_duration(601)
        insight = started.handle_time_expiry()
        fake_llm.texts.append("What else would you like to tell me about your tools?")
        controller = AgentController(llm=fake_llm)
        text = controller.interviewer.generate_deep_offer(started, insight)
        assert text == get_fallback("deep_offer_with_hint", "en", hint=insight.extension_preview[0])


class TestStopFlow:
    """Explicit stop requests."""

    @pytest.mark.unit
    def test_confirm_question(self, controller, started):
        result = controller.process_turn(started, "I want to stop the interview")
        assert result.supervisor_status == SupervisorStatus.CONFIRM_STOP
        assert result.text == get_fallback("confirm_stop", "en")
        assert started.quality_turns == []

    @pytest.mark.unit
    def test_resume(self, controller, started):
        """Should resume with the pending question when the stop is not confirmed."""
        controller.process_turn(started, "I want to stop the interview")
        result = controller.process_turn(started, "no, let's keep going")
        assert result.supervisor_status == SupervisorStatus.SCANNING
        assert result.text.startswith("Happy to keep going.")
        assert result.is_completed is False

    @pytest.mark.unit
    def test_confirmed(self, fake_llm, controller, started):
        fake_llm.json_rules["confirm they want to conclude"] = {"intent": "ACCEPT"}
        controller.process_turn(started, "I want to stop the interview")
        result = controller.process_turn(started, "yes")
        assert result.is_completed is True


class TestDataCollectionFlow:
    """Consent and fields through the controller."""

    @pytest.mark.unit
    def test_full_flow(self, controller, data_state):
        """Should ask consent, collect each field and close with data."""
        controller.start_interview(data_state)
        controller.process_turn(data_state, "ok", effective_duration=601)

        consent = controller.process_turn(data_state, "no thanks", effective_duration=605)
        assert consent.supervisor_status == SupervisorStatus.DATA_COLLECTION_CONSENT
        assert "contact details" in consent.text
        assert consent.candidate_profile is not None

        name = controller.process_turn(data_state, "yes")
        assert name.text == "Could you share your name?"

        email = controller.process_turn(data_state, "Maria Rossi")
        assert email.text == "Could you share your email address?"

        done = controller.process_turn(data_state, "maria@example.com")
        assert done.supervisor_status == SupervisorStatus.FINAL_GOODBYE
        assert done.text == "Thank you, I have everything I need. We really appreciate your time and your insights."
        assert done.candidate_profile["fields"] == {"name": "Maria Rossi", "email": "maria@example.com"}

    @pytest.mark.unit
    def test_invalid_value_feedback(self, controller, data_state):
        """Should prefix the retry question with validation feedback."""
        controller.start_interview(data_state)
        data_state.complete()
        controller.process_turn(data_state, "yes")
        controller.process_turn(data_state, "Maria Rossi")
        retry = controller.process_turn(data_state, "my email is maria at example")
        assert retry.text == (
            "I couldn't extract a value from your message. Could you try again? "
            "Could you share your email address?"
        )


class TestEndInterview:
    """Client-initiated close."""

    @pytest.mark.unit
    def test_end(self, controller, started):
        result = controller.end_interview(started, reason="user_left")
        assert result.is_completed is True
        assert result.supervisor_status == SupervisorStatus.COMPLETE_WITHOUT_DATA
        assert "INTERVIEW_COMPLETED" not in result.text
        with pytest.raises(InterviewCompletedError):
            controller.end_interview(started)

    @pytest.mark.unit
    def test_end_skips_consent(self, controller, data_state):
        """Should close without asking for contact data."""
        controller.start_interview(data_state)
        result = controller.end_interview(data_state)
        assert result.is_completed is True
        assert data_state.consent_given is None


class TestTurnResult:
    @pytest.mark.unit
    def test_to_response(self):
        result = TurnResult(
            text="Hello?", phase=InterviewPhase.SCAN, supervisor_status=SupervisorStatus.SCANNING,
            is_completed=False, current_topic_id="t1",
        )
        response = result.to_response("conv-1")
        assert response.conversation_id == "conv-1"
        assert response.current_topic_id == "t1"
        assert response.candidate_profile is None
