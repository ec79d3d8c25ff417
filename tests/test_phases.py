"""
Unit tests for phase-flow guards and the phase simulator.
"""
import pytest

from interview.phases import (
    InterviewPhases,
    PHASE_ORDER,
    PhaseSimulatorState,
    get_completion_guard_action,
    on_completion_tag,
    on_deep_completed,
    on_deep_offer_user_intent,
    on_scan_completed,
    on_topic_phase_closure_attempt,
    should_intercept_deep_offer_closure,
    should_intercept_topic_phase_closure,
    should_offer_continuation_after_deep,
)
from models.schemas import CompletionGuardAction, InterviewPhase, PhaseAction, UserIntent


def topic_closure(phase, **flags):
    values = {
        "is_goodbye_response": False,
        "is_goodbye_with_question": False,
        "has_no_question": False,
        "is_premature_contact_request": False,
        "has_completion_tag": False,
    }
    values.update(flags)
    return should_intercept_topic_phase_closure(phase=phase, **values)


class TestPhaseOrder:
    """Canonical progression."""

    @pytest.mark.unit
    def test_order(self):
        """Should list the five phases in progression order."""
        assert [p.value for p in PHASE_ORDER] == ["SCAN", "DEEP", "DEEP_OFFER", "DATA_COLLECTION", "COMPLETED"]

    @pytest.mark.unit
    def test_next_phase(self):
        """Should return the following phase and None at the end."""
        assert InterviewPhases.get_next_phase(InterviewPhase.SCAN) == InterviewPhase.DEEP
        assert InterviewPhases.get_next_phase(InterviewPhase.COMPLETED) is None

    @pytest.mark.unit
    def test_phase_progress(self):
        """Should report time progress capped at 1 and remaining seconds floored at 0."""
        progress = InterviewPhases.get_phase_progress(InterviewPhase.SCAN, 1, 3, 900, 600)
        assert progress["time_progress"] == 1.0
        assert progress["remaining_sec"] == 0
        assert progress["topic_progress"] == pytest.approx(2 / 3)


class TestContinuationGuard:
    """DEEP completion with time left."""

    @pytest.mark.unit
    @pytest.mark.parametrize("remaining,accepted,expected", [
        (120, None, True),
        (120, False, True),
        (120, True, False),
        (0, None, False),
        (-5, False, False),
    ])
    def test_should_offer_continuation(self, remaining, accepted, expected):
        """Should offer only with time left and no prior acceptance."""
        assert should_offer_continuation_after_deep(remaining, accepted) is expected


class TestClosureInterception:
    """Premature closure in topic phases and in the extension offer."""

    @pytest.mark.unit
    def test_non_topic_phase_never_intercepted(self):
        """Should leave DATA_COLLECTION replies alone."""
        assert topic_closure(InterviewPhase.DATA_COLLECTION, has_completion_tag=True) is False

    @pytest.mark.unit
    def test_completion_tag_intercepted(self):
        """Should intercept the completion tag in SCAN."""
        assert topic_closure(InterviewPhase.SCAN, has_completion_tag=True) is True

    @pytest.mark.unit
    def test_contact_request_intercepted(self):
        """Should intercept a contact request in DEEP."""
        assert topic_closure(InterviewPhase.DEEP, is_premature_contact_request=True) is True

    @pytest.mark.unit
    def test_goodbye_with_question_allowed(self):
        """Should allow a goodbye phrase that still carries a question."""
        assert topic_closure(InterviewPhase.SCAN, is_goodbye_response=True, is_goodbye_with_question=True) is False

    @pytest.mark.unit
    def test_missing_question_intercepted(self):
        """Should intercept a reply without a question."""
        assert topic_closure(InterviewPhase.SCAN, has_no_question=True) is True

    @pytest.mark.unit
    def test_deep_offer_closure(self):
        """Should keep DEEP_OFFER replies as a yes/no question."""
        assert should_intercept_deep_offer_closure(InterviewPhase.DEEP_OFFER, False, False, True, False) is True
        assert should_intercept_deep_offer_closure(InterviewPhase.DEEP_OFFER, False, False, False, False) is False
        assert should_intercept_deep_offer_closure(InterviewPhase.SCAN, True, False, True, True) is False


class TestCompletionGuard:
    """Completion guard decisions."""

    @pytest.mark.unit
    def test_no_collection_allows(self):
        """Should allow completion when data collection is off."""
        assert get_completion_guard_action(False, ["email"], None) == CompletionGuardAction.ALLOW_COMPLETION

    @pytest.mark.unit
    def test_refusal_allows(self):
        """Should allow completion once the user refused."""
        action = get_completion_guard_action(True, ["email"], False, data_collection_refused=True)
        assert action == CompletionGuardAction.ALLOW_COMPLETION

    @pytest.mark.unit
    def test_consent_pending(self):
        """Should ask for consent when it was never given."""
        assert get_completion_guard_action(True, ["email"], None) == CompletionGuardAction.ASK_CONSENT

    @pytest.mark.unit
    def test_missing_field(self):
        """Should ask for a missing field after consent."""
        action = get_completion_guard_action(True, ["email"], True, missing_field="email")
        assert action == CompletionGuardAction.ASK_MISSING_FIELD


class TestPhaseSimulator:
    """Transition functions."""

    @pytest.mark.unit
    def test_scan_completed_with_time(self):
        """Should start DEEP while time remains."""
        result = on_scan_completed(PhaseSimulatorState(phase=InterviewPhase.SCAN, remaining_sec=30))
        assert result.action == PhaseAction.START_DEEP
        assert result.state.phase == InterviewPhase.DEEP
        assert result.state.deep_accepted is None

    @pytest.mark.unit
    def test_scan_completed_without_time(self):
        """Should offer the extension when time is over."""
        result = on_scan_completed(PhaseSimulatorState(phase=InterviewPhase.SCAN, remaining_sec=0))
        assert result.action == PhaseAction.ASK_DEEP_OFFER
        assert result.state.deep_accepted is False

    @pytest.mark.unit
    def test_deep_completed(self):
        """Should ask consent or complete without data."""
        collect = PhaseSimulatorState(phase=InterviewPhase.DEEP, should_collect_data=True, candidate_field_ids=["email"])
        assert on_deep_completed(collect).action == PhaseAction.ASK_DATA_CONSENT
        assert on_deep_completed(collect).state.consent_given is False
        plain = PhaseSimulatorState(phase=InterviewPhase.DEEP)
        assert on_deep_completed(plain).action == PhaseAction.COMPLETE_WITHOUT_DATA

    @pytest.mark.unit
    def test_closure_attempt_in_deep_without_time(self):
        """Should turn a DEEP goodbye into the extension offer when time is over."""
        result = on_topic_phase_closure_attempt(PhaseSimulatorState(phase=InterviewPhase.DEEP, remaining_sec=0))
        assert result.action == PhaseAction.ASK_DEEP_OFFER

    @pytest.mark.unit
    def test_closure_attempt_in_scan(self):
        """Should ask a topic question instead of closing in SCAN."""
        result = on_topic_phase_closure_attempt(PhaseSimulatorState(phase=InterviewPhase.SCAN, remaining_sec=100))
        assert result.action == PhaseAction.ASK_TOPIC_QUESTION

    @pytest.mark.unit
    def test_deep_offer_intents(self):
        """Should start DEEP on accept, re-ask on neutral and move on on refuse."""
        offer = PhaseSimulatorState(phase=InterviewPhase.DEEP_OFFER)
        accepted = on_deep_offer_user_intent(offer, UserIntent.ACCEPT)
        assert accepted.action == PhaseAction.START_DEEP
        assert accepted.state.deep_accepted is True
        assert on_deep_offer_user_intent(offer, UserIntent.NEUTRAL).action == PhaseAction.ASK_DEEP_OFFER
        assert on_deep_offer_user_intent(offer, UserIntent.REFUSE).action == PhaseAction.COMPLETE_WITHOUT_DATA

    @pytest.mark.unit
    def test_deep_offer_intent_outside_offer(self):
        """Should ignore offer answers in other phases."""
        result = on_deep_offer_user_intent(PhaseSimulatorState(phase=InterviewPhase.SCAN), UserIntent.ACCEPT)
        assert result.action == PhaseAction.NO_OP

    @pytest.mark.unit
    def test_completion_tag_paths(self):
        """Should route completion through consent and missing fields."""
        pending = PhaseSimulatorState(
            phase=InterviewPhase.DEEP, should_collect_data=True, candidate_field_ids=["email"], consent_given=None
        )
        assert on_completion_tag(pending).action == PhaseAction.ASK_DATA_CONSENT

        missing = PhaseSimulatorState(
            phase=InterviewPhase.DATA_COLLECTION, should_collect_data=True,
            candidate_field_ids=["email"], consent_given=True, missing_field="email",
        )
        assert on_completion_tag(missing).action == PhaseAction.ASK_MISSING_FIELD

        refused = PhaseSimulatorState(
            phase=InterviewPhase.DATA_COLLECTION, should_collect_data=True,
            candidate_field_ids=["email"], data_collection_refused=True,
        )
        assert on_completion_tag(refused).action == PhaseAction.COMPLETE_WITHOUT_DATA

        done = PhaseSimulatorState(phase=InterviewPhase.DATA_COLLECTION)
        assert on_completion_tag(done).action == PhaseAction.COMPLETE_INTERVIEW
