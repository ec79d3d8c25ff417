"""
Unit tests for answer scoring, topic budgets and model selection.
"""
import pytest

from interview.scoring import (
    compute_budget_action,
    compute_engagement_score,
    compute_signal_score,
    extract_snippet,
    should_use_critical_model,
    signal_band,
    steal_bonus_turn,
)
from models.schemas import InterviewPhase, SupervisorStatus, TopicBudget, UserTurnSignal

RICH_ANSWER = (
    "Because of the cost, for example last year we lost 20 hours a month on reconciliation, "
    "which led to a decision to switch tools."
)


class TestSignalScore:
    """Signal scoring of user answers."""

    @pytest.mark.unit
    def test_empty_answer(self):
        """Should score an empty answer as low with no snippet."""
        result = compute_signal_score("   ", "en")
        assert result.score == 0.0
        assert result.band == "low"
        assert result.snippet == ""

    @pytest.mark.unit
    def test_short_answer_is_low(self):
        """Should rate a bare acknowledgement as low."""
        assert compute_signal_score("ok", "en").band == "low"

    @pytest.mark.unit
    def test_rich_answer_is_high(self):
        """Should rate cause, example, impact and numbers as high."""
        result = compute_signal_score(RICH_ANSWER, "en")
        assert result.band == "high"
        assert 0.5 <= result.score <= 1.0

    @pytest.mark.unit
    def test_italian_cues(self):
        """Should use the Italian cue set."""
        result = compute_signal_score("Perché il costo è alto, ad esempio 3 fornitori su 5", "it")
        assert result.band in ("medium", "high")

    @pytest.mark.unit
    def test_bands(self):
        """Should split bands at 0.5 and 0.25."""
        assert signal_band(0.5) == "high"
        assert signal_band(0.25) == "medium"
        assert signal_band(0.2499) == "low"

    @pytest.mark.unit
    def test_snippet_truncated(self):
        """Should truncate long snippets with an ellipsis."""
        snippet = extract_snippet("word " * 60, max_len=40)
        assert len(snippet) == 40
        assert snippet.endswith("…")


class TestEngagement:
    """Engagement estimate."""

    @pytest.mark.unit
    def test_bounds(self):
        """Should stay within 0 and 1."""
        assert compute_engagement_score("", "en") == 0.0
        text = "For example our customer Acme Ltd " + "really " * 80 + "frustrating 40"
        assert compute_engagement_score(text, "en") == 1.0


class TestBudgetAction:
    """Continue / bonus / advance decisions."""

    @pytest.mark.unit
    def test_below_minimum_continues(self):
        """Should continue below min_turns whatever the band."""
        budget = TopicBudget(base_turns=3, min_turns=2, max_turns=3)
        assert compute_budget_action("low", 1, budget) == "continue"

    @pytest.mark.unit
    def test_low_signal_advances(self):
        """Should advance on a low answer once the minimum is met."""
        budget = TopicBudget(base_turns=3, min_turns=1, max_turns=3)
        assert compute_budget_action("low", 1, budget) == "advance"
        assert compute_budget_action("medium", 1, budget) == "continue"

    @pytest.mark.unit
    def test_bonus_only_for_high_signal(self):
        """Should request a bonus turn only for a high answer at the limit."""
        budget = TopicBudget(base_turns=2, min_turns=1, max_turns=2)
        assert compute_budget_action("high", 2, budget) == "bonus"
        assert compute_budget_action("medium", 2, budget) == "advance"

    @pytest.mark.unit
    def test_bonus_limit(self):
        """Should advance once the topic already had its bonus turn."""
        budget = TopicBudget(base_turns=2, min_turns=1, max_turns=3, bonus_turns_granted=1)
        assert compute_budget_action("high", 3, budget) == "advance"


class TestStealBonusTurn:
    """Taking a turn from an untouched topic."""

    @pytest.mark.unit
    def test_steals_from_untouched_topic(self):
        """Should lower the donor's max_turns by one."""
        budgets = {
            "a": TopicBudget(base_turns=2, min_turns=1, max_turns=2, turns_used=2),
            "b": TopicBudget(base_turns=1, min_turns=1, max_turns=1),
            "c": TopicBudget(base_turns=3, min_turns=1, max_turns=3),
        }
        assert steal_bonus_turn("a", budgets) == "c"
        assert budgets["c"].max_turns == 2

    @pytest.mark.unit
    def test_no_donor(self):
        """Should return None when no topic can spare a turn."""
        budgets = {
            "a": TopicBudget(base_turns=2, min_turns=1, max_turns=2, turns_used=2),
            "b": TopicBudget(base_turns=3, min_turns=1, max_turns=3, turns_used=1),
        }
        assert steal_bonus_turn("a", budgets) is None


class TestCriticalModel:
    """Model selection for important turns."""

    @pytest.mark.unit
    def test_non_topic_phase(self):
        """Should use the default model outside SCAN/DEEP."""
        choice = should_use_critical_model(InterviewPhase.DATA_COLLECTION, None, UserTurnSignal.NONE, "x", "en")
        assert choice == {"use_critical": False, "reason": "not_topic_phase"}

    @pytest.mark.unit
    @pytest.mark.parametrize("signal,status,reason", [
        (UserTurnSignal.CLARIFICATION, SupervisorStatus.SCANNING, "clarification_turn"),
        (UserTurnSignal.OFF_TOPIC_QUESTION, SupervisorStatus.SCANNING, "scope_recovery_turn"),
        (UserTurnSignal.NONE, SupervisorStatus.TRANSITION, "topic_transition_turn"),
        (UserTurnSignal.NONE, SupervisorStatus.START_DEEP, "topic_transition_turn"),
    ])
    def test_critical_turns(self, signal, status, reason):
        """Should use the critical model for clarification, scope recovery and transitions."""
        choice = should_use_critical_model(InterviewPhase.SCAN, status, signal, "ok", "en")
        assert choice == {"use_critical": True, "reason": reason}

    @pytest.mark.unit
    def test_high_signal_deepening(self):
        """Should use the critical model when deepening a long answer."""
        choice = should_use_critical_model(
            InterviewPhase.DEEP, SupervisorStatus.DEEPENING, UserTurnSignal.NONE, "word " * 40, "en"
        )
        assert choice["reason"] == "high_signal_deepening"

    @pytest.mark.unit
    def test_standard_turn(self):
        """Should use the default model for an ordinary scan turn."""
        choice = should_use_critical_model(
            InterviewPhase.SCAN, SupervisorStatus.SCANNING, UserTurnSignal.NONE, "word " * 40, "en"
        )
        assert choice == {"use_critical": False, "reason": "standard_turn"}
