"""
Unit tests for the interview plan: base budgets, overrides, persistence
and deep planning.
"""
import pytest

from conftest import make_bot, make_topics
from interview.plan import (
    build_base_interview_plan,
    build_deep_plan,
    build_deep_topic_order,
    build_extension_preview_hints,
    lexical_overlap_score,
    merge_interview_plan,
    sanitize_overrides,
    select_deep_focus_point,
    tokenize_for_scoring,
)
from interview.sessions import BotNotFoundError, SessionStore
from models.schemas import (
    CreateBotRequest,
    InterestingTopic,
    InterviewPlanOverrides,
    TopicBlock,
)


def overrides(data) -> InterviewPlanOverrides:
    return InterviewPlanOverrides.model_validate(data)


class TestBasePlan:
    """Turn budgets derived from the interview duration."""

    @pytest.mark.unit
    def test_time_based_max_turns(self):
        """Should give each topic floor(per-topic seconds / 45) turns."""
        plan = build_base_interview_plan(make_bot(max_duration_mins=10))
        assert plan.meta.total_time_sec == 600
        assert plan.meta.per_topic_time_sec == pytest.approx(200)
        assert [t.max_turns for t in plan.scan.topics] == [4, 4, 4]
        assert all(t.min_turns == 1 for t in plan.scan.topics)

    @pytest.mark.unit
    def test_short_interview_gets_one_turn(self):
        """Should cap every topic at one turn below a minute per topic."""
        plan = build_base_interview_plan(make_bot(max_duration_mins=2))
        assert [t.max_turns for t in plan.scan.topics] == [1, 1, 1]

    @pytest.mark.unit
    def test_topic_max_turns_respected(self):
        """Should use the topic's own max_turns when lower than the time budget."""
        topics = make_topics()
        topics[0].max_turns = 2
        plan = build_base_interview_plan(make_bot(topics=topics))
        assert plan.scan.topics[0].max_turns == 2

    @pytest.mark.unit
    def test_deep_defaults(self):
        """Should seed DEEP with two turns per topic and two fallback turns."""
        plan = build_base_interview_plan(make_bot())
        assert plan.deep.max_turns_per_topic == 2
        assert plan.deep.fallback_turns == 2
        assert [t.max_turns for t in plan.deep.topics] == [2, 2, 2]

    @pytest.mark.unit
    def test_topics_follow_order_index(self):
        """Should lay out topics by order_index."""
        topics = make_topics()
        topics[0].order_index = 5
        plan = build_base_interview_plan(make_bot(topics=topics))
        assert [t.topic_id for t in plan.scan.topics] == ["t2", "t3", "t1"]


class TestOverrides:
    """Sanitizing and merging operator overrides."""

    @pytest.mark.unit
    def test_unknown_topics_dropped(self):
        """Should drop overrides for topics not in the plan."""
        base = build_base_interview_plan(make_bot())
        safe = sanitize_overrides(base, overrides({"scan": {"topics": {"ghost": {"max_turns": 3}}}}))
        assert safe.scan.topics == {}

    @pytest.mark.unit
    def test_turns_clamped(self):
        """Should floor fractional turns and clamp them to at least one."""
        base = build_base_interview_plan(make_bot())
        safe = sanitize_overrides(base, overrides({
            "scan": {"topics": {"t1": {"min_turns": 2.7, "max_turns": 0.2}}},
            "deep": {"max_turns_per_topic": 3.9, "fallback_turns": -1},
        }))
        assert safe.scan.topics["t1"].min_turns == 2
        assert safe.scan.topics["t1"].max_turns == 1
        assert safe.deep.max_turns_per_topic == 3
        assert safe.deep.fallback_turns == 1

    @pytest.mark.unit
    def test_merge_keeps_max_above_min(self):
        """Should raise max_turns to min_turns when an override inverts them."""
        base = build_base_interview_plan(make_bot())
        merged = merge_interview_plan(base, overrides({
            "scan": {"topics": {"t1": {"min_turns": 3, "max_turns": 1}}},
            "deep": {"topics": {"t2": {"max_turns": 4}}},
        }))
        t1 = next(t for t in merged.scan.topics if t.topic_id == "t1")
        assert (t1.min_turns, t1.max_turns) == (3, 3)
        t2 = next(t for t in merged.deep.topics if t.topic_id == "t2")
        assert t2.max_turns == 4
        # Base plan untouched
        assert base.scan.topics[0].min_turns == 1


class TestPlanService:
    """Plan persistence through the session store."""

    def _store_with_bot(self):
        store = SessionStore()
        bot = store.create_bot(CreateBotRequest(
            name="Discovery", research_goal="Learn about tools", topics=make_topics(),
        ))
        return store, bot

    @pytest.mark.unit
    def test_created_with_bot(self):
        """Should create a version 1 plan when the bot is registered."""
        store, bot = self._store_with_bot()
        assert store.plans[bot.id].version == 1
        assert store.plan_service.get_or_create(bot).version == 1

    @pytest.mark.unit
    def test_rebased_on_duration_change(self):
        """Should bump the version when the bot duration changes."""
        store, bot = self._store_with_bot()
        longer = bot.model_copy(update={"max_duration_mins": 30})
        store.bots[bot.id] = longer
        plan = store.plan_service.get_or_create(longer)
        assert plan.version == 2
        assert plan.meta.max_duration_mins == 30

    @pytest.mark.unit
    def test_update_overrides(self):
        """Should store sanitized overrides and return the merged plan."""
        store, bot = self._store_with_bot()
        plan = store.plan_service.update_overrides(bot.id, overrides({"deep": {"fallback_turns": 3}}))
        assert plan.version == 2
        assert plan.deep.fallback_turns == 3
        assert store.plan_service.get_or_create(bot).deep.fallback_turns == 3

    @pytest.mark.unit
    def test_regenerate_keeps_overrides(self):
        """Should rebuild the base plan and keep the overrides."""
        store, bot = self._store_with_bot()
        store.plan_service.update_overrides(bot.id, overrides({"deep": {"fallback_turns": 3}}))
        plan = store.plan_service.regenerate(bot.id)
        assert plan.version == 3
        assert plan.deep.fallback_turns == 3

    @pytest.mark.unit
    def test_regenerate_unknown_bot(self):
        """Should raise for an unknown bot."""
        with pytest.raises(BotNotFoundError):
            SessionStore().plan_service.regenerate("missing")


class TestDeepPlanning:
    """DEEP topic order and turn allocation."""

    @pytest.mark.unit
    def test_tokenize_strips_accents_and_stopwords(self):
        """Should keep accent-free content tokens of three or more chars."""
        assert tokenize_for_scoring("Qualità del servizio", "it") == {"qualita", "servizio"}
        assert lexical_overlap_score("", "anything", "en") == 0.0

    @pytest.mark.unit
    def test_uncovered_topics_first(self):
        """Should order by remaining sub-goals before the priority score."""
        history = {"t1": ["tools used today"], "t2": []}
        order = build_deep_topic_order(make_topics(), history=history)
        assert order[0] == "t2"

    @pytest.mark.unit
    def test_allocation_caps(self):
        """Should cap turns by plan and by remaining sub-goals."""
        topics = make_topics()
        plan = build_base_interview_plan(make_bot())
        history = {"t2": ["who decides"], "t3": ["wish list"]}
        order, turns = build_deep_plan(topics, plan, history)
        assert order == ["t1", "t2"]
        assert turns == {"t1": 2, "t2": 1}

    @pytest.mark.unit
    def test_allocation_limited_by_time(self):
        """Should give one turn per topic when time is short."""
        topics = make_topics()
        plan = build_base_interview_plan(make_bot())
        _, turns = build_deep_plan(topics, plan, {}, remaining_sec=30)
        assert set(turns.values()) == {1}
        assert len(turns) == 3

    @pytest.mark.unit
    def test_fallback_when_everything_covered(self):
        """Should pick the top fallback topics with one turn each."""
        topics = make_topics()
        plan = build_base_interview_plan(make_bot())
        history = {t.id: list(t.sub_goals) for t in topics}
        interesting = [InterestingTopic(topic_id="t3", topic_label="Future needs", engagement_score=0.9)]
        order, turns = build_deep_plan(topics, plan, history, interesting)
        assert order[0] == "t3"
        assert len(order) == 2
        assert set(turns.values()) == {1}

    @pytest.mark.unit
    def test_focus_point_prefers_objective(self):
        """Should pick the sub-goal that overlaps the objective."""
        topic = TopicBlock(id="x", label="Pricing", sub_goals=["payment terms", "price sensitivity"])
        focus = select_deep_focus_point(topic, topic.sub_goals, objective="measure price sensitivity")
        assert focus == "price sensitivity"

    @pytest.mark.unit
    def test_focus_point_without_sub_goals(self):
        """Should fall back to the topic label."""
        topic = TopicBlock(id="x", label="Pricing")
        assert select_deep_focus_point(topic, []) == "Pricing"

    @pytest.mark.unit
    def test_extension_preview(self):
        """Should list up to two remaining sub-goals, or labels when all are covered."""
        topics = make_topics()
        assert build_extension_preview_hints(topics, history={}) == ["tools used today", "who decides"]
        covered = {t.id: list(t.sub_goals) for t in topics}
        assert build_extension_preview_hints(topics, history=covered) == ["Current tools", "Buying process"]
