"""
Interview plan: per-topic turn budgets for SCAN and DEEP.

The base plan is derived from the bot's duration and topics; operator
overrides are sanitized and merged on top. Deep planning decides which
topics get follow-up turns once the SCAN pass is over.
"""
import math
import logging
import unicodedata
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from models.schemas import (
    BotConfig,
    TopicBlock,
    InterviewPlan,
    InterviewPlanOverrides,
    PlanMeta,
    PlanTopic,
    ScanPlan,
    DeepPlan,
    DeepTopicOverride,
    InterestingTopic,
    ScanTopicOverride,
)
from utils.cleaning import sanitize_user_snippet
from utils.config import config

logger = logging.getLogger(__name__)

SECONDS_PER_TURN = 45


# ============================================================
# Base plan and overrides
# ============================================================

def build_topics_signature(topics: List[TopicBlock]) -> str:
    return "||".join(
        f"{t.id}:{t.order_index}:{t.max_turns}:{t.label}:{'|'.join(t.sub_goals)}"
        for t in topics
    )


def build_base_interview_plan(bot: BotConfig, topics: Optional[List[TopicBlock]] = None) -> InterviewPlan:
    """
    Derive turn budgets from the interview duration.

    Args:
        bot: The interview bot
        topics: Topics in order (defaults to the bot's sorted topics)

    Returns:
        The base InterviewPlan (version 1)
    """
    topics = topics if topics is not None else bot.sorted_topics
    max_duration = bot.max_duration_mins or config.interview.default_max_duration_mins
    total_time_sec = max_duration * 60
    per_topic_time_sec = total_time_sec / max(1, len(topics))
    time_based_max = max(1, math.floor(per_topic_time_sec / SECONDS_PER_TURN))

    scan_topics = []
    for topic in topics:
        topic_max = topic.max_turns or time_based_max
        if per_topic_time_sec < 60:
            computed_max = 1
        else:
            computed_max = max(1, min(topic_max, time_based_max))
        scan_topics.append(PlanTopic(
            topic_id=topic.id,
            label=topic.label,
            order_index=topic.order_index,
            sub_goals=list(topic.sub_goals),
            min_turns=1,
            max_turns=max(1, computed_max),
        ))

    deep_max = config.interview.deep_max_turns_per_topic
    return InterviewPlan(
        version=1,
        meta=PlanMeta(
            max_duration_mins=max_duration,
            total_time_sec=total_time_sec,
            per_topic_time_sec=per_topic_time_sec,
            seconds_per_turn=SECONDS_PER_TURN,
            topics_signature=build_topics_signature(topics),
        ),
        scan=ScanPlan(topics=scan_topics),
        deep=DeepPlan(
            strategy="uncovered_subgoals_first",
            max_turns_per_topic=deep_max,
            fallback_turns=config.interview.deep_fallback_turns,
            topics=[t.model_copy(update={"max_turns": deep_max}) for t in scan_topics],
        ),
    )


def _clamp_turns(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return max(1, math.floor(value))


def sanitize_overrides(base: InterviewPlan, overrides: Optional[InterviewPlanOverrides]) -> InterviewPlanOverrides:
    """Drop overrides for unknown topics and clamp every turn count to an integer >= 1."""
    if overrides is None:
        return InterviewPlanOverrides()

    scan_ids = {t.topic_id for t in base.scan.topics}
    deep_ids = {t.topic_id for t in base.deep.topics}
    sanitized = InterviewPlanOverrides()

    for topic_id, override in overrides.scan.topics.items():
        if topic_id in scan_ids:
            sanitized.scan.topics[topic_id] = ScanTopicOverride(
                min_turns=_clamp_turns(override.min_turns),
                max_turns=_clamp_turns(override.max_turns),
            )
        else:
            logger.warning(f"Ignoring scan override for unknown topic {topic_id}")

    for topic_id, override in overrides.deep.topics.items():
        if topic_id in deep_ids:
            sanitized.deep.topics[topic_id] = DeepTopicOverride(max_turns=_clamp_turns(override.max_turns))
        else:
            logger.warning(f"Ignoring deep override for unknown topic {topic_id}")

    sanitized.deep.max_turns_per_topic = _clamp_turns(overrides.deep.max_turns_per_topic)
    sanitized.deep.fallback_turns = _clamp_turns(overrides.deep.fallback_turns)
    return sanitized


def merge_interview_plan(base: InterviewPlan, overrides: Optional[InterviewPlanOverrides]) -> InterviewPlan:
    """Apply sanitized overrides to a deep copy of the base plan."""
    merged = base.model_copy(deep=True)
    safe = sanitize_overrides(base, overrides)

    for topic in merged.scan.topics:
        override = safe.scan.topics.get(topic.topic_id)
        if override is None:
            continue
        min_turns = max(1, int(override.min_turns if override.min_turns is not None else topic.min_turns))
        max_turns = int(override.max_turns if override.max_turns is not None else topic.max_turns)
        topic.min_turns = min_turns
        topic.max_turns = max(min_turns, max_turns)

    if safe.deep.max_turns_per_topic is not None:
        merged.deep.max_turns_per_topic = int(safe.deep.max_turns_per_topic)
    if safe.deep.fallback_turns is not None:
        merged.deep.fallback_turns = int(safe.deep.fallback_turns)
    for topic in merged.deep.topics:
        override = safe.deep.topics.get(topic.topic_id)
        if override is not None and override.max_turns is not None:
            topic.max_turns = max(1, int(override.max_turns))

    return merged


@dataclass
class PlanRecord:
    """Stored plan for a bot: the base plan, operator overrides and a version."""
    base_plan: InterviewPlan
    overrides: Optional[InterviewPlanOverrides] = None
    version: int = 1


class PlanService:
    """
    Plan persistence on top of the session store's `plans` mapping.
    """

    def __init__(self, store):
        self.store = store

    def get_or_create(self, bot: BotConfig) -> InterviewPlan:
        """
        Return the merged plan for a bot, creating or re-basing it as needed.
        The base is regenerated when the topics or the duration change.
        """
        base_plan = build_base_interview_plan(bot)
        record: Optional[PlanRecord] = self.store.plans.get(bot.id)

        if record is None:
            self.store.plans[bot.id] = PlanRecord(base_plan=base_plan)
            logger.info(f"Created interview plan for bot {bot.id}")
            return base_plan

        existing = record.base_plan
        if (existing.meta.topics_signature != base_plan.meta.topics_signature
                or existing.meta.max_duration_mins != base_plan.meta.max_duration_mins):
            record.base_plan = base_plan
            record.version += 1
            logger.info(f"Re-based interview plan for bot {bot.id} (version {record.version})")

        merged = merge_interview_plan(record.base_plan, record.overrides)
        merged.version = record.version
        return merged

    def regenerate(self, bot_id: str) -> InterviewPlan:
        """Rebuild the base plan from the bot, keeping the overrides."""
        bot = self.store.get_bot(bot_id)
        record: Optional[PlanRecord] = self.store.plans.get(bot_id)
        base_plan = build_base_interview_plan(bot)
        if record is None:
            record = PlanRecord(base_plan=base_plan)
            self.store.plans[bot_id] = record
        else:
            record.base_plan = base_plan
            record.version += 1
        merged = merge_interview_plan(record.base_plan, record.overrides)
        merged.version = record.version
        logger.info(f"Regenerated interview plan for bot {bot_id} (version {record.version})")
        return merged

    def update_overrides(self, bot_id: str, overrides: InterviewPlanOverrides) -> InterviewPlan:
        """Store sanitized overrides and return the merged plan."""
        bot = self.store.get_bot(bot_id)
        self.get_or_create(bot)
        record: PlanRecord = self.store.plans[bot_id]
        record.overrides = sanitize_overrides(record.base_plan, overrides)
        record.version += 1
        merged = merge_interview_plan(record.base_plan, record.overrides)
        merged.version = record.version
        return merged


# ============================================================
# Deep planning
# ============================================================

STOPWORDS_IT = {
    'il', 'lo', 'la', 'i', 'gli', 'le', 'un', 'uno', 'una',
    'di', 'a', 'da', 'in', 'con', 'su', 'per', 'tra', 'fra',
    'e', 'o', 'ma', 'se', 'che', 'non', 'piu', 'più',
    'del', 'dello', 'della', 'dei', 'degli', 'delle',
    'al', 'allo', 'alla', 'ai', 'agli', 'alle',
    'nel', 'nello', 'nella', 'nei', 'negli', 'nelle',
}

STOPWORDS_EN = {
    'the', 'a', 'an', 'and', 'or', 'but', 'if', 'then',
    'of', 'to', 'in', 'on', 'at', 'for', 'with', 'from', 'by', 'as',
    'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'this', 'that', 'these', 'those', 'it', 'its', 'their', 'them',
}


def tokenize_for_scoring(text: str, language: str) -> set:
    """Accent-free lowercase tokens of length >= 3, without stopwords."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    tokens = re.sub(r'[^a-z0-9\s]', ' ', stripped).split()
    stopwords = STOPWORDS_IT if language == "it" else STOPWORDS_EN
    return {t for t in tokens if len(t) >= 3 and t not in stopwords}


def lexical_overlap_score(a_text: str, b_text: str, language: str) -> float:
    a = tokenize_for_scoring(a_text, language)
    b = tokenize_for_scoring(b_text, language)
    if not a or not b:
        return 0.0
    return len(a & b) / max(1, min(len(a), len(b)))


def topic_semantic_text(topic: TopicBlock) -> str:
    return f"{topic.label} {' '.join(topic.sub_goals)}".strip()


def get_remaining_sub_goals(topic: TopicBlock, history: Optional[Dict[str, List[str]]]) -> List[str]:
    used = (history or {}).get(topic.id, [])
    return [sg for sg in topic.sub_goals if sg not in used]


def get_deep_topics(topics: List[TopicBlock], deep_order: Optional[List[str]]) -> List[TopicBlock]:
    if not deep_order:
        return list(topics)
    by_id = {t.id: t for t in topics}
    return [by_id[topic_id] for topic_id in deep_order if topic_id in by_id]


def build_deep_topic_order(
    topics: List[TopicBlock],
    interesting: Optional[List[InterestingTopic]] = None,
    history: Optional[Dict[str, List[str]]] = None,
    objective: str = "",
    language: str = "en",
) -> List[str]:
    """
    Order topics for DEEP: most uncovered sub-goals first, then priority score.

    Priority = 0.4 * uncovered ratio + 0.25 * interest
             + 0.15 * snippet alignment + 0.2 * objective alignment
    """
    interest_by_id = {it.topic_id: it for it in (interesting or [])}
    scored = []
    for idx, topic in enumerate(topics):
        match = interest_by_id.get(topic.id)
        remaining = len(get_remaining_sub_goals(topic, history))
        total = max(1, len(topic.sub_goals) or 1)
        uncovered_ratio = max(0.0, min(1.0, remaining / total))
        topic_text = topic_semantic_text(topic)
        snippet = match.best_snippet if match else ""
        interest = match.engagement_score if match else 0.0
        snippet_alignment = lexical_overlap_score(topic_text, snippet, language) if snippet else 0.0
        objective_alignment = lexical_overlap_score(topic_text, objective, language) if objective else 0.0
        score = (
            uncovered_ratio * 0.4
            + interest * 0.25
            + snippet_alignment * 0.15
            + objective_alignment * 0.2
        )
        scored.append((topic.id, score, remaining, idx))

    scored.sort(key=lambda item: (-item[2], -item[1], item[3]))
    return [topic_id for topic_id, _, _, _ in scored]


def build_deep_plan(
    topics: List[TopicBlock],
    plan: InterviewPlan,
    history: Optional[Dict[str, List[str]]] = None,
    interesting: Optional[List[InterestingTopic]] = None,
    remaining_sec: Optional[float] = None,
    objective: str = "",
    language: str = "en",
) -> Tuple[List[str], Dict[str, int]]:
    """
    Allocate DEEP turns.

    Every topic with remaining sub-goals gets one turn; spare time is handed
    out round-robin in priority order, capped per topic by the plan and by
    the number of remaining sub-goals. With nothing left uncovered, the
    top `fallback_turns` topics get one turn each.

    Returns:
        Tuple of (deep topic order, turns by topic ID)
    """
    order = build_deep_topic_order(topics, interesting, history, objective, language)
    by_id = {t.id: t for t in topics}
    with_remaining = {t.id for t in topics if get_remaining_sub_goals(t, history)}

    if with_remaining:
        ordered = [topic_id for topic_id in order if topic_id in with_remaining]
        if remaining_sec is None:
            available_raw = len(ordered) * (plan.deep.max_turns_per_topic or 2)
        else:
            available_raw = math.floor(max(0.0, remaining_sec) / SECONDS_PER_TURN)
        available = max(len(ordered), available_raw)

        turns_by_topic = {topic_id: 1 for topic_id in ordered}
        max_by_topic = {
            topic_id: max(1, min(max(1, plan.deep.max_turns_per_topic),
                                 len(get_remaining_sub_goals(by_id[topic_id], history))))
            for topic_id in ordered
        }

        budget = max(0, available - len(ordered))
        while budget > 0:
            allocated = False
            for topic_id in ordered:
                if budget <= 0:
                    break
                if turns_by_topic[topic_id] < max_by_topic[topic_id]:
                    turns_by_topic[topic_id] += 1
                    budget -= 1
                    allocated = True
            if not allocated:
                break

        logger.info(f"Deep plan: {turns_by_topic} (available turns {available})")
        return ordered, turns_by_topic

    fallback = max(1, plan.deep.fallback_turns or 2)
    ordered = order[:fallback]
    logger.info(f"Deep plan fallback: {ordered}")
    return ordered, {topic_id: 1 for topic_id in ordered}


def select_deep_focus_point(
    topic: TopicBlock,
    available_sub_goals: List[str],
    engaging_snippet: str = "",
    objective: str = "",
    last_user_message: str = "",
    language: str = "en",
) -> str:
    """The sub-goal that best matches the objective (0.6) and the recent context (0.4)."""
    if not available_sub_goals:
        return topic.label

    context_text = " ".join(part for part in (engaging_snippet, last_user_message) if part).strip()
    objective_text = (objective or "").strip()

    best, best_score = available_sub_goals[0], -1.0
    for sub_goal in available_sub_goals:
        objective_score = lexical_overlap_score(sub_goal, objective_text, language) if objective_text else 0.0
        context_score = lexical_overlap_score(sub_goal, context_text, language) if context_text else 0.0
        score = objective_score * 0.6 + context_score * 0.4
        if score > best_score:
            best, best_score = sub_goal, score
    return best


def build_extension_preview_hints(
    topics: List[TopicBlock],
    deep_order: Optional[List[str]] = None,
    history: Optional[Dict[str, List[str]]] = None,
    interesting: Optional[List[InterestingTopic]] = None,
    objective: str = "",
    language: str = "en",
    start_index: int = 0,
    max_items: int = 2,
) -> List[str]:
    """Short starting points to mention when offering extra time."""
    base_topics = get_deep_topics(topics, deep_order) or list(topics)
    if not base_topics:
        return []

    safe_start = max(0, min(start_index, len(base_topics) - 1))
    rotated = base_topics[safe_start:] + base_topics[:safe_start]
    snippets = {it.topic_id: it.best_snippet for it in (interesting or [])}

    preview = []
    for topic in rotated:
        available = get_remaining_sub_goals(topic, history)
        if not available:
            continue
        focus = select_deep_focus_point(
            topic,
            available,
            engaging_snippet=snippets.get(topic.id, ""),
            objective=objective,
            language=language,
        )
        preview.append(sanitize_user_snippet(focus, 10) or focus or topic.label)
        if len(preview) >= max_items:
            break

    if preview:
        return preview
    return [t.label for t in rotated[:max_items] if t.label]
