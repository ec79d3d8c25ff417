"""
Micro planner: a pre-turn decision on how the next topic question should work.

It scores the last answer, checks sub-goal coverage against the turns left,
and picks a question mode, an opening style and a knowledge cue that the
interviewer prompt then follows.
"""
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.schemas import InterviewPhase, TopicBlock, UserTurnSignal
from interview.scoring import compute_signal_score


@dataclass
class KnowledgeCue:
    source: str  # runtime | manual | fallback
    interpretation_cue: str
    significance_cue: str
    probe_cue: str


@dataclass
class TopicCoverage:
    total: int
    used: int
    remaining: int
    turns_left: int
    prioritize_coverage: bool


@dataclass
class MicroPlannerDecision:
    mode: str  # cover_subgoal | probe_example | probe_impact
    comment_style: str  # direct_clarification | evidence_reflection | neutral_bridge
    focus_sub_goal: str
    followup_hint: str
    topic_coverage: TopicCoverage
    signal_score: float
    knowledge_source: str


@dataclass
class MicroPlannerInput:
    language: str
    phase: InterviewPhase
    topic: TopicBlock
    used_sub_goals: List[str] = field(default_factory=list)
    turn_in_topic: int = 0
    max_turns_in_topic: int = 1
    user_message: Optional[str] = None
    user_turn_signal: UserTurnSignal = UserTurnSignal.NONE
    manual_guide: Optional[str] = None
    runtime_knowledge: Optional[Dict[str, Any]] = None


def _normalize(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.split())


def _is_it(language: str) -> bool:
    return (language or "en").lower().startswith("it")


def _pick_first(items: List[str], fallback: str) -> str:
    for item in items:
        normalized = _normalize(item)
        if normalized:
            return normalized[:180]
    return _normalize(fallback)[:180]


# ============================================================
# Knowledge cues
# ============================================================

def build_fallback_runtime_knowledge(topics: List[TopicBlock], language: str, summary: str = "") -> Dict[str, Any]:
    """
    Deterministic per-topic interpretation cues, significance signals and probe angles.

    Returns:
        {"source": "fallback", "summary": str, "topics": [...]}
    """
    italian = _is_it(language)
    entries = []
    for topic in topics:
        first = topic.sub_goals[0] if topic.sub_goals else topic.label
        second = topic.sub_goals[1] if len(topic.sub_goals) > 1 else first
        if italian:
            entry = {
                "interpretation_cues": [
                    f"Valuta quanto \"{first}\" è oggi strutturato o solo intuitivo.",
                    f"Distinguere bisogno urgente da interesse esplorativo su \"{second}\".",
                ],
                "significance_signals": [
                    "Menziona impatti su decisioni, tempo o qualità delle risposte.",
                    "Porta esempi concreti di frizioni, ritardi o opportunità perse.",
                ],
                "probe_angles": [
                    f"Chiedi un caso recente in cui \"{first}\" ha inciso su una scelta.",
                    "Esplora quale risultato operativo vorrebbe vedere nei prossimi 90 giorni.",
                ],
            }
        else:
            entry = {
                "interpretation_cues": [
                    f"Assess whether \"{first}\" is structured today or mostly ad hoc.",
                    f"Separate urgent needs from exploratory interest around \"{second}\".",
                ],
                "significance_signals": [
                    "Mentions impact on decisions, response speed, or output quality.",
                    "Provides concrete examples of friction, delays, or missed opportunities.",
                ],
                "probe_angles": [
                    f"Ask for a recent case where \"{first}\" affected a business decision.",
                    "Probe which operational outcome they want to see in the next 90 days.",
                ],
            }
        entry.update({"topic_id": topic.id, "topic_label": topic.label})
        entries.append(entry)
    return {"source": "fallback", "summary": summary, "topics": entries}


def _runtime_cue(knowledge: Optional[Dict[str, Any]], topic: TopicBlock) -> Optional[KnowledgeCue]:
    if not knowledge or not knowledge.get("topics"):
        return None
    entries = knowledge["topics"]
    entry = next((e for e in entries if e.get("topic_id") == topic.id), entries[0])
    return KnowledgeCue(
        source="runtime",
        interpretation_cue=_pick_first(entry.get("interpretation_cues", []),
                                       f"Read the answer against the \"{topic.label}\" topic."),
        significance_cue=_pick_first(entry.get("significance_signals", []),
                                     "Look for concrete signals of operational impact."),
        probe_cue=_pick_first(entry.get("probe_angles", []), "Ask for one specific recent example."),
    )


def extract_manual_topic_section(manual_guide: str, topic_label: str) -> List[str]:
    """Lines under the guide's `## Topic ...` heading that names the topic."""
    lines = [line.strip() for line in (manual_guide or "").split("\n") if line.strip()]
    topic_norm = _normalize(topic_label).lower()

    start = -1
    for idx, line in enumerate(lines):
        line_norm = _normalize(line).lower()
        if line_norm.startswith("## topic") and topic_norm in line_norm:
            start = idx
            break
    if start == -1:
        return []

    section = []
    for line in lines[start + 1:]:
        if re.match(r'^##\s+', line):
            break
        section.append(line)
    return section


def _manual_cue(manual_guide: Optional[str], topic: TopicBlock, language: str) -> Optional[KnowledgeCue]:
    section = extract_manual_topic_section(manual_guide or "", topic.label)
    if not section:
        return None

    bullets = [_normalize(re.sub(r'^[-*]\s+', '', line)) for line in section if re.match(r'^[-*]\s+', line)]
    bullets = [b for b in bullets if b]
    interpretation = [b for b in bullets if re.search(r'(come|cosa capire|valuta|distinguere|how|what to understand|assess|separate)', b, re.IGNORECASE)]
    significance = [b for b in bullets if re.search(r'(segnali|indicatori|impatto|decision|frizion|opportunit|signals|impact|friction|missed)', b, re.IGNORECASE)]
    probes = [b for b in bullets if re.search(r'(follow-up|puoi|chiedi|raccontami|esempio|can you|ask|example)', b, re.IGNORECASE)]

    sub_goal = topic.sub_goals[0] if topic.sub_goals else topic.label
    italian = _is_it(language)
    return KnowledgeCue(
        source="manual",
        interpretation_cue=_pick_first(
            interpretation,
            f"Interpreta la risposta rispetto a \"{sub_goal}\" distinguendo situazione attuale e obiettivo."
            if italian else
            f"Interpret the response on \"{sub_goal}\" by separating current state and target outcome.",
        ),
        significance_cue=_pick_first(
            significance,
            "Cerca segnali concreti: impatto su decisioni, tempi, qualita o mercato."
            if italian else
            "Look for concrete signals: impact on decisions, timing, quality, or market.",
        ),
        probe_cue=_pick_first(
            probes,
            "Approfondisci con un esempio reale recente." if italian else "Deepen using one concrete recent example.",
        ),
    )


def _fallback_cue(language: str, topic_label: str, focus_sub_goal: str) -> KnowledgeCue:
    if _is_it(language):
        return KnowledgeCue(
            source="fallback",
            interpretation_cue=f"Interpreta la risposta nel perimetro di \"{topic_label}\".",
            significance_cue="Valuta se emergono vincoli reali o impatti su decisioni e priorita.",
            probe_cue=f"Approfondisci \"{focus_sub_goal}\" con un caso pratico recente.",
        )
    return KnowledgeCue(
        source="fallback",
        interpretation_cue=f"Interpret the response within the \"{topic_label}\" scope.",
        significance_cue="Check for real constraints and impact on decisions or priorities.",
        probe_cue=f"Deepen \"{focus_sub_goal}\" with one recent practical case.",
    )


def select_knowledge_cue(planner_input: MicroPlannerInput, focus_sub_goal: str) -> KnowledgeCue:
    """Runtime knowledge first, then the manual guide section, then a generic cue."""
    return (
        _runtime_cue(planner_input.runtime_knowledge, planner_input.topic)
        or _manual_cue(planner_input.manual_guide, planner_input.topic, planner_input.language)
        or _fallback_cue(planner_input.language, planner_input.topic.label, focus_sub_goal)
    )


# ============================================================
# Decision
# ============================================================

def determine_question_mode(phase: InterviewPhase, signal_score: float, prioritize_coverage: bool,
                            user_turn_signal: UserTurnSignal) -> str:
    if user_turn_signal == UserTurnSignal.CLARIFICATION or prioritize_coverage:
        return "cover_subgoal"
    if phase == InterviewPhase.DEEP:
        return "probe_impact" if signal_score >= 0.34 else "probe_example"
    if signal_score >= 0.42:
        return "probe_impact"
    if signal_score >= 0.28:
        return "probe_example"
    return "cover_subgoal"


def determine_comment_style(user_turn_signal: UserTurnSignal, signal_score: float) -> str:
    if user_turn_signal == UserTurnSignal.CLARIFICATION:
        return "direct_clarification"
    if signal_score >= 0.2:
        return "evidence_reflection"
    return "neutral_bridge"


def build_micro_planner_decision(planner_input: MicroPlannerInput) -> MicroPlannerDecision:
    """
    Decide the question mode, opening style and follow-up hint for the next turn.

    Args:
        planner_input: Topic, coverage and last-answer context

    Returns:
        MicroPlannerDecision
    """
    signal_score = compute_signal_score(planner_input.user_message or "", planner_input.language).score

    sub_goals = [sg for sg in planner_input.topic.sub_goals if sg]
    used = [sg for sg in planner_input.used_sub_goals if sg]
    remaining = [sg for sg in sub_goals if sg not in used]
    total = max(1, len(sub_goals))
    turns_left = max(1, (planner_input.max_turns_in_topic or 1) - (planner_input.turn_in_topic or 0) + 1)
    prioritize_coverage = (
        planner_input.phase == InterviewPhase.SCAN and bool(remaining) and turns_left <= len(remaining)
    )

    focus_sub_goal = remaining[0] if remaining else (sub_goals[0] if sub_goals else planner_input.topic.label)
    cue = select_knowledge_cue(planner_input, focus_sub_goal)
    mode = determine_question_mode(
        planner_input.phase, signal_score, prioritize_coverage, planner_input.user_turn_signal
    )

    if mode == "probe_impact":
        hint = cue.significance_cue
    elif mode == "cover_subgoal":
        hint = cue.interpretation_cue
    else:
        hint = cue.probe_cue

    return MicroPlannerDecision(
        mode=mode,
        comment_style=determine_comment_style(planner_input.user_turn_signal, signal_score),
        focus_sub_goal=focus_sub_goal,
        followup_hint=_normalize(hint)[:180],
        topic_coverage=TopicCoverage(
            total=total,
            used=min(total, len(used)),
            remaining=len(remaining),
            turns_left=turns_left,
            prioritize_coverage=prioritize_coverage,
        ),
        signal_score=signal_score,
        knowledge_source=cue.source,
    )


def build_micro_planner_prompt_block(language: str, phase: InterviewPhase, topic_label: str,
                                     decision: MicroPlannerDecision) -> str:
    """Prompt block for SCAN/DEEP turns; empty elsewhere."""
    if phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
        return ""

    coverage = decision.topic_coverage
    if _is_it(language):
        return f"""## MICRO-PLANNER PRE-TURN
- Topic attivo: "{topic_label}"
- Strategia domanda: {decision.mode}
- Stile commento iniziale: {decision.comment_style}
- Focus sub-goal: "{decision.focus_sub_goal}"
- Hint di approfondimento: {decision.followup_hint}
- Copertura topic: usati={coverage.used}/{coverage.total}, rimanenti={coverage.remaining}, turni_residui={coverage.turns_left}
- Sorgente knowledge: {decision.knowledge_source}

Regole operative:
1) Se stile=direct_clarification, chiarisci prima in modo diretto e breve.
2) Se stile=evidence_reflection, commenta un dettaglio concreto dell'utente (no formule generiche).
3) Se strategia=cover_subgoal, orienta la domanda al sub-goal indicato.
4) Se strategia=probe_example/probe_impact, approfondisci quel punto prima di allargare.
5) Mantieni naturalezza: UNA domanda sola, niente liste, niente chiusure."""

    return f"""## MICRO-PLANNER PRE-TURN
- Active topic: "{topic_label}"
- Question strategy: {decision.mode}
- Opening style: {decision.comment_style}
- Focus sub-goal: "{decision.focus_sub_goal}"
- Follow-up hint: {decision.followup_hint}
- Topic coverage: used={coverage.used}/{coverage.total}, remaining={coverage.remaining}, turns_left={coverage.turns_left}
- Knowledge source: {decision.knowledge_source}

Operational rules:
1) If style=direct_clarification, clarify first in one short direct sentence.
2) If style=evidence_reflection, reference one concrete user detail (avoid generic openers).
3) If strategy=cover_subgoal, align the question to the selected sub-goal.
4) If strategy=probe_example/probe_impact, deepen that point before broadening.
5) Keep it natural: one question only, no lists, no closure cues."""


def build_manual_knowledge_prompt_block(manual_guide: Optional[str], phase: InterviewPhase, language: str,
                                        topic: TopicBlock) -> str:
    """Up to three guide sentences that share words with the topic."""
    if not manual_guide or phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
        return ""
    sentences = [_normalize(s) for s in re.split(r'(?<=[.!?])\s+', " ".join(manual_guide.split()))]
    sentences = [s for s in sentences if s]
    if not sentences:
        return ""

    topic_tokens = {t for t in _normalize(f"{topic.label} {' '.join(topic.sub_goals)}").lower().split() if len(t) >= 4}
    scored = []
    for sentence in sentences:
        tokens = {t for t in sentence.lower().split() if len(t) >= 4}
        scored.append((len(topic_tokens & tokens), sentence))
    scored.sort(key=lambda item: -item[0])
    selected = [s for overlap, s in scored if overlap > 0][:3] or sentences[:2]
    lines = "\n- ".join(selected)

    if _is_it(language):
        return (f"## KNOWLEDGE GUIDA INTERVISTA\nPer il topic \"{topic.label}\" tieni presente:\n- {lines}\n"
                "Usa questa guida come prioritaria e applicala in modo naturale.")
    return (f"## INTERVIEW GUIDE KNOWLEDGE\nFor topic \"{topic.label}\" keep in mind:\n- {lines}\n"
            "Treat this guide as primary and apply it naturally.")


def build_runtime_knowledge_prompt_block(knowledge: Optional[Dict[str, Any]], phase: InterviewPhase,
                                         language: str, topic: Optional[TopicBlock]) -> str:
    if not knowledge or not knowledge.get("topics") or phase not in (InterviewPhase.SCAN, InterviewPhase.DEEP):
        return ""
    entries = knowledge["topics"]
    entry = next((e for e in entries if topic is not None and e.get("topic_id") == topic.id), None)
    if entry is None:
        return ""

    def _join(key: str) -> str:
        return " | ".join(entry.get(key, [])[:2]) or "-"

    if _is_it(language):
        return f"""## RUNTIME TOPIC INTELLIGENCE
- Sintesi: {knowledge.get("summary") or "-"}
- Topic attivo: "{entry.get("topic_label", "")}"
- Chiavi di lettura: {_join("interpretation_cues")}
- Segnali da approfondire: {_join("significance_signals")}
- Direzioni di probing: {_join("probe_angles")}"""
    return f"""## RUNTIME TOPIC INTELLIGENCE
- Summary: {knowledge.get("summary") or "-"}
- Active topic: "{entry.get("topic_label", "")}"
- Interpretation cues: {_join("interpretation_cues")}
- Signals worth deepening: {_join("significance_signals")}
- Probing directions: {_join("probe_angles")}"""
