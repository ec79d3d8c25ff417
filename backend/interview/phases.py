"""
Interview phase definitions, phase-flow guards and transition logic.

The guards are pure decisions over plain values: they tell the engine when an
assistant reply must be intercepted and what the completion guard allows.
The transition functions form a small phase simulator that the state machine
uses to move between SCAN, DEEP, DEEP_OFFER, DATA_COLLECTION and COMPLETED.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any

from models.schemas import (
    InterviewPhase,
    UserIntent,
    PhaseAction,
    CompletionGuardAction,
)


@dataclass
class PhaseInfo:
    """Information about a single interview phase."""
    phase: InterviewPhase
    description: str
    focus_areas: List[str]
    is_topic_phase: bool = False

    def get_config(self) -> Dict[str, Any]:
        """Get phase configuration as dictionary."""
        return {
            "description": self.description,
            "focus_areas": self.focus_areas,
            "is_topic_phase": self.is_topic_phase,
        }


# Phase order for progression
PHASE_ORDER = InterviewPhase.get_order()

TOPIC_PHASES = (InterviewPhase.SCAN, InterviewPhase.DEEP)


# ============================================================
# Phase-flow guards
# ============================================================

def should_offer_continuation_after_deep(remaining_sec: float, deep_accepted: Optional[bool]) -> bool:
    """DEEP ended before the hard time limit and the user never explicitly accepted extra time."""
    return remaining_sec > 0 and deep_accepted is not True


def should_intercept_topic_phase_closure(
    phase: InterviewPhase,
    is_goodbye_response: bool,
    is_goodbye_with_question: bool,
    has_no_question: bool,
    is_premature_contact_request: bool,
    has_completion_tag: bool,
) -> bool:
    """
    Decide whether a SCAN/DEEP reply is trying to close the interview early.

    Returns:
        True if the reply must be replaced by a topic question
    """
    if phase not in TOPIC_PHASES:
        return False
    if has_completion_tag or is_premature_contact_request:
        return True
    if is_goodbye_response and not is_goodbye_with_question:
        return True
    return has_no_question


def should_intercept_deep_offer_closure(
    phase: InterviewPhase,
    is_goodbye_response: bool,
    is_goodbye_with_question: bool,
    has_no_question: bool,
    has_completion_tag: bool,
) -> bool:
    """A DEEP_OFFER reply must stay an explicit yes/no continuation prompt."""
    if phase != InterviewPhase.DEEP_OFFER:
        return False
    if has_completion_tag or has_no_question:
        return True
    return is_goodbye_response and not is_goodbye_with_question


def get_completion_guard_action(
    should_collect_data: bool,
    candidate_field_ids: List[str],
    consent_given: Optional[bool],
    data_collection_refused: bool = False,
    missing_field: Optional[str] = None,
) -> CompletionGuardAction:
    """
    Decide whether the interview may complete or contact collection is still pending.

    Args:
        should_collect_data: Bot is configured to collect candidate data
        candidate_field_ids: Configured field ids
        consent_given: Consent status (None when never asked)
        data_collection_refused: User declined data collection
        missing_field: Next field still missing, if any

    Returns:
        The completion guard action
    """
    if not should_collect_data or not candidate_field_ids or data_collection_refused:
        return CompletionGuardAction.ALLOW_COMPLETION
    if consent_given is not True:
        return CompletionGuardAction.ASK_CONSENT
    if missing_field:
        return CompletionGuardAction.ASK_MISSING_FIELD
    return CompletionGuardAction.ALLOW_COMPLETION


# ============================================================
# Phase simulator
# ============================================================

@dataclass
class PhaseSimulatorState:
    """Minimal view of conversation state needed for phase transitions."""
    phase: InterviewPhase
    should_collect_data: bool = False
    candidate_field_ids: List[str] = field(default_factory=list)
    deep_accepted: Optional[bool] = None
    consent_given: Optional[bool] = None
    data_collection_refused: bool = False
    missing_field: Optional[str] = None
    remaining_sec: float = 0


@dataclass
class PhaseTransitionResult:
    state: PhaseSimulatorState
    action: PhaseAction


def _to_data_collection(state: PhaseSimulatorState) -> PhaseTransitionResult:
    if state.should_collect_data:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DATA_COLLECTION, consent_given=False),
            action=PhaseAction.ASK_DATA_CONSENT,
        )
    return PhaseTransitionResult(
        state=replace(state, phase=InterviewPhase.DATA_COLLECTION),
        action=PhaseAction.COMPLETE_WITHOUT_DATA,
    )


def on_scan_completed(state: PhaseSimulatorState) -> PhaseTransitionResult:
    """SCAN covered every topic: go deeper while time remains, otherwise offer extra time."""
    if state.remaining_sec > 0:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DEEP, deep_accepted=None),
            action=PhaseAction.START_DEEP,
        )
    return PhaseTransitionResult(
        state=replace(state, phase=InterviewPhase.DEEP_OFFER, deep_accepted=False),
        action=PhaseAction.ASK_DEEP_OFFER,
    )


def on_deep_completed(state: PhaseSimulatorState) -> PhaseTransitionResult:
    return _to_data_collection(state)


def on_topic_phase_closure_attempt(state: PhaseSimulatorState) -> PhaseTransitionResult:
    """The model tried to say goodbye in a topic phase."""
    intercept = should_intercept_topic_phase_closure(
        phase=state.phase,
        is_goodbye_response=True,
        is_goodbye_with_question=False,
        has_no_question=True,
        is_premature_contact_request=False,
        has_completion_tag=False,
    )
    if not intercept:
        return PhaseTransitionResult(state=state, action=PhaseAction.NO_OP)

    if state.phase == InterviewPhase.DEEP and state.remaining_sec <= 0 and state.deep_accepted is not True:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DEEP_OFFER, deep_accepted=False),
            action=PhaseAction.ASK_DEEP_OFFER,
        )

    return PhaseTransitionResult(state=state, action=PhaseAction.ASK_TOPIC_QUESTION)


def on_deep_offer_user_intent(state: PhaseSimulatorState, intent: UserIntent) -> PhaseTransitionResult:
    if state.phase != InterviewPhase.DEEP_OFFER:
        return PhaseTransitionResult(state=state, action=PhaseAction.NO_OP)

    if intent == UserIntent.ACCEPT:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DEEP, deep_accepted=True),
            action=PhaseAction.START_DEEP,
        )

    if intent == UserIntent.REFUSE:
        return _to_data_collection(state)

    return PhaseTransitionResult(state=state, action=PhaseAction.ASK_DEEP_OFFER)


def on_completion_tag(state: PhaseSimulatorState) -> PhaseTransitionResult:
    """The conversation wants to finish: consult the completion guard."""
    guard = get_completion_guard_action(
        should_collect_data=state.should_collect_data,
        candidate_field_ids=state.candidate_field_ids,
        consent_given=state.consent_given,
        data_collection_refused=state.data_collection_refused,
        missing_field=state.missing_field,
    )

    if guard == CompletionGuardAction.ASK_CONSENT:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DATA_COLLECTION, consent_given=False),
            action=PhaseAction.ASK_DATA_CONSENT,
        )

    if guard == CompletionGuardAction.ASK_MISSING_FIELD:
        return PhaseTransitionResult(
            state=replace(state, phase=InterviewPhase.DATA_COLLECTION),
            action=PhaseAction.ASK_MISSING_FIELD,
        )

    action = PhaseAction.COMPLETE_WITHOUT_DATA if state.data_collection_refused else PhaseAction.COMPLETE_INTERVIEW
    return PhaseTransitionResult(state=state, action=action)


# ============================================================
# Phase metadata
# ============================================================

class InterviewPhases:
    """
    Phase definitions and progress reporting.
    """

    PHASES: Dict[InterviewPhase, PhaseInfo] = {
        InterviewPhase.SCAN: PhaseInfo(
            phase=InterviewPhase.SCAN,
            description="Breadth pass over every configured topic",
            focus_areas=["topic coverage", "sub-goal discovery", "engagement signals"],
            is_topic_phase=True,
        ),
        InterviewPhase.DEEP: PhaseInfo(
            phase=InterviewPhase.DEEP,
            description="Targeted follow-ups on uncovered sub-goals and high-interest topics",
            focus_areas=["uncovered sub-goals", "examples", "impact"],
            is_topic_phase=True,
        ),
        InterviewPhase.DEEP_OFFER: PhaseInfo(
            phase=InterviewPhase.DEEP_OFFER,
            description="Ask whether the interviewee wants to continue beyond the planned time",
            focus_areas=["extension consent"],
        ),
        InterviewPhase.DATA_COLLECTION: PhaseInfo(
            phase=InterviewPhase.DATA_COLLECTION,
            description="Consent and collection of contact details",
            focus_areas=["consent", "contact fields"],
        ),
        InterviewPhase.COMPLETED: PhaseInfo(
            phase=InterviewPhase.COMPLETED,
            description="Interview finished",
            focus_areas=[],
        ),
    }

    @classmethod
    def get_phase_info(cls, phase: InterviewPhase) -> Optional[PhaseInfo]:
        """Get information about a specific phase."""
        return cls.PHASES.get(phase)

    @classmethod
    def get_all_phases_info(cls) -> List[Dict[str, Any]]:
        """Get information about all phases, in progression order."""
        return [
            {"phase": phase.value, **cls.PHASES[phase].get_config()}
            for phase in PHASE_ORDER
        ]

    @classmethod
    def get_next_phase(cls, current: InterviewPhase) -> Optional[InterviewPhase]:
        """
        Get the next phase in the canonical progression.

        Returns:
            The next phase, or None if at the end
        """
        try:
            idx = PHASE_ORDER.index(current)
        except ValueError:
            return None
        if idx < len(PHASE_ORDER) - 1:
            return PHASE_ORDER[idx + 1]
        return None

    @classmethod
    def get_phase_progress(
        cls,
        phase: InterviewPhase,
        topic_index: int,
        topic_count: int,
        elapsed_sec: float,
        budget_sec: float,
    ) -> Dict[str, Any]:
        """
        Get progress information for the current phase.

        Returns:
            Dictionary with progress metrics
        """
        info = cls.get_phase_info(phase)
        if not info:
            return {}

        time_progress = elapsed_sec / budget_sec if budget_sec > 0 else 1.0
        topic_progress = (topic_index + 1) / topic_count if topic_count and info.is_topic_phase else None

        return {
            "phase": phase.value,
            "phase_index": PHASE_ORDER.index(phase),
            "description": info.description,
            "topic_progress": min(topic_progress, 1.0) if topic_progress is not None else None,
            "elapsed_minutes": round(elapsed_sec / 60, 2),
            "budget_minutes": round(budget_sec / 60, 2),
            "time_progress": min(time_progress, 1.0),
            "remaining_sec": max(0, int(budget_sec - elapsed_sec)),
        }
