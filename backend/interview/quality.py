"""
Qualitative per-turn evaluation of assistant replies.
All checks are regex/heuristic based; no LLM calls.
"""
import re
from typing import Any, Dict, List, Optional

from models.schemas import InterviewPhase, TurnQuality

CLOSURE_IT = re.compile(r'\b(arrivederci|buona giornata|buon lavoro|a presto|ci sentiamo|alla prossima|buona fortuna)\b|INTERVIEW_COMPLETED', re.IGNORECASE)
CLOSURE_EN = re.compile(r'\b(goodbye|good-bye|have a great day|have a good day|farewell|see you soon|all the best|bye bye)\b|INTERVIEW_COMPLETED', re.IGNORECASE)

CONTACT_IT = re.compile(r'\b(email|e-mail|telefono|cellulare|numero di (telefono|cellulare|contatto)|linkedin)\b', re.IGNORECASE)
CONTACT_EN = re.compile(r'\b(email|e-mail|phone number|telephone|mobile number|linkedin)\b', re.IGNORECASE)

CONTINUATION_IT = re.compile(r'\b(continu\w*|prosegu\w*|ancora qualche|ancora un po|altri minuti|pi[uù] minuti|ulteriori domande|qualche domanda|qualche minuto|paio di minuti)\b', re.IGNORECASE)
CONTINUATION_EN = re.compile(r'\b(continu\w*|keep going|a few more|few extra|some more questions|bit longer|more minutes|a few questions)\b', re.IGNORECASE)

SPECIFIC_PROBE_IT = re.compile(r'\b(esempio|concreto|raccont\w+|in che modo|entrare nel dettaglio|nello specifico)\b', re.IGNORECASE)
SPECIFIC_PROBE_EN = re.compile(r'\b(example|specific|concret\w*|tell me (more about|how)|in what way|walk me through|detail)\b', re.IGNORECASE)

ISSUES = {
    "avoids_closure": {
        "it": "Chiude prematuramente l'intervista in una fase topic.",
        "en": "Closes the interview prematurely in a topic phase.",
    },
    "avoids_premature_contact": {
        "it": "Richiede dati di contatto fuori dalla fase DATA_COLLECTION.",
        "en": "Requests contact data outside DATA_COLLECTION phase.",
    },
    "deep_offer_intent": {
        "it": "In DEEP_OFFER deve proporre continuazione, non porre una domanda topic.",
        "en": "In DEEP_OFFER must offer to continue, not ask a topic question.",
    },
    "probing_when_user_is_brief": {
        "it": "Risposta breve dell'utente richiede probing specifico, non domanda generica.",
        "en": "Brief user response requires specific probing, not a generic question.",
    },
    "references_user_context": {
        "it": "Non aggancia chiaramente alla risposta dell'utente: manca riferimento al contenuto condiviso.",
        "en": "Does not clearly anchor to the user's response: missing reference to shared content.",
    },
    "non_repetitive": {
        "it": "Domanda identica a quella precedente.",
        "en": "Question is identical to the previous one.",
    },
}


def _normalize(text: str) -> str:
    return " ".join((text or "").lower().split())


def _keywords(text: str) -> List[str]:
    words = (re.sub(r'[^\w]', '', w) for w in _normalize(text).split())
    return [w for w in words if len(w) >= 4]


def evaluate_turn_quality(
    phase: InterviewPhase,
    topic_label: str,
    user_response: str,
    assistant_response: str,
    previous_assistant_response: Optional[str] = None,
    language: str = "en",
    topic_id: Optional[str] = None,
) -> TurnQuality:
    """
    Run the six qualitative checks on one assistant turn.

    Returns:
        TurnQuality with per-check results, a 0-100 score and localized issues
    """
    italian = (language or "en").lower().startswith("it")
    is_data_collection = phase == InterviewPhase.DATA_COLLECTION
    is_deep_offer = phase == InterviewPhase.DEEP_OFFER

    closure = CLOSURE_IT if italian else CLOSURE_EN
    contact = CONTACT_IT if italian else CONTACT_EN
    continuation = CONTINUATION_IT if italian else CONTINUATION_EN
    specific_probe = SPECIFIC_PROBE_IT if italian else SPECIFIC_PROBE_EN

    user_words = len(_normalize(user_response).split())
    exempt = is_data_collection or is_deep_offer

    references = True
    if not exempt and user_words > 8:
        assistant_lower = _normalize(assistant_response)
        references = any(kw in assistant_lower for kw in _keywords(user_response))

    checks = {
        "avoids_closure": not closure.search(assistant_response or ""),
        "avoids_premature_contact": is_data_collection or not contact.search(assistant_response or ""),
        "deep_offer_intent": not is_deep_offer or bool(continuation.search(assistant_response or "")),
        "probing_when_user_is_brief": exempt or user_words > 5 or bool(specific_probe.search(assistant_response or "")),
        "references_user_context": references,
        "non_repetitive": (
            not previous_assistant_response
            or _normalize(assistant_response) != _normalize(previous_assistant_response)
        ),
    }

    passed_checks = sum(1 for ok in checks.values() if ok)
    score = round(passed_checks / len(checks) * 100)
    lang = "it" if italian else "en"
    issues = [ISSUES[name][lang] for name, ok in checks.items() if not ok]

    return TurnQuality(
        phase=phase,
        topic_id=topic_id,
        passed=not issues,
        score=score,
        checks=checks,
        issues=issues,
    )


def summarize_quality(turns: List[TurnQuality]) -> Dict[str, Any]:
    """Aggregate per-turn evaluations for a transcript report."""
    if not turns:
        return {"turns_evaluated": 0, "average_score": None, "pass_rate": None, "issue_counts": {}}

    issue_counts: Dict[str, int] = {}
    for turn in turns:
        for name, ok in turn.checks.items():
            if not ok:
                issue_counts[name] = issue_counts.get(name, 0) + 1

    return {
        "turns_evaluated": len(turns),
        "average_score": round(sum(t.score for t in turns) / len(turns), 1),
        "pass_rate": round(sum(1 for t in turns if t.passed) / len(turns), 2),
        "issue_counts": issue_counts,
    }
