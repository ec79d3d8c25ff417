"""
Prompt templates for the interview engine.
Each prompt is designed to:
1. Keep the interviewer in role (one question, no advice, no premature closure)
2. Carry the runtime state (timing, topic, supervisor instruction) into the model
3. Produce clean, structured outputs for the classifiers
"""
import re
from typing import Dict, List, Optional

from models.schemas import BotConfig, SupervisorInsight, SupervisorStatus, TopicBlock
from utils.cleaning import PromptSanitizer, sanitize_user_snippet, count_words


def _is_it(language: str) -> bool:
    return (language or "en").lower().startswith("it")


def get_user_response_depth(text: Optional[str]) -> str:
    words = count_words(text or "")
    if words <= 10:
        return "brief"
    if words >= 35:
        return "rich"
    return "balanced"


def extract_last_assistant_question(text: Optional[str]) -> str:
    compact = " ".join((text or "").split())
    if "?" not in compact:
        return ""
    pieces = [p.strip() for p in compact.split("?") if p.strip()]
    if not pieces:
        return ""
    # Text after the final '?' is not part of a question
    if not compact.endswith("?") and len(pieces) > 1:
        pieces = pieces[:-1]
    return f"{pieces[-1]}?"


class PromptBuilder:
    """
    Assembles the interviewer system prompt from persona, methodology,
    timing context and the current topic instruction.
    """

    @staticmethod
    def build_persona_prompt(bot: BotConfig) -> str:
        """WHO the interviewer is."""
        knowledge = PromptSanitizer.sanitize_config(bot.knowledge_text, 3000)
        return f"""You are an expert qualitative researcher conducting an interview.
role: "Interviewer"
name: "{PromptSanitizer.sanitize_config(bot.name, 120)}"
mission: "{PromptSanitizer.sanitize_config(bot.research_goal)}"
target_audience: "{PromptSanitizer.sanitize_config(bot.target_audience, 300)}"
tone: "{PromptSanitizer.sanitize_config(bot.tone, 120) or 'Friendly, professional, and empathetic'}"
language: "{bot.language}"

## KNOWLEDGE BASE
Use this context to inform your questions, but DO NOT lecture the user.
{knowledge or 'None provided.'}"""

    @staticmethod
    def build_methodology_prompt(language: str) -> str:
        """HOW to interview: probing rules and flow."""
        opening = (
            "Faremo un giro veloce su alcuni temi chiave, e poi approfondiremo se avremo tempo."
            if _is_it(language)
            else "We'll take a quick pass over a few key topics, and then go deeper if we have time."
        )
        return f"""## RULES OF ENGAGEMENT
1. **Neutrality**: Never judge. Never agree or disagree excessively.
2. **One Question Rule (CRITICAL)**: Ask EXACTLY ONE question at a time. NEVER chain questions with "Also..." or "And...".
3. **Conversational**: Avoid robotic transitions like "Now let's move to". Make it flow naturally.
4. **Probing**: If a user gives a short or vague answer, ask for a specific example.
5. **No closure**: Never say goodbye, never ask for contact details and never output INTERVIEW_COMPLETED unless the supervisor explicitly says so.
6. **Opening Protocol**: In the very first message, explain: "{opening}\""""

    @staticmethod
    def build_context_prompt(
        topic_index: int,
        topic_count: int,
        elapsed_sec: float,
        budget_sec: float,
    ) -> str:
        """Timing and pacing status."""
        max_mins = max(1, int(budget_sec // 60))
        elapsed_mins = int(elapsed_sec // 60)
        remaining_mins = max_mins - elapsed_mins
        topics_remaining = topic_count - (topic_index + 1)

        ideal_index = int((elapsed_mins / max_mins) * topic_count) if max_mins else topic_count
        is_behind = topic_index < ideal_index
        is_critical = remaining_mins <= topics_remaining * 2

        if remaining_mins <= 0:
            status = ("STATUS: TIME_EXPIRED.\n"
                      "- Keep the reply short: one final focused question at most.")
        elif remaining_mins < 2:
            status = (f"STATUS: URGENT_WRAP_UP. {remaining_mins} mins left.\n"
                      "- Skip remaining deep dives.\n"
                      "- Ask one crucial question only.")
        elif is_behind or is_critical:
            status = (f"STATUS: BEHIND_SCHEDULE. {remaining_mins}m left for {topics_remaining} topics.\n"
                      "- SPEED UP. Do not deep dive.\n"
                      "- Ask 1 key question for this topic.\n"
                      "- IT IS CRITICAL TO COVER ALL TOPICS.")
        else:
            status = (f"STATUS: ON_TRACK. {remaining_mins}m left.\n"
                      "- You have time for deep dives.\n"
                      "- Explore the current topic thoroughly before moving on.")

        return f"""## TIMING CONTEXT
Elapsed: {elapsed_mins}m / Budget: {max_mins}m
Current Topic: {topic_index + 1}/{topic_count}

{status}"""

    @staticmethod
    def build_topic_prompt(
        current_topic: Optional[TopicBlock],
        all_topics: List[TopicBlock],
        insight: Optional[SupervisorInsight],
    ) -> str:
        """WHAT to ask right now, with the supervisor instruction."""
        if current_topic is None:
            return "## CURRENT TOPIC: NONE\nThe interview is in transition. Ask one neutral, open question."

        ids = [t.id for t in all_topics]
        index = ids.index(current_topic.id) if current_topic.id in ids else 0
        sub_goals = "\n".join(f"{i + 1}. {sg}" for i, sg in enumerate(current_topic.sub_goals)) or "1. (open exploration)"

        supervisor = ""
        primary = ""
        if insight is not None:
            if insight.status == SupervisorStatus.TRANSITION:
                supervisor = (
                    "> SUPERVISOR INSTRUCTION: TRANSITION\n"
                    f"> The previous topic is complete. Move naturally to \"{current_topic.label}\".\n"
                    "> Do NOT ask for permission. Ask one opening question on the new topic."
                )
                if insight.transition_mode == "bridge" and insight.engaging_snippet:
                    supervisor += "\n> Bridge from what the user just said into the new topic."
                primary = "Open the new topic with one question."
            elif insight.status == SupervisorStatus.SCANNING:
                target = insight.next_sub_goal or "the next sub-goal"
                supervisor = (
                    "> SUPERVISOR INSTRUCTION: SCANNING\n"
                    f"> Your target is sub-goal: \"{target}\".\n"
                    f"> Ask EXACTLY ONE question about \"{target}\"."
                )
                primary = "Focus ONLY on the target sub-goal for this turn."
            elif insight.status in (SupervisorStatus.DEEPENING, SupervisorStatus.START_DEEP):
                focus = insight.focus_point or "their last point"
                supervisor = (
                    "> SUPERVISOR INSTRUCTION: DEEPENING\n"
                    f"> The user needs to elaborate on: \"{focus}\".\n"
                    f"> Ask ONE specific follow-up question about \"{focus}\".\n"
                    "> Do NOT ask generic questions such as \"Anything else to add?\"."
                )
                if insight.engaging_snippet:
                    supervisor += f"\n> Earlier the user said something relevant: \"{insight.engaging_snippet}\"."
                primary = "Probe deeply into the focus point."

        return f"""## CURRENT TOPIC: {current_topic.label} (Topic {index + 1} of {len(all_topics)})
Description: {current_topic.description or '-'}
Sub-Goals to Cover:
{sub_goals}

{supervisor}

INSTRUCTION:
{primary}
- **STRICTLY ONE QUESTION AT A TIME**.
- **NO REPETITION** of previous questions or openings."""

    @classmethod
    def build(
        cls,
        bot: BotConfig,
        current_topic: Optional[TopicBlock],
        topic_index: int,
        elapsed_sec: float,
        budget_sec: float,
        insight: Optional[SupervisorInsight],
        extra_blocks: Optional[List[str]] = None,
    ) -> str:
        """Assemble the full system prompt."""
        parts = [
            cls.build_persona_prompt(bot),
            cls.build_methodology_prompt(bot.language),
            cls.build_context_prompt(topic_index, len(bot.topics), elapsed_sec, budget_sec),
            cls.build_topic_prompt(current_topic, bot.sorted_topics, insight),
        ]
        parts.extend(block for block in (extra_blocks or []) if block)
        return "\n\n".join(parts)


class Prompts:
    """Focused prompts for single-purpose generations and classifiers."""

    # ============================================================
    # RUNTIME CONTEXT
    # ============================================================

    @staticmethod
    def runtime_semantic_context(
        language: str,
        phase: str,
        target_topic_label: str,
        last_user_message: Optional[str],
        previous_assistant_message: Optional[str],
        transition_mode: Optional[str] = None,
        recent_bridge_stems: Optional[List[str]] = None,
        clarification_requested: bool = False,
    ) -> str:
        """Per-turn coherence instructions anchored on the last exchange."""
        last_user_message = (last_user_message or "").strip()
        if not last_user_message:
            return ""

        user_signal = PromptSanitizer.sanitize(sanitize_user_snippet(last_user_message, 18))
        previous_question = extract_last_assistant_question(previous_assistant_message)
        depth = get_user_response_depth(last_user_message)
        stems = (recent_bridge_stems or [])[:5]

        if _is_it(language):
            depth_hint = {
                "brief": "Risposta breve: usa una domanda semplice e concreta, con un solo focus.",
                "balanced": "Risposta equilibrata: approfondisci un dettaglio specifico emerso ora.",
                "rich": "Risposta ricca: seleziona un solo elemento ad alto valore e approfondiscilo.",
            }[depth]
            if transition_mode == "bridge":
                transition_hint = "Transizione: usa un ponte naturale dal punto utente al nuovo focus."
            elif transition_mode == "clean_pivot":
                transition_hint = "Transizione: pivot pulito con aggancio neutro, senza forzare dettagli non pertinenti."
            else:
                transition_hint = "Transizione: mantieni continuità naturale col turno precedente."
            stems_hint = (
                "8. NON iniziare con nessuna di queste aperture già usate: " + ", ".join(f'"{s}"' for s in stems) + "."
                if stems else "8. Varia l'incipit: non usare la stessa apertura del turno precedente."
            )
            clarification = (
                "\n9. L'utente chiede un chiarimento: chiarisci prima la domanda precedente e poi fai una sola domanda."
                if clarification_requested else ""
            )
            return f"""## RUNTIME SEMANTIC CONTEXT
- Fase attiva: {phase}
- Topic target: "{target_topic_label}"
- Segnale utente da valorizzare (parafrasi, non citazione): "{user_signal or 'N/A'}"
- Ultima domanda assistente da NON ripetere: "{previous_question or 'N/A'}"
- Profondità risposta utente: {depth}

Istruzioni di coerenza:
1. Inizia con una frase breve che riconosce il contenuto della risposta utente (non una formula).
2. Mantieni la nuova domanda semanticamente diversa dalla precedente.
3. {depth_hint}
4. {transition_hint}
5. Evita formule rigide ("ora passiamo a") e chiusure premature.
6. Evita aperture generiche ("molto interessante", "grazie per aver condiviso").
7. Se naturale, preferisci una lente diagnostica (esempio, impatto, priorità o azione).
{stems_hint}{clarification}"""

        depth_hint = {
            "brief": "Short answer: use one simple, concrete follow-up with a single focus.",
            "balanced": "Balanced answer: deepen one specific detail that just emerged.",
            "rich": "Rich answer: pick one high-value element and probe that only.",
        }[depth]
        if transition_mode == "bridge":
            transition_hint = "Transition: use a natural bridge from the user point into the new focus."
        elif transition_mode == "clean_pivot":
            transition_hint = "Transition: use a clean pivot with a neutral bridge, no forced irrelevant details."
        else:
            transition_hint = "Transition: keep natural continuity from the previous turn."
        stems_hint = (
            "8. Do NOT start with any of these recently used openings: " + ", ".join(f'"{s}"' for s in stems) + "."
            if stems else "8. Vary your opening: do not reuse the same opening as the previous turn."
        )
        clarification = (
            "\n9. The user is asking for clarification: first clarify your previous question directly, then ask one follow-up question."
            if clarification_requested else ""
        )
        return f"""## RUNTIME SEMANTIC CONTEXT
- Active phase: {phase}
- Target topic: "{target_topic_label}"
- User signal to leverage (paraphrase, no literal quote): "{user_signal or 'N/A'}"
- Previous assistant question to avoid repeating: "{previous_question or 'N/A'}"
- User response depth: {depth}

Coherence instructions:
1. Open with one short sentence that acknowledges the content of the user's response (not a formula).
2. Keep the new question semantically distinct from the previous one.
3. {depth_hint}
4. {transition_hint}
5. Avoid rigid templates ("now let's move to") and premature closure cues.
6. Avoid generic openers ("very interesting", "thanks for sharing").
7. If natural, prefer a diagnostic lens (example, impact, priority, or action).
{stems_hint}{clarification}"""

    @staticmethod
    def soft_diagnostic_hint(language: str, last_user_message: Optional[str], is_clarification: bool = False) -> str:
        """Suggest a diagnostic lens (example, impact, priority, action) for a substantive answer."""
        text = (last_user_message or "").strip()
        words = count_words(text)
        if not text or words < 5 or is_clarification:
            return ""

        lower = text.lower()
        negative = re.search(r"(problema|critic|risch|limite|debolezz|poco|scarso|difficolt|non |problem|risk|limit|weak|hard|difficult|not )", lower)
        priority = re.search(r"(priorit|prima|subito|urgent|piu importante|più importante|first|most important)", lower)
        impact = re.search(r"(impatto|effetto|risultato|crescita|calo|mercato|client|kpi|vendite|margine|tempo|costo|impact|effect|result|growth|market|sales|margin|time|cost)", lower)

        lens = "example"
        if priority or words >= 35:
            lens = "priority"
        elif negative:
            lens = "action"
        elif impact or words >= 14:
            lens = "impact"

        if _is_it(language):
            label = {"priority": "priorità", "action": "azione", "impact": "impatto", "example": "esempio"}[lens]
            return (f"Suggerimento soft: se coerente con il topic, prova una domanda diagnostica sul piano \"{label}\" "
                    "con un vincolo leggero (tempo, segmento, canale o metrica). Se risulta forzata, ignora il suggerimento.")
        return (f"Soft suggestion: if coherent with the topic, use a diagnostic \"{lens}\" follow-up with one light "
                "constraint (timeframe, segment, channel, or metric). If this feels forced, ignore this suggestion.")

    @staticmethod
    def user_bridge_hint(text: str, language: str) -> str:
        signal = sanitize_user_snippet(text, 14)
        if not signal:
            return ""
        if _is_it(language):
            return f"Apri collegandoti semanticamente al punto utente su \"{signal}\" senza citazione letterale."
        return f"Open by semantically linking to the user point about \"{signal}\" without literal quoting."

    # ============================================================
    # SINGLE-PURPOSE GENERATIONS
    # ============================================================

    @staticmethod
    def question_only(
        language: str,
        topic_label: str,
        topic_cue: Optional[str] = None,
        sub_goal: Optional[str] = None,
        last_user_message: Optional[str] = None,
        previous_question: Optional[str] = None,
        avoid_stems: Optional[List[str]] = None,
        bridge_hint: Optional[str] = None,
        diagnostic_hint: Optional[str] = None,
        require_acknowledgment: bool = True,
        transition_mode: Optional[str] = None,
    ) -> str:
        """Regenerate a single topic question when the main reply failed a guard."""
        lines = [
            f"Language: {language}",
            f"Topic title (internal): {topic_label}",
            f"Natural topic cue for user-facing wording: {topic_cue}" if topic_cue else None,
            f"Sub-goal: {sub_goal}" if sub_goal else None,
            f"User last message: \"{PromptSanitizer.sanitize(last_user_message, 600)}\"" if last_user_message else None,
            f"Previous assistant question to avoid repeating: \"{previous_question}\"" if previous_question else None,
            f"Do NOT reuse these recent bridge openings: {' | '.join(avoid_stems[:8])}" if avoid_stems else None,
            f"Bridge hint: {bridge_hint}" if bridge_hint else None,
            "Acknowledgment quality: reference one concrete detail from the user's message.",
            "Avoid stock openers like \"very interesting\", \"thanks for sharing\", \"molto interessante\".",
            diagnostic_hint or None,
            "Output structure: (1) one short acknowledgment sentence; (2) one specific question."
            if require_acknowledgment else "Output structure: one concise question.",
            f"Transition mode: bridge naturally from the user's point to \"{topic_label}\" without literal quotes."
            if transition_mode == "bridge" else
            ("Transition mode: clean pivot with a neutral acknowledgment." if transition_mode == "clean_pivot" else None),
            "Task: Ask exactly ONE concise interview question about the topic. Do NOT close the interview. "
            "Do NOT ask for contact data. Do NOT repeat the topic title verbatim. End with a single question mark.",
            "Reply with the message text only.",
        ]
        return "\n".join(line for line in lines if line)

    @staticmethod
    def deep_offer_only(language: str, extension_preview: Optional[List[str]] = None) -> str:
        starter = next((h.strip() for h in (extension_preview or []) if h and h.strip()), "")
        third = (
            f"3) Propose to continue and mention one indirect starting point connected to what the user shared, for example around: {starter}. Use no quotes or lists."
            if starter else
            "3) Propose to continue and mention one concrete starting point connected to what the user shared, using indirect wording."
        )
        return "\n".join([
            f"Language: {language}",
            "Task: Write a short extension message with this structure:",
            "1) Start with a short thank-you for the user's availability and answers so far.",
            "2) Say naturally that the planned interview time is over (or would be over).",
            third,
            "4) Ask exactly ONE yes/no question asking availability for a few more minutes of deep-dive questions.",
            "Do NOT ask topic questions. Do NOT ask for contacts. Do NOT close the interview.",
            "Keep it natural and concise. End with exactly one question mark. Reply with the message text only.",
        ])

    @staticmethod
    def consent_question_only(language: str) -> str:
        return "\n".join([
            f"Language: {language}",
            "Task: Write a natural transition into data collection and ask exactly ONE yes/no question asking "
            "permission to collect contact details for follow-up.",
            "Structure: (1) one short linking sentence acknowledging the content part is over; (2) one yes/no consent question.",
            "Do NOT ask for any specific field yet. Do NOT ask topic questions. Do NOT close the interview.",
            "End with exactly one question mark. Reply with the message text only.",
        ])

    @staticmethod
    def field_question_only(language: str, field_label: str, feedback: Optional[str] = None) -> str:
        return "\n".join(line for line in [
            f"Language: {language}",
            f"Target field to collect now: {field_label}",
            f"The previous answer could not be used. Start from this feedback: {feedback}" if feedback else None,
            "Task: Ask exactly ONE concise question to collect this field only.",
            "Do NOT ask for other fields. Do NOT ask topic questions. Do NOT close the interview.",
            "End with exactly one question mark. Reply with the message text only.",
        ] if line)

    # ============================================================
    # CLASSIFIERS
    # ============================================================

    @staticmethod
    def classify_user_intent(message: str, language: str, context: str) -> str:
        questions = {
            "consent": "The system asked for contact details. Did the user agree?",
            "deep_offer": "The system asked whether the user wants to EXTEND the interview by a few minutes to continue. Did the user accept?",
            "stop_confirmation": "The system asked the user to confirm they want to conclude the interview now. Did the user confirm they want to STOP?",
        }
        hints = {
            "consent": "ACCEPT = user agrees to share contact details; REFUSE = user declines; NEUTRAL = unrelated",
            "deep_offer": "ACCEPT = user explicitly agrees to extend/continue; REFUSE = user declines extension; NEUTRAL = unrelated or just answers content",
            "stop_confirmation": "ACCEPT = user confirms they want to stop; REFUSE = user wants to continue; NEUTRAL = unclear",
        }
        return f"""{questions.get(context, questions['consent'])}
Language: {language}
User message: "{message}"

Classify intent. {hints.get(context, hints['consent'])}.
Respond with JSON only: {{"intent": "ACCEPT" | "REFUSE" | "NEUTRAL", "reason": "<short>"}}"""

    @staticmethod
    def classify_closure_intent(message: str, language: str) -> str:
        return f"""Classify interviewee intent from a single message.
Language: {language}
User message: "{message}"

Return wants_to_conclude=true ONLY if the user is explicitly asking to stop/end/conclude now, or clearly refusing to continue now.
Return false for normal topic answers, generic frustration without explicit stop request, uncertainty, or unrelated content.
Be strict: avoid false positives.
Respond with JSON only: {{"wants_to_conclude": true | false, "confidence": "high" | "medium" | "low", "reason": "<short>"}}"""

    @staticmethod
    def extract_field(field_id: str, description: str, message: str) -> str:
        rules = [
            "- Return null if not found",
            "- Do NOT infer name from email address",
            "- For email: look for xxx@xxx.xxx pattern",
            "- For phone: look for numeric sequences",
        ]
        if field_id in ("name", "fullName"):
            rules.append("- For name: accept first name only. If the message contains a word that looks like a name, extract it.")
        elif field_id == "company":
            rules.append("- For company: extract the business name even if mixed with other info (e.g. \"Ferri spa and I'm the CEO\" -> \"Ferri spa\").")
        elif field_id == "role":
            rules.append("- For role: look for job titles like CEO, CTO, manager, developer, designer.")
        rules_text = "\n".join(rules)
        return f"""Extract "{field_id}" ({description}) from: "{message}"

Rules:
{rules_text}
Respond with JSON only: {{"extracted_value": "<value>" | null, "confidence": "high" | "low" | "none"}}"""

    @staticmethod
    def topic_supervisor(topic: TopicBlock, remaining_sub_goals: List[str], transcript: str, language: str) -> str:
        """Advisory check on which sub-goals the latest exchange already covered."""
        goals = "\n".join(f"- {sg}" for sg in remaining_sub_goals) or "- (none)"
        return f"""You supervise a qualitative interview on the topic "{topic.label}".
Language: {language}
Sub-goals not yet covered:
{goals}

Recent exchange:
{transcript}

Decide which remaining sub-goals the user has ALREADY answered and which one to ask next.
Respond with JSON only: {{"covered_sub_goals": ["..."], "next_sub_goal": "<sub-goal or null>", "focus_point": "<short phrase from the user's words or null>"}}"""


# ============================================================
# FALLBACK MESSAGES (used when the LLM fails or a guard rejects twice)
# ============================================================

FALLBACK_MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "opening": "Hi, and thanks for taking the time. We'll take a quick pass over a few key topics, and then go deeper if we have time. To start, {question}",
        "topic_question": "Could you tell me more about {cue}?",
        "sub_goal_question": "Thinking about {cue}, how does {sub_goal} show up in your experience?",
        "sub_goal_question_alt": "When it comes to {sub_goal}, what does day-to-day work with {cue} look like for you?",
        "topic_question_alt": "What stands out most for you about {cue}?",
        "deepen_question": "You touched on {focus}: could you walk me through a concrete example?",
        "clarification": "To clarify, I meant {cue}. Could you share how it works in your case?",
        "scope_recovery": "That's a bit outside the scope of this interview, so let's stay on {cue}. What has been your experience with it?",
        "deep_offer_with_hint": "Thank you for your time and the insights shared so far. The planned interview time would now be over: if you want, we can continue with a few extra questions, starting from one point that emerged, for example {hint}. Would you like to continue for a few more minutes?",
        "deep_offer": "Thank you for your time and the insights shared so far. The planned interview time would now be over: if you want, we can continue with a few extra questions on one useful point that emerged. Would you like to continue for a few more minutes?",
        "consent": "Thank you, that covers the questions I had. Would you be willing to share a few contact details so we can follow up with you?",
        "field": "Could you share your {label}?",
        "confirm_stop": "Of course. Just to confirm: would you like to end the interview now?",
        "resume": "Happy to keep going. {question}",
        "closing": "Thank you very much for your time and for everything you shared. The interview is now complete. INTERVIEW_COMPLETED",
        "closing_with_data": "Thank you, I have everything I need. We really appreciate your time and your insights. INTERVIEW_COMPLETED",
    },
    "it": {
        "opening": "Ciao e grazie per il tuo tempo. Faremo un giro veloce su alcuni temi chiave, e poi approfondiremo se avremo tempo. Per iniziare, {question}",
        "topic_question": "Mi racconti qualcosa in più su {cue}?",
        "sub_goal_question": "Pensando a {cue}, come si manifesta {sub_goal} nella tua esperienza?",
        "sub_goal_question_alt": "Per quanto riguarda {sub_goal}, com'è il lavoro di tutti i giorni con {cue}?",
        "topic_question_alt": "Cosa ti colpisce di più riguardo a {cue}?",
        "deepen_question": "Hai accennato a {focus}: mi fai un esempio concreto?",
        "clarification": "Per chiarire, intendevo {cue}. Come funziona nel tuo caso?",
        "scope_recovery": "Questo esula un po' dallo scopo dell'intervista, quindi restiamo su {cue}. Qual è la tua esperienza al riguardo?",
        "deep_offer_with_hint": "Grazie per il tempo e per i contributi condivisi fin qui. Il tempo previsto per l'intervista sarebbe terminato: se vuoi, possiamo continuare con qualche domanda in più, partendo da uno dei punti emersi, ad esempio {hint}. Ti va di proseguire ancora per qualche minuto?",
        "deep_offer": "Grazie per il tempo e per i contributi condivisi fin qui. Il tempo previsto per l'intervista sarebbe terminato: se vuoi, possiamo continuare con qualche domanda in più su uno dei punti più utili emersi. Ti va di proseguire ancora per qualche minuto?",
        "consent": "Grazie, abbiamo coperto tutte le domande. Saresti disponibile a lasciarci qualche recapito per un eventuale ricontatto?",
        "field": "Mi indichi il tuo {label}?",
        "confirm_stop": "Certo. Solo per conferma: vuoi concludere l'intervista adesso?",
        "resume": "Volentieri, proseguiamo. {question}",
        "closing": "Grazie mille per il tuo tempo e per tutto quello che hai condiviso. L'intervista è conclusa. INTERVIEW_COMPLETED",
        "closing_with_data": "Grazie, ho tutto quello che mi serve. Apprezziamo molto il tuo tempo e i tuoi spunti. INTERVIEW_COMPLETED",
    },
}


def get_fallback(key: str, language: str, **kwargs) -> str:
    """Localized fallback template, formatted with the given values."""
    messages = FALLBACK_MESSAGES["it"] if _is_it(language) else FALLBACK_MESSAGES["en"]
    template = messages.get(key) or FALLBACK_MESSAGES["en"][key]
    return template.format(**kwargs)
