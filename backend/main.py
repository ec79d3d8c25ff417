"""
Business Tuner Interview Engine - FastAPI Backend

Qualitative research interviews driven by an LLM through a phase state machine:
- SCAN / DEEP topic phases with elastic turn budgets
- Extension offer when the planned time runs out
- Consent-gated contact data collection
- Guards against premature closure, repetition and off-topic drift
- ChromaDB conversation memory

Compatible with any OpenAI-style chat completions API.
"""
import sys
import os
import logging
from typing import Dict, Any, List

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from utils.config import config
from models.schemas import (
    ChatRequest,
    ChatResponse,
    CreateBotRequest,
    InterviewPhase,
    PlanOverridesRequest,
    StartConversationRequest,
)
from interview.agents import agent_controller
from interview.phases import PHASE_ORDER, InterviewPhases
from interview.quality import summarize_quality
from interview.sessions import (
    BotNotFoundError,
    InterviewCompletedError,
    SessionNotFoundError,
    session_store,
)
from interview.state import InterviewStateMachine
from llm.client import llm_client
from memory.manager import memory_manager
from memory.vector_db import memory_store

logging.basicConfig(
    level=getattr(logging, config.api.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ================================================================
# FastAPI App Initialization
# ================================================================

app = FastAPI(
    title="Business Tuner Interview API",
    description="AI qualitative interview engine with phase state machine and guarded LLM replies",
    version="2.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ================================================================
# Lookups
# ================================================================

def get_session_or_404(conversation_id: str) -> InterviewStateMachine:
    try:
        return session_store.get_session(conversation_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def get_session_lock_or_404(conversation_id: str):
    try:
        return session_store.session_lock(conversation_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def get_bot_or_404(bot_id: str):
    try:
        return session_store.get_bot(bot_id)
    except BotNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ================================================================
# Health
# ================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "running",
        "version": "2.0.0",
        "service": "Business Tuner Interview Engine",
        "memory": {
            "available": memory_store.is_available,
            "stored_facts": memory_store.count(),
        },
        "active_conversations": len(session_store.sessions),
    }


@app.get("/health/llm")
def llm_health():
    """Round-trip a tiny completion against the configured LLM server."""
    return {
        "llm_available": llm_client.health_check(),
        "model": config.llm.model,
        "critical_model": config.llm.critical_model,
    }


@app.get("/phases")
async def list_phases():
    return InterviewPhases.get_all_phases_info()


# ================================================================
# Bots and plans
# ================================================================

@app.post("/bots")
async def create_bot(request: CreateBotRequest):
    """Register an interview bot and build its plan."""
    try:
        bot = session_store.create_bot(request)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"bot": bot.model_dump(), "plan": session_store.plan_service.get_or_create(bot).model_dump()}


@app.get("/bots/{bot_id}")
async def get_bot(bot_id: str):
    return get_bot_or_404(bot_id).model_dump()


@app.get("/bots/{bot_id}/plan")
async def get_plan(bot_id: str):
    bot = get_bot_or_404(bot_id)
    return session_store.plan_service.get_or_create(bot).model_dump()


@app.put("/bots/{bot_id}/plan")
async def update_plan(bot_id: str, overrides: PlanOverridesRequest):
    """Store operator overrides (unknown topics are dropped, turns clamped to >= 1)."""
    get_bot_or_404(bot_id)
    plan = session_store.plan_service.update_overrides(bot_id, overrides)
    logger.info(f"Plan overrides updated for bot {bot_id} (version {plan.version})")
    return plan.model_dump()


@app.post("/bots/{bot_id}/plan/regenerate")
async def regenerate_plan(bot_id: str):
    get_bot_or_404(bot_id)
    return session_store.plan_service.regenerate(bot_id).model_dump()


# ================================================================
# Conversations
# ================================================================

@app.post("/conversations")
def start_conversation(request: StartConversationRequest):
    """
    Start a conversation for a bot.

    Returns:
        Conversation ID with the opening message
    """
    get_bot_or_404(request.bot_id)
    session = session_store.create_session(request.bot_id, classifier=agent_controller.classifier)
    with session_store.session_lock(session.conversation_id):
        result = agent_controller.start_interview(session)
    return result.to_response(session.conversation_id).model_dump()


@app.post("/chat", response_model=ChatResponse)
def chat(request: ChatRequest):
    """
    Process one user turn.

    Returns:
        The assistant reply with phase, topic, supervisor status and completion flag
    """
    session = get_session_or_404(request.conversation_id)
    try:
        with get_session_lock_or_404(session.conversation_id):
            result = agent_controller.process_turn(session, request.message, request.effective_duration_seconds)
    except InterviewCompletedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_response(session.conversation_id)


@app.get("/conversations/{conversation_id}/status")
async def get_conversation_status(conversation_id: str):
    return get_session_or_404(conversation_id).get_status()


@app.post("/conversations/{conversation_id}/end")
def end_conversation(conversation_id: str):
    """End the conversation now, skipping any remaining phases."""
    session = get_session_or_404(conversation_id)
    try:
        with get_session_lock_or_404(conversation_id):
            result = agent_controller.end_interview(session)
    except InterviewCompletedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_response(session.conversation_id).model_dump()


@app.get("/conversations/{conversation_id}/report")
async def get_conversation_report(conversation_id: str):
    """
    Transcript and evaluation of a conversation.

    Returns:
        Transcript, candidate profile, quality summary, phases covered,
        topic coverage and memory summary
    """
    session = get_session_or_404(conversation_id)

    seen = {m.phase for m in session.messages}
    phases_covered = [p.value for p in PHASE_ORDER if p in seen]
    if session.is_completed and InterviewPhase.COMPLETED.value not in phases_covered:
        phases_covered.append(InterviewPhase.COMPLETED.value)

    topic_coverage: List[Dict[str, Any]] = []
    for topic in session.topics():
        budget = session.topic_budgets.get(topic.id)
        used = session.sub_goal_history.get(topic.id, [])
        topic_coverage.append({
            "topic_id": topic.id,
            "label": topic.label,
            "scan_turns": budget.turns_used if budget else 0,
            "bonus_turns": budget.bonus_turns_granted if budget else 0,
            "sub_goals_covered": used,
            "sub_goals_total": len(topic.sub_goals),
            "deep_turns": session.deep_turns_by_topic.get(topic.id, 0),
        })

    return {
        "conversation_id": session.conversation_id,
        "bot_id": session.bot.id,
        "status": session.get_status(),
        "transcript": [m.model_dump(mode="json") for m in session.messages],
        "candidate_profile": session.candidate_profile.model_dump(),
        "quality": summarize_quality(session.quality_turns),
        "phases_covered": phases_covered,
        "topic_coverage": topic_coverage,
        "memory": memory_manager.get_session_summary(session.memory),
    }


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    try:
        session_store.delete_session(conversation_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    memory_manager.clear_session(conversation_id)
    return {"status": "deleted", "conversation_id": conversation_id}


@app.get("/bots/{bot_id}/conversations")
async def list_conversations(bot_id: str, include_completed: bool = Query(True)):
    get_bot_or_404(bot_id)
    sessions = session_store.list_sessions(bot_id)
    return [
        s.get_status() for s in sessions
        if include_completed or not s.is_completed
    ]


# ================================================================
# Debug Endpoints
# ================================================================

@app.get("/debug/conversation/{conversation_id}")
async def debug_conversation(conversation_id: str):
    """Full internal state of a conversation."""
    return get_session_or_404(conversation_id).to_snapshot()


@app.get("/debug/memory/{conversation_id}")
async def debug_memory(conversation_id: str):
    session = get_session_or_404(conversation_id)
    return {
        "conversation_id": conversation_id,
        "stored_facts": memory_store.count(conversation_id),
        "session_summary": memory_manager.get_session_summary(session.memory),
        "prompt_block": memory_manager.format_for_prompt(session.memory, session.language),
    }


# ================================================================
# Main Entry Point
# ================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
