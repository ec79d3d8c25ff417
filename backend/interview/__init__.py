# Interview module
from .phases import InterviewPhases, PHASE_ORDER
from .state import InterviewStateMachine
from .sessions import SessionStore, session_store
from .agents import AgentController, agent_controller
