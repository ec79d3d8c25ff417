"""
Configuration settings for the interview engine.
All settings can be overridden via environment variables.
"""
import os
from typing import Dict, List
from dataclasses import dataclass, field


@dataclass
class LLMConfig:
    """LLM server configuration (OpenAI-compatible chat completions API)."""
    base_url: str = field(default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.openai.com/v1"))
    api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY", "")))
    model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini"))
    critical_model: str = field(default_factory=lambda: os.getenv("LLM_CRITICAL_MODEL", os.getenv("LLM_MODEL", "gpt-4o")))
    completion_endpoint: str = "/chat/completions"
    timeout: int = field(default_factory=lambda: int(os.getenv("LLM_TIMEOUT", "30")))
    max_retries: int = 2

    # Default generation parameters
    default_temperature: float = 0.7
    default_max_tokens: int = 300

    @property
    def completion_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.completion_endpoint}"


@dataclass
class MemoryConfig:
    """Memory and vector DB configuration."""
    enabled: bool = field(default_factory=lambda: os.getenv("MEMORY_ENABLED", "true").lower() == "true")
    chroma_persist_dir: str = field(default_factory=lambda: os.getenv("CHROMA_DB_PATH", ""))
    collection_name: str = "interview_facts"

    # Memory retrieval settings
    rag_top_k: int = 4
    min_prompt_confidence: float = 0.6
    fatigue_warning_threshold: float = 0.5


@dataclass
class InterviewConfig:
    """Interview flow configuration."""
    default_language: str = "en"
    default_max_duration_mins: int = 10
    seconds_per_turn: int = 45

    # Deep phase
    deep_max_turns_per_topic: int = 2
    deep_fallback_turns: int = 2

    # Extension offer / data collection
    extension_minutes: int = field(default_factory=lambda: int(os.getenv("EXTENSION_MINUTES", "5")))
    max_extension_offer_attempts: int = 2
    max_consent_attempts: int = 2
    max_field_attempts: int = 2
    max_bonus_turns_per_topic: int = 1

    # Guards
    history_dedup_window: int = 80
    recent_questions_window: int = 3
    max_regeneration_attempts: int = 1

    # Prompt sanitizer limits
    max_user_input_chars: int = 4000
    max_transcript_chars: int = 8000
    max_transcript_message_chars: int = 2000

    default_candidate_fields: List[str] = field(default_factory=lambda: ["name", "email"])

    field_types: Dict[str, str] = field(default_factory=lambda: {
        "name": "name",
        "fullName": "name",
        "email": "email",
        "phone": "phone",
        "linkedin": "url",
        "portfolio": "url",
        "website": "url",
    })


@dataclass
class APIConfig:
    """HTTP API configuration."""
    cors_origins: List[str] = field(default_factory=lambda: [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
    ])
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())


class Config:
    """Main configuration class combining all config sections."""

    def __init__(self):
        self.llm = LLMConfig()
        self.memory = MemoryConfig()
        self.interview = InterviewConfig()
        self.api = APIConfig()


# Global config instance
config = Config()
