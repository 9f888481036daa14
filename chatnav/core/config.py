"""
Configuration module for the chatnav arbitration core.
Centralizes all settings with environment variable overrides.
"""
import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


class Config:
    """Central configuration for chatnav"""

    # Logging
    LOG_LEVEL: str = os.environ.get("CHATNAV_LOG_LEVEL", "INFO")

    # Quiet Mode - hides telemetry/latch/resolver internals for a cleaner transcript
    QUIET_MODE: bool = _env_bool("CHATNAV_QUIET_MODE", "false")

    # Grounding-set freshness
    # A chat option group older than this many turns is stale and never resurfaces.
    GROUP_TTL_TURNS: int = int(os.environ.get("CHATNAV_GROUP_TTL_TURNS", "2"))

    # A pending focus latch that is still unresolved after this many turns is cleared.
    PENDING_LATCH_MAX_TURNS: int = int(os.environ.get("CHATNAV_PENDING_LATCH_MAX_TURNS", "2"))

    # After a stop, repeated exits and bare ordinals get a short reply for this many turns.
    STOP_SUPPRESSION_TURN_LIMIT: int = int(os.environ.get("CHATNAV_STOP_SUPPRESSION_TURN_LIMIT", "2"))

    # Candidate size policy
    NON_LIST_CANDIDATE_CAP: int = int(os.environ.get("CHATNAV_NON_LIST_CAP", "5"))
    LIST_CANDIDATE_CAP: int = int(os.environ.get("CHATNAV_LIST_CAP", "12"))
    RECENT_REFERENT_LIMIT: int = int(os.environ.get("CHATNAV_RECENT_REFERENT_LIMIT", "5"))

    # Clarification escalation ladder (attempt >= this offers exits)
    MAX_ATTEMPT_COUNT: int = int(os.environ.get("CHATNAV_MAX_ATTEMPT_COUNT", "3"))

    # Widget registry schema version; registrants with any other tag are rejected
    WIDGET_SCHEMA_VERSION: int = 1

    # Constrained arbitrator (model fallback)
    LLM_MODE: str = os.environ.get("CHATNAV_LLM_MODE", "ollama")  # "ollama" or "off"
    OLLAMA_BASE_URL: str = os.environ.get("CHATNAV_OLLAMA_URL", "http://127.0.0.1:11434")
    OLLAMA_MODEL: str = os.environ.get("CHATNAV_OLLAMA_MODEL", "llama3.1:latest")
    OLLAMA_TEMPERATURE: float = float(os.environ.get("CHATNAV_OLLAMA_TEMPERATURE", "0.1"))
    OLLAMA_NUM_PREDICT: int = int(os.environ.get("CHATNAV_OLLAMA_NUM_PREDICT", "150"))
    ARBITER_TIMEOUT_MS: int = int(os.environ.get("CHATNAV_ARBITER_TIMEOUT_MS", "800"))
    ARBITER_MIN_CONFIDENCE: float = float(os.environ.get("CHATNAV_ARBITER_MIN_CONFIDENCE", "0.6"))

    # Gated extension: let a validated model "select" execute instead of only
    # reordering the clarifier. Off by default.
    ARBITER_AUTO_EXECUTE: bool = _env_bool("CHATNAV_ARBITER_AUTO_EXECUTE", "false")

    @classmethod
    def get_arbiter_timeout_sec(cls) -> float:
        """Get arbitrator time box in seconds"""
        return cls.ARBITER_TIMEOUT_MS / 1000.0

    @classmethod
    def llm_enabled(cls) -> bool:
        """Whether the model fallback may be called at all"""
        return cls.LLM_MODE.lower() != "off"
