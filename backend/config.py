"""
Application configuration for TariffOS.

Every setting is read from the environment (a local .env file is honoured)
and falls back to a development default. Orchestration thresholds live here
so operators can tune them without a code change.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    """Application configuration."""

    # ==========================================================================
    # Database
    # ==========================================================================
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tariffos_dev.db")
    DATABASE_ECHO: bool = _env_bool("DATABASE_ECHO", "false")

    # ==========================================================================
    # LLM Settings
    # ==========================================================================
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "4096"))

    TAVILY_API_KEY: str = os.getenv("TAVILY_API_KEY", "")

    # ==========================================================================
    # Agent backend
    # ==========================================================================
    # "llm" runs the agents in-process; "http" posts to AGENT_BASE_URL/<agent>
    AGENT_BACKEND: str = os.getenv("AGENT_BACKEND", "llm")
    AGENT_BASE_URL: str = os.getenv("AGENT_BASE_URL", "http://localhost:9000/agents")
    AGENT_TIMEOUT_SECONDS: float = float(os.getenv("AGENT_TIMEOUT_SECONDS", "120"))

    # ==========================================================================
    # Orchestration thresholds
    # ==========================================================================
    MAX_ROUNDS: int = int(os.getenv("MAX_ROUNDS", "10"))
    # Safety net against decision-table bugs, independent of MAX_ROUNDS
    MAX_ITERATIONS: int = int(os.getenv("MAX_ITERATIONS", "15"))
    SELF_HEALING_CAP: int = int(os.getenv("SELF_HEALING_CAP", "3"))
    PRODUCT_READINESS_THRESHOLD: int = int(os.getenv("PRODUCT_READINESS_THRESHOLD", "80"))
    FINALIZE_THRESHOLD: int = int(os.getenv("FINALIZE_THRESHOLD", "60"))
    HIGH_CONFIDENCE_THRESHOLD: int = int(os.getenv("HIGH_CONFIDENCE_THRESHOLD", "80"))

    # Finished runs whose round events stay replayable over the WebSocket
    FINISHED_RUNS_RETAINED: int = int(os.getenv("FINISHED_RUNS_RETAINED", "100"))

    # ==========================================================================
    # Logging
    # ==========================================================================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if cls.AGENT_BACKEND not in ("llm", "http"):
            raise ValueError(f"AGENT_BACKEND must be 'llm' or 'http', got '{cls.AGENT_BACKEND}'.")
        if cls.AGENT_BACKEND == "llm" and not (cls.ANTHROPIC_API_KEY or cls.OPENAI_API_KEY):
            raise ValueError("ANTHROPIC_API_KEY or OPENAI_API_KEY is required for the llm agent backend.")


config = Config()
