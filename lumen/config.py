"""
Lumen Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local model server (provider "ollama")
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Storage root for per-conversation memory and scratchpad documents
    DATA_DIR: Path = Path(os.getenv("LUMEN_DATA_DIR", "lumen_data"))

    # Orchestration policy. These are tunable limits, not structural constants.
    MAX_ITERATIONS: int = int(os.getenv("LUMEN_MAX_ITERATIONS", "5"))
    MAX_DENIALS: int = int(os.getenv("LUMEN_MAX_DENIALS", "2"))
    APPROVAL_TIMEOUT: Optional[float] = _optional_float("LUMEN_APPROVAL_TIMEOUT")

    # Rolling memory
    MEMORY_WINDOW: int = int(os.getenv("LUMEN_MEMORY_WINDOW", "21"))
    MAX_SUMMARIES: int = int(os.getenv("LUMEN_MAX_SUMMARIES", "3"))

    # Shell execution
    COMMAND_TIMEOUT: float = float(os.getenv("LUMEN_COMMAND_TIMEOUT", "30"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.MAX_ITERATIONS < 1:
            raise ValueError("LUMEN_MAX_ITERATIONS must be at least 1")
        if cls.MAX_DENIALS < 1:
            raise ValueError("LUMEN_MAX_DENIALS must be at least 1")

        provider = cls.LLM_PROVIDER.lower()
        if provider == "ollama":
            return

        if provider == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if provider == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For a local model, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Lumen Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Data Dir: {cls.DATA_DIR}",
            f"  Max Iterations: {cls.MAX_ITERATIONS}",
            f"  Max Denials: {cls.MAX_DENIALS}",
            f"  Memory Window: {cls.MEMORY_WINDOW} interactions / {cls.MAX_SUMMARIES} summaries",
            f"  Command Timeout: {cls.COMMAND_TIMEOUT:g}s",
            f"  Log Level: {cls.LOG_LEVEL}",
        ]
        return "\n".join(lines)
