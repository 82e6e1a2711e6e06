"""Logging utilities for the Lumen orchestrator.

Provides colour-coded console output that separates store/shell work from
model calls, with a level threshold taken from ``Config.LOG_LEVEL``.
"""

import os
from enum import Enum

from .config import Config


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Deterministic work (stores, shell)
    YELLOW = "\033[93m"    # Model calls (analysis, planning, turns, summaries)
    RED = "\033[91m"       # Errors, declines, breaker trips
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Phase transitions and metadata
    GREY = "\033[90m"      # Debug dumps

    BOLD = "\033[1m"
    RESET = "\033[0m"


_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Returns plain text when ``LUMEN_NO_COLOR`` is set.
    """
    if os.getenv("LUMEN_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def _enabled(level: str) -> bool:
    threshold = _LEVELS.get(Config.LOG_LEVEL.upper(), 20)
    return _LEVELS[level] >= threshold


def log_debug(message: str) -> None:
    """Log a debug dump (grey). Hidden unless LOG_LEVEL=DEBUG."""
    if _enabled("DEBUG"):
        print(colored(message, Color.GREY))


def log_deterministic(message: str) -> None:
    """Log a store or shell operation (blue)."""
    if _enabled("INFO"):
        print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log a model call (yellow)."""
    if _enabled("INFO"):
        print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or retry (red). Always shown at ERROR threshold."""
    if _enabled("ERROR"):
        print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_warning(message: str) -> None:
    """Log a soft failure such as a declined command (red)."""
    if _enabled("WARNING"):
        print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    if _enabled("INFO"):
        print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    if _enabled("INFO"):
        print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))
