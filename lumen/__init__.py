"""
Lumen - conversational agent orchestrator.

Analyzes a query, optionally plans it, then runs a bounded loop of
reasoning turns that answer, generate code, or propose shell commands
behind a human approval gate. Rolling memory and a sectioned scratchpad
persist per conversation identity.

All dependencies are injected; ``Orchestrator.from_config`` wires the
default file store, shell executor and LLM reasoner.
"""

__version__ = "0.3.0"

from .orchestrator import (
    DenialTracker,
    OrchestrationPhase,
    OrchestrationResult,
    Orchestrator,
)
from .config import Config
from .execution import CommandExecutor, ShellCommandExecutor
from .llm_utils import LLMReasoner, Reasoner, ReasoningFailure, call_llm_with_retries
from .memory import RollingMemoryStore, Summarizer
from .persistence import (
    DocumentStore,
    FileDocumentStore,
    InMemoryDocumentStore,
    PersistenceError,
)
from .cognition import (
    KeywordOverlapMatcher,
    LLMSummarizer,
    Plan,
    PlanStep,
    PlanTracker,
    ScratchpadStore,
    StepMatcher,
    TurnContext,
    is_complex_query,
)
from .schemas import (
    CodeGeneration,
    CommandResult,
    InteractionRecord,
    LandscapeAnalysis,
    MemoryState,
    MemoryStats,
    PlainResponse,
    PlanStepsResult,
    SummaryRecord,
    SummaryResult,
    TerminalCommand,
    TerminalOutcome,
    TurnRecord,
    TurnResponse,
)

__all__ = [
    "__version__",
    "Orchestrator",
    "OrchestrationResult",
    "OrchestrationPhase",
    "DenialTracker",
    "Config",
    "CommandExecutor",
    "ShellCommandExecutor",
    "LLMReasoner",
    "Reasoner",
    "ReasoningFailure",
    "call_llm_with_retries",
    "RollingMemoryStore",
    "Summarizer",
    "DocumentStore",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "PersistenceError",
    "KeywordOverlapMatcher",
    "LLMSummarizer",
    "Plan",
    "PlanStep",
    "PlanTracker",
    "ScratchpadStore",
    "StepMatcher",
    "TurnContext",
    "is_complex_query",
    "CodeGeneration",
    "CommandResult",
    "InteractionRecord",
    "LandscapeAnalysis",
    "MemoryState",
    "MemoryStats",
    "PlainResponse",
    "PlanStepsResult",
    "SummaryRecord",
    "SummaryResult",
    "TerminalCommand",
    "TerminalOutcome",
    "TurnRecord",
    "TurnResponse",
]
