"""
Pydantic schemas for the Lumen orchestrator.

Two families of models live here:

- Persisted records (interaction log, summaries, memory aggregate) that the
  stores serialize to JSON documents.
- Structured-output contracts handed to the reasoning backend. The backend
  must return JSON that validates against one of these models; validation
  failures are fed back to the model and retried (see ``llm_utils``).

The per-turn contract is a tagged union discriminated by ``choice`` so each
branch carries exactly the fields it needs.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# Rolling Memory Records
# ============================================================================


class InteractionRecord(BaseModel):
    """One completed turn stored in the rolling window.

    ``request`` and ``response`` are opaque to the memory store; the
    orchestrator stores ``{"query", "context"}`` and the dumped turn decision.
    """

    id: int = Field(..., ge=1, description="Monotonic sequence id, never reused")
    ts: datetime = Field(..., description="When the turn was recorded")
    request: Dict[str, Any] = Field(default_factory=dict)
    response: Dict[str, Any] = Field(default_factory=dict)
    # Which branch fired, iteration number, command outcome, etc.
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SummaryRange(BaseModel):
    """Id and timestamp bounds of the interactions a summary covers."""

    start_id: int
    end_id: int
    start_ts: datetime
    end_ts: datetime


class SummaryRecord(BaseModel):
    """Compressed block of history. Never mutated after creation."""

    covers: SummaryRange
    text: str
    reasoning: Optional[str] = None
    ts: datetime


class MemoryState(BaseModel):
    """Aggregate root persisted as a whole for one conversation identity."""

    interactions: List[InteractionRecord] = Field(default_factory=list)
    summaries: List[SummaryRecord] = Field(default_factory=list)
    # Equals the highest interaction id ever assigned.
    count: int = Field(default=0, ge=0)


class MemoryStats(BaseModel):
    total_processed: int
    active_count: int
    summary_count: int
    max_interactions: int
    max_summaries: int
    oldest_active_ts: Optional[datetime] = None
    newest_active_ts: Optional[datetime] = None
    oldest_summary_start: Optional[int] = None
    newest_summary_end: Optional[int] = None


# ============================================================================
# Structured-Output Contracts
# ============================================================================

Priority = Literal["low", "medium", "high", "critical"]


class LandscapeAnalysis(BaseModel):
    """Meta-analysis of a complex query before any turn runs."""

    situation_summary: str = Field(
        ..., description="Concise summary of what the user is trying to accomplish"
    )
    overall_intent: str = Field(
        ..., description="Primary goal, e.g. 'Troubleshoot server' or 'Deploy code'"
    )
    suggested_approach: str = Field(
        ..., description="Strategic guidance on how to sequence the work"
    )
    priority: Priority = Field(..., description="Overall priority of the request")
    requires_immediate_action: bool = Field(
        default=False, description="Whether anything is urgent (outage, critical error)"
    )


class PlanStepModel(BaseModel):
    description: str = Field(..., description="Concise description of the step")
    rationale: Optional[str] = Field(
        default=None, description="Why this step is needed for the overall task"
    )


class PlanStepsResult(BaseModel):
    """Ordered step plan plus anything the planner could not find."""

    steps: List[PlanStepModel] = Field(default_factory=list)
    missing_context: List[str] = Field(
        default_factory=list,
        description="Information or prerequisites required but not available",
    )


class SummaryResult(BaseModel):
    summary: str = Field(..., description="Condensed history preserving key facts")
    reasoning: str = Field(default="", description="What was kept and why")


class TurnBase(BaseModel):
    """Fields every turn branch carries."""

    missing_context: List[str] = Field(
        default_factory=list,
        description="Information the assistant needs but does not have",
    )
    continue_iteration: bool = Field(
        default=False,
        description="True to take another turn on this task after this one",
    )


class PlainResponse(TurnBase):
    choice: Literal["response"] = "response"
    response: str = Field(..., description="Conversational reply to the user")
    questions: List[str] = Field(
        default_factory=list, description="Follow-up questions for the user"
    )


class CodeGeneration(TurnBase):
    choice: Literal["code"] = "code"
    language: str
    code: str
    explanation: str = ""


class TerminalCommand(TurnBase):
    choice: Literal["terminal_command"] = "terminal_command"
    command: str = Field(..., description="Shell command to run")
    rationale: str = Field(default="", description="Why this command is needed")
    requires_approval: bool = Field(
        default=True, description="Ask the user before running the command"
    )


TurnDecision = Annotated[
    Union[PlainResponse, CodeGeneration, TerminalCommand],
    Field(discriminator="choice"),
]


class TurnResponse(BaseModel):
    """Envelope for the per-turn contract (providers require an object root)."""

    turn: TurnDecision


# ============================================================================
# Command Execution
# ============================================================================


class CommandResult(BaseModel):
    """Captured result of a shell command. A non-zero exit is not an error."""

    output: str = ""
    exit_code: int = 0
    error: Optional[str] = None


class TerminalOutcome(BaseModel):
    """What happened to a proposed command during dispatch."""

    command: str
    approved: bool
    executed: bool
    output: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None


class TurnRecord(BaseModel):
    """One finished turn as returned to the caller."""

    iteration: int
    decision: TurnDecision
    terminal: Optional[TerminalOutcome] = None
