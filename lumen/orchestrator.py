"""
Main conversational orchestrator.

All collaborators are injected: the reasoner, both stores, the command
executor and the plan tracker. Callers supply the conversation identity on
every call; nothing is routed through ambient state.

One ``orchestrate`` call moves through these phases:
1. Analyzing (optional): landscape analysis for queries that look complex
2. Planning (optional): step plan for high/critical priority analyses,
   projected into the scratchpad
3. Iterating: up to ``max_iterations`` turns of
   reason -> dispatch -> record -> notify -> decide continuation
4. Terminated

Soft conditions (declined commands, missing context, summary failures) are
written to the scratchpad and shape control flow. Hard failures are written
as a blocker and re-raised.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Literal, Optional, Union

from .cognition import (
    DEFAULT_PROMPTS,
    LLMSummarizer,
    Plan,
    PlanTracker,
    PromptLibrary,
    ScratchpadStore,
    TurnContext,
    analyze_landscape,
    decide_turn,
    generate_plan,
    is_complex_query,
)
from .config import Config
from .execution import CommandExecutor, ShellCommandExecutor
from .llm_utils import LLMReasoner, Reasoner
from .logging_utils import log_error, log_info, log_success, log_warning
from .memory import RollingMemoryStore
from .persistence import DocumentStore, FileDocumentStore
from .schemas import (
    CodeGeneration,
    LandscapeAnalysis,
    TerminalCommand,
    TerminalOutcome,
    TurnDecision,
    TurnRecord,
)

PLANNING_PRIORITIES = ("high", "critical")
DECLINED_OUTPUT = "User declined to execute command"

StopReason = Literal["completed", "iteration_cap", "denial_limit"]
ApprovalCallback = Callable[[str, str], Union[bool, Awaitable[bool]]]
ThinkingCallback = Callable[[int], Any]
ResponseCallback = Callable[[TurnRecord], Any]


class OrchestrationPhase(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    ITERATING = "iterating"
    TERMINATED = "terminated"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class DenialTracker:
    """Consecutive declines of the same command within one ``orchestrate`` call.

    A different command restarts the count at 1; only a successful execution
    clears it. The loop must stop once ``tripped`` is true.
    """

    max_denials: int = 2
    last_command: Optional[str] = None
    count: int = 0

    def record_decline(self, command: str) -> int:
        if command == self.last_command:
            self.count += 1
        else:
            self.last_command = command
            self.count = 1
        return self.count

    @property
    def tripped(self) -> bool:
        return self.count >= self.max_denials

    def reset(self) -> None:
        self.last_command = None
        self.count = 0


@dataclass
class OrchestrationResult:
    """Everything one ``orchestrate`` call produced."""

    responses: List[TurnRecord] = field(default_factory=list)
    analysis: Optional[LandscapeAnalysis] = None
    plan: Optional[Plan] = None
    iterations: int = 0
    stop_reason: StopReason = "completed"
    phases: List[OrchestrationPhase] = field(default_factory=list)

    @property
    def final(self) -> Optional[TurnRecord]:
        return self.responses[-1] if self.responses else None


class Orchestrator:
    """
    Drives analysis, planning and the bounded turn loop for one query.

    Holds no per-conversation state, so one instance can serve many
    conversation identities concurrently. Calls for the same identity must be
    serialized by the caller.
    """

    def __init__(
        self,
        reasoner: Reasoner,
        memory: RollingMemoryStore,
        scratchpad: ScratchpadStore,
        executor: Optional[CommandExecutor] = None,
        *,
        tracker: Optional[PlanTracker] = None,
        max_iterations: Optional[int] = None,
        max_denials: Optional[int] = None,
        approval_timeout: Optional[float] = None,
        prompt_library: Optional[PromptLibrary] = None,
    ):
        """Initialize with injected collaborators.

        Args:
            reasoner: Structured-output backend (see ``llm_utils.LLMReasoner``).
            memory: Rolling interaction memory.
            scratchpad: Sectioned notes document store.
            executor: Command runner; defaults to ``ShellCommandExecutor``.
            tracker: Plan auto-completion; defaults to keyword overlap.
            max_iterations: Turn cap per call (default ``Config.MAX_ITERATIONS``).
            max_denials: Identical consecutive declines that stop the loop
                (default ``Config.MAX_DENIALS``).
            approval_timeout: Seconds to wait for the approval callback before
                treating the command as declined. ``None`` waits indefinitely.
            prompt_library: Templates for each stage.
        """
        self.reasoner = reasoner
        self.memory = memory
        self.scratchpad = scratchpad
        self.executor = executor or ShellCommandExecutor()
        self.tracker = tracker or PlanTracker(scratchpad)
        self.max_iterations = max_iterations if max_iterations is not None else Config.MAX_ITERATIONS
        self.max_denials = max_denials if max_denials is not None else Config.MAX_DENIALS
        self.approval_timeout = (
            approval_timeout if approval_timeout is not None else Config.APPROVAL_TIMEOUT
        )
        self.prompt_library = prompt_library or DEFAULT_PROMPTS

        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_denials < 1:
            raise ValueError("max_denials must be at least 1")

    @classmethod
    def from_config(
        cls,
        store: Optional[DocumentStore] = None,
        reasoner: Optional[Reasoner] = None,
    ) -> "Orchestrator":
        """Wire the default stack from ``Config`` (file store, shell, LLM)."""
        store = store or FileDocumentStore(Config.DATA_DIR)
        reasoner = reasoner or LLMReasoner()
        scratchpad = ScratchpadStore(store)
        memory = RollingMemoryStore(store, LLMSummarizer(reasoner))
        return cls(reasoner, memory, scratchpad, ShellCommandExecutor())

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def orchestrate(
        self,
        conversation_id: str,
        query: str,
        *,
        user_context: Optional[str] = None,
        ask_approval: Optional[ApprovalCallback] = None,
        on_thinking: Optional[ThinkingCallback] = None,
        on_response: Optional[ResponseCallback] = None,
        simple_mode: bool = False,
    ) -> OrchestrationResult:
        """Answer ``query`` for one conversation identity.

        Args:
            conversation_id: Key of the memory and scratchpad documents.
            query: The user's request.
            user_context: Free-text side context shown to every turn.
            ask_approval: ``(command, rationale) -> bool`` (sync or async).
                Absent means every approval-gated command is declined.
            on_thinking: Called with the iteration number before every turn
                after the first.
            on_response: Called with each finished ``TurnRecord``.
            simple_mode: Skip analysis and planning.

        Raises:
            Exception: Any hard failure, after an ``Error:`` blocker has been
                written to the scratchpad.
        """
        result = OrchestrationResult(phases=[OrchestrationPhase.IDLE])
        try:
            if not simple_mode and is_complex_query(query):
                await self._analyze_and_plan(conversation_id, query, user_context, result)
            await self._iterate(
                conversation_id,
                query,
                result,
                user_context=user_context,
                ask_approval=ask_approval,
                on_thinking=on_thinking,
                on_response=on_response,
            )
        except Exception as exc:
            log_error(f"[Orchestrator] {conversation_id}: {type(exc).__name__}: {exc}")
            try:
                await self.scratchpad.add_blocker(conversation_id, f"Error: {exc}")
            except Exception as blocker_exc:
                log_error(f"[Orchestrator] Could not record error blocker: {blocker_exc}")
            raise

        self._enter(result, OrchestrationPhase.TERMINATED, conversation_id)
        log_success(
            f"[Orchestrator] {conversation_id}: {result.iterations} turn(s), "
            f"stop reason {result.stop_reason}"
        )
        return result

    async def orchestrate_simple(
        self, conversation_id: str, query: str, **options: Any
    ) -> OrchestrationResult:
        """``orchestrate`` with analysis and planning skipped."""
        options["simple_mode"] = True
        return await self.orchestrate(conversation_id, query, **options)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _enter(
        self, result: OrchestrationResult, phase: OrchestrationPhase, conversation_id: str
    ) -> None:
        result.phases.append(phase)
        log_info(f"[Orchestrator] {conversation_id}: {phase.value}")

    async def _analyze_and_plan(
        self,
        conversation_id: str,
        query: str,
        user_context: Optional[str],
        result: OrchestrationResult,
    ) -> None:
        self._enter(result, OrchestrationPhase.ANALYZING, conversation_id)
        analysis = await analyze_landscape(
            self.reasoner, query, user_context, prompt_library=self.prompt_library
        )
        result.analysis = analysis
        if analysis.priority not in PLANNING_PRIORITIES:
            return

        self._enter(result, OrchestrationPhase.PLANNING, conversation_id)
        plan = await generate_plan(
            self.reasoner, query, analysis, user_context, prompt_library=self.prompt_library
        )
        result.plan = plan

        await self.scratchpad.set_current_task(
            conversation_id,
            f"{analysis.overall_intent}\n\n"
            f"Priority: {analysis.priority}\n"
            f"Approach: {analysis.suggested_approach}",
        )
        await self.scratchpad.set_plan(conversation_id, plan.steps)
        for item in plan.missing_context:
            await self.scratchpad.add_blocker(conversation_id, f"Missing: {item}")

    async def _iterate(
        self,
        conversation_id: str,
        query: str,
        result: OrchestrationResult,
        *,
        user_context: Optional[str],
        ask_approval: Optional[ApprovalCallback],
        on_thinking: Optional[ThinkingCallback],
        on_response: Optional[ResponseCallback],
    ) -> None:
        self._enter(result, OrchestrationPhase.ITERATING, conversation_id)
        denials = DenialTracker(max_denials=self.max_denials)
        previous: Optional[TurnDecision] = None
        terminal_output = ""

        while True:
            iteration = result.iterations + 1
            result.iterations = iteration
            if iteration > 1 and on_thinking is not None:
                await _maybe_await(on_thinking(iteration))

            # Re-read both stores so this turn sees the previous turn's writes.
            context = TurnContext(
                memory=await self.memory.get_context_string(conversation_id),
                analysis=result.analysis,
                plan=result.plan,
                notes=await self.scratchpad.load(conversation_id),
                previous=previous,
                terminal_output=terminal_output,
                user_context=user_context,
                iteration=iteration,
                max_iterations=self.max_iterations,
            )
            decision = await decide_turn(
                self.reasoner, query, context, prompt_library=self.prompt_library
            )

            record = TurnRecord(iteration=iteration, decision=decision)
            if isinstance(decision, TerminalCommand):
                outcome = await self._dispatch_command(
                    conversation_id, decision, result.plan, denials, ask_approval
                )
                record.terminal = outcome
                terminal_output = outcome.output or (outcome.error or "")
            elif isinstance(decision, CodeGeneration):
                await self.scratchpad.add_completed(
                    conversation_id, f"Generated {decision.language} code"
                )
                await self._track_plan(
                    conversation_id, result.plan, decision.code, decision.explanation
                )

            for item in decision.missing_context:
                await self.scratchpad.add_blocker(conversation_id, f"Missing: {item}")

            metadata: dict[str, Any] = {"iteration": iteration, "choice": decision.choice}
            if record.terminal is not None:
                metadata["terminal"] = record.terminal.model_dump(mode="json")
            await self.memory.add_interaction(
                conversation_id,
                {"query": query, "context": user_context},
                decision.model_dump(mode="json"),
                metadata,
            )

            result.responses.append(record)
            if on_response is not None:
                await _maybe_await(on_response(record))

            previous = decision

            if denials.tripped:
                result.stop_reason = "denial_limit"
                break
            if not decision.continue_iteration:
                result.stop_reason = "completed"
                break
            if iteration >= self.max_iterations:
                log_warning(
                    f"[Orchestrator] {conversation_id}: iteration cap "
                    f"({self.max_iterations}) reached"
                )
                result.stop_reason = "iteration_cap"
                break

    # ------------------------------------------------------------------
    # Dispatch helpers
    # ------------------------------------------------------------------

    async def _ask_approval(
        self, ask_approval: Optional[ApprovalCallback], command: TerminalCommand
    ) -> bool:
        if ask_approval is None:
            return False
        pending = _maybe_await(ask_approval(command.command, command.rationale))
        if self.approval_timeout is None:
            return bool(await pending)
        try:
            return bool(await asyncio.wait_for(pending, timeout=self.approval_timeout))
        except asyncio.TimeoutError:
            log_warning(
                f"[Orchestrator] Approval timed out after {self.approval_timeout:g}s: "
                f"{command.command}"
            )
            return False

    async def _dispatch_command(
        self,
        conversation_id: str,
        command: TerminalCommand,
        plan: Optional[Plan],
        denials: DenialTracker,
        ask_approval: Optional[ApprovalCallback],
    ) -> TerminalOutcome:
        approved = True
        if command.requires_approval:
            approved = await self._ask_approval(ask_approval, command)

        if not approved:
            await self.scratchpad.add_blocker(
                conversation_id, f"Command declined: {command.command}"
            )
            count = denials.record_decline(command.command)
            log_warning(f"[Orchestrator] Declined ({count}/{denials.max_denials}): {command.command}")
            if denials.tripped:
                log_error("[Orchestrator] Too many command denials - stopping")
                await self.scratchpad.add_blocker(
                    conversation_id, "Too many command denials - stopping iteration"
                )
            return TerminalOutcome(
                command=command.command,
                approved=False,
                executed=False,
                output=DECLINED_OUTPUT,
            )

        executed = await self.executor.execute(command.command)
        await self.scratchpad.add_completed(conversation_id, f"Executed: {command.command}")
        await self._track_plan(conversation_id, plan, command.command, command.rationale)
        denials.reset()
        return TerminalOutcome(
            command=command.command,
            approved=True,
            executed=True,
            output=executed.output,
            exit_code=executed.exit_code,
            error=executed.error,
        )

    async def _track_plan(
        self,
        conversation_id: str,
        plan: Optional[Plan],
        action_text: str,
        rationale_text: Optional[str],
    ) -> None:
        if plan is None or not plan.steps:
            return
        index = await self.tracker.match_and_complete(
            conversation_id, plan, action_text, rationale_text
        )
        if index is not None:
            log_success(f"[Orchestrator] Plan step {index + 1} completed")


__all__ = [
    "Orchestrator",
    "OrchestrationResult",
    "OrchestrationPhase",
    "DenialTracker",
    "DECLINED_OUTPUT",
    "StopReason",
]
