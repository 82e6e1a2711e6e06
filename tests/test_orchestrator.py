"""Tests for the orchestration loop with a scripted reasoner."""

import asyncio

import pytest

from lumen.cognition.scratchpad import NotesDocument, ScratchpadStore
from lumen.llm_utils import ReasoningFailure
from lumen.memory import RollingMemoryStore
from lumen.orchestrator import (
    DECLINED_OUTPUT,
    DenialTracker,
    OrchestrationPhase,
    Orchestrator,
)
from lumen.persistence import FileDocumentStore, InMemoryDocumentStore
from lumen.schemas import (
    CodeGeneration,
    CommandResult,
    LandscapeAnalysis,
    PlainResponse,
    PlanStepModel,
    PlanStepsResult,
    SummaryResult,
    TerminalCommand,
    TurnResponse,
)


class ScriptedReasoner:
    """Serves queued turn decisions (repeating the last one) and canned stage results."""

    def __init__(self, turns, *, analysis=None, plan=None):
        self.turns = list(turns)
        self.analysis = analysis
        self.plan = plan
        self.calls = []

    async def __call__(self, *, system_prompt, user_prompt, response_model, temperature=None):
        self.calls.append((response_model, system_prompt, user_prompt))
        if response_model is LandscapeAnalysis:
            return self.analysis
        if response_model is PlanStepsResult:
            return self.plan
        if response_model is SummaryResult:
            return SummaryResult(summary="summary")
        if response_model is TurnResponse:
            item = self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]
            if isinstance(item, Exception):
                raise item
            return TurnResponse(turn=item)
        raise AssertionError(f"unexpected response model {response_model}")

    def turn_prompts(self):
        return [system for model, system, _ in self.calls if model is TurnResponse]

    def models(self):
        return [model for model, _, _ in self.calls]


class RecordingExecutor:
    def __init__(self, output: str = "ok") -> None:
        self.output = output
        self.commands: list[str] = []

    async def execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        return CommandResult(output=self.output, exit_code=0)


def build(reasoner, executor=None, **kwargs):
    store = InMemoryDocumentStore()
    memory = RollingMemoryStore(store, max_interactions=21, max_summaries=3)
    scratchpad = ScratchpadStore(store)
    kwargs.setdefault("max_iterations", 5)
    kwargs.setdefault("max_denials", 2)
    orchestrator = Orchestrator(
        reasoner, memory, scratchpad, executor or RecordingExecutor(), **kwargs
    )
    return orchestrator


async def section_entries(orchestrator: Orchestrator, heading: str) -> list[str]:
    text = await orchestrator.scratchpad.load("alice")
    section = NotesDocument.parse(text).find(heading)
    assert section is not None
    return [line.split("] ", 1)[1] if line.startswith("- [") else line for line in section.body]


def always_decline(command, rationale):
    return False


@pytest.mark.asyncio
async def test_simple_query_single_turn():
    reasoner = ScriptedReasoner([PlainResponse(response="Hello!")])
    orchestrator = build(reasoner)

    result = await orchestrator.orchestrate("alice", "Say hello")

    assert result.iterations == 1
    assert result.stop_reason == "completed"
    assert result.analysis is None and result.plan is None
    assert result.final.decision.response == "Hello!"
    assert result.phases == [
        OrchestrationPhase.IDLE,
        OrchestrationPhase.ITERATING,
        OrchestrationPhase.TERMINATED,
    ]
    assert reasoner.models() == [TurnResponse]

    snapshot = await orchestrator.memory.get_snapshot("alice")
    assert len(snapshot.interactions) == 1
    assert snapshot.interactions[0].request == {"query": "Say hello", "context": None}
    assert snapshot.interactions[0].metadata["choice"] == "response"


@pytest.mark.asyncio
async def test_iteration_cap_stops_endless_continuation():
    reasoner = ScriptedReasoner([PlainResponse(response="more", continue_iteration=True)])
    orchestrator = build(reasoner, max_iterations=5)
    thinking: list[int] = []

    result = await orchestrator.orchestrate(
        "alice", "Keep going", on_thinking=thinking.append
    )

    assert result.iterations == 5
    assert result.stop_reason == "iteration_cap"
    assert reasoner.models().count(TurnResponse) == 5
    assert thinking == [2, 3, 4, 5]
    assert (await orchestrator.memory.get_stats("alice")).total_processed == 5


@pytest.mark.asyncio
async def test_repeated_decline_trips_breaker():
    command = TerminalCommand(command="rm -rf build", rationale="clean", continue_iteration=True)
    reasoner = ScriptedReasoner([command])
    executor = RecordingExecutor()
    orchestrator = build(reasoner, executor)
    seen = []

    async def on_response(record):
        seen.append(record)

    result = await orchestrator.orchestrate(
        "alice", "Clean up", ask_approval=always_decline, on_response=on_response
    )

    assert result.iterations == 2
    assert result.stop_reason == "denial_limit"
    assert executor.commands == []
    assert len(seen) == 2
    assert all(record.terminal.approved is False for record in result.responses)
    assert result.responses[0].terminal.output == DECLINED_OUTPUT

    blockers = await section_entries(orchestrator, "Blockers")
    assert blockers[0] == "Too many command denials - stopping iteration"
    assert blockers[1:] == ["Command declined: rm -rf build", "Command declined: rm -rf build"]
    assert (await orchestrator.memory.get_stats("alice")).total_processed == 2


@pytest.mark.asyncio
async def test_different_command_restarts_denial_count():
    reasoner = ScriptedReasoner(
        [
            TerminalCommand(command="rm a", continue_iteration=True),
            TerminalCommand(command="rm b", continue_iteration=True),
            TerminalCommand(command="rm b", continue_iteration=True),
        ]
    )
    orchestrator = build(reasoner)

    result = await orchestrator.orchestrate("alice", "Clean", ask_approval=always_decline)

    assert result.iterations == 3
    assert result.stop_reason == "denial_limit"


@pytest.mark.asyncio
async def test_successful_execution_resets_denials():
    reasoner = ScriptedReasoner(
        [
            TerminalCommand(command="make", continue_iteration=True),
            TerminalCommand(command="make", requires_approval=False, continue_iteration=True),
            TerminalCommand(command="make", continue_iteration=True),
            TerminalCommand(command="make", continue_iteration=True),
        ]
    )
    executor = RecordingExecutor()
    orchestrator = build(reasoner, executor)

    result = await orchestrator.orchestrate("alice", "Build", ask_approval=always_decline)

    assert result.iterations == 4
    assert result.stop_reason == "denial_limit"
    assert executor.commands == ["make"]


@pytest.mark.asyncio
async def test_missing_approval_callback_declines():
    reasoner = ScriptedReasoner([TerminalCommand(command="whoami")])
    executor = RecordingExecutor()
    orchestrator = build(reasoner, executor)

    result = await orchestrator.orchestrate("alice", "Who am I?")

    assert executor.commands == []
    assert result.final.terminal.executed is False
    assert result.stop_reason == "completed"


@pytest.mark.asyncio
async def test_approval_timeout_counts_as_decline():
    reasoner = ScriptedReasoner([TerminalCommand(command="deploy", continue_iteration=True)])
    executor = RecordingExecutor()
    orchestrator = build(reasoner, executor, approval_timeout=0.05)

    async def slow_approval(command, rationale):
        await asyncio.sleep(1)
        return True

    result = await orchestrator.orchestrate("alice", "Deploy", ask_approval=slow_approval)

    assert executor.commands == []
    assert result.stop_reason == "denial_limit"
    assert result.iterations == 2


@pytest.mark.asyncio
async def test_executed_output_feeds_next_turn():
    reasoner = ScriptedReasoner(
        [
            TerminalCommand(command="ls", rationale="look", continue_iteration=True),
            PlainResponse(response="There is a README"),
        ]
    )
    executor = RecordingExecutor(output="README.md")
    orchestrator = build(reasoner, executor)
    approvals = []

    async def approve(command, rationale):
        approvals.append((command, rationale))
        return True

    result = await orchestrator.orchestrate("alice", "What is here?", ask_approval=approve)

    assert approvals == [("ls", "look")]
    assert executor.commands == ["ls"]
    assert result.responses[0].terminal.exit_code == 0
    second_prompt = reasoner.turn_prompts()[1]
    assert "=== TERMINAL OUTPUT ===\nREADME.md" in second_prompt
    assert "=== PREVIOUS RESPONSE ===\nChoice: terminal_command\nResponse: ls" in second_prompt
    assert "Command Outcome: exit 0: README.md" in second_prompt
    assert "Executed: ls" in await section_entries(orchestrator, "Completed")


@pytest.mark.asyncio
async def test_next_turn_sees_previous_turn_in_memory():
    reasoner = ScriptedReasoner(
        [
            PlainResponse(response="Noted, your favorite color is blue.", continue_iteration=True),
            PlainResponse(response="Done"),
        ]
    )
    orchestrator = build(reasoner)

    await orchestrator.orchestrate("alice", "Remember my favorite color")

    prompts = reasoner.turn_prompts()
    assert "blue" not in prompts[0]
    assert "favorite color is blue" in prompts[1]


@pytest.mark.asyncio
async def test_recalls_fact_across_calls():
    reasoner = ScriptedReasoner(
        [
            PlainResponse(response="Got it, I'll remember that."),
            PlainResponse(response="Your favorite color is blue."),
        ]
    )
    orchestrator = build(reasoner)
    await orchestrator.memory.clear("alice")
    await orchestrator.scratchpad.clear("alice")

    await orchestrator.orchestrate("alice", "My favorite color is blue")
    await orchestrator.orchestrate("alice", "What is my favorite color?")

    assert "blue" in reasoner.turn_prompts()[1]


@pytest.mark.asyncio
async def test_high_priority_query_is_planned_and_tracked():
    analysis = LandscapeAnalysis(
        situation_summary="nginx is misconfigured",
        overall_intent="Restore the website",
        suggested_approach="Inspect logs then restart",
        priority="high",
    )
    plan = PlanStepsResult(
        steps=[
            PlanStepModel(description="Inspect nginx error logs"),
            PlanStepModel(description="Rewrite nginx upstream configuration"),
            PlanStepModel(description="Restart nginx service"),
        ],
        missing_context=["SSH credentials"],
    )
    reasoner = ScriptedReasoner(
        [
            CodeGeneration(
                language="nginx",
                code="upstream backend { server 127.0.0.1:8080; }",
                explanation="Rewrite the upstream configuration block",
                continue_iteration=True,
            ),
            TerminalCommand(
                command="systemctl restart nginx",
                rationale="Restart the nginx service to apply",
            ),
        ],
        analysis=analysis,
        plan=plan,
    )
    executor = RecordingExecutor()
    orchestrator = build(reasoner, executor)

    result = await orchestrator.orchestrate(
        "alice",
        "Inspect the nginx logs and then fix the config",
        ask_approval=lambda command, rationale: True,
    )

    assert reasoner.models()[:2] == [LandscapeAnalysis, PlanStepsResult]
    assert result.phases[:4] == [
        OrchestrationPhase.IDLE,
        OrchestrationPhase.ANALYZING,
        OrchestrationPhase.PLANNING,
        OrchestrationPhase.ITERATING,
    ]
    assert result.analysis == analysis
    assert [step.done for step in result.plan.steps] == [False, True, True]
    assert [step.done for step in await orchestrator.scratchpad.get_plan("alice")] == [
        False,
        True,
        True,
    ]

    assert await section_entries(orchestrator, "Current Task") == [
        "Restore the website",
        "",
        "Priority: high",
        "Approach: Inspect logs then restart",
    ]
    assert "Missing: SSH credentials" in await section_entries(orchestrator, "Blockers")
    completed = await section_entries(orchestrator, "Completed")
    assert completed == ["Executed: systemctl restart nginx", "Generated nginx code"]
    context = await section_entries(orchestrator, "Context")
    assert context[0] == "Auto-completed step 3: Restart nginx service"
    assert context[1] == "Auto-completed step 2: Rewrite nginx upstream configuration"

    first_turn_prompt = reasoner.turn_prompts()[0]
    assert "=== LANDSCAPE ANALYSIS ===" in first_turn_prompt
    assert "=== PLAN ===\n1. Inspect nginx error logs" in first_turn_prompt


@pytest.mark.asyncio
async def test_low_priority_analysis_skips_planning():
    analysis = LandscapeAnalysis(
        situation_summary="Questions",
        overall_intent="Learn",
        suggested_approach="Explain",
        priority="low",
    )
    reasoner = ScriptedReasoner([PlainResponse(response="Sure")], analysis=analysis)
    orchestrator = build(reasoner)

    result = await orchestrator.orchestrate("alice", "Explain several sorting algorithms")

    assert result.analysis == analysis
    assert result.plan is None
    assert reasoner.models() == [LandscapeAnalysis, TurnResponse]
    assert await section_entries(orchestrator, "Current Task") == ["None"]


@pytest.mark.asyncio
async def test_simple_mode_skips_analysis():
    reasoner = ScriptedReasoner([PlainResponse(response="ok")])
    orchestrator = build(reasoner)

    result = await orchestrator.orchestrate_simple(
        "alice", "Do multiple things and then more things"
    )

    assert result.analysis is None
    assert reasoner.models() == [TurnResponse]


@pytest.mark.asyncio
async def test_missing_context_is_recorded_as_blockers():
    reasoner = ScriptedReasoner(
        [PlainResponse(response="I need more", missing_context=["API token", "Region"])]
    )
    orchestrator = build(reasoner)

    await orchestrator.orchestrate("alice", "Provision a bucket")

    assert await section_entries(orchestrator, "Blockers") == [
        "Missing: Region",
        "Missing: API token",
    ]


@pytest.mark.asyncio
async def test_hard_failure_is_recorded_and_reraised():
    failure = ReasoningFailure("TurnResponse", RuntimeError("boom"))
    reasoner = ScriptedReasoner([failure])
    orchestrator = build(reasoner)

    with pytest.raises(ReasoningFailure):
        await orchestrator.orchestrate("alice", "Anything")

    blockers = await section_entries(orchestrator, "Blockers")
    assert blockers[0].startswith("Error: Reasoning call for TurnResponse failed")
    assert (await orchestrator.memory.get_stats("alice")).total_processed == 0


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        build(ScriptedReasoner([PlainResponse(response="x")]), max_iterations=0)


def test_denial_tracker_counts_identical_commands():
    tracker = DenialTracker(max_denials=2)

    assert tracker.record_decline("a") == 1
    assert tracker.record_decline("b") == 1
    assert not tracker.tripped
    assert tracker.record_decline("b") == 2
    assert tracker.tripped

    tracker.reset()
    assert tracker.count == 0
    assert tracker.last_command is None


def test_from_config_wires_default_stack():
    from lumen.cognition.llm import LLMSummarizer
    from lumen.execution import ShellCommandExecutor

    reasoner = ScriptedReasoner([PlainResponse(response="x")])
    orchestrator = Orchestrator.from_config(store=InMemoryDocumentStore(), reasoner=reasoner)

    assert orchestrator.reasoner is reasoner
    assert isinstance(orchestrator.executor, ShellCommandExecutor)
    assert isinstance(orchestrator.memory.summarizer, LLMSummarizer)
    assert orchestrator.memory.store is orchestrator.scratchpad.store


class PerQueryReasoner:
    """Turn scripts keyed by query, yielding to the loop on every call."""

    def __init__(self, scripts):
        self.scripts = {query: list(turns) for query, turns in scripts.items()}

    async def __call__(self, *, system_prompt, user_prompt, response_model, temperature=None):
        assert response_model is TurnResponse
        await asyncio.sleep(0)
        turns = self.scripts[user_prompt]
        return TurnResponse(turn=turns.pop(0) if len(turns) > 1 else turns[0])


@pytest.mark.asyncio
async def test_concurrent_conversations_keep_separate_state(tmp_path):
    reasoner = PerQueryReasoner(
        {
            "Clean up": [
                TerminalCommand(command="rm -rf build", continue_iteration=True),
            ],
            "Weather please": [
                PlainResponse(response="Weather report part 1", continue_iteration=True),
                PlainResponse(response="Weather report part 2", continue_iteration=True),
                PlainResponse(response="Weather report done"),
            ],
        }
    )
    store = FileDocumentStore(tmp_path)
    executor = RecordingExecutor()
    orchestrator = Orchestrator(
        reasoner,
        RollingMemoryStore(store),
        ScratchpadStore(store),
        executor,
        max_iterations=5,
        max_denials=2,
    )

    async def decline(command, rationale):
        await asyncio.sleep(0)
        return False

    alice, bob = await asyncio.gather(
        orchestrator.orchestrate("alice", "Clean up", ask_approval=decline, simple_mode=True),
        orchestrator.orchestrate("bob", "Weather please", ask_approval=decline, simple_mode=True),
    )

    assert alice.stop_reason == "denial_limit"
    assert alice.iterations == 2
    assert bob.stop_reason == "completed"
    assert bob.iterations == 3
    assert executor.commands == []
    assert (await orchestrator.memory.get_stats("alice")).total_processed == 2
    assert (await orchestrator.memory.get_stats("bob")).total_processed == 3

    alice_notes = (tmp_path / "alice" / "notes.md").read_text("utf-8")
    alice_memory = (tmp_path / "alice" / "memory.json").read_text("utf-8")
    bob_notes = await orchestrator.scratchpad.load("bob")
    bob_memory = (tmp_path / "bob" / "memory.json").read_text("utf-8")

    assert alice_notes.count("Command declined: rm -rf build") == 2
    assert "Too many command denials" in alice_notes
    assert "Weather report" not in alice_notes + alice_memory
    assert "rm -rf build" not in bob_notes + bob_memory
    assert "Command declined" not in bob_notes
    assert "Weather report done" in bob_memory
