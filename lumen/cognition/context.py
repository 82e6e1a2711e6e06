"""Per-turn context payload handed to the reasoning backend.

Sections appear in a fixed order and each one is omitted when it has
nothing to say: rolling memory, landscape analysis, numbered plan, agent
notes, the previous turn, the previous terminal output, caller-supplied
context, and the iteration counter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from lumen.memory import CONTENT_CHAR_LIMIT, response_content, truncate
from lumen.schemas import LandscapeAnalysis, TurnDecision

from .planner import Plan


def _section(title: str, body: str) -> str:
    return f"=== {title} ===\n{body.strip()}"


@dataclass
class TurnContext:
    """Everything the next turn should see, assembled by the orchestrator."""

    memory: str = ""
    analysis: Optional[LandscapeAnalysis] = None
    plan: Optional[Plan] = None
    notes: str = ""
    previous: Optional[TurnDecision] = None
    terminal_output: str = ""
    user_context: Optional[str] = None
    iteration: int = 0
    max_iterations: int = 0

    def previous_summary(self) -> str:
        if self.previous is None:
            return ""
        lines = [f"Choice: {self.previous.choice}"]
        content = response_content(self.previous.model_dump(mode="json"))
        if content:
            lines.append(f"Response: {truncate(content, CONTENT_CHAR_LIMIT)}")
        return "\n".join(lines)

    def render(self) -> str:
        blocks: List[str] = []
        if self.memory.strip():
            blocks.append(self.memory.strip())
        if self.analysis is not None:
            blocks.append(
                _section(
                    "LANDSCAPE ANALYSIS",
                    f"Intent: {self.analysis.overall_intent}\n"
                    f"Approach: {self.analysis.suggested_approach}\n"
                    f"Priority: {self.analysis.priority}",
                )
            )
        if self.plan is not None and self.plan.steps:
            blocks.append(_section("PLAN", self.plan.numbered()))
        if self.notes.strip():
            blocks.append(_section("AGENT NOTES", self.notes))
        previous = self.previous_summary()
        if previous:
            blocks.append(_section("PREVIOUS RESPONSE", previous))
        if self.terminal_output.strip():
            blocks.append(_section("TERMINAL OUTPUT", self.terminal_output))
        if self.user_context and self.user_context.strip():
            blocks.append(_section("USER CONTEXT", self.user_context))
        if self.iteration:
            if self.max_iterations:
                blocks.append(f"[Iteration {self.iteration} of {self.max_iterations}]")
            else:
                blocks.append(f"[Iteration {self.iteration}]")
        return "\n\n".join(blocks)


__all__ = ["TurnContext"]
