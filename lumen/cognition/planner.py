"""Plan data structures and step-matching strategies.

A ``Plan`` is created once per task from a plan-generation result and then
projected into the scratchpad's plan section. Step order is fixed at
creation; ``done`` only ever flips from False to True.

Step matching is a pluggable strategy (``StepMatcher``) so the cheap
keyword heuristic can be replaced without touching the orchestration loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from lumen.schemas import PlanStepsResult


@dataclass
class PlanStep:
    """Single step of a plan."""

    description: str
    rationale: Optional[str] = None
    done: bool = False

    def mark_done(self) -> None:
        self.done = True


@dataclass
class Plan:
    """Ordered steps plus whatever the planner reported as missing."""

    steps: List[PlanStep] = field(default_factory=list)
    missing_context: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: PlanStepsResult) -> "Plan":
        return cls(
            steps=[
                PlanStep(description=step.description, rationale=step.rationale)
                for step in result.steps
            ],
            missing_context=list(result.missing_context),
        )

    @property
    def pending(self) -> List[int]:
        """Zero-based indices of steps not yet done, in plan order."""
        return [index for index, step in enumerate(self.steps) if not step.done]

    def numbered(self) -> str:
        return "\n".join(
            f"{index}. {step.description}" for index, step in enumerate(self.steps, start=1)
        )


class StepMatcher(Protocol):
    """Strategy deciding which pending step an action accomplished."""

    def match(self, steps: Sequence[PlanStep], action_text: str) -> Optional[int]:
        """Return the zero-based index of the matched step, or ``None``."""
        ...


def significant_tokens(text: str, *, min_length: int = 5) -> set[str]:
    """Lower-cased whitespace-delimited tokens at least ``min_length`` long."""
    return {token for token in text.lower().split() if len(token) >= min_length}


@dataclass(frozen=True)
class KeywordOverlapMatcher:
    """Match a step when enough long words appear in both texts.

    Only steps that are not done are considered. The first qualifying step
    in plan order wins, even if a later step overlaps more; there is no
    weighting by overlap size.
    """

    min_token_length: int = 5
    min_overlap: int = 2

    def match(self, steps: Sequence[PlanStep], action_text: str) -> Optional[int]:
        action_tokens = significant_tokens(action_text, min_length=self.min_token_length)
        if not action_tokens:
            return None
        for index, step in enumerate(steps):
            if step.done:
                continue
            step_tokens = significant_tokens(step.description, min_length=self.min_token_length)
            if len(step_tokens & action_tokens) >= self.min_overlap:
                return index
        return None
