"""Keeps the scratchpad's plan checklist roughly in sync with real progress.

After each code or command action the orchestrator asks the tracker whether
the action accomplished a pending step. A match checks that step in the
scratchpad and leaves an audit line in the context log. At most one step is
completed per action.
"""

from __future__ import annotations

from typing import Optional

from .planner import KeywordOverlapMatcher, Plan, StepMatcher
from .scratchpad import ScratchpadStore


class PlanTracker:
    """Applies a ``StepMatcher`` to a plan and persists the result."""

    def __init__(
        self,
        scratchpad: ScratchpadStore,
        matcher: StepMatcher | None = None,
    ) -> None:
        self.scratchpad = scratchpad
        self.matcher: StepMatcher = matcher or KeywordOverlapMatcher()

    async def match_and_complete(
        self,
        conversation_id: str,
        plan: Plan,
        action_text: str,
        rationale_text: str | None = None,
    ) -> Optional[int]:
        """Complete the first pending step the action matches.

        Returns:
            Zero-based index of the completed step, or ``None``.
        """
        if not plan.pending:
            return None
        combined = f"{action_text} {rationale_text or ''}"
        index = self.matcher.match(plan.steps, combined)
        if index is None or plan.steps[index].done:
            return None

        step = plan.steps[index]
        step.mark_done()
        await self.scratchpad.complete_step(conversation_id, index + 1)
        await self.scratchpad.add_context(
            conversation_id, f"Auto-completed step {index + 1}: {step.description}"
        )
        return index
