"""Reasoner-backed stages: landscape analysis, planning, turns, summaries."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Optional

from lumen.llm_utils import Reasoner
from lumen.logging_utils import Color, colored, log_llm
from lumen.schemas import (
    LandscapeAnalysis,
    PlanStepsResult,
    SummaryResult,
    TurnDecision,
    TurnResponse,
)

from .context import TurnContext
from .planner import Plan
from .prompts import DEFAULT_PROMPTS, PromptLibrary
from .renderers import RenderedPrompt, render_prompt

SUMMARY_TEMPERATURE = 0.1


def _debug_llm() -> bool:
    return os.getenv("DEBUG_LLM", "").lower() in ("1", "true", "yes")


def _dump(stage: str, rendered: RenderedPrompt) -> None:
    if not _debug_llm():
        return
    rule = "=" * 80
    print(colored(f"\n{rule}\n[{stage}] SYSTEM PROMPT\n{'-' * 80}\n{rendered.system}", Color.GREY))
    print(colored(f"\n[{stage}] USER PROMPT\n{'-' * 80}\n{rendered.user}\n{rule}\n", Color.GREY))


def _user_context_block(user_context: Optional[str]) -> str:
    if not user_context:
        return ""
    return f"Additional Context: {user_context}\n\n"


def _now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


async def analyze_landscape(
    reasoner: Reasoner,
    query: str,
    user_context: Optional[str] = None,
    *,
    prompt_library: Optional[PromptLibrary] = None,
) -> LandscapeAnalysis:
    library = prompt_library or DEFAULT_PROMPTS
    rendered = render_prompt(
        library.get("landscape"),
        {
            "query": query,
            "user_context_block": _user_context_block(user_context),
            "now": _now(),
        },
    )
    _dump("LANDSCAPE", rendered)
    analysis = await reasoner(
        system_prompt=rendered.system,
        user_prompt=rendered.user,
        response_model=LandscapeAnalysis,
    )
    log_llm(f"Landscape: {analysis.overall_intent} (priority {analysis.priority})")
    return analysis


async def generate_plan(
    reasoner: Reasoner,
    query: str,
    analysis: LandscapeAnalysis,
    user_context: Optional[str] = None,
    *,
    prompt_library: Optional[PromptLibrary] = None,
) -> Plan:
    """Ask for an ordered step plan and convert it to a ``Plan``."""
    library = prompt_library or DEFAULT_PROMPTS
    rendered = render_prompt(
        library.get("plan"),
        {
            "query": query,
            "intent": analysis.overall_intent,
            "approach": analysis.suggested_approach,
            "user_context_block": _user_context_block(user_context),
            "now": _now(),
        },
    )
    _dump("PLAN", rendered)
    result = await reasoner(
        system_prompt=rendered.system,
        user_prompt=rendered.user,
        response_model=PlanStepsResult,
    )
    plan = Plan.from_result(result)
    log_llm(f"Plan: {len(plan.steps)} steps, {len(plan.missing_context)} missing")
    return plan


async def decide_turn(
    reasoner: Reasoner,
    query: str,
    context: TurnContext,
    *,
    prompt_library: Optional[PromptLibrary] = None,
) -> TurnDecision:
    """Run one reasoning turn and unwrap the tagged decision."""
    library = prompt_library or DEFAULT_PROMPTS
    rendered = render_prompt(
        library.get("turn"),
        {"query": query, "context": context.render(), "now": _now()},
    )
    _dump(f"TURN {context.iteration}", rendered)
    response = await reasoner(
        system_prompt=rendered.system,
        user_prompt=rendered.user,
        response_model=TurnResponse,
    )
    log_llm(f"Turn {context.iteration}: {response.turn.choice}")
    return response.turn


class LLMSummarizer:
    """``Summarizer`` that condenses evicted history through the reasoner."""

    def __init__(
        self,
        reasoner: Reasoner,
        *,
        temperature: float = SUMMARY_TEMPERATURE,
        prompt_library: Optional[PromptLibrary] = None,
    ) -> None:
        self.reasoner = reasoner
        self.temperature = temperature
        self.prompt_library = prompt_library or DEFAULT_PROMPTS

    async def summarize(self, transcript: str, *, interaction_count: int) -> SummaryResult:
        rendered = render_prompt(
            self.prompt_library.get("summarize"),
            {"transcript": transcript, "interaction_count": interaction_count},
        )
        _dump("SUMMARIZE", rendered)
        return await self.reasoner(
            system_prompt=rendered.system,
            user_prompt=rendered.user,
            response_model=SummaryResult,
            temperature=self.temperature,
        )


__all__ = [
    "analyze_landscape",
    "generate_plan",
    "decide_turn",
    "LLMSummarizer",
    "SUMMARY_TEMPERATURE",
]
