"""Cognition stack for the orchestrator.

Houses the scratchpad, plan tracking, complexity heuristics, prompt
templates and the reasoner-backed stages (analysis, planning, turns,
summaries).
"""

from .complexity import complexity_indicators, is_complex_query
from .context import TurnContext
from .llm import LLMSummarizer, analyze_landscape, decide_turn, generate_plan
from .planner import KeywordOverlapMatcher, Plan, PlanStep, StepMatcher
from .prompts import DEFAULT_PROMPTS, PromptLibrary, PromptTemplate
from .renderers import RenderedPrompt, render_prompt
from .scratchpad import NotesDocument, ScratchpadStore
from .tracker import PlanTracker

__all__ = [
    "complexity_indicators",
    "is_complex_query",
    "TurnContext",
    "LLMSummarizer",
    "analyze_landscape",
    "decide_turn",
    "generate_plan",
    "KeywordOverlapMatcher",
    "Plan",
    "PlanStep",
    "StepMatcher",
    "PlanTracker",
    "DEFAULT_PROMPTS",
    "PromptLibrary",
    "PromptTemplate",
    "RenderedPrompt",
    "render_prompt",
    "NotesDocument",
    "ScratchpadStore",
]
