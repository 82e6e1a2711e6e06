"""Prompt templates for each reasoning stage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass
class PromptTemplate:
    """Represents a templated prompt with ``{{placeholder}}`` slots."""

    name: str
    system: str
    user: str
    description: str = ""


class PromptLibrary:
    """Container for named prompt templates per reasoning stage."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        return self.templates[name]


ASSISTANT_SYSTEM_PROMPT = (
    "You are Lumen, a high-precision AI coding assistant with terminal access.\n\n"
    "CAPABILITIES:\n"
    "- Execute terminal commands (subject to user approval)\n"
    "- Generate code in any programming language\n"
    "- Provide conversational responses and explanations\n\n"
    "RESPONSE GUIDELINES:\n"
    "- For file/directory questions: use the terminal_command choice with ls, find, or similar\n"
    "- For reading files: use terminal_command with cat, head, tail, or grep\n"
    "- For code requests: use the code choice with the generated code\n"
    "- For explanations: use the response choice\n"
    "- Set continue_iteration to true only when another turn is needed to finish the task\n"
    "- List anything you need but do not have in missing_context\n"
    "- Respond ONLY with valid JSON matching the schema, no code fences or trailing text\n"
    "- Current date and time: {{now}}"
)

DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="landscape",
        system=ASSISTANT_SYSTEM_PROMPT,
        user=(
            "Analyze this user query to understand overall intent and approach:\n\n"
            "User Query: {{query}}\n\n"
            "{{user_context_block}}"
            "Provide a meta-analysis of what the user wants to accomplish."
        ),
        description="Classifies intent, approach and priority of a complex query.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="plan",
        system=ASSISTANT_SYSTEM_PROMPT,
        user=(
            "Break down this task into clear, actionable steps:\n\n"
            "User Request: {{query}}\n\n"
            "Overall Intent: {{intent}}\n"
            "Suggested Approach: {{approach}}\n\n"
            "{{user_context_block}}"
            "Create a detailed step-by-step plan. Report anything required but "
            "unavailable in missing_context."
        ),
        description="Decomposes a high-priority task into ordered steps.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="turn",
        system=ASSISTANT_SYSTEM_PROMPT + "\n\n=== CONVERSATION CONTEXT ===\n{{context}}",
        user="{{query}}",
        description="Single iteration of the orchestration loop.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="summarize",
        system=(
            "You condense conversation history for an assistant's long-term memory. "
            "Respond with JSON containing a summary and your reasoning."
        ),
        user=(
            "Summarize the following {{interaction_count}} interactions. Preserve key "
            "facts, decisions, goals, code created, commands executed, and evolving "
            "context. Be concise but do not drop anything the user may refer back to.\n\n"
            "{{transcript}}"
        ),
        description="Compresses evicted interactions into a summary record.",
    )
)


__all__ = ["PromptTemplate", "PromptLibrary", "DEFAULT_PROMPTS", "ASSISTANT_SYSTEM_PROMPT"]
