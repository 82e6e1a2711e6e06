"""Prompt rendering utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from .prompts import PromptTemplate

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class RenderedPrompt:
    system: str
    user: str


def render_prompt(template: PromptTemplate, values: Mapping[str, object]) -> RenderedPrompt:
    """Fill ``{{name}}`` placeholders in both halves of ``template``.

    Placeholders use double braces so JSON examples inside templates are left
    alone. Substitution is a single pass, so placeholder-like text inside a
    value (a user query, a notes document) is never expanded. Unknown
    placeholders are left in place.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        return "" if value is None else str(value)

    return RenderedPrompt(
        system=_PLACEHOLDER_RE.sub(_substitute, template.system),
        user=_PLACEHOLDER_RE.sub(_substitute, template.user),
    )


__all__ = ["RenderedPrompt", "render_prompt"]
