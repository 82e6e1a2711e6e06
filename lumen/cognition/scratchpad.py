"""Scratchpad: the agent's sectioned working-memory document.

One markdown document per conversation identity with five fixed sections
(current task, plan, context, completed, blockers). Every mutation loads
the whole document, rewrites exactly one section, and saves the whole
document atomically through the shared ``DocumentStore``. Sections are
located by their ``## `` heading; an operation on a missing heading
appends that section at the end instead of touching the others.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from lumen.logging_utils import log_deterministic
from lumen.persistence import DocumentStore

from .planner import PlanStep

SECTION_CURRENT_TASK = "Current Task"
SECTION_PLAN = "Plan"
SECTION_CONTEXT = "Context"
SECTION_COMPLETED = "Completed"
SECTION_BLOCKERS = "Blockers"

DOCUMENT_TITLE = "# Agent Notes"
HEADING_PREFIX = "## "

# Template bodies that are dropped once a real entry is written.
PLACEHOLDERS = frozenset({"None", "No active plan", "- Nothing yet"})

_CHECKLIST_RE = re.compile(r"^- \[( |x|X)\] (?:(\d+)\. )?(.*)$")
_RATIONALE_RE = re.compile(r"^\s+- Rationale: (.*)$")


@dataclass
class Section:
    heading: str
    body: List[str] = field(default_factory=list)


@dataclass
class NotesDocument:
    """Parsed scratchpad: a preamble plus ordered heading/body sections."""

    preamble: List[str] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "NotesDocument":
        document = cls()
        current: Optional[Section] = None
        for line in text.splitlines():
            if line.startswith(HEADING_PREFIX):
                current = Section(heading=line[len(HEADING_PREFIX):].strip())
                document.sections.append(current)
            elif current is None:
                document.preamble.append(line)
            else:
                current.body.append(line)
        document.preamble = _trim_blank(document.preamble)
        for section in document.sections:
            section.body = _trim_blank(section.body)
        return document

    def render(self) -> str:
        blocks: List[str] = []
        if self.preamble:
            blocks.append("\n".join(self.preamble))
        for section in self.sections:
            lines = [f"{HEADING_PREFIX}{section.heading}", *section.body]
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks) + "\n"

    def find(self, heading: str) -> Optional[Section]:
        wanted = heading.strip().lower()
        for section in self.sections:
            if section.heading.lower() == wanted:
                return section
        return None

    def ensure(self, heading: str) -> Section:
        section = self.find(heading)
        if section is None:
            section = Section(heading=heading.strip())
            self.sections.append(section)
        return section


def _trim_blank(lines: List[str]) -> List[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _escape_body(text: str) -> List[str]:
    """Split free text into body lines that cannot be mistaken for headings."""
    lines = text.strip().splitlines() or [""]
    return ["\\" + line if line.lstrip().startswith("#") else line for line in lines]


def _single_line(text: str) -> str:
    return " ".join(text.split())


def default_document(started_at: datetime) -> str:
    return (
        f"{DOCUMENT_TITLE}\n\n"
        f"{HEADING_PREFIX}{SECTION_CURRENT_TASK}\nNone\n\n"
        f"{HEADING_PREFIX}{SECTION_PLAN}\nNo active plan\n\n"
        f"{HEADING_PREFIX}{SECTION_CONTEXT}\n- Session started: {started_at.isoformat()}\n\n"
        f"{HEADING_PREFIX}{SECTION_COMPLETED}\n- Nothing yet\n\n"
        f"{HEADING_PREFIX}{SECTION_BLOCKERS}\nNone\n"
    )


def render_plan_lines(steps: Sequence[PlanStep]) -> List[str]:
    lines: List[str] = []
    for index, step in enumerate(steps, start=1):
        box = "x" if step.done else " "
        lines.append(f"- [{box}] {index}. {_single_line(step.description)}")
        if step.rationale:
            lines.append(f"  - Rationale: {_single_line(step.rationale)}")
    return lines


def parse_plan_lines(lines: Iterable[str]) -> List[PlanStep]:
    steps: List[PlanStep] = []
    for line in lines:
        checklist = _CHECKLIST_RE.match(line.strip())
        if checklist:
            steps.append(
                PlanStep(
                    description=checklist.group(3),
                    done=checklist.group(1).lower() == "x",
                )
            )
            continue
        rationale = _RATIONALE_RE.match(line)
        if rationale and steps:
            steps[-1].rationale = rationale.group(1)
    return steps


class ScratchpadStore:
    """Section-scoped read/modify/write operations on the notes document."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def document_key(conversation_id: str) -> str:
        return f"{conversation_id}/notes.md"

    async def load(self, conversation_id: str) -> str:
        """Return the document as stored, or a fresh template if absent."""
        text = await self.store.load_document(self.document_key(conversation_id))
        if text is None:
            return default_document(self._clock())
        return text

    async def _rewrite(
        self,
        conversation_id: str,
        heading: str,
        mutate: Callable[[Section], bool],
    ) -> bool:
        document = NotesDocument.parse(await self.load(conversation_id))
        changed = mutate(document.ensure(heading))
        if changed:
            await self.store.save_document(
                self.document_key(conversation_id), document.render()
            )
        return changed

    async def _replace(self, conversation_id: str, heading: str, body: List[str]) -> None:
        def mutate(section: Section) -> bool:
            section.body = body
            return True

        await self._rewrite(conversation_id, heading, mutate)

    async def _prepend_entry(self, conversation_id: str, heading: str, text: str) -> None:
        line = f"- [{self._clock().isoformat()}] {_single_line(text)}"

        def mutate(section: Section) -> bool:
            body = [entry for entry in section.body if entry.strip() not in PLACEHOLDERS]
            section.body = [line, *body]
            return True

        await self._rewrite(conversation_id, heading, mutate)
        log_deterministic(f"[Notes] {conversation_id}: {heading.lower()} += {_single_line(text)[:80]}")

    # ------------------------------------------------------------------
    # Section operations
    # ------------------------------------------------------------------

    async def set_current_task(self, conversation_id: str, text: str) -> None:
        await self._replace(conversation_id, SECTION_CURRENT_TASK, _escape_body(text))

    async def set_plan(self, conversation_id: str, steps: Sequence[PlanStep]) -> None:
        """Write the plan checklist, every box unchecked, in the given order."""
        fresh = [PlanStep(description=step.description, rationale=step.rationale) for step in steps]
        body = render_plan_lines(fresh) or ["No active plan"]
        await self._replace(conversation_id, SECTION_PLAN, body)
        log_deterministic(f"[Notes] {conversation_id}: plan set ({len(fresh)} steps)")

    async def complete_step(self, conversation_id: str, step_number: int) -> bool:
        """Check the ``step_number``-th checklist line of the plan section.

        Counts checklist lines inside the plan section only; content is not
        consulted. Returns False (and writes nothing) when out of range.
        """
        if step_number < 1:
            return False

        def mutate(section: Section) -> bool:
            seen = 0
            for index, line in enumerate(section.body):
                if not line.strip().startswith("- ["):
                    continue
                seen += 1
                if seen == step_number:
                    section.body[index] = line.replace("- [ ]", "- [x]", 1)
                    return section.body[index] != line
            return False

        return await self._rewrite(conversation_id, SECTION_PLAN, mutate)

    async def get_plan(self, conversation_id: str) -> List[PlanStep]:
        """Parse the plan checklist back into steps."""
        document = NotesDocument.parse(await self.load(conversation_id))
        section = document.find(SECTION_PLAN)
        return parse_plan_lines(section.body) if section else []

    async def add_context(self, conversation_id: str, text: str) -> None:
        await self._prepend_entry(conversation_id, SECTION_CONTEXT, text)

    async def add_completed(self, conversation_id: str, text: str) -> None:
        await self._prepend_entry(conversation_id, SECTION_COMPLETED, text)

    async def add_blocker(self, conversation_id: str, text: str) -> None:
        await self._prepend_entry(conversation_id, SECTION_BLOCKERS, text)

    async def append_note(self, conversation_id: str, section: str, text: str) -> None:
        """Add free text at the top of any section, creating it if needed."""

        def mutate(target: Section) -> bool:
            body = [entry for entry in target.body if entry.strip() not in PLACEHOLDERS]
            target.body = [*_escape_body(text), *body]
            return True

        await self._rewrite(conversation_id, section, mutate)

    async def clear(self, conversation_id: str) -> str:
        """Overwrite the document with a fresh template."""
        text = default_document(self._clock())
        await self.store.save_document(self.document_key(conversation_id), text)
        log_deterministic(f"[Notes] {conversation_id}: cleared")
        return text


__all__ = [
    "ScratchpadStore",
    "NotesDocument",
    "Section",
    "default_document",
    "parse_plan_lines",
    "render_plan_lines",
    "SECTION_CURRENT_TASK",
    "SECTION_PLAN",
    "SECTION_CONTEXT",
    "SECTION_COMPLETED",
    "SECTION_BLOCKERS",
]
