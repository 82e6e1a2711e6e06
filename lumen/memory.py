"""
Rolling-window conversation memory.

Each conversation identity owns one ``MemoryState`` document holding:
- the active window of the most recent interactions (full request/response)
- up to N summaries of older history, oldest first
- a counter equal to the highest interaction id ever assigned

When an append pushes the window past capacity, interactions 2..N+1 are
rendered into a transcript and condensed by a ``Summarizer``; the oldest
interaction is then evicted. Summarization is best-effort and eviction is
mandatory, so a failing model call can never let the window grow unbounded.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from .config import Config
from .logging_utils import log_deterministic, log_error, log_llm
from .persistence import DocumentStore, PersistenceError
from .schemas import (
    InteractionRecord,
    MemoryState,
    MemoryStats,
    SummaryRange,
    SummaryRecord,
    SummaryResult,
)

QUERY_CHAR_LIMIT = 200
CONTENT_CHAR_LIMIT = 300
SUMMARY_CHAR_LIMIT = 500
TRUNCATION_MARKER = "... [truncated]"


class Summarizer(Protocol):
    """Condenses a block of rendered interactions into summary text."""

    async def summarize(
        self, transcript: str, *, interaction_count: int
    ) -> SummaryResult:
        ...


def truncate(text: str, limit: int) -> str:
    """Cap ``text`` at ``limit`` characters, appending the marker when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def response_content(response: Dict[str, Any]) -> str:
    """Pick the human-meaningful field out of a stored turn response."""
    for field_name in ("response", "code", "command", "summary"):
        value = response.get(field_name)
        if isinstance(value, str) and value:
            return value
    if not response:
        return "Response data"
    return json.dumps(response, default=str)


def request_query(request: Dict[str, Any]) -> str:
    query = request.get("query")
    if isinstance(query, str) and query:
        return query
    return "Request data"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RollingMemoryStore:
    """Bounded interaction log with automatic summarization.

    Every public method takes the conversation identity explicitly; the
    store holds no per-conversation state between calls; each call loads
    the aggregate from the document store and, when mutating, writes it
    back whole.

    Args:
        store: Document backend shared with the scratchpad store.
        summarizer: Collaborator used when the window overflows. ``None``
            disables summaries; eviction still happens.
        max_interactions: Active window capacity.
        max_summaries: Number of summaries retained.
    """

    def __init__(
        self,
        store: DocumentStore,
        summarizer: Optional[Summarizer] = None,
        *,
        max_interactions: int | None = None,
        max_summaries: int | None = None,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self.max_interactions = max(
            max_interactions if max_interactions is not None else Config.MEMORY_WINDOW, 1
        )
        self.max_summaries = max(
            max_summaries if max_summaries is not None else Config.MAX_SUMMARIES, 0
        )

    @staticmethod
    def document_key(conversation_id: str) -> str:
        return f"{conversation_id}/memory.json"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load(self, conversation_id: str) -> MemoryState:
        key = self.document_key(conversation_id)
        raw = await self.store.load_document(key)
        if raw is None:
            return MemoryState()
        try:
            return MemoryState.model_validate_json(raw)
        except ValidationError as exc:
            # Refuse to silently replace a damaged history with an empty one.
            raise PersistenceError(key, f"memory document is corrupt: {exc}") from exc

    async def _save(self, conversation_id: str, state: MemoryState) -> None:
        await self.store.save_document(
            self.document_key(conversation_id), state.model_dump_json(indent=2)
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_interaction(
        self,
        conversation_id: str,
        request: Dict[str, Any],
        response: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InteractionRecord:
        """Append one interaction, summarizing and evicting on overflow.

        Returns:
            The stored record (with its newly assigned id).

        Raises:
            PersistenceError: If the aggregate cannot be loaded or saved.
        """
        state = await self._load(conversation_id)

        record = InteractionRecord(
            id=state.count + 1,
            ts=_utcnow(),
            request=request,
            response=response,
            metadata=metadata or {},
        )
        state.interactions.append(record)
        state.count = record.id

        if len(state.interactions) > self.max_interactions:
            await self._summarize_and_evict(state)

        await self._save(conversation_id, state)
        log_deterministic(
            f"[Memory] {conversation_id}: stored interaction {record.id} "
            f"({len(state.interactions)}/{self.max_interactions} active)"
        )
        return record

    async def _summarize_and_evict(self, state: MemoryState) -> None:
        to_summarize = state.interactions[1:]

        if self.summarizer is not None and self.max_summaries > 0 and to_summarize:
            try:
                log_llm(
                    f"[Memory] Summarizing interactions "
                    f"{to_summarize[0].id}-{to_summarize[-1].id}"
                )
                result = await self.summarizer.summarize(
                    render_transcript(to_summarize),
                    interaction_count=len(to_summarize),
                )
                state.summaries.append(
                    SummaryRecord(
                        covers=SummaryRange(
                            start_id=to_summarize[0].id,
                            end_id=to_summarize[-1].id,
                            start_ts=to_summarize[0].ts,
                            end_ts=to_summarize[-1].ts,
                        ),
                        text=result.summary,
                        reasoning=result.reasoning or None,
                        ts=_utcnow(),
                    )
                )
                if len(state.summaries) > self.max_summaries:
                    del state.summaries[: len(state.summaries) - self.max_summaries]
            except Exception as exc:
                log_error(f"[Memory] Summary failed, evicting anyway: {exc}")

        # Evict the oldest so the window is back at capacity.
        del state.interactions[: len(state.interactions) - self.max_interactions]

    async def clear(self, conversation_id: str) -> MemoryState:
        """Reset to an empty aggregate and persist it immediately."""
        state = MemoryState()
        await self._save(conversation_id, state)
        log_deterministic(f"[Memory] {conversation_id}: cleared")
        return state

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_snapshot(self, conversation_id: str) -> MemoryState:
        """Return the full aggregate (active window, summaries, counter)."""
        return await self._load(conversation_id)

    async def get_context_string(self, conversation_id: str) -> str:
        """Render summaries then active interactions, oldest first."""
        state = await self._load(conversation_id)
        return render_context(state)

    async def get_stats(self, conversation_id: str) -> MemoryStats:
        state = await self._load(conversation_id)
        interactions = state.interactions
        summaries = state.summaries
        return MemoryStats(
            total_processed=state.count,
            active_count=len(interactions),
            summary_count=len(summaries),
            max_interactions=self.max_interactions,
            max_summaries=self.max_summaries,
            oldest_active_ts=interactions[0].ts if interactions else None,
            newest_active_ts=interactions[-1].ts if interactions else None,
            oldest_summary_start=summaries[0].covers.start_id if summaries else None,
            newest_summary_end=summaries[-1].covers.end_id if summaries else None,
        )


def render_transcript(interactions: Sequence[InteractionRecord]) -> str:
    """Full, untruncated text of interactions for the summarizer."""
    blocks: List[str] = []
    for interaction in interactions:
        blocks.append(
            f"[{interaction.ts.isoformat()}] Interaction {interaction.id}:\n"
            f"User: {request_query(interaction.request)}\n"
            f"AI: {response_content(interaction.response)}"
        )
    return "\n\n".join(blocks)


def render_context(state: MemoryState) -> str:
    """Model-readable history block with per-field truncation."""
    sections: List[str] = []

    if state.summaries:
        lines = ["=== CONVERSATION HISTORY (SUMMARIES) ===", ""]
        for index, summary in enumerate(state.summaries, start=1):
            covers = summary.covers
            lines.append(
                f"Summary {index} (Interactions {covers.start_id}-{covers.end_id}, "
                f"{covers.start_ts.isoformat()} to {covers.end_ts.isoformat()}):"
            )
            lines.append(truncate(summary.text, SUMMARY_CHAR_LIMIT))
            lines.append("")
        sections.append("\n".join(lines).rstrip())

    if state.interactions:
        lines = [f"=== RECENT INTERACTIONS (Last {len(state.interactions)}) ===", ""]
        for interaction in state.interactions:
            choice = interaction.response.get("choice", "response")
            lines.append(f"[{interaction.ts.isoformat()}] Interaction {interaction.id}:")
            lines.append(f"User Query: {truncate(request_query(interaction.request), QUERY_CHAR_LIMIT)}")
            lines.append(f"AI Response Type: {choice}")
            lines.append(
                f"AI Content: {truncate(response_content(interaction.response), CONTENT_CHAR_LIMIT)}"
            )
            terminal = interaction.metadata.get("terminal")
            if isinstance(terminal, dict):
                if terminal.get("executed"):
                    outcome = f"exit {terminal.get('exit_code')}: {terminal.get('output') or ''}"
                else:
                    outcome = "declined"
                lines.append(f"Command Outcome: {truncate(outcome, CONTENT_CHAR_LIMIT)}")
            lines.append("")
        sections.append("\n".join(lines).rstrip())

    return "\n\n".join(sections)


__all__ = [
    "RollingMemoryStore",
    "Summarizer",
    "render_context",
    "render_transcript",
    "response_content",
    "truncate",
    "QUERY_CHAR_LIMIT",
    "CONTENT_CHAR_LIMIT",
    "SUMMARY_CHAR_LIMIT",
    "TRUNCATION_MARKER",
]
