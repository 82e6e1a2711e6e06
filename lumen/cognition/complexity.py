"""Cheap heuristics deciding whether a query deserves a landscape analysis.

Analysis and planning cost two extra model calls, so they only run for
queries that look multi-step. Any single indicator is enough.
"""

from __future__ import annotations

import re
from typing import List

_INDICATORS = (
    ("and then", re.compile(r"and then", re.IGNORECASE)),
    ("first...then", re.compile(r"first.*then", re.IGNORECASE | re.DOTALL)),
    ("multiple", re.compile(r"multiple", re.IGNORECASE)),
    ("several", re.compile(r"several", re.IGNORECASE)),
    ("numbered list", re.compile(r"\d+\.")),
    ("step N", re.compile(r"step \d+", re.IGNORECASE)),
)

MAX_SIMPLE_SENTENCE_PARTS = 3


def complexity_indicators(query: str) -> List[str]:
    """Names of every indicator the query trips (empty for simple queries)."""
    hits = [name for name, pattern in _INDICATORS if pattern.search(query)]
    # Counts split fragments, so a trailing terminator yields an empty tail.
    if len(re.split(r"[.!?]", query)) > MAX_SIMPLE_SENTENCE_PARTS:
        hits.append("multiple sentences")
    return hits


def is_complex_query(query: str) -> bool:
    return bool(complexity_indicators(query))
