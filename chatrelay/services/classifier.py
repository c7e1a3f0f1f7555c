"""
Query classification.

Tags a message as temporal, personal or general using regex cues. The
result feeds cache TTL selection and memory context depth.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class QueryKind(str, Enum):
    TEMPORAL = "temporal"
    PERSONAL = "personal"
    GENERAL = "general"


@dataclass(frozen=True)
class Classification:
    kind: QueryKind
    confidence: float
    is_temporal: bool = False
    is_personal: bool = False
    matched: tuple[str, ...] = field(default_factory=tuple)


_TEMPORAL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("relative_day", re.compile(r"\b(today|tonight|tomorrow|yesterday)\b", re.I)),
    ("now", re.compile(r"\b(right now|currently|current|latest|recent(ly)?|nowadays)\b", re.I)),
    ("period", re.compile(r"\b(this|next|last) (week|month|year|weekend|semester)\b", re.I)),
    (
        "weekday",
        re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.I),
    ),
    (
        "month_name",
        re.compile(
            r"\b(january|february|march|april|june|july|august|september|october|"
            r"november|december)\b",
            re.I,
        ),
    ),
    ("date", re.compile(r"\b\d{1,4}[-/]\d{1,2}[-/]\d{1,4}\b")),
    ("year", re.compile(r"\b(19|20)\d{2}\b")),
    ("clock", re.compile(r"\b\d{1,2}(:\d{2})?\s?(am|pm)\b|\b\d{1,2}:\d{2}\b", re.I)),
    ("time_question", re.compile(r"\bwhat(?:'s| is)? the (time|date|day)\b", re.I)),
    ("deadline", re.compile(r"\b(deadline|schedule|due date|when is)\b", re.I)),
)

_PERSONAL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("my_possessive", re.compile(r"\bmy\b", re.I)),
    ("first_person", re.compile(r"\b(i am|i'm|am i|i have|i was|about me)\b", re.I)),
    ("identity_recall", re.compile(r"\b(do you (know|remember)|who am i|remember me)\b", re.I)),
    ("your_possessive", re.compile(r"\byour\b", re.I)),
)


def classify_query(
    text: str,
    *,
    is_personal_query: bool = False,
    is_time_sensitive: bool = False,
) -> Classification:
    """Classify a message.

    Personal wins over temporal when both are present, since personal
    answers must never be shared across owners.
    """
    temporal_hits = [name for name, pattern in _TEMPORAL_PATTERNS if pattern.search(text)]
    personal_hits = [name for name, pattern in _PERSONAL_PATTERNS if pattern.search(text)]

    if is_time_sensitive:
        temporal_hits.append("flag")
    if is_personal_query:
        personal_hits.append("flag")

    is_temporal = bool(temporal_hits)
    is_personal = bool(personal_hits)

    if is_personal:
        kind, hits = QueryKind.PERSONAL, personal_hits
    elif is_temporal:
        kind, hits = QueryKind.TEMPORAL, temporal_hits
    else:
        return Classification(kind=QueryKind.GENERAL, confidence=0.6)

    return Classification(
        kind=kind,
        confidence=min(0.5 + 0.15 * len(hits), 0.95),
        is_temporal=is_temporal,
        is_personal=is_personal,
        matched=tuple(personal_hits + temporal_hits),
    )
