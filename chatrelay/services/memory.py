"""
Long-term memory: storage, ranked retrieval, fact extraction and summaries.

Records are scored as a weighted blend of embedding similarity, importance
and recency. Personal questions lower the similarity bar and always pull in
stored facts whose tag names what is being asked about.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatrelay.config import RankingWeights, RoutingConfig
from chatrelay.core import (
    AppError,
    MemoryRetrievalError,
    MemoryStoreError,
    ValidationError,
    get_logger,
    metrics,
)
from chatrelay.core.time import add_months, days_between, utcnow
from chatrelay.db.models import MemoryRecord, MemorySummary
from chatrelay.db.repositories import (
    create_memory_record,
    deactivate_expired,
    deactivate_record,
    deactivate_tagged_facts,
    delete_expired_summaries,
    list_active_records,
    list_active_summaries,
    upsert_summary,
)
from chatrelay.services.classifier import classify_query
from chatrelay.services.embeddings import Embedder, cosine_similarity, tokenize

logger = get_logger(__name__)


class ContextLevel(str, Enum):
    LIGHT = "light"
    BALANCED = "balanced"
    COMPREHENSIVE = "comprehensive"


LEVEL_CAPS = {ContextLevel.LIGHT: 2, ContextLevel.BALANCED: 4}

# Fact tag -> query words that mean "the user is asking about this".
FACT_QUERY_HINTS: dict[str, frozenset[str]] = {
    "name": frozenset({"name", "called"}),
    "age": frozenset({"age", "old", "birthday"}),
    "location": frozenset({"live", "location", "city", "from", "where"}),
    "school": frozenset({"school", "college", "university", "study", "studying"}),
    "exam": frozenset({"exam", "exams", "preparing", "goal", "target", "test"}),
    "favorite_subject": frozenset({"favorite", "favourite", "subject", "like"}),
}

FACT_TEMPLATES: dict[str, str] = {
    "name": "User's name is {}",
    "age": "User is {} years old",
    "location": "User lives in {}",
    "school": "User studies at {}",
    "exam": "User is preparing for {}",
    "favorite_subject": "User's favorite subject is {}",
}

FACT_IMPORTANCE = {"name": 5}

_END = r"(?=\s*(?:[.,!?;]|$|\band\b|\bbut\b))"

_FACT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "name",
        re.compile(
            r"\b(?:my name is|my name's|user's name is|call me|i am called|i'm called)\s+"
            r"([a-z][a-z'-]*)",
            re.I,
        ),
    ),
    (
        "age",
        re.compile(r"\b(?:my age is\s+(\d{1,3})|(?:i am|i'm)\s+(\d{1,3})\s*(?:years?|yrs?)\s*old)", re.I),
    ),
    (
        "location",
        re.compile(
            r"\b(?:i live in|i'm from|i am from|my city is|i stay in)\s+([a-z][a-z .'-]{0,40}?)" + _END,
            re.I,
        ),
    ),
    (
        "school",
        re.compile(
            r"\b(?:i study at|i go to|my school is|my college is|i am studying at|i'm studying at)\s+"
            r"([a-z0-9][\w .&'-]{0,60}?)" + _END,
            re.I,
        ),
    ),
    (
        "exam",
        re.compile(
            r"\b(?:preparing for|studying for|my exam is|my goal is to (?:crack|clear|pass))\s+"
            r"(?:the\s+)?([a-z0-9][\w .-]{0,40}?)(?:\s+exams?)?" + _END,
            re.I,
        ),
    ),
    (
        "favorite_subject",
        re.compile(r"\bmy favou?rite subject is\s+([a-z][a-z ]{0,30}?)" + _END, re.I),
    ),
)


def _title(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in value.split())


def extract_personal_facts(text: str) -> dict[str, str]:
    """Pull simple self-descriptions out of a message.

    >>> extract_personal_facts("the user's name is kunal")
    {'name': 'Kunal'}
    """
    facts: dict[str, str] = {}
    for tag, pattern in _FACT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        value = next((group for group in match.groups() if group), "").strip(" .'-")
        if not value:
            continue
        if tag in ("name", "location", "favorite_subject"):
            value = _title(value)
        facts[tag] = value
    return facts


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4)


@dataclass
class MemoryHit:
    """A record selected for the prompt, with its ranking breakdown."""

    id: str
    content: str
    tags: list[str]
    importance: int
    created_at: datetime
    similarity: float
    score: float
    forced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "tags": list(self.tags),
            "importance": self.importance,
            "created_at": self.created_at.isoformat(),
            "similarity": round(self.similarity, 4),
            "score": round(self.score, 4),
            "forced": self.forced,
        }


@dataclass
class MemoryContext:
    level: ContextLevel
    hits: list[MemoryHit] = field(default_factory=list)
    summaries: list[str] = field(default_factory=list)
    context_text: str = ""

    @property
    def references(self) -> list[str]:
        return [hit.id for hit in self.hits]


class MemoryService:
    """Owner-scoped memory store backed by SQLAlchemy and an embedding adapter."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        embedder: Embedder,
        *,
        retention_months: int = 6,
        weights: RankingWeights | None = None,
        min_similarity: float = 0.35,
        personal_min_similarity: float = 0.1,
        recency_half_life_days: float = 30.0,
        summary_token_budget: int = 600,
        store_exchanges: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.retention_months = retention_months
        self.weights = weights or RankingWeights()
        self.min_similarity = min_similarity
        self.personal_min_similarity = personal_min_similarity
        self.recency_half_life_days = recency_half_life_days
        self.summary_token_budget = summary_token_budget
        self.store_exchanges = store_exchanges
        self._clock = clock

    @classmethod
    def from_routing(
        cls,
        session_factory: sessionmaker[Session],
        embedder: Embedder,
        routing: RoutingConfig,
        *,
        store_exchanges: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> "MemoryService":
        return cls(
            session_factory,
            embedder,
            retention_months=routing.memory_retention_months,
            weights=routing.ranking_weights,
            min_similarity=routing.min_similarity,
            personal_min_similarity=routing.personal_min_similarity,
            recency_half_life_days=routing.recency_half_life_days,
            summary_token_budget=routing.summary_token_budget,
            store_exchanges=store_exchanges,
            clock=clock,
        )

    # Storage

    async def store_memory(
        self,
        owner_id: str,
        content: str,
        tags: list[str] | None = None,
        importance: int = 3,
        *,
        kind: str = "fact",
        source_conversation_id: str | None = None,
    ) -> MemoryRecord:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Memory content must not be empty")
        if not 1 <= importance <= 5:
            raise ValidationError("Importance must be between 1 and 5", details={"importance": importance})
        clean_tags = sorted({tag.strip().lower() for tag in tags or [] if tag and tag.strip()})

        vector = (await self.embedder.embed([content]))[0]
        now = self._clock()
        try:
            with self.session_factory() as db:
                record = create_memory_record(
                    db,
                    owner_id,
                    content,
                    vector,
                    expires_at=add_months(now, self.retention_months),
                    importance=importance,
                    tags=clean_tags,
                    kind=kind,
                    source_conversation_id=source_conversation_id,
                    created_at=now,
                )
        except SQLAlchemyError as exc:
            raise MemoryStoreError(details={"reason": type(exc).__name__}) from exc

        logger.debug(
            "Memory stored",
            data={"owner_id": owner_id, "record_id": record.id, "tags": clean_tags, "kind": kind},
        )
        return record

    async def remember_exchange(
        self,
        owner_id: str,
        message: str,
        response: str,
        *,
        conversation_id: str | None = None,
    ) -> list[MemoryRecord]:
        """Store facts found in the user's message, replacing older ones with the same tag."""
        stored: list[MemoryRecord] = []
        facts = extract_personal_facts(message)
        for tag, value in facts.items():
            try:
                with self.session_factory() as db:
                    retired = deactivate_tagged_facts(db, owner_id, tag)
            except SQLAlchemyError as exc:
                raise MemoryStoreError(details={"reason": type(exc).__name__}) from exc
            if retired:
                logger.debug(
                    "Superseded stored fact", data={"owner_id": owner_id, "tag": tag, "count": retired}
                )
            stored.append(
                await self.store_memory(
                    owner_id,
                    FACT_TEMPLATES[tag].format(value),
                    tags=[tag, "personal"],
                    importance=FACT_IMPORTANCE.get(tag, 4),
                    source_conversation_id=conversation_id,
                )
            )

        if self.store_exchanges and len(tokenize(message)) >= 2:
            stored.append(
                await self.store_memory(
                    owner_id,
                    f"User asked: {message.strip()[:300]}\nAssistant answered: {response.strip()[:500]}",
                    tags=["exchange"],
                    importance=2,
                    kind="exchange",
                    source_conversation_id=conversation_id,
                )
            )
        return stored

    # Retrieval

    def _score(self, similarity: float, importance: int, age_days: float) -> float:
        weights = self.weights
        recency = 0.5 ** (age_days / self.recency_half_life_days)
        blended = (
            similarity * weights.similarity
            + ((importance - 1) / 4) * weights.importance
            + recency * weights.recency
        )
        return blended / (weights.similarity + weights.importance + weights.recency)

    async def _rank(
        self,
        records: list[MemoryRecord],
        query_text: str,
        personal: bool,
        now: datetime,
    ) -> list[MemoryHit]:
        query_vec = (await self.embedder.embed([query_text]))[0]

        stale = [r for r in records if len(r.embedding or []) != len(query_vec)]
        refreshed: dict[str, list[float]] = {}
        if stale:
            vectors = await self.embedder.embed([r.content for r in stale])
            refreshed = {r.id: v for r, v in zip(stale, vectors)}

        query_tokens = set(tokenize(query_text))
        asked_tags = {tag for tag, hints in FACT_QUERY_HINTS.items() if query_tokens & hints}
        threshold = self.personal_min_similarity if personal else self.min_similarity

        hits: list[MemoryHit] = []
        for record in records:
            vector = refreshed.get(record.id, record.embedding)
            similarity = cosine_similarity(query_vec, vector)
            tags = list(record.tags or [])
            forced = personal and bool(asked_tags.intersection(tags))
            if similarity < threshold and not forced:
                continue
            hits.append(
                MemoryHit(
                    id=record.id,
                    content=record.content,
                    tags=tags,
                    importance=record.importance,
                    created_at=record.created_at,
                    similarity=similarity,
                    score=self._score(similarity, record.importance, days_between(record.created_at, now)),
                    forced=forced,
                )
            )
        hits.sort(key=lambda hit: (not hit.forced, -hit.score))
        return hits

    @staticmethod
    def _diverse(hits: list[MemoryHit], cap: int) -> list[MemoryHit]:
        """Prefer one hit per leading tag, then fill by rank."""
        chosen: list[MemoryHit] = []
        seen: set[str] = set()
        for hit in hits:
            lead = hit.tags[0] if hit.tags else ""
            if lead in seen:
                continue
            seen.add(lead)
            chosen.append(hit)
            if len(chosen) == cap:
                return chosen
        for hit in hits:
            if len(chosen) == cap:
                break
            if hit not in chosen:
                chosen.append(hit)
        return chosen

    def _format(self, hits: list[MemoryHit], summaries: list[str]) -> str:
        lines: list[str] = []
        if hits:
            lines.append("Relevant memories about the user:")
            lines.extend(f"- {hit.content}" for hit in hits)
        if summaries:
            lines.append("Earlier context summaries:")
            lines.extend(f"- {text}" for text in summaries)
        return "\n".join(lines)

    async def retrieve_relevant(
        self,
        owner_id: str,
        query_text: str,
        limit: int = 5,
        context_level: ContextLevel | str = ContextLevel.BALANCED,
        *,
        personal: bool | None = None,
    ) -> MemoryContext:
        """Rank the owner's active memories against a query.

        Raises MemoryRetrievalError when storage or embedding fails; callers
        are expected to continue without memory.
        """
        level = ContextLevel(context_level)
        if personal is None:
            personal = classify_query(query_text).is_personal
        now = self._clock()

        try:
            with self.session_factory() as db:
                records = list_active_records(db, owner_id, now)
                summary_rows = (
                    list_active_summaries(db, owner_id, now)
                    if level is ContextLevel.COMPREHENSIVE
                    else []
                )
            hits = await self._rank(records, query_text, personal, now) if records else []
        except (SQLAlchemyError, AppError) as exc:
            metrics.increment("memory_failures_total")
            raise MemoryRetrievalError(details={"reason": type(exc).__name__}) from exc

        cap = min(limit, LEVEL_CAPS.get(level, limit))
        if level is ContextLevel.BALANCED:
            selected = self._diverse(hits, cap)
        else:
            selected = hits[:cap]

        summaries: list[str] = []
        if level is ContextLevel.COMPREHENSIVE:
            budget = self.summary_token_budget
            kept: list[MemoryHit] = []
            for hit in selected:
                cost = estimate_tokens(hit.content)
                if kept and cost > budget:
                    break
                kept.append(hit)
                budget -= cost
            selected = kept
            for row in summary_rows:
                cost = estimate_tokens(row.content)
                if cost > budget:
                    break
                summaries.append(row.content)
                budget -= cost

        context = MemoryContext(
            level=level,
            hits=selected,
            summaries=summaries,
            context_text=self._format(selected, summaries),
        )
        logger.debug(
            "Memory retrieved",
            data={
                "owner_id": owner_id,
                "level": level.value,
                "candidates": len(hits),
                "selected": len(selected),
                "summaries": len(summaries),
            },
        )
        return context

    # Maintenance

    def forget(self, owner_id: str, record_id: str) -> bool:
        """Deactivate one of the owner's records; False when there was nothing to forget."""
        try:
            with self.session_factory() as db:
                return deactivate_record(db, owner_id, record_id)
        except SQLAlchemyError as exc:
            raise MemoryStoreError(details={"reason": type(exc).__name__}) from exc

    def fingerprint(self, owner_id: str) -> str:
        """Short hash over the owner's active facts; changes whenever a fact does.

        Exchange records are left out so ordinary chatter does not churn
        cache keys.
        """
        now = self._clock()
        with self.session_factory() as db:
            records = [r for r in list_active_records(db, owner_id, now) if r.kind != "exchange"]
        if not records:
            return "none"
        digest = hashlib.sha256()
        for record_id in sorted(record.id for record in records):
            digest.update(record_id.encode("ascii"))
        return digest.hexdigest()[:16]

    def _period_start(self, period: str, now: datetime) -> datetime:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if period == "weekly":
            return midnight - timedelta(days=midnight.weekday())
        if period == "monthly":
            return midnight.replace(day=1)
        raise ValidationError("Period must be 'weekly' or 'monthly'", details={"period": period})

    async def summarize_period(self, owner_id: str, period: str = "weekly") -> MemorySummary | None:
        """Build or refresh the extractive summary for the current week or month."""
        now = self._clock()
        start = self._period_start(period, now)
        try:
            with self.session_factory() as db:
                records = list_active_records(db, owner_id, now, since=start)
                if not records:
                    return None
                ranked = sorted(records, key=lambda r: (-r.importance, r.created_at))
                budget = self.summary_token_budget or 1
                picked: list[str] = []
                seen: set[str] = set()
                for record in ranked:
                    line = record.content.splitlines()[0].strip()
                    if not line or line in seen:
                        continue
                    if picked and estimate_tokens(line) > budget:
                        break
                    seen.add(line)
                    picked.append(line)
                    budget -= estimate_tokens(line)
                label = "Week" if period == "weekly" else "Month"
                return upsert_summary(
                    db,
                    owner_id,
                    period,
                    start,
                    f"{label} of {start.date().isoformat()}: " + "; ".join(picked),
                    len(records),
                    add_months(start, self.retention_months),
                )
        except SQLAlchemyError as exc:
            raise MemoryStoreError(details={"reason": type(exc).__name__}) from exc

    def purge_expired(self) -> dict[str, int]:
        """Deactivate expired records and drop expired summaries for every owner."""
        now = self._clock()
        try:
            with self.session_factory() as db:
                records = deactivate_expired(db, now)
                summaries = delete_expired_summaries(db, now)
        except SQLAlchemyError as exc:
            raise MemoryStoreError(details={"reason": type(exc).__name__}) from exc
        if records or summaries:
            logger.info("Purged expired memory", data={"records": records, "summaries": summaries})
        return {"records": records, "summaries": summaries}
