"""Repository helpers for memory records and summaries."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from chatrelay.db.models import MemoryRecord, MemorySummary


def create_memory_record(
    db: Session,
    owner_id: str,
    content: str,
    embedding: list[float],
    *,
    expires_at: datetime,
    importance: int = 3,
    tags: list[str] | None = None,
    kind: str = "fact",
    source_conversation_id: str | None = None,
    created_at: datetime | None = None,
) -> MemoryRecord:
    record = MemoryRecord(
        owner_id=owner_id,
        content=content,
        embedding=embedding,
        importance=importance,
        tags=list(tags or []),
        kind=kind,
        source_conversation_id=source_conversation_id,
        expires_at=expires_at,
    )
    if created_at is not None:
        record.created_at = created_at
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get_owner_record(db: Session, owner_id: str, record_id: str) -> MemoryRecord | None:
    stmt = select(MemoryRecord).where(
        MemoryRecord.id == record_id, MemoryRecord.owner_id == owner_id
    )
    return db.execute(stmt).scalar_one_or_none()


def list_active_records(
    db: Session,
    owner_id: str,
    now: datetime,
    *,
    since: datetime | None = None,
) -> list[MemoryRecord]:
    """Active, unexpired records for one owner, newest first."""
    stmt = select(MemoryRecord).where(
        MemoryRecord.owner_id == owner_id,
        MemoryRecord.is_active.is_(True),
        MemoryRecord.expires_at > now,
    )
    if since is not None:
        stmt = stmt.where(MemoryRecord.created_at >= since)
    stmt = stmt.order_by(MemoryRecord.created_at.desc())
    return list(db.execute(stmt).scalars().all())


def deactivate_tagged_facts(db: Session, owner_id: str, tag: str) -> int:
    """Retire active facts carrying ``tag``; returns how many were retired."""
    stmt = select(MemoryRecord).where(
        MemoryRecord.owner_id == owner_id,
        MemoryRecord.is_active.is_(True),
        MemoryRecord.kind == "fact",
    )
    retired = 0
    for record in db.execute(stmt).scalars():
        if tag in (record.tags or []):
            record.is_active = False
            retired += 1
    if retired:
        db.commit()
    return retired


def deactivate_record(db: Session, owner_id: str, record_id: str) -> bool:
    record = get_owner_record(db, owner_id, record_id)
    if not record or not record.is_active:
        return False
    record.is_active = False
    db.commit()
    return True


def deactivate_expired(db: Session, now: datetime) -> int:
    stmt = (
        update(MemoryRecord)
        .where(MemoryRecord.is_active.is_(True), MemoryRecord.expires_at <= now)
        .values(is_active=False)
    )
    result = db.execute(stmt)
    db.commit()
    return int(result.rowcount or 0)


def delete_expired_summaries(db: Session, now: datetime) -> int:
    stmt = select(MemorySummary).where(MemorySummary.expires_at <= now)
    summaries = list(db.execute(stmt).scalars())
    for summary in summaries:
        db.delete(summary)
    if summaries:
        db.commit()
    return len(summaries)


def upsert_summary(
    db: Session,
    owner_id: str,
    period: str,
    period_start: datetime,
    content: str,
    record_count: int,
    expires_at: datetime,
) -> MemorySummary:
    """One summary per owner, period and start; rebuilding replaces the text."""
    stmt = select(MemorySummary).where(
        MemorySummary.owner_id == owner_id,
        MemorySummary.period == period,
        MemorySummary.period_start == period_start,
    )
    summary = db.execute(stmt).scalar_one_or_none()
    if summary is None:
        summary = MemorySummary(
            owner_id=owner_id,
            period=period,
            period_start=period_start,
            content=content,
            record_count=record_count,
            expires_at=expires_at,
        )
        db.add(summary)
    else:
        summary.content = content
        summary.record_count = record_count
        summary.expires_at = expires_at
    db.commit()
    db.refresh(summary)
    return summary


def list_active_summaries(
    db: Session, owner_id: str, now: datetime, limit: int = 10
) -> list[MemorySummary]:
    stmt = (
        select(MemorySummary)
        .where(MemorySummary.owner_id == owner_id, MemorySummary.expires_at > now)
        .order_by(MemorySummary.period_start.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())
