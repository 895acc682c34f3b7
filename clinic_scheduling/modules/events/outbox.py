import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP, text, String, Integer, Text, JSON, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduling.core.base import Base, TimestampedMixin
from clinic_scheduling.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

TOPIC_PREFIX = "scheduling"

class EventOutbox(Base, TimestampedMixin):
    event_type: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[str] = mapped_column(String(32))
    subject_id: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, *, event_type: str, subject_type: str, subject_id: str, payload: dict, occurred_at: datetime | None = None) -> EventOutbox:
        obj = EventOutbox(
            event_type=event_type,
            subject_type=subject_type,
            subject_id=str(subject_id),
            payload=payload,
            occurred_at=occurred_at or datetime.now(timezone.utc),
            status="pending",
            attempts=0,
            next_attempt_at=datetime.now(timezone.utc),
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED
        q = (
            select(EventOutbox)
            .where(
                EventOutbox.status == "pending",
                EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
            )
            .order_by(EventOutbox.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        obj.next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=retry_backoff_seconds(obj.attempts))
        obj.last_error = error[:2000]  # truncate
        await self.session.flush()

def retry_backoff_seconds(attempts: int) -> int:
    return min(60, 2 ** min(attempts, 6))  # 2,4,8,16,32,60s

class OutboxService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = OutboxRepository(session)

    async def enqueue(self, event_type: str, subject_type: str, subject_id: str | uuid.UUID, payload: dict, occurred_at: datetime | None = None) -> EventOutbox:
        return await self.repo.enqueue(event_type=event_type, subject_type=subject_type, subject_id=str(subject_id), payload=payload, occurred_at=occurred_at)

def event_envelope(ev: EventOutbox) -> dict:
    return {
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "payload": ev.payload,
        "occurred_at": ev.occurred_at.isoformat(),
        "outbox_id": str(ev.id),
    }

def topic_for(ev: EventOutbox) -> str:
    return f"{TOPIC_PREFIX}.{ev.subject_type}"

# ---- Background relay ----

async def relay_once(session_factory: async_sessionmaker, limit: int = 50) -> int:
    bus = registry.event_bus()
    async with session_factory() as session:
        repo = OutboxRepository(session)
        batch = await repo.claim_batch(limit=limit)
        for ev in batch:
            try:
                await bus.publish(
                    topic=topic_for(ev), key=ev.subject_id or "-", value=event_envelope(ev),
                    headers={"event_type": ev.event_type},
                )
                await repo.mark_sent(ev)
            except Exception as ex:
                log.exception("Publish failed for outbox event %s", ev.id)
                await repo.mark_failed(ev, error=str(ex))
        await session.commit()
        return len(batch)

async def run_outbox_relay(poll_interval_seconds: float = 1.0, session_factory: async_sessionmaker | None = None):
    if session_factory is None:
        from clinic_scheduling.core.db import SessionLocal
        session_factory = SessionLocal
    log.info("Outbox relay started with bus=%s", registry.event_bus().__class__.__name__)
    try:
        while True:
            try:
                sent = await relay_once(session_factory)
            except Exception:
                log.exception("Outbox relay iteration failed")
                sent = 0
            if not sent:
                await asyncio.sleep(poll_interval_seconds)
            await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
