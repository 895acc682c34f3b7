import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot

class BlockRepository:
    def __init__(self, s: AsyncSession): self.s = s

    async def create(self, obj: AppointmentBlock) -> AppointmentBlock:
        self.s.add(obj); await self.s.flush(); return obj

    async def get(self, block_id: uuid.UUID, *, include_voided: bool = False) -> AppointmentBlock | None:
        q = select(AppointmentBlock).where(AppointmentBlock.id==block_id)
        if not include_voided:
            q = q.where(AppointmentBlock.voided.is_(False))
        res = await self.s.execute(q)
        return res.unique().scalar_one_or_none()

    async def list(self, *, from_date: datetime | None = None, to_date: datetime | None = None,
                   location_ids: Sequence[uuid.UUID] | None = None, provider_id: uuid.UUID | None = None,
                   appointment_type_id: uuid.UUID | None = None, include_voided: bool = False) -> Sequence[AppointmentBlock]:
        cond = []
        if not include_voided:
            cond.append(AppointmentBlock.voided.is_(False))
        # blocks intersecting [from_date, to_date)
        if from_date is not None:
            cond.append(AppointmentBlock.end_date > from_date)
        if to_date is not None:
            cond.append(AppointmentBlock.start_date < to_date)
        if location_ids:
            cond.append(AppointmentBlock.location_id.in_(list(location_ids)))
        if provider_id:
            cond.append(AppointmentBlock.provider_id == provider_id)
        if appointment_type_id:
            cond.append(AppointmentBlock.appointment_type_id == appointment_type_id)
        res = await self.s.execute(select(AppointmentBlock).where(*cond).order_by(AppointmentBlock.start_date.asc()))
        return res.unique().scalars().all()

    async def delete(self, obj: AppointmentBlock) -> None:
        # slots first; appointments still pointing at them make the FK fail, which is the intent
        await self.s.execute(delete(TimeSlot).where(TimeSlot.block_id == obj.id))
        await self.s.delete(obj); await self.s.flush()


class TimeSlotRepository:
    def __init__(self, s: AsyncSession): self.s = s

    async def create(self, obj: TimeSlot) -> TimeSlot:
        self.s.add(obj); await self.s.flush(); return obj

    async def get(self, slot_id: uuid.UUID, *, lock: bool = False, include_voided: bool = False) -> TimeSlot | None:
        q = select(TimeSlot).where(TimeSlot.id==slot_id)
        if not include_voided:
            q = q.where(TimeSlot.voided.is_(False))
        if lock:
            # per-slot serialization of book / change-status / reconcile
            q = q.with_for_update(of=TimeSlot)
        res = await self.s.execute(q)
        return res.unique().scalar_one_or_none()

    async def list(self, block_ids: Sequence[uuid.UUID], *, from_date: datetime | None = None,
                   to_date: datetime | None = None, include_voided: bool = False) -> Sequence[TimeSlot]:
        if not block_ids:
            return []
        cond = [TimeSlot.block_id.in_(list(block_ids))]
        if not include_voided:
            cond.append(TimeSlot.voided.is_(False))
        if from_date is not None:
            cond.append(TimeSlot.start_date >= from_date)
        if to_date is not None:
            cond.append(TimeSlot.start_date < to_date)
        res = await self.s.execute(select(TimeSlot).where(*cond).order_by(TimeSlot.start_date.asc()))
        return res.unique().scalars().all()

    async def delete(self, obj: TimeSlot) -> None:
        await self.s.delete(obj); await self.s.flush()
