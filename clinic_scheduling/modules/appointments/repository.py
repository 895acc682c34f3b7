import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.orm import selectinload
from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatus, AppointmentStatusHistory
from clinic_scheduling.modules.blocks.models import TimeSlot

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, obj: Appointment) -> Appointment:
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, appt_id: uuid.UUID, *, include_voided: bool = False, refresh: bool = False) -> Appointment | None:
        q = select(Appointment).where(Appointment.id == appt_id)
        if refresh:
            # overwrite the identity-map copy (status, slot, history) with the committed row
            q = q.options(selectinload(Appointment.status_history)).execution_options(populate_existing=True)
        if not include_voided:
            q = q.where(Appointment.voided.is_(False))
        res = await self.session.execute(q)
        return res.unique().scalar_one_or_none()

    async def list_in_slots(self, slot_ids: Sequence[uuid.UUID], *, include_voided: bool = False) -> Sequence[Appointment]:
        if not slot_ids:
            return []
        cond = [Appointment.time_slot_id.in_(slot_ids)]
        if not include_voided:
            cond.append(Appointment.voided.is_(False))
        q = select(Appointment).where(and_(*cond)).order_by(Appointment.created_at.asc())
        res = await self.session.execute(q)
        return res.unique().scalars().all()

    async def list(self, *, patient_id: uuid.UUID | None = None, statuses: Sequence[AppointmentStatus] | None = None,
                   slot_starts_before: datetime | None = None, slot_starts_from: datetime | None = None,
                   include_voided: bool = False) -> Sequence[Appointment]:
        cond = []
        if not include_voided:
            cond.append(Appointment.voided.is_(False))
        if patient_id:
            cond.append(Appointment.patient_id == patient_id)
        if statuses:
            cond.append(Appointment.status.in_(list(statuses)))
        q = select(Appointment)
        if slot_starts_before is not None or slot_starts_from is not None:
            q = q.join(TimeSlot, Appointment.time_slot_id == TimeSlot.id)
            if slot_starts_before is not None:
                cond.append(TimeSlot.start_date < slot_starts_before)
            if slot_starts_from is not None:
                cond.append(TimeSlot.start_date >= slot_starts_from)
        q = q.where(*cond).order_by(Appointment.created_at.asc())
        res = await self.session.execute(q)
        return res.unique().scalars().all()

    async def delete(self, obj: Appointment) -> None:
        await self.session.delete(obj)
        await self.session.flush()


class StatusHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list(self, *, status: AppointmentStatus | None = None, from_date: datetime | None = None,
                   to_date: datetime | None = None) -> Sequence[AppointmentStatusHistory]:
        cond = []
        if status is not None:
            cond.append(AppointmentStatusHistory.status == status)
        if from_date is not None:
            cond.append(AppointmentStatusHistory.start_date >= from_date)
        if to_date is not None:
            cond.append(AppointmentStatusHistory.start_date < to_date)
        q = select(AppointmentStatusHistory).where(*cond).order_by(AppointmentStatusHistory.start_date.asc())
        res = await self.session.execute(q)
        return res.scalars().all()
