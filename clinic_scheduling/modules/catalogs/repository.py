import uuid
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from clinic_scheduling.modules.catalogs.models import AppointmentType

class CatalogRepository:
    def __init__(self, s: AsyncSession): self.s = s
    async def create_type(self, obj: AppointmentType) -> AppointmentType:
        self.s.add(obj); await self.s.flush(); return obj
    async def get_type(self, type_id: uuid.UUID) -> AppointmentType | None:
        r = await self.s.execute(select(AppointmentType).where(AppointmentType.id==type_id))
        return r.scalar_one_or_none()
    async def list_types(self, *, name: str | None = None, include_retired: bool = False) -> Sequence[AppointmentType]:
        cond = []
        if name is not None:
            cond.append(func.lower(AppointmentType.name)==name.strip().lower())
        if not include_retired:
            cond.append(AppointmentType.retired.is_(False))
        r = await self.s.execute(select(AppointmentType).where(*cond).order_by(AppointmentType.name.asc()))
        return r.scalars().all()
