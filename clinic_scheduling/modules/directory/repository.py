import uuid
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from clinic_scheduling.modules.directory.models import Location

class LocationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_child_ids(self, parent_id: uuid.UUID) -> Sequence[uuid.UUID]:
        q = select(Location.id).where(and_(Location.parent_id == parent_id, Location.voided.is_(False)))
        res = await self.session.execute(q)
        return res.scalars().all()
