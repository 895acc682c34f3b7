import uuid
import logging

from clinic_scheduling.core.errors import AlreadyExistsError, NotFoundError, ValidationError
from clinic_scheduling.core.service import StoreService
from clinic_scheduling.modules.catalogs.models import AppointmentType
from clinic_scheduling.modules.catalogs.schemas import AppointmentTypeCreate

logger = logging.getLogger(__name__)


class CatalogService(StoreService):

    async def _appointment_type(self, appointment_type: AppointmentType | uuid.UUID) -> AppointmentType:
        if isinstance(appointment_type, AppointmentType):
            return appointment_type
        obj = await self.store.get_appointment_type(appointment_type)
        if obj is None:
            raise NotFoundError("appointment_type", appointment_type)
        return obj

    async def list_appointment_types(self, name: str | None = None, include_retired: bool = False) -> list[AppointmentType]:
        return list(await self.store.list_appointment_types(name=name, include_retired=include_retired))

    async def create_appointment_type(self, payload: AppointmentTypeCreate) -> AppointmentType:
        return await self.save_appointment_type(AppointmentType(**payload.model_dump()))

    async def save_appointment_type(self, appointment_type: AppointmentType) -> AppointmentType:
        name = (appointment_type.name or "").strip()
        if not name:
            raise ValidationError("appointment type name is required")
        if appointment_type.duration_minutes is not None and appointment_type.duration_minutes <= 0:
            raise ValidationError("appointment type duration must be positive")
        appointment_type.name = name
        if not appointment_type.retired:
            await self._check_unique_name(appointment_type)

        if appointment_type.id is None:
            await self.store.add_appointment_type(appointment_type)
        else:
            await self.store.flush()
        await self.store.commit()
        return appointment_type

    async def _check_unique_name(self, appointment_type: AppointmentType) -> None:
        same_name = await self.store.list_appointment_types(name=appointment_type.name)
        if any(t is not appointment_type and t.id != appointment_type.id for t in same_name):
            raise AlreadyExistsError(f"appointment type {appointment_type.name!r} already exists")

    async def retire_appointment_type(self, appointment_type: AppointmentType | uuid.UUID, reason: str) -> AppointmentType:
        if not reason or not reason.strip():
            raise ValidationError("a retire reason is required")
        obj = await self._appointment_type(appointment_type)
        obj.retired = True
        obj.retire_reason = reason.strip()
        await self.store.flush()
        await self.store.commit()
        logger.info("Retired appointment type %s (%s)", obj.id, obj.name)
        return obj

    async def unretire_appointment_type(self, appointment_type: AppointmentType | uuid.UUID) -> AppointmentType:
        obj = await self._appointment_type(appointment_type)
        # coming back must not shadow a type created under the same name meanwhile
        await self._check_unique_name(obj)
        obj.retired = False
        obj.retire_reason = None
        await self.store.flush()
        await self.store.commit()
        return obj
