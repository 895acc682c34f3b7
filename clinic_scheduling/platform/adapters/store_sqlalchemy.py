import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduling.core.errors import PersistenceError
from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatus, AppointmentStatusHistory
from clinic_scheduling.modules.appointments.repository import AppointmentRepository, StatusHistoryRepository
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot
from clinic_scheduling.modules.blocks.repository import BlockRepository, TimeSlotRepository
from clinic_scheduling.modules.catalogs.models import AppointmentType
from clinic_scheduling.modules.catalogs.repository import CatalogRepository
from clinic_scheduling.modules.directory.repository import LocationRepository
from clinic_scheduling.modules.events.outbox import OutboxService
from clinic_scheduling.platform.ports.scheduling_store import SchedulingStore


@asynccontextmanager
async def _guard(operation: str, entity: str, entity_id=None):
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(operation, entity, entity_id, exc) from exc


class SqlSchedulingStore(SchedulingStore):
    """SchedulingStore over one AsyncSession; the session is the unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.appts = AppointmentRepository(session)
        self.histories = StatusHistoryRepository(session)
        self.blocks = BlockRepository(session)
        self.slots = TimeSlotRepository(session)
        self.catalogs = CatalogRepository(session)
        self.locations = LocationRepository(session)
        self.outbox = OutboxService(session)

    # ---- Time slots ----
    async def get_time_slot(self, time_slot_id: uuid.UUID, *, lock: bool = False, include_voided: bool = False) -> TimeSlot | None:
        async with _guard("get", "time_slot", time_slot_id):
            return await self.slots.get(time_slot_id, lock=lock, include_voided=include_voided)

    async def list_time_slots(self, block_ids: Sequence[uuid.UUID], *, from_date: datetime | None = None,
                              to_date: datetime | None = None, include_voided: bool = False) -> Sequence[TimeSlot]:
        async with _guard("list", "time_slot"):
            return await self.slots.list(block_ids, from_date=from_date, to_date=to_date, include_voided=include_voided)

    async def add_time_slot(self, time_slot: TimeSlot) -> TimeSlot:
        async with _guard("save", "time_slot", time_slot.id):
            return await self.slots.create(time_slot)

    async def delete_time_slot(self, time_slot: TimeSlot) -> None:
        async with _guard("purge", "time_slot", time_slot.id):
            await self.slots.delete(time_slot)

    # ---- Blocks ----
    async def get_block(self, block_id: uuid.UUID, *, include_voided: bool = False) -> AppointmentBlock | None:
        async with _guard("get", "appointment_block", block_id):
            return await self.blocks.get(block_id, include_voided=include_voided)

    async def list_blocks(self, *, from_date: datetime | None = None, to_date: datetime | None = None,
                          location_ids: Sequence[uuid.UUID] | None = None, provider_id: uuid.UUID | None = None,
                          appointment_type_id: uuid.UUID | None = None, include_voided: bool = False) -> Sequence[AppointmentBlock]:
        async with _guard("list", "appointment_block"):
            return await self.blocks.list(
                from_date=from_date, to_date=to_date, location_ids=location_ids, provider_id=provider_id,
                appointment_type_id=appointment_type_id, include_voided=include_voided,
            )

    async def add_block(self, block: AppointmentBlock) -> AppointmentBlock:
        async with _guard("save", "appointment_block", block.id):
            return await self.blocks.create(block)

    async def delete_block(self, block: AppointmentBlock) -> None:
        async with _guard("purge", "appointment_block", block.id):
            await self.blocks.delete(block)

    # ---- Appointments ----
    async def get_appointment(self, appointment_id: uuid.UUID, *, include_voided: bool = False,
                              refresh: bool = False) -> Appointment | None:
        async with _guard("get", "appointment", appointment_id):
            return await self.appts.get(appointment_id, include_voided=include_voided, refresh=refresh)

    async def list_appointments_in_slots(self, time_slot_ids: Sequence[uuid.UUID], *, include_voided: bool = False) -> Sequence[Appointment]:
        async with _guard("list", "appointment"):
            return await self.appts.list_in_slots(time_slot_ids, include_voided=include_voided)

    async def list_appointments(self, *, patient_id: uuid.UUID | None = None, statuses: Sequence[AppointmentStatus] | None = None,
                                slot_starts_before: datetime | None = None, slot_starts_from: datetime | None = None,
                                include_voided: bool = False) -> Sequence[Appointment]:
        async with _guard("list", "appointment"):
            return await self.appts.list(
                patient_id=patient_id, statuses=statuses, slot_starts_before=slot_starts_before,
                slot_starts_from=slot_starts_from, include_voided=include_voided,
            )

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        async with _guard("save", "appointment", appointment.id):
            return await self.appts.create(appointment)

    async def delete_appointment(self, appointment: Appointment) -> None:
        async with _guard("purge", "appointment", appointment.id):
            await self.appts.delete(appointment)

    # ---- Status history ----
    async def list_status_histories(self, *, status: AppointmentStatus | None = None, from_date: datetime | None = None,
                                    to_date: datetime | None = None) -> Sequence[AppointmentStatusHistory]:
        async with _guard("list", "appointment_status_history"):
            return await self.histories.list(status=status, from_date=from_date, to_date=to_date)

    # ---- Appointment types ----
    async def get_appointment_type(self, appointment_type_id: uuid.UUID) -> AppointmentType | None:
        async with _guard("get", "appointment_type", appointment_type_id):
            return await self.catalogs.get_type(appointment_type_id)

    async def list_appointment_types(self, *, name: str | None = None, include_retired: bool = False) -> Sequence[AppointmentType]:
        async with _guard("list", "appointment_type"):
            return await self.catalogs.list_types(name=name, include_retired=include_retired)

    async def add_appointment_type(self, appointment_type: AppointmentType) -> AppointmentType:
        async with _guard("save", "appointment_type", appointment_type.id):
            return await self.catalogs.create_type(appointment_type)

    # ---- Locations ----
    async def list_child_location_ids(self, location_id: uuid.UUID) -> Sequence[uuid.UUID]:
        async with _guard("list_children", "location", location_id):
            return await self.locations.list_child_ids(location_id)

    # ---- Unit of work ----
    def savepoint(self):
        return self.session.begin_nested()

    async def flush(self) -> None:
        async with _guard("flush", "session"):
            await self.session.flush()

    async def commit(self) -> None:
        async with _guard("commit", "session"):
            await self.session.commit()

    async def enqueue_event(self, event_type: str, subject_type: str, subject_id: uuid.UUID | str, payload: dict) -> None:
        async with _guard("enqueue", "event_outbox", subject_id):
            await self.outbox.enqueue(event_type, subject_type, subject_id, payload)


@asynccontextmanager
async def sql_store_scope(session_factory: async_sessionmaker | None = None):
    """One session-backed store per unit of work (used by the batch runners)."""
    if session_factory is None:
        from clinic_scheduling.core.db import SessionLocal
        session_factory = SessionLocal
    async with session_factory() as session:
        yield SqlSchedulingStore(session)
