import uuid
from datetime import datetime
from typing import AsyncContextManager, Protocol, Sequence, runtime_checkable

from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatus, AppointmentStatusHistory
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot
from clinic_scheduling.modules.catalogs.models import AppointmentType


@runtime_checkable
class SchedulingStore(Protocol):
    """
    Persistence collaborator of the scheduling engine.

    Lookups return None for missing rows; voided rows are filtered unless
    `include_voided` is set. `get_time_slot(..., lock=True)` must serialize
    concurrent writers of the same slot (row lock or equivalent) until the
    current unit of work ends. `get_appointment(..., refresh=True)` must return
    the committed state, not a copy cached earlier in the unit of work.
    """

    # time slots
    async def get_time_slot(self, time_slot_id: uuid.UUID, *, lock: bool = False, include_voided: bool = False) -> TimeSlot | None: ...
    async def list_time_slots(self, block_ids: Sequence[uuid.UUID], *, from_date: datetime | None = None, to_date: datetime | None = None, include_voided: bool = False) -> Sequence[TimeSlot]: ...
    async def add_time_slot(self, time_slot: TimeSlot) -> TimeSlot: ...
    async def delete_time_slot(self, time_slot: TimeSlot) -> None: ...

    # blocks
    async def get_block(self, block_id: uuid.UUID, *, include_voided: bool = False) -> AppointmentBlock | None: ...
    async def list_blocks(self, *, from_date: datetime | None = None, to_date: datetime | None = None, location_ids: Sequence[uuid.UUID] | None = None, provider_id: uuid.UUID | None = None, appointment_type_id: uuid.UUID | None = None, include_voided: bool = False) -> Sequence[AppointmentBlock]: ...
    async def add_block(self, block: AppointmentBlock) -> AppointmentBlock: ...
    async def delete_block(self, block: AppointmentBlock) -> None: ...

    # appointments
    async def get_appointment(self, appointment_id: uuid.UUID, *, include_voided: bool = False, refresh: bool = False) -> Appointment | None: ...
    async def list_appointments_in_slots(self, time_slot_ids: Sequence[uuid.UUID], *, include_voided: bool = False) -> Sequence[Appointment]: ...
    async def list_appointments(self, *, patient_id: uuid.UUID | None = None, statuses: Sequence[AppointmentStatus] | None = None, slot_starts_before: datetime | None = None, slot_starts_from: datetime | None = None, include_voided: bool = False) -> Sequence[Appointment]: ...
    async def add_appointment(self, appointment: Appointment) -> Appointment: ...
    async def delete_appointment(self, appointment: Appointment) -> None: ...

    # status history
    async def list_status_histories(self, *, status: AppointmentStatus | None = None, from_date: datetime | None = None, to_date: datetime | None = None) -> Sequence[AppointmentStatusHistory]: ...

    # appointment types
    async def get_appointment_type(self, appointment_type_id: uuid.UUID) -> AppointmentType | None: ...
    async def list_appointment_types(self, *, name: str | None = None, include_retired: bool = False) -> Sequence[AppointmentType]: ...
    async def add_appointment_type(self, appointment_type: AppointmentType) -> AppointmentType: ...

    # location hierarchy
    async def list_child_location_ids(self, location_id: uuid.UUID) -> Sequence[uuid.UUID]: ...

    # unit of work
    def savepoint(self) -> AsyncContextManager: ...
    async def flush(self) -> None: ...
    async def commit(self) -> None: ...
    async def enqueue_event(self, event_type: str, subject_type: str, subject_id: uuid.UUID | str, payload: dict) -> None: ...
