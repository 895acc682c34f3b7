"""Shared fixtures: an in-memory SchedulingStore, a settable clock and small model factories."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.modules.appointments.lifecycle import start_initial_status, transition
from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatus
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot
from clinic_scheduling.modules.catalogs.models import AppointmentType
from clinic_scheduling.modules.directory import models as _directory  # noqa: F401
from clinic_scheduling.modules.events import outbox as _outbox  # noqa: F401

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _persist(obj):
    if obj.id is None:
        obj.id = uuid.uuid4()
    if getattr(obj, "voided", False) is None:
        obj.voided = False
    if obj.version is None:
        obj.version = 1
    return obj


def _visible(obj, include_voided: bool) -> bool:
    return include_voided or not obj.voided


class FakeSchedulingStore:
    """Dict-backed SchedulingStore; commits, savepoints, locks and events are recorded for assertions."""

    def __init__(self):
        self.slots: dict[uuid.UUID, TimeSlot] = {}
        self.blocks: dict[uuid.UUID, AppointmentBlock] = {}
        self.appointments: dict[uuid.UUID, Appointment] = {}
        self.types: dict[uuid.UUID, AppointmentType] = {}
        self.children: dict[uuid.UUID, list[uuid.UUID]] = {}
        self.events: list[tuple[str, str, str, dict]] = []
        self.locked: list[uuid.UUID] = []
        self.commits = 0
        self.flushes = 0
        self.savepoints = 0
        self.rolled_back_savepoints = 0

    # time slots
    async def get_time_slot(self, time_slot_id, *, lock=False, include_voided=False):
        slot = self.slots.get(time_slot_id)
        if slot is None or not _visible(slot, include_voided):
            return None
        if lock:
            self.locked.append(time_slot_id)
        return slot

    async def list_time_slots(self, block_ids, *, from_date=None, to_date=None, include_voided=False):
        block_ids = set(block_ids)
        out = [
            s for s in self.slots.values()
            if ref_id(s, "block") in block_ids and _visible(s, include_voided)
            and (from_date is None or s.start_date >= from_date)
            and (to_date is None or s.start_date < to_date)
        ]
        return sorted(out, key=lambda s: s.start_date)

    async def add_time_slot(self, time_slot):
        self.slots[_persist(time_slot).id] = time_slot
        return time_slot

    async def delete_time_slot(self, time_slot):
        self.slots.pop(time_slot.id, None)

    # blocks
    async def get_block(self, block_id, *, include_voided=False):
        block = self.blocks.get(block_id)
        if block is None or not _visible(block, include_voided):
            return None
        return block

    async def list_blocks(self, *, from_date=None, to_date=None, location_ids=None, provider_id=None,
                          appointment_type_id=None, include_voided=False):
        out = [
            b for b in self.blocks.values()
            if _visible(b, include_voided)
            and (from_date is None or b.end_date > from_date)
            and (to_date is None or b.start_date < to_date)
            and (not location_ids or b.location_id in location_ids)
            and (provider_id is None or b.provider_id == provider_id)
            and (appointment_type_id is None or b.appointment_type_id == appointment_type_id)
        ]
        return sorted(out, key=lambda b: b.start_date)

    async def add_block(self, block):
        self.blocks[_persist(block).id] = block
        return block

    async def delete_block(self, block):
        for slot_id in [s.id for s in self.slots.values() if ref_id(s, "block") == block.id]:
            del self.slots[slot_id]
        self.blocks.pop(block.id, None)

    # appointments
    async def get_appointment(self, appointment_id, *, include_voided=False, refresh=False):
        appt = self.appointments.get(appointment_id)
        if appt is None or not _visible(appt, include_voided):
            return None
        return appt

    async def list_appointments_in_slots(self, time_slot_ids, *, include_voided=False):
        time_slot_ids = set(time_slot_ids)
        return [
            a for a in self.appointments.values()
            if ref_id(a, "time_slot") in time_slot_ids and _visible(a, include_voided)
        ]

    async def list_appointments(self, *, patient_id=None, statuses=None, slot_starts_before=None,
                                slot_starts_from=None, include_voided=False):
        return [
            a for a in self.appointments.values()
            if _visible(a, include_voided)
            and (patient_id is None or a.patient_id == patient_id)
            and (not statuses or a.status in statuses)
            and (slot_starts_before is None or a.time_slot.start_date < slot_starts_before)
            and (slot_starts_from is None or a.time_slot.start_date >= slot_starts_from)
        ]

    async def add_appointment(self, appointment):
        _persist(appointment)
        for entry in appointment.status_history:
            _persist(entry)
        self.appointments[appointment.id] = appointment
        return appointment

    async def delete_appointment(self, appointment):
        self.appointments.pop(appointment.id, None)

    # status history
    async def list_status_histories(self, *, status=None, from_date=None, to_date=None):
        out = [
            h for a in self.appointments.values() for h in a.status_history
            if (status is None or h.status == status)
            and (from_date is None or h.start_date >= from_date)
            and (to_date is None or h.start_date < to_date)
        ]
        return sorted(out, key=lambda h: h.start_date)

    # appointment types
    async def get_appointment_type(self, appointment_type_id):
        return self.types.get(appointment_type_id)

    async def list_appointment_types(self, *, name=None, include_retired=False):
        return [
            t for t in self.types.values()
            if (include_retired or not t.retired)
            and (name is None or t.name.lower() == name.strip().lower())
        ]

    async def add_appointment_type(self, appointment_type):
        if appointment_type.retired is None:
            appointment_type.retired = False
        self.types[_persist(appointment_type).id] = appointment_type
        return appointment_type

    # location hierarchy
    async def list_child_location_ids(self, location_id):
        return list(self.children.get(location_id, []))

    # unit of work
    @asynccontextmanager
    async def savepoint(self):
        self.savepoints += 1
        try:
            yield
        except Exception:
            self.rolled_back_savepoints += 1
            raise

    async def flush(self):
        self.flushes += 1
        for appt in self.appointments.values():
            for entry in appt.status_history:
                _persist(entry)

    async def commit(self):
        await self.flush()
        self.commits += 1

    async def enqueue_event(self, event_type, subject_type, subject_id, payload):
        self.events.append((event_type, subject_type, str(subject_id), payload))

    def event_types(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeSchedulingStore:
    return FakeSchedulingStore()


@pytest.fixture
def location_id() -> uuid.UUID:
    return uuid.uuid4()


def make_block(store: FakeSchedulingStore, location_id, start=T0, hours: float = 4, provider_id=None,
               appointment_type=None) -> AppointmentBlock:
    block = AppointmentBlock(
        id=uuid.uuid4(), start_date=start, end_date=start + timedelta(hours=hours),
        location_id=location_id, provider_id=provider_id, voided=False,
        appointment_type=appointment_type,
        appointment_type_id=appointment_type.id if appointment_type is not None else None,
    )
    store.blocks[block.id] = block
    return block


def make_slot(store: FakeSchedulingStore, block: AppointmentBlock, start=None, minutes: int = 30) -> TimeSlot:
    slot = TimeSlot(
        id=uuid.uuid4(), block=block, block_id=block.id,
        start_date=start or block.start_date, duration_minutes=minutes, voided=False,
    )
    store.slots[slot.id] = slot
    return slot


def make_type(store: FakeSchedulingStore, name: str = "Consultation", minutes: int | None = 20) -> AppointmentType:
    appt_type = AppointmentType(id=uuid.uuid4(), name=name, duration_minutes=minutes, retired=False)
    store.types[appt_type.id] = appt_type
    return appt_type


def make_appointment(store: FakeSchedulingStore, slot: TimeSlot, minutes: int | None = 20,
                     status: AppointmentStatus = AppointmentStatus.SCHEDULED, booked_at: datetime | None = None,
                     changed_at: datetime | None = None, appointment_type=None, patient_id=None,
                     voided: bool = False) -> Appointment:
    """An appointment already on the books, with a consistent status history."""
    appt = Appointment(
        id=uuid.uuid4(), patient_id=patient_id or uuid.uuid4(), time_slot=slot, time_slot_id=slot.id,
        duration_minutes=minutes, appointment_type=appointment_type,
        appointment_type_id=appointment_type.id if appointment_type is not None else None,
        voided=voided,
    )
    booked_at = booked_at or slot.start_date - timedelta(days=1)
    start_initial_status(appt, booked_at)
    if status != AppointmentStatus.SCHEDULED:
        transition(appt, status, changed_at or booked_at + timedelta(minutes=1))
    store.appointments[appt.id] = appt
    for entry in appt.status_history:
        _persist(entry)
    return appt
