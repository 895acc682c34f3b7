"""Tests for rescheduling, voiding and the appointment queries."""

import uuid
from datetime import timedelta

import pytest

from clinic_scheduling.core.errors import NotFoundError, TimeSlotFullError, ValidationError
from clinic_scheduling.modules.appointments.lifecycle import transition
from clinic_scheduling.modules.appointments.models import AppointmentStatus
from clinic_scheduling.modules.appointments.service import AppointmentService
from clinic_scheduling.modules.appointments.stats import DurationGrouping
from clinic_scheduling.modules.scheduling.service import SchedulingService

from conftest import T0, make_appointment, make_block, make_slot, make_type


@pytest.fixture
def svc(store, clock):
    return AppointmentService(store, clock=clock)


@pytest.fixture
def block(store, location_id):
    return make_block(store, location_id, provider_id=uuid.uuid4())


class TestReschedule:

    @pytest.mark.asyncio
    async def test_moves_and_marks_rescheduled(self, store, svc, block):
        """Should move the appointment and record the RESCHEDULED status."""
        old = make_slot(store, block)
        new = make_slot(store, block, start=old.end_date)
        appt = make_appointment(store, old, minutes=20)

        await svc.reschedule_appointment(appt.id, new.id)

        assert appt.time_slot is new
        assert appt.status == AppointmentStatus.RESCHEDULED
        assert await svc.remaining_minutes(old) == 30
        assert await svc.remaining_minutes(new) == 10
        assert store.events[-1][0] == "APPT_RESCHEDULED"
        assert store.locked == [new.id]

    @pytest.mark.asyncio
    async def test_same_slot_does_not_count_itself(self, store, svc, block):
        """Should not charge the appointment twice when it stays in a full slot."""
        slot = make_slot(store, block)
        appt = make_appointment(store, slot, minutes=30)

        await svc.reschedule_appointment(appt, slot.id)

        assert appt.status == AppointmentStatus.RESCHEDULED

    @pytest.mark.asyncio
    async def test_full_target_rejected(self, store, svc, block):
        old = make_slot(store, block)
        new = make_slot(store, block, start=old.end_date)
        make_appointment(store, new, minutes=25)
        appt = make_appointment(store, old, minutes=10)

        with pytest.raises(TimeSlotFullError):
            await svc.reschedule_appointment(appt, new.id)
        assert appt.time_slot is old
        assert appt.status == AppointmentStatus.SCHEDULED

        await svc.reschedule_appointment(appt, new.id, allow_overbook=True)
        assert await svc.remaining_minutes(new) == -5

    @pytest.mark.asyncio
    async def test_completed_cannot_move(self, store, svc, block):
        slot = make_slot(store, block)
        appt = make_appointment(store, slot, status=AppointmentStatus.COMPLETED)

        with pytest.raises(ValidationError):
            await svc.reschedule_appointment(appt, slot.id)


class TestVoidAndPurge:

    @pytest.mark.asyncio
    async def test_void_frees_capacity_and_unvoid_restores(self, store, svc, block):
        slot = make_slot(store, block)
        appt = make_appointment(store, slot, minutes=30)

        await svc.void_appointment(appt.id, "entered twice")
        assert await svc.remaining_minutes(slot) == 30
        assert await svc.get(appt.id) is None

        await svc.unvoid_appointment(appt.id)
        assert await svc.remaining_minutes(slot) == 0
        assert store.event_types() == ["APPT_VOIDED", "APPT_UNVOIDED"]

    @pytest.mark.asyncio
    async def test_void_requires_reason(self, store, svc, block):
        appt = make_appointment(store, make_slot(store, block))

        with pytest.raises(ValidationError):
            await svc.void_appointment(appt, "")

    @pytest.mark.asyncio
    async def test_purge_removes_appointment(self, store, svc, block):
        appt = make_appointment(store, make_slot(store, block), voided=True)

        await svc.purge_appointment(appt.id)

        assert appt.id not in store.appointments
        with pytest.raises(NotFoundError):
            await svc.purge_appointment(appt.id)


class TestStatistics:

    @pytest.mark.asyncio
    async def test_average_duration_by_type(self, store, svc, block):
        """Should average closed entries per appointment type within the window."""
        slot = make_slot(store, block)
        short, long_ = make_type(store, "Short"), make_type(store, "Long")
        for appt_type, minutes in ((short, 10), (short, 20), (long_, 45)):
            appt = make_appointment(store, slot, status=AppointmentStatus.INCONSULTATION, changed_at=T0,
                                    appointment_type=appt_type)
            transition(appt, AppointmentStatus.COMPLETED, T0 + timedelta(minutes=minutes))

        averages = await svc.get_average_duration(
            T0 - timedelta(hours=1), T0 + timedelta(hours=1), AppointmentStatus.INCONSULTATION,
        )

        assert averages == {short.id: 15.0, long_.id: 45.0}

    @pytest.mark.asyncio
    async def test_average_duration_by_provider_skips_open(self, store, svc, block):
        slot = make_slot(store, block)
        make_appointment(store, slot, status=AppointmentStatus.WAITING, changed_at=T0)
        closed = make_appointment(store, slot, status=AppointmentStatus.WAITING, changed_at=T0)
        transition(closed, AppointmentStatus.INCONSULTATION, T0 + timedelta(minutes=12))

        averages = await svc.get_average_duration(
            T0 - timedelta(hours=1), T0 + timedelta(hours=1), "WAITING", DurationGrouping.PROVIDER,
        )

        assert averages == {block.provider_id: 12.0}

    @pytest.mark.asyncio
    async def test_history_count(self, store, svc, block):
        slot = make_slot(store, block)
        for _ in range(3):
            make_appointment(store, slot, status=AppointmentStatus.WAITING, changed_at=T0)

        assert await svc.get_history_count(T0, T0 + timedelta(minutes=1), AppointmentStatus.WAITING) == 3
        assert await svc.get_history_count(T0 + timedelta(minutes=1), T0 + timedelta(hours=1), "WAITING") == 0

    @pytest.mark.asyncio
    async def test_window_must_be_ordered(self, svc):
        with pytest.raises(ValidationError):
            await svc.get_history_count(T0, T0, AppointmentStatus.WAITING)

    @pytest.mark.asyncio
    async def test_type_distribution(self, store, svc, block):
        slot = make_slot(store, block)
        a, b = make_type(store, "A"), make_type(store, "B")
        make_appointment(store, slot, appointment_type=a)
        make_appointment(store, slot, appointment_type=a)
        make_appointment(store, slot, appointment_type=b)
        make_appointment(store, slot, appointment_type=b, voided=True)
        make_appointment(store, slot)

        dist = await svc.get_appointment_type_distribution(T0, T0 + timedelta(days=1))

        assert dist == {a.id: 2, b.id: 1}


class TestPatientQueries:

    @pytest.mark.asyncio
    async def test_last_appointment(self, store, svc, block):
        patient = uuid.uuid4()
        first = make_slot(store, block)
        second = make_slot(store, block, start=first.end_date)
        latest = make_appointment(store, second, patient_id=patient)
        make_appointment(store, first, patient_id=patient)
        make_appointment(store, second)

        assert await svc.get_last_appointment(patient) is latest
        assert await svc.get_last_appointment(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_scheduled_appointments_for_patient(self, store, svc, clock, location_id):
        """Should list pending and in-progress appointments whose slot has not ended."""
        patient = uuid.uuid4()
        past = make_slot(store, make_block(store, location_id, start=T0 - timedelta(days=1)))
        today = make_block(store, location_id)
        now_slot = make_slot(store, today)
        later_slot = make_slot(store, today, start=T0 + timedelta(hours=2))
        later = make_appointment(store, later_slot, patient_id=patient)
        current = make_appointment(store, now_slot, patient_id=patient, status=AppointmentStatus.INCONSULTATION)
        make_appointment(store, past, patient_id=patient)
        make_appointment(store, later_slot, patient_id=patient, status=AppointmentStatus.CANCELLED)

        assert await svc.get_scheduled_appointments_for_patient(patient) == [current, later]


class TestSchedulingService:

    @pytest.mark.asyncio
    async def test_facade_exposes_every_operation(self, store, clock, location_id):
        svc = SchedulingService(store, clock=clock)
        block = make_block(store, location_id)
        slot = make_slot(store, block)

        assert await svc.remaining_minutes(slot) == 30
        assert (await svc.build_scheduled_block(block)).slots[0].time_slot is slot
        assert await svc.list_appointment_types() == []
        for name in ("book_appointment", "change_appointment_status", "reconcile_past_due", "find_overlaps",
                     "list_daily_scheduled_blocks", "get_average_duration", "save_appointment_type"):
            assert callable(getattr(svc, name))
