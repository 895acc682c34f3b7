import uuid
import logging
from datetime import datetime

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.core.errors import AlreadyExistsError, DataQualityWarning, NotFoundError, ValidationError
from clinic_scheduling.core.service import StoreService
from clinic_scheduling.modules.appointments.capacity import SlotOccupancy, check_capacity, estimated_duration, slot_occupancy
from clinic_scheduling.modules.appointments.lifecycle import (
    IN_PROGRESS_STATUSES, PENDING_STATUSES, ReconcileFailure, ReconcileReport,
    current_status_start, reconcile_target, start_initial_status, transition,
)
from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatus
from clinic_scheduling.modules.appointments.schemas import AppointmentCreate
from clinic_scheduling.modules.appointments.stats import DurationGrouping, average_durations, type_distribution
from clinic_scheduling.modules.blocks.models import TimeSlot

logger = logging.getLogger(__name__)


def _check_window(from_date: datetime, to_date: datetime) -> None:
    if from_date is None or to_date is None:
        raise ValidationError("from_date and to_date are required")
    if from_date >= to_date:
        raise ValidationError("from_date must be before to_date")


class AppointmentService(StoreService):

    # ---- Lookups ----
    async def _slot(self, time_slot_id: uuid.UUID | None, *, lock: bool = False, include_voided: bool = False) -> TimeSlot:
        if time_slot_id is None:
            raise ValidationError("appointment has no time slot")
        slot = await self.store.get_time_slot(time_slot_id, lock=lock, include_voided=include_voided)
        if slot is None:
            raise NotFoundError("time_slot", time_slot_id)
        return slot

    async def _appointment(self, appointment: Appointment | uuid.UUID, *, include_voided: bool = False) -> Appointment:
        if isinstance(appointment, Appointment):
            if appointment.id is None:
                raise NotFoundError("appointment", None)
            return appointment
        obj = await self.store.get_appointment(appointment, include_voided=include_voided)
        if obj is None:
            raise NotFoundError("appointment", appointment)
        return obj

    async def _lock_and_reload(self, appointment_id: uuid.UUID, time_slot_id: uuid.UUID | None) -> Appointment | None:
        """Lock the appointment's slot, then re-read the appointment as committed by earlier writers."""
        await self._slot(time_slot_id, lock=True, include_voided=True)
        return await self.store.get_appointment(appointment_id, include_voided=True, refresh=True)

    async def get(self, appointment_id: uuid.UUID) -> Appointment | None:
        return await self.store.get_appointment(appointment_id)

    # ---- Capacity ----
    async def slot_occupancy(self, time_slot: TimeSlot | uuid.UUID) -> SlotOccupancy:
        if not isinstance(time_slot, TimeSlot):
            time_slot = await self._slot(time_slot)
        current = await self.store.list_appointments_in_slots([time_slot.id])
        return slot_occupancy(time_slot, current)

    async def remaining_minutes(self, time_slot: TimeSlot | uuid.UUID) -> int:
        """Unallocated minutes of a slot; negative once it has been overbooked."""
        return (await self.slot_occupancy(time_slot)).remaining_minutes

    # ---- Booking ----
    async def request(self, payload: AppointmentCreate, *, allow_overbook: bool = False) -> Appointment:
        obj = Appointment(**payload.model_dump(exclude_unset=True))
        return await self.book_appointment(obj, allow_overbook=allow_overbook)

    async def book_appointment(self, appointment: Appointment, *, allow_overbook: bool = False) -> Appointment:
        """
        Persist a new appointment as SCHEDULED if its slot has room.

        The slot row is locked before capacity is read, so concurrent bookings of
        one slot are decided one at a time. Nothing is written when the slot is
        full and `allow_overbook` is not set. A duration that could not be
        resolved is counted as zero and reported in `data_quality_warnings`.
        """
        if appointment.id is not None:
            raise AlreadyExistsError(f"appointment {appointment.id} already exists; reschedule it instead")
        if appointment.patient_id is None:
            raise ValidationError("appointment has no patient")
        if appointment.duration_minutes is not None and appointment.duration_minutes < 0:
            raise ValidationError("appointment duration cannot be negative")

        type_id = ref_id(appointment, "appointment_type")
        if type_id is not None and appointment.appointment_type is None:
            appt_type = await self.store.get_appointment_type(type_id)
            if appt_type is None:
                raise NotFoundError("appointment_type", type_id)
            appointment.appointment_type = appt_type

        slot = await self._slot(ref_id(appointment, "time_slot"), lock=True)
        current = await self.store.list_appointments_in_slots([slot.id])
        appointment.time_slot = slot
        warnings: list[DataQualityWarning] = []
        requested = estimated_duration(appointment, warnings)
        occupancy = check_capacity(slot, current, requested, allow_overbook)

        start_initial_status(appointment, self.clock())
        appointment.data_quality_warnings = tuple(warnings)
        await self.store.add_appointment(appointment)
        await self.store.enqueue_event(
            "APPT_BOOKED", "appointment", appointment.id,
            {
                "time_slot_id": str(slot.id),
                "patient_id": str(appointment.patient_id),
                "requested_minutes": requested,
                "remaining_minutes": occupancy.remaining_minutes - requested,
                "overbooked": requested > occupancy.remaining_minutes,
                "warnings": [str(w) for w in warnings],
            },
        )
        await self.store.commit()
        logger.info("Booked appointment %s into slot %s (%s min)", appointment.id, slot.id, requested)
        return appointment

    async def reschedule_appointment(self, appointment: Appointment | uuid.UUID, new_time_slot_id: uuid.UUID,
                                     *, allow_overbook: bool = False) -> Appointment:
        obj = await self._appointment(appointment)
        if obj.status == AppointmentStatus.COMPLETED:
            raise ValidationError(f"appointment {obj.id} is completed and cannot be rescheduled")
        slot = await self._slot(new_time_slot_id, lock=True)
        old_slot_id = ref_id(obj, "time_slot")
        others = [a for a in await self.store.list_appointments_in_slots([slot.id]) if a.id != obj.id]
        requested = estimated_duration(obj)
        check_capacity(slot, others, requested, allow_overbook)

        obj.time_slot = slot
        transition(obj, AppointmentStatus.RESCHEDULED, self.clock())
        await self.store.flush()
        await self.store.enqueue_event(
            "APPT_RESCHEDULED", "appointment", obj.id,
            {"from_time_slot_id": str(old_slot_id), "to_time_slot_id": str(slot.id)},
        )
        await self.store.commit()
        return obj

    # ---- Status ----
    async def change_appointment_status(self, appointment: Appointment | uuid.UUID,
                                        new_status: AppointmentStatus | str) -> Appointment:
        obj = await self._appointment(appointment)
        appointment_id = obj.id
        obj = await self._lock_and_reload(appointment_id, ref_id(obj, "time_slot"))
        if obj is None or obj.voided:
            raise NotFoundError("appointment", appointment_id)
        prev = obj.status
        transition(obj, new_status, self.clock())
        await self.store.flush()
        await self.store.enqueue_event(
            "APPT_STATUS_CHANGED", "appointment", obj.id,
            {"from": AppointmentStatus(prev).value, "to": obj.status.value},
        )
        await self.store.commit()
        return obj

    async def reconcile_past_due(self) -> ReconcileReport:
        """
        Move every past-due pending appointment to MISSED and every in-progress one
        to COMPLETED. Each appointment runs in its own savepoint; a failure is
        logged and reported, and the rest of the batch still commits.
        """
        now = self.clock()
        report = ReconcileReport(run_at=now)
        candidates = await self.store.list_appointments(
            statuses=sorted(PENDING_STATUSES | IN_PROGRESS_STATUSES), slot_starts_before=now,
        )
        for candidate in candidates:
            appointment_id = candidate.id
            appointment, target = candidate, None
            try:
                if reconcile_target(candidate, now) is None:
                    continue
                async with self.store.savepoint():
                    fresh = await self._lock_and_reload(appointment_id, ref_id(candidate, "time_slot"))
                    if fresh is not None:
                        appointment = fresh
                        # decided on the committed row; the candidate list may be stale
                        target = reconcile_target(appointment, now)
                    if target is not None:
                        prev = appointment.status
                        transition(appointment, target, now)
                        await self.store.flush()
                        await self.store.enqueue_event(
                            "APPT_RECONCILED", "appointment", appointment_id,
                            {"from": AppointmentStatus(prev).value, "to": target.value},
                        )
            except Exception as exc:
                logger.exception("Reconciliation failed for appointment %s", appointment_id)
                report.failures.append(ReconcileFailure(appointment_id, appointment, exc))
                continue
            if target is not None:
                report.updated.append(appointment)
        await self.store.commit()
        logger.info(
            "Reconciled past-due appointments: updated=%d failed=%d",
            len(report.updated), len(report.failures),
        )
        return report

    async def get_current_status_start(self, appointment: Appointment | uuid.UUID) -> datetime | None:
        return current_status_start(await self._appointment(appointment))

    # ---- Void / purge ----
    async def void_appointment(self, appointment: Appointment | uuid.UUID, reason: str) -> Appointment:
        if not reason or not reason.strip():
            raise ValidationError("a void reason is required")
        obj = await self._appointment(appointment)
        obj.void(reason.strip(), self.clock())
        await self.store.flush()
        await self.store.enqueue_event("APPT_VOIDED", "appointment", obj.id, {"reason": obj.void_reason})
        await self.store.commit()
        return obj

    async def unvoid_appointment(self, appointment: Appointment | uuid.UUID) -> Appointment:
        obj = await self._appointment(appointment, include_voided=True)
        obj.unvoid()
        await self.store.flush()
        await self.store.enqueue_event("APPT_UNVOIDED", "appointment", obj.id, {})
        await self.store.commit()
        return obj

    async def purge_appointment(self, appointment: Appointment | uuid.UUID) -> None:
        obj = await self._appointment(appointment, include_voided=True)
        appointment_id = obj.id
        await self.store.delete_appointment(obj)
        await self.store.enqueue_event("APPT_PURGED", "appointment", appointment_id, {})
        await self.store.commit()
        logger.info("Purged appointment %s", appointment_id)

    # ---- Queries & statistics ----
    async def get_average_duration(self, from_date: datetime, to_date: datetime, status: AppointmentStatus | str,
                                   group_by: DurationGrouping | str = DurationGrouping.APPOINTMENT_TYPE) -> dict:
        _check_window(from_date, to_date)
        entries = await self.store.list_status_histories(
            status=AppointmentStatus(status), from_date=from_date, to_date=to_date,
        )
        return average_durations(entries, DurationGrouping(group_by))

    async def get_history_count(self, from_date: datetime, to_date: datetime, status: AppointmentStatus | str) -> int:
        _check_window(from_date, to_date)
        entries = await self.store.list_status_histories(
            status=AppointmentStatus(status), from_date=from_date, to_date=to_date,
        )
        return len(entries)

    async def get_appointment_type_distribution(self, from_date: datetime, to_date: datetime) -> dict[uuid.UUID, int]:
        _check_window(from_date, to_date)
        appointments = await self.store.list_appointments(slot_starts_from=from_date, slot_starts_before=to_date)
        return type_distribution(appointments)

    async def get_last_appointment(self, patient_id: uuid.UUID) -> Appointment | None:
        appointments = await self.store.list_appointments(patient_id=patient_id)
        if not appointments:
            return None
        return max(appointments, key=lambda a: a.time_slot.start_date)

    async def get_scheduled_appointments_for_patient(self, patient_id: uuid.UUID) -> list[Appointment]:
        now = self.clock()
        appointments = await self.store.list_appointments(
            patient_id=patient_id, statuses=sorted(PENDING_STATUSES | IN_PROGRESS_STATUSES),
        )
        upcoming = [a for a in appointments if a.time_slot.end_date >= now]
        return sorted(upcoming, key=lambda a: a.time_slot.start_date)
