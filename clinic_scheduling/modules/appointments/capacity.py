import logging
from dataclasses import dataclass
from typing import Iterable

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.core.errors import DataQualityWarning, TimeSlotFullError
from clinic_scheduling.modules.appointments.lifecycle import INACTIVE_STATUSES
from clinic_scheduling.modules.appointments.models import Appointment
from clinic_scheduling.modules.blocks.models import TimeSlot

log = logging.getLogger(__name__)


def is_active(appointment: Appointment) -> bool:
    return not appointment.voided and appointment.status not in INACTIVE_STATUSES


def estimated_duration(appointment: Appointment, warnings: list[DataQualityWarning] | None = None) -> int:
    """
    Minutes an appointment takes out of its slot.

    Own estimate first, then the appointment type (the appointment's, else the
    block's), else 0. Missing data never blocks a booking; it is logged and
    appended to `warnings`.
    """
    if appointment.duration_minutes is not None:
        return appointment.duration_minutes
    appt_type = appointment.appointment_type
    slot = appointment.time_slot
    if appt_type is None and slot is not None and slot.block is not None:
        appt_type = slot.block.appointment_type
    if appt_type is not None and appt_type.duration_minutes is not None:
        return appt_type.duration_minutes
    warning = DataQualityWarning(
        f"appointment {appointment.id or '(new)'} has no duration; counted as 0 minutes", appointment.id,
    )
    log.warning("%s", warning)
    if warnings is not None:
        warnings.append(warning)
    return 0


@dataclass(frozen=True)
class SlotOccupancy:
    time_slot: TimeSlot
    appointments: tuple[Appointment, ...]
    allocated_minutes: int
    remaining_minutes: int
    warnings: tuple[DataQualityWarning, ...] = ()


def slot_occupancy(time_slot: TimeSlot, appointments: Iterable[Appointment]) -> SlotOccupancy:
    warnings: list[DataQualityWarning] = []
    active = tuple(
        a for a in appointments
        if ref_id(a, "time_slot") == time_slot.id and is_active(a)
    )
    allocated = sum(estimated_duration(a, warnings) for a in active)
    return SlotOccupancy(
        time_slot=time_slot,
        appointments=active,
        allocated_minutes=allocated,
        remaining_minutes=time_slot.duration_minutes - allocated,
        warnings=tuple(warnings),
    )


def remaining_minutes(time_slot: TimeSlot, appointments: Iterable[Appointment]) -> int:
    return slot_occupancy(time_slot, appointments).remaining_minutes


def check_capacity(time_slot: TimeSlot, appointments: Iterable[Appointment], requested: int, allow_overbook: bool) -> SlotOccupancy:
    """Raise TimeSlotFullError for an unacknowledged overflow; an explicit overbook is never vetoed."""
    occupancy = slot_occupancy(time_slot, appointments)
    if requested > occupancy.remaining_minutes and not allow_overbook:
        raise TimeSlotFullError(time_slot.id, requested, occupancy.remaining_minutes)
    if requested > occupancy.remaining_minutes:
        log.info(
            "Overbooking time slot %s: requested=%s remaining=%s",
            time_slot.id, requested, occupancy.remaining_minutes,
        )
    return occupancy
