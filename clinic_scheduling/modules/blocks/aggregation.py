import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.core.errors import DataQualityWarning
from clinic_scheduling.modules.appointments.capacity import slot_occupancy
from clinic_scheduling.modules.appointments.models import Appointment
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot
from clinic_scheduling.modules.blocks.overlap import intervals_intersect


@dataclass(frozen=True)
class ScheduledTimeSlot:
    time_slot: TimeSlot
    appointments: tuple[Appointment, ...]
    remaining_minutes: int
    warnings: tuple[DataQualityWarning, ...] = ()


@dataclass(frozen=True)
class ScheduledAppointmentBlock:
    """Read-only occupancy view of one block; rebuilt on every request."""
    block: AppointmentBlock
    slots: tuple[ScheduledTimeSlot, ...]

    @property
    def appointments(self) -> list[Appointment]:
        return [a for s in self.slots for a in s.appointments]

    @property
    def remaining_minutes(self) -> int:
        return sum(s.remaining_minutes for s in self.slots)

    @property
    def has_appointments(self) -> bool:
        return any(s.appointments for s in self.slots)


def build_scheduled_block(block: AppointmentBlock, slots: Iterable[TimeSlot], appointments: Iterable[Appointment]) -> ScheduledAppointmentBlock:
    appointments = list(appointments)
    own_slots = sorted(
        (s for s in slots if not s.voided and ref_id(s, "block") == block.id),
        key=lambda s: s.start_date,
    )
    views = []
    for slot in own_slots:
        occupancy = slot_occupancy(slot, appointments)
        views.append(ScheduledTimeSlot(
            time_slot=slot,
            appointments=occupancy.appointments,
            remaining_minutes=occupancy.remaining_minutes,
            warnings=occupancy.warnings,
        ))
    return ScheduledAppointmentBlock(block=block, slots=tuple(views))


def day_bounds(day: date, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def blocks_on_day(location_id: uuid.UUID, day: date, blocks: Iterable[AppointmentBlock], tz: tzinfo = timezone.utc) -> list[AppointmentBlock]:
    day_start, day_end = day_bounds(day, tz)
    return [
        b for b in blocks
        if not b.voided
        and b.location_id == location_id
        and intervals_intersect(b.start_date, b.end_date, day_start, day_end)
    ]


def list_daily_scheduled_blocks(
    location_id: uuid.UUID,
    day: date,
    blocks: Iterable[AppointmentBlock],
    slots: Iterable[TimeSlot],
    appointments: Iterable[Appointment],
    tz: tzinfo = timezone.utc,
) -> list[ScheduledAppointmentBlock]:
    """
    Occupied schedules at a location for one calendar day.

    Blocks without a single active appointment are left out: the view reports
    who is booked, not how much capacity is free.
    """
    slots = list(slots)
    appointments = list(appointments)
    out = []
    for block in sorted(blocks_on_day(location_id, day, blocks, tz), key=lambda b: b.start_date):
        scheduled = build_scheduled_block(block, slots, appointments)
        if scheduled.has_appointments:
            out.append(scheduled)
    return out
