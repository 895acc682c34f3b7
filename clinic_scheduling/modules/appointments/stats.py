import uuid
from collections import defaultdict
from enum import Enum as PyEnum
from typing import Callable, Hashable, Iterable

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.modules.appointments.models import Appointment, AppointmentStatusHistory


class DurationGrouping(str, PyEnum):
    APPOINTMENT_TYPE = "appointment_type"
    PROVIDER = "provider"


def appointment_type_key(appointment: Appointment) -> uuid.UUID | None:
    return ref_id(appointment, "appointment_type")


def provider_key(appointment: Appointment) -> uuid.UUID | None:
    slot = appointment.time_slot
    if slot is None or slot.block is None:
        return None
    return slot.block.provider_id


GROUPING_KEYS: dict[DurationGrouping, Callable[[Appointment], Hashable | None]] = {
    DurationGrouping.APPOINTMENT_TYPE: appointment_type_key,
    DurationGrouping.PROVIDER: provider_key,
}


def average_durations(entries: Iterable[AppointmentStatusHistory], group_by: DurationGrouping) -> dict[Hashable, float]:
    """
    Mean length in minutes of closed history intervals, per group key.
    Open intervals and entries without a key are skipped; empty groups never appear.
    """
    key_fn = GROUPING_KEYS[DurationGrouping(group_by)]
    totals: dict[Hashable, float] = defaultdict(float)
    counts: dict[Hashable, int] = defaultdict(int)
    for entry in entries:
        if entry.end_date is None:
            continue
        key = key_fn(entry.appointment)
        if key is None:
            continue
        totals[key] += (entry.end_date - entry.start_date).total_seconds() / 60.0
        counts[key] += 1
    return {key: totals[key] / counts[key] for key in counts}


def type_distribution(appointments: Iterable[Appointment]) -> dict[uuid.UUID, int]:
    dist: dict[uuid.UUID, int] = defaultdict(int)
    for appointment in appointments:
        key = appointment_type_key(appointment)
        if key is not None and not appointment.voided:
            dist[key] += 1
    return dict(dist)
