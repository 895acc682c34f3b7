"""
Appointment status machine.

The appointment row carries the current status; AppointmentStatusHistory is an
append-only log of (status, start, end) intervals. Every status change goes
through `transition` (or `start_initial_status` for a new booking), which is
where the "at most one open interval" rule is kept.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from clinic_scheduling.core.errors import ValidationError
from clinic_scheduling.modules.appointments.models import (
    Appointment, AppointmentStatus, AppointmentStatusHistory,
)

log = logging.getLogger(__name__)

PENDING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.RESCHEDULED,
    AppointmentStatus.WAITING,
    AppointmentStatus.WALKIN,
})
IN_PROGRESS_STATUSES = frozenset({AppointmentStatus.INCONSULTATION})
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.MISSED,
})
# statuses that no longer hold capacity in a time slot
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.MISSED})

RECONCILE_TRANSITIONS: dict[AppointmentStatus, AppointmentStatus] = {
    AppointmentStatus.SCHEDULED: AppointmentStatus.MISSED,
    AppointmentStatus.RESCHEDULED: AppointmentStatus.MISSED,
    AppointmentStatus.WAITING: AppointmentStatus.MISSED,
    AppointmentStatus.WALKIN: AppointmentStatus.MISSED,
    AppointmentStatus.INCONSULTATION: AppointmentStatus.COMPLETED,
}


def open_entries(appointment: Appointment) -> list[AppointmentStatusHistory]:
    return [h for h in appointment.status_history if h.end_date is None]


def current_status_start(appointment: Appointment) -> datetime | None:
    """Start of the interval the appointment is currently in (the latest history entry)."""
    latest = _latest_entry(appointment)
    return latest.start_date if latest is not None else None


def _latest_entry(appointment: Appointment) -> AppointmentStatusHistory | None:
    history = appointment.status_history
    if not history:
        return None
    return max(history, key=lambda h: h.start_date)


def start_initial_status(appointment: Appointment, now: datetime) -> AppointmentStatusHistory:
    if appointment.status_history:
        raise ValidationError("appointment already has a status history; use transition()")
    entry = AppointmentStatusHistory(status=AppointmentStatus.SCHEDULED, start_date=now, end_date=None)
    appointment.status_history.append(entry)
    appointment.status = AppointmentStatus.SCHEDULED
    return entry


def transition(appointment: Appointment, new_status: AppointmentStatus | str, now: datetime) -> AppointmentStatusHistory:
    """
    Close the open interval and open one for `new_status`.

    Any status may follow any other, except SCHEDULED, which only booking
    assigns. If `now` is earlier than the latest interval start (clock skew
    between writers) the change is recorded at that start instead, so no
    interval ever has a negative length. A terminal status gets an interval
    that is closed the moment it is opened.
    """
    try:
        new_status = AppointmentStatus(new_status)
    except ValueError as exc:
        raise ValidationError(f"unknown appointment status: {new_status!r}") from exc
    if new_status == AppointmentStatus.SCHEDULED:
        raise ValidationError("SCHEDULED is only assigned by booking; use RESCHEDULED")

    latest = _latest_entry(appointment)
    at = now
    if latest is not None and now < latest.start_date:
        log.warning(
            "Clock skew on appointment %s: change at %s precedes current status start %s; flooring",
            appointment.id, now.isoformat(), latest.start_date.isoformat(),
        )
        at = latest.start_date

    entry = AppointmentStatusHistory(
        status=new_status,
        start_date=at,
        end_date=at if new_status in TERMINAL_STATUSES else None,
    )
    for open_entry in open_entries(appointment):
        open_entry.end_date = at
    appointment.status_history.append(entry)
    appointment.status = new_status
    return entry


def reconcile_target(appointment: Appointment, now: datetime) -> AppointmentStatus | None:
    """Status a past-due appointment should move to, or None when it is left alone."""
    if appointment.voided:
        return None
    target = RECONCILE_TRANSITIONS.get(appointment.status)
    if target is None:
        return None
    if not appointment.time_slot.end_date < now:
        return None
    return target


@dataclass
class ReconcileFailure:
    appointment_id: uuid.UUID | None
    appointment: Appointment
    error: Exception


@dataclass
class ReconcileReport:
    run_at: datetime
    updated: list[Appointment] = field(default_factory=list)
    failures: list[ReconcileFailure] = field(default_factory=list)

