import uuid
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Integer, TIMESTAMP, ForeignKey, Enum as SAEnum, Index
from clinic_scheduling.core.base import Base, VoidableMixin, TimestampedMixin
from clinic_scheduling.modules.catalogs.models import AppointmentType
from clinic_scheduling.modules.blocks.models import TimeSlot


class AppointmentStatus(str, PyEnum):
    SCHEDULED = "SCHEDULED"
    RESCHEDULED = "RESCHEDULED"
    WAITING = "WAITING"
    WALKIN = "WALKIN"
    INCONSULTATION = "INCONSULTATION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    MISSED = "MISSED"


_status_type = SAEnum(AppointmentStatus, native_enum=False, length=24, name="appointment_status")


class Appointment(Base, VoidableMixin):
    patient_id: Mapped[uuid.UUID] = mapped_column(index=True)  # identity lives in the patient directory
    time_slot_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("timeslot.id"), index=True)
    visit_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    appointment_type_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("appointmenttype.id"), nullable=True)

    # own estimate; falls back to the appointment type default when NULL
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # denormalized current status; the history below is the source of truth for timing
    status: Mapped[AppointmentStatus] = mapped_column(_status_type, default=AppointmentStatus.SCHEDULED)

    # filled in by booking; not persisted
    data_quality_warnings = ()

    time_slot: Mapped[TimeSlot] = relationship(lazy="joined")
    appointment_type: Mapped[AppointmentType | None] = relationship(lazy="joined")
    status_history: Mapped[list["AppointmentStatusHistory"]] = relationship(
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentStatusHistory.start_date",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_appointment_status_slot", "status", "time_slot_id"),
    )


class AppointmentStatusHistory(Base, TimestampedMixin):
    appointment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("appointment.id", ondelete="CASCADE"), index=True)
    status: Mapped[AppointmentStatus] = mapped_column(_status_type)
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    end_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)  # NULL while current

    appointment: Mapped[Appointment] = relationship(back_populates="status_history", lazy="joined")

    __table_args__ = (
        Index("ix_status_history_status_start", "status", "start_date"),
    )
