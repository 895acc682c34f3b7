import uuid
from datetime import datetime, timedelta
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP, Integer, ForeignKey, CheckConstraint, Index
from clinic_scheduling.core.base import Base, VoidableMixin
from clinic_scheduling.modules.catalogs.models import AppointmentType
from clinic_scheduling.modules.directory import models as _directory  # noqa: F401  (location / provider FK targets)

class AppointmentBlock(Base, VoidableMixin):
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    end_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    location_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("location.id"))
    # NULL provider = location-only capacity shared by whoever works there
    provider_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("provider.id"), nullable=True)
    appointment_type_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("appointmenttype.id"), nullable=True)

    appointment_type: Mapped[AppointmentType | None] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_block_interval"),
        Index("ix_block_location_start", "location_id", "start_date"),
    )

class TimeSlot(Base, VoidableMixin):
    block_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("appointmentblock.id", ondelete="CASCADE"))
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    duration_minutes: Mapped[int] = mapped_column(Integer)

    block: Mapped[AppointmentBlock] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_timeslot_duration"),
        Index("ix_timeslot_block_start", "block_id", "start_date"),
    )

    @property
    def end_date(self) -> datetime:
        return self.start_date + timedelta(minutes=self.duration_minutes)
