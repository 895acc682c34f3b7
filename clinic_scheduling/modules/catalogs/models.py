from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer
from clinic_scheduling.core.base import Base, TimestampedMixin

class AppointmentType(Base, TimestampedMixin):
    name: Mapped[str] = mapped_column(String(100), index=True)  # unique among non-retired types (checked in service)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)  # default per-appointment cost
    retired: Mapped[bool] = mapped_column(default=False)
    retire_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
