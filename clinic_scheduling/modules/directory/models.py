import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, ForeignKey
from clinic_scheduling.core.base import Base, VoidableMixin

class Provider(Base, VoidableMixin):
    __tablename__ = "provider"
    name: Mapped[str] = mapped_column(String(160), index=True)

class Location(Base, VoidableMixin):
    __tablename__ = "location"
    name: Mapped[str] = mapped_column(String(160), index=True)
    # hierarchy: a ward inside a building inside a campus...
    parent_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("location.id"), nullable=True, index=True)
