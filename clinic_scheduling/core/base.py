import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import DeclarativeBase, declared_attr, Mapped, mapped_column
from sqlalchemy import text, TIMESTAMP, String

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Base(DeclarativeBase):
    pass

class TimestampedMixin:
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"), onupdate=utcnow
    )
    version: Mapped[int] = mapped_column(default=1)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()

class VoidableMixin(TimestampedMixin):
    # soft delete; purge is the only hard delete
    voided: Mapped[bool] = mapped_column(default=False)
    voided_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def void(self, reason: str, at: datetime | None = None) -> None:
        self.voided = True
        self.voided_at = at or utcnow()
        self.void_reason = reason

    def unvoid(self) -> None:
        self.voided = False
        self.voided_at = None
        self.void_reason = None

def ref_id(obj, relation: str) -> uuid.UUID | None:
    # id of a many-to-one target whether or not the FK column has been flushed yet
    target = getattr(obj, relation, None)
    if target is not None:
        return target.id
    return getattr(obj, f"{relation}_id", None)
