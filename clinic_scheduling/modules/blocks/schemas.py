import uuid
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator

def _aware(dt: datetime) -> datetime:
    # naive datetimes are taken as UTC
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)

class BlockCreate(BaseModel):
    start_date: datetime
    end_date: datetime
    location_id: uuid.UUID
    provider_id: uuid.UUID | None = None
    appointment_type_id: uuid.UUID | None = None
    slot_minutes: int | None = Field(default=None, gt=0)  # None: settings.DEFAULT_SLOT_MINUTES
    enforce_no_overlap: bool = False

    @field_validator("start_date", "end_date")
    @classmethod
    def aware_dates(cls, v: datetime) -> datetime:
        return _aware(v)

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self

class TimeSlotCreate(BaseModel):
    block_id: uuid.UUID
    start_date: datetime
    duration_minutes: int = Field(gt=0)

    @field_validator("start_date")
    @classmethod
    def aware_start(cls, v: datetime) -> datetime:
        return _aware(v)
