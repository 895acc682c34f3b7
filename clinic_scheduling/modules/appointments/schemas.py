import uuid
from pydantic import BaseModel, Field

# ---- Appointments ----

class AppointmentCreate(BaseModel):
    patient_id: uuid.UUID
    time_slot_id: uuid.UUID
    appointment_type_id: uuid.UUID | None = None
    visit_id: uuid.UUID | None = None
    duration_minutes: int | None = Field(default=None, ge=0)
    reason: str | None = Field(default=None, max_length=255)
