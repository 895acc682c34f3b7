import uuid


class SchedulingError(Exception):
    """
    Base class for every error raised by the scheduling engine.
    """


class ValidationError(SchedulingError):
    """
    Malformed input (missing required field, end before start, non-positive duration...).
    Raised before anything is written.
    """


class NotFoundError(SchedulingError):
    """
    Referenced slot / block / appointment does not exist or is not visible.
    """

    def __init__(self, entity: str, entity_id: uuid.UUID | str | None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class AlreadyExistsError(SchedulingError):
    """
    Booking an appointment that already has an identity (use reschedule),
    or saving a duplicate appointment type name.
    """


class CapacityExceededError(SchedulingError):
    """
    Booking would exceed the slot capacity without explicit overbook consent.
    """

    def __init__(self, time_slot_id: uuid.UUID | None, requested: int, remaining: int):
        self.time_slot_id = time_slot_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"time slot {time_slot_id} is full: requested {requested} min, remaining {remaining} min"
        )


class TimeSlotFullError(CapacityExceededError):
    pass


class BlockOverlapError(SchedulingError):
    """
    Raised only when the caller asked save_block to enforce the overlap guard.
    """

    def __init__(self, block_id: uuid.UUID | None, overlaps: list):
        self.block_id = block_id
        self.overlaps = overlaps
        super().__init__(f"appointment block {block_id} overlaps {len(overlaps)} existing block(s)")


class PersistenceError(SchedulingError):
    """
    Failure reported by the persistence collaborator, re-raised with the entity involved.
    """

    def __init__(self, operation: str, entity: str, entity_id: uuid.UUID | str | None, cause: Exception):
        self.operation = operation
        self.entity = entity
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(f"{operation} failed for {entity} {entity_id}: {cause}")


class DataQualityWarning(UserWarning):
    """
    Non-fatal: e.g. an appointment with no duration anywhere, counted as zero minutes.
    """

    def __init__(self, message: str, appointment_id: uuid.UUID | None = None):
        self.appointment_id = appointment_id
        super().__init__(message)
