import uuid
import logging
from datetime import date, datetime, timedelta, timezone, tzinfo

from clinic_scheduling.core.base import ref_id
from clinic_scheduling.core.config import settings
from clinic_scheduling.core.errors import BlockOverlapError, NotFoundError, ValidationError
from clinic_scheduling.core.service import StoreService
from clinic_scheduling.modules.appointments.capacity import remaining_minutes
from clinic_scheduling.modules.blocks import aggregation
from clinic_scheduling.modules.blocks.aggregation import ScheduledAppointmentBlock, day_bounds
from clinic_scheduling.modules.blocks.models import AppointmentBlock, TimeSlot
from clinic_scheduling.modules.blocks.overlap import find_overlaps
from clinic_scheduling.modules.blocks.schemas import BlockCreate, TimeSlotCreate
from clinic_scheduling.modules.directory.hierarchy import location_descendants

logger = logging.getLogger(__name__)


def carve_time_slots(block: AppointmentBlock, slot_minutes: int) -> list[TimeSlot]:
    """Back-to-back slots of `slot_minutes` from the block start; a shorter tail is left uncarved."""
    if slot_minutes is None or slot_minutes <= 0:
        raise ValidationError("slot_minutes must be positive")
    step = timedelta(minutes=slot_minutes)
    slots = []
    start = block.start_date
    while start + step <= block.end_date:
        slots.append(TimeSlot(block=block, start_date=start, duration_minutes=slot_minutes))
        start += step
    return slots


def _validate_block(block: AppointmentBlock) -> None:
    if block.start_date is None or block.end_date is None:
        raise ValidationError("appointment block needs start_date and end_date")
    if block.start_date >= block.end_date:
        raise ValidationError("appointment block start_date must be before end_date")
    if block.location_id is None:
        raise ValidationError("appointment block needs a location")


def _outside_block(time_slot: TimeSlot, block: AppointmentBlock) -> bool:
    return time_slot.start_date < block.start_date or time_slot.end_date > block.end_date


class BlockService(StoreService):

    # ---- Lookups ----
    async def _block(self, block: AppointmentBlock | uuid.UUID, *, include_voided: bool = False) -> AppointmentBlock:
        if isinstance(block, AppointmentBlock):
            return block
        obj = await self.store.get_block(block, include_voided=include_voided)
        if obj is None:
            raise NotFoundError("appointment_block", block)
        return obj

    async def _time_slot(self, time_slot: TimeSlot | uuid.UUID, *, include_voided: bool = False) -> TimeSlot:
        if isinstance(time_slot, TimeSlot):
            return time_slot
        obj = await self.store.get_time_slot(time_slot, include_voided=include_voided)
        if obj is None:
            raise NotFoundError("time_slot", time_slot)
        return obj

    async def get_location_descendants(self, location_id: uuid.UUID) -> set[uuid.UUID]:
        return await location_descendants(location_id, self.store.list_child_location_ids)

    async def _location_scope(self, location_id: uuid.UUID | None, include_descendants: bool) -> list[uuid.UUID] | None:
        if location_id is None:
            return None
        if not include_descendants:
            return [location_id]
        return [location_id, *await self.get_location_descendants(location_id)]

    async def get_appointment_blocks(self, from_date: datetime | None = None, to_date: datetime | None = None, *,
                                     location_id: uuid.UUID | None = None, provider_id: uuid.UUID | None = None,
                                     appointment_type_id: uuid.UUID | None = None,
                                     include_descendants: bool = False) -> list[AppointmentBlock]:
        if from_date is not None and to_date is not None and from_date >= to_date:
            raise ValidationError("from_date must be before to_date")
        return list(await self.store.list_blocks(
            from_date=from_date, to_date=to_date,
            location_ids=await self._location_scope(location_id, include_descendants),
            provider_id=provider_id, appointment_type_id=appointment_type_id,
        ))

    # ---- Blocks ----
    async def find_overlaps(self, candidate: AppointmentBlock) -> list[AppointmentBlock]:
        _validate_block(candidate)
        same_place = await self.store.list_blocks(
            from_date=candidate.start_date, to_date=candidate.end_date, location_ids=[candidate.location_id],
        )
        return find_overlaps(candidate, same_place)

    async def save_block(self, block: AppointmentBlock, *, enforce_no_overlap: bool = False) -> tuple[AppointmentBlock, list[AppointmentBlock]]:
        """
        Validate and persist a block. Overlaps with other blocks are returned
        alongside it; with `enforce_no_overlap` they raise BlockOverlapError
        before anything is written.
        """
        _validate_block(block)
        if block.id is not None:
            # an edited interval must still hold every live slot of the block
            stranded = [s for s in await self.store.list_time_slots([block.id]) if _outside_block(s, block)]
            if stranded:
                raise ValidationError(
                    f"appointment block {block.id} would no longer contain {len(stranded)} of its time slots"
                )
        overlaps = await self.find_overlaps(block)
        if overlaps:
            if enforce_no_overlap:
                raise BlockOverlapError(block.id, overlaps)
            logger.warning("Appointment block %s overlaps %d block(s)", block.id, len(overlaps))

        if block.id is None:
            await self.store.add_block(block)
        else:
            await self.store.flush()
        await self.store.enqueue_event(
            "BLOCK_SAVED", "appointment_block", block.id,
            {
                "location_id": str(block.location_id),
                "provider_id": str(block.provider_id) if block.provider_id else None,
                "start": block.start_date.isoformat(),
                "end": block.end_date.isoformat(),
                "overlaps": [str(o.id) for o in overlaps],
            },
        )
        await self.store.commit()
        return block, overlaps

    async def create_block(self, payload: BlockCreate) -> tuple[AppointmentBlock, list[TimeSlot], list[AppointmentBlock]]:
        """Save a block and carve it into slots in one unit of work."""
        block = AppointmentBlock(
            start_date=payload.start_date,
            end_date=payload.end_date,
            location_id=payload.location_id,
            provider_id=payload.provider_id,
            appointment_type_id=payload.appointment_type_id,
        )
        _validate_block(block)
        overlaps = await self.find_overlaps(block)
        if overlaps and payload.enforce_no_overlap:
            raise BlockOverlapError(None, overlaps)
        slots = carve_time_slots(block, payload.slot_minutes or settings.DEFAULT_SLOT_MINUTES)
        await self.store.add_block(block)
        for slot in slots:
            await self.store.add_time_slot(slot)
        await self.store.enqueue_event(
            "BLOCK_SAVED", "appointment_block", block.id,
            {
                "location_id": str(block.location_id),
                "provider_id": str(block.provider_id) if block.provider_id else None,
                "start": block.start_date.isoformat(),
                "end": block.end_date.isoformat(),
                "slots": len(slots),
                "overlaps": [str(o.id) for o in overlaps],
            },
        )
        await self.store.commit()
        logger.info("Created appointment block %s with %d slot(s)", block.id, len(slots))
        return block, slots, overlaps

    async def void_block(self, block: AppointmentBlock | uuid.UUID, reason: str) -> AppointmentBlock:
        if not reason or not reason.strip():
            raise ValidationError("a void reason is required")
        obj = await self._block(block)
        at = self.clock()
        obj.void(reason.strip(), at)
        slots = await self.store.list_time_slots([obj.id])
        for slot in slots:
            slot.void(reason.strip(), at)
        await self.store.flush()
        await self.store.enqueue_event(
            "BLOCK_VOIDED", "appointment_block", obj.id,
            {"reason": obj.void_reason, "time_slots": [str(s.id) for s in slots]},
        )
        await self.store.commit()
        return obj

    async def unvoid_block(self, block: AppointmentBlock | uuid.UUID) -> AppointmentBlock:
        obj = await self._block(block, include_voided=True)
        voided_at = obj.voided_at
        obj.unvoid()
        # bring back only the slots that went down with the block
        slots = await self.store.list_time_slots([obj.id], include_voided=True)
        for slot in slots:
            if slot.voided and voided_at is not None and slot.voided_at == voided_at:
                slot.unvoid()
        await self.store.flush()
        await self.store.enqueue_event("BLOCK_UNVOIDED", "appointment_block", obj.id, {})
        await self.store.commit()
        return obj

    async def purge_block(self, block: AppointmentBlock | uuid.UUID) -> None:
        obj = await self._block(block, include_voided=True)
        slots = await self.store.list_time_slots([obj.id], include_voided=True)
        booked = await self.store.list_appointments_in_slots([s.id for s in slots], include_voided=True)
        if booked:
            raise ValidationError(f"appointment block {obj.id} still has {len(booked)} appointment(s)")
        block_id = obj.id
        await self.store.delete_block(obj)
        await self.store.enqueue_event("BLOCK_PURGED", "appointment_block", block_id, {})
        await self.store.commit()
        logger.info("Purged appointment block %s", block_id)

    # ---- Time slots ----
    async def save_time_slot(self, time_slot: TimeSlot) -> TimeSlot:
        if time_slot.duration_minutes is None or time_slot.duration_minutes <= 0:
            raise ValidationError("time slot duration must be positive")
        if time_slot.start_date is None:
            raise ValidationError("time slot needs a start_date")
        block_id = ref_id(time_slot, "block")
        if block_id is None:
            raise ValidationError("time slot needs an appointment block")
        block = time_slot.block if time_slot.block is not None else await self._block(block_id)
        if _outside_block(time_slot, block):
            raise ValidationError(f"time slot must lie within appointment block {block.id}")
        time_slot.block = block

        if time_slot.id is None:
            await self.store.add_time_slot(time_slot)
        else:
            await self.store.flush()
        await self.store.commit()
        return time_slot

    async def create_time_slot(self, payload: TimeSlotCreate) -> TimeSlot:
        block = await self._block(payload.block_id)
        slot = TimeSlot(block=block, start_date=payload.start_date, duration_minutes=payload.duration_minutes)
        return await self.save_time_slot(slot)

    async def void_time_slot(self, time_slot: TimeSlot | uuid.UUID, reason: str) -> TimeSlot:
        # appointments in the slot keep their state
        if not reason or not reason.strip():
            raise ValidationError("a void reason is required")
        obj = await self._time_slot(time_slot)
        obj.void(reason.strip(), self.clock())
        await self.store.flush()
        await self.store.commit()
        return obj

    async def unvoid_time_slot(self, time_slot: TimeSlot | uuid.UUID) -> TimeSlot:
        obj = await self._time_slot(time_slot, include_voided=True)
        obj.unvoid()
        await self.store.flush()
        await self.store.commit()
        return obj

    async def purge_time_slot(self, time_slot: TimeSlot | uuid.UUID) -> None:
        obj = await self._time_slot(time_slot, include_voided=True)
        booked = await self.store.list_appointments_in_slots([obj.id], include_voided=True)
        if booked:
            raise ValidationError(f"time slot {obj.id} still has {len(booked)} appointment(s)")
        await self.store.delete_time_slot(obj)
        await self.store.commit()

    async def get_time_slots_by_constraints(self, appointment_type_id: uuid.UUID | None, from_date: datetime | None = None,
                                            to_date: datetime | None = None, *, provider_id: uuid.UUID | None = None,
                                            location_id: uuid.UUID | None = None,
                                            include_full: bool = False) -> list[TimeSlot]:
        """
        Bookable slots for an appointment type. Without `include_full`, only
        slots with at least the type's duration still unallocated are returned.
        """
        if from_date is None:
            from_date = self.clock()
        if to_date is not None and from_date >= to_date:
            raise ValidationError("from_date must be before to_date")
        needed = 0
        if appointment_type_id is not None:
            appt_type = await self.store.get_appointment_type(appointment_type_id)
            if appt_type is None:
                raise NotFoundError("appointment_type", appointment_type_id)
            needed = appt_type.duration_minutes or 0

        blocks = await self.get_appointment_blocks(
            from_date, to_date, location_id=location_id, provider_id=provider_id,
        )
        if appointment_type_id is not None:
            # untyped blocks accept any appointment type
            blocks = [b for b in blocks if b.appointment_type_id in (None, appointment_type_id)]
        slots = list(await self.store.list_time_slots([b.id for b in blocks], from_date=from_date, to_date=to_date))
        if include_full or not slots:
            return slots
        booked = await self.store.list_appointments_in_slots([s.id for s in slots])
        return [s for s in slots if remaining_minutes(s, booked) >= needed]

    # ---- Aggregated views ----
    async def build_scheduled_block(self, block: AppointmentBlock | uuid.UUID) -> ScheduledAppointmentBlock:
        obj = await self._block(block)
        slots = await self.store.list_time_slots([obj.id])
        appointments = await self.store.list_appointments_in_slots([s.id for s in slots])
        return aggregation.build_scheduled_block(obj, slots, appointments)

    async def list_daily_scheduled_blocks(self, location_id: uuid.UUID, day: date, *, include_descendants: bool = False,
                                          tz: tzinfo = timezone.utc) -> list[ScheduledAppointmentBlock]:
        if location_id is None:
            raise ValidationError("location is required")
        day_start, day_end = day_bounds(day, tz)
        locations = await self._location_scope(location_id, include_descendants)
        blocks = await self.store.list_blocks(from_date=day_start, to_date=day_end, location_ids=locations)
        slots = await self.store.list_time_slots([b.id for b in blocks])
        appointments = await self.store.list_appointments_in_slots([s.id for s in slots])
        out: list[ScheduledAppointmentBlock] = []
        for loc in locations:
            out.extend(aggregation.list_daily_scheduled_blocks(loc, day, blocks, slots, appointments, tz))
        return sorted(out, key=lambda sb: sb.block.start_date)
