import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from clinic_scheduling.modules.blocks.models import AppointmentBlock


@dataclass(frozen=True)
class ProviderBound:
    provider_id: uuid.UUID


@dataclass(frozen=True)
class LocationOnly:
    pass


CapacityOwner = ProviderBound | LocationOnly


def capacity_owner(block: AppointmentBlock) -> CapacityOwner:
    if block.provider_id is None:
        return LocationOnly()
    return ProviderBound(block.provider_id)


def owners_conflict(a: CapacityOwner, b: CapacityOwner) -> bool:
    # location-only capacity may sit next to anything; only the same provider twice conflicts
    if isinstance(a, ProviderBound) and isinstance(b, ProviderBound):
        return a.provider_id == b.provider_id
    return False


def intervals_intersect(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # half-open [start, end): back-to-back intervals do not intersect
    return a_start < b_end and b_start < a_end


def blocks_overlap(a: AppointmentBlock, b: AppointmentBlock) -> bool:
    return (
        a.location_id == b.location_id
        and intervals_intersect(a.start_date, a.end_date, b.start_date, b.end_date)
        and owners_conflict(capacity_owner(a), capacity_owner(b))
    )


def _same_block(a: AppointmentBlock, b: AppointmentBlock) -> bool:
    return a is b or (a.id is not None and a.id == b.id)


def find_overlaps(candidate: AppointmentBlock, existing: Iterable[AppointmentBlock]) -> list[AppointmentBlock]:
    """Non-voided blocks in `existing` that conflict with `candidate` (never the candidate itself)."""
    return [
        other for other in existing
        if not other.voided and not _same_block(candidate, other) and blocks_overlap(candidate, other)
    ]
