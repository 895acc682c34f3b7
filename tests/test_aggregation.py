"""Tests for the per-block occupancy view and the daily schedule."""

import uuid
from datetime import date, timedelta, timezone

import pytest

from clinic_scheduling.modules.appointments.models import AppointmentStatus
from clinic_scheduling.modules.blocks.aggregation import build_scheduled_block, day_bounds, list_daily_scheduled_blocks

from conftest import T0, make_appointment, make_block, make_slot


class TestBuildScheduledBlock:

    def test_slots_sorted_and_filtered(self, store, location_id):
        """Should keep the block's non-voided slots in start order with active appointments only."""
        block = make_block(store, location_id)
        late = make_slot(store, block, start=T0 + timedelta(minutes=30))
        early = make_slot(store, block, start=T0)
        dead = make_slot(store, block, start=T0 + timedelta(minutes=60))
        dead.void("broken chair")
        kept = make_appointment(store, early, minutes=10)
        make_appointment(store, early, minutes=10, status=AppointmentStatus.MISSED)

        view = build_scheduled_block(block, store.slots.values(), store.appointments.values())

        assert [s.time_slot for s in view.slots] == [early, late]
        assert view.slots[0].appointments == (kept,)
        assert [s.remaining_minutes for s in view.slots] == [20, 30]
        assert view.appointments == [kept]
        assert view.remaining_minutes == 50
        assert view.has_appointments

    def test_other_blocks_slots_ignored(self, store, location_id):
        block = make_block(store, location_id)
        other = make_block(store, location_id, provider_id=uuid.uuid4())
        make_slot(store, other)

        view = build_scheduled_block(block, store.slots.values(), [])

        assert view.slots == ()
        assert not view.has_appointments


class TestDailyScheduledBlocks:

    def test_only_blocks_with_active_appointments(self, store, location_id):
        """Should omit blocks whose slots hold no active appointment."""
        busy = make_block(store, location_id)
        idle = make_block(store, location_id, start=T0 + timedelta(hours=5))
        cancelled_only = make_block(store, location_id, start=T0 + timedelta(hours=1), provider_id=uuid.uuid4())
        make_appointment(store, make_slot(store, busy))
        make_slot(store, idle)
        make_appointment(store, make_slot(store, cancelled_only), status=AppointmentStatus.CANCELLED)

        views = list_daily_scheduled_blocks(
            location_id, T0.date(), store.blocks.values(), store.slots.values(), store.appointments.values(),
        )

        assert [v.block for v in views] == [busy]

    def test_day_and_location_scope(self, store, location_id):
        """Should skip other days, other locations and voided blocks."""
        tomorrow = make_block(store, location_id, start=T0 + timedelta(days=1))
        elsewhere = make_block(store, uuid.uuid4())
        voided = make_block(store, location_id, provider_id=uuid.uuid4())
        voided.void("sick")
        for b in (tomorrow, elsewhere, voided):
            make_appointment(store, make_slot(store, b))

        views = list_daily_scheduled_blocks(
            location_id, T0.date(), store.blocks.values(), store.slots.values(), store.appointments.values(),
        )

        assert views == []

    def test_block_crossing_midnight_listed_on_both_days(self, store, location_id):
        overnight = make_block(store, location_id, start=T0.replace(hour=22), hours=4)
        make_appointment(store, make_slot(store, overnight))
        args = (store.blocks.values(), store.slots.values(), store.appointments.values())

        assert len(list_daily_scheduled_blocks(location_id, T0.date(), *args)) == 1
        assert len(list_daily_scheduled_blocks(location_id, T0.date() + timedelta(days=1), *args)) == 1

    def test_day_bounds(self):
        start, end = day_bounds(date(2024, 3, 4))

        assert start.tzinfo is timezone.utc
        assert end - start == timedelta(days=1)
