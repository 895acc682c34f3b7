import uuid
import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Callable

from clinic_scheduling.core.base import utcnow
from clinic_scheduling.core.config import settings
from clinic_scheduling.core.logging import run_id_ctx
from clinic_scheduling.modules.appointments.lifecycle import ReconcileReport
from clinic_scheduling.modules.appointments.service import AppointmentService
from clinic_scheduling.platform.adapters.store_sqlalchemy import sql_store_scope
from clinic_scheduling.platform.ports.scheduling_store import SchedulingStore

log = logging.getLogger("job.reconcile")

StoreScope = Callable[[], AbstractAsyncContextManager[SchedulingStore]]


async def reconcile_once(store_scope: StoreScope = sql_store_scope,
                         clock: Callable[[], datetime] = utcnow) -> ReconcileReport:
    """One reconciliation pass in a fresh unit of work, tagged with its own run id in the logs."""
    token = run_id_ctx.set(uuid.uuid4().hex[:12])
    try:
        async with store_scope() as store:
            report = await AppointmentService(store, clock=clock).reconcile_past_due()
        for failure in report.failures:
            log.warning("Appointment %s not reconciled: %s", failure.appointment_id, failure.error)
        return report
    finally:
        run_id_ctx.reset(token)


async def run_reconciliation_loop(interval_seconds: float | None = None, store_scope: StoreScope = sql_store_scope,
                                  clock: Callable[[], datetime] = utcnow):
    interval = interval_seconds if interval_seconds is not None else settings.RECONCILE_INTERVAL_SECONDS
    log.info("Reconciliation loop started (every %ss)", interval)
    try:
        while True:
            try:
                await reconcile_once(store_scope, clock)
            except Exception:
                log.exception("Reconciliation pass failed")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        log.info("Reconciliation loop cancelled; shutting down")
        raise
