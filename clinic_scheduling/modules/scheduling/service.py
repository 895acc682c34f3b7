from clinic_scheduling.modules.appointments.service import AppointmentService
from clinic_scheduling.modules.blocks.service import BlockService
from clinic_scheduling.modules.catalogs.service import CatalogService


class SchedulingService(AppointmentService, BlockService, CatalogService):
    """
    In-process entry point of the scheduling engine.

    Usage:
        async with sql_store_scope() as store:
            svc = SchedulingService(store)
            appt = await svc.book_appointment(Appointment(patient_id=..., time_slot_id=...))

    Every mutating call commits the store's unit of work before returning.
    """
