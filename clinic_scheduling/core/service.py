from datetime import datetime
from typing import Callable

from clinic_scheduling.core.base import utcnow
from clinic_scheduling.platform.ports.scheduling_store import SchedulingStore


class StoreService:
    """Shared wiring for the scheduling services: one store (unit of work) and a clock."""

    def __init__(self, store: SchedulingStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
