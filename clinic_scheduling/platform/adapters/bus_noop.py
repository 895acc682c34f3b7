import logging
from clinic_scheduling.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Drops scheduling events after logging them; the default when no broker is configured."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        event_type = (headers or {}).get("event_type", "-")
        log.info("Dropped %s for %s on %s (outbox %s)", event_type, key, topic, value.get("outbox_id", "-"))

    async def close(self) -> None:
        return None
