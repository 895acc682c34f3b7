import json
import logging
from redis.asyncio import from_url as redis_from_url
from clinic_scheduling.platform.ports.event_bus import EventBusPort
from clinic_scheduling.core.config import settings

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """XADD per event; each topic gets its own stream unless REDIS_STREAM pins a single one."""

    def __init__(self):
        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL not configured")
        self.redis = redis_from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.stream = settings.REDIS_STREAM

    def stream_for(self, topic: str) -> str:
        return self.stream or topic

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        headers = headers or {}
        stream = self.stream_for(topic)
        fields = {
            "topic": topic,
            "key": key,
            # flat field so consumers can filter without decoding the envelope
            "event_type": headers.get("event_type", ""),
            "value": json.dumps(value, default=str),
            "headers": json.dumps(headers),
        }
        await self.redis.xadd(stream, fields, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug("XADD stream=%s event=%s key=%s", stream, fields["event_type"], key)

    async def close(self) -> None:
        await self.redis.aclose()
