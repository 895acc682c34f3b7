from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """
    Outbound side of the outbox relay.

    `topic` names the subject kind (e.g. "scheduling.appointment"), `key` is the
    subject id so consumers can keep per-appointment ordering, and `headers`
    carry the event type.
    """

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

    async def close(self) -> None: ...
