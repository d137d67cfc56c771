"""
Deficiency events handed from change handlers to the integration worker.

An event travels as a topic string "{propertyId}/{deficiencyId}/{kind}/{value}",
e.g. "p1/d1/state/closed". Redis carries them in production; tests use the
in-memory list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from shared.errors import PreconditionError

STATE_EVENT = "state"


@dataclass(frozen=True)
class DeficiencyEvent:
    property_id: str
    deficiency_id: str
    kind: str
    value: str

    @classmethod
    def state_change(cls, property_id: str, deficiency_id: str, state: str) -> "DeficiencyEvent":
        return cls(property_id, deficiency_id, STATE_EVENT, state)

    @classmethod
    def parse(cls, topic: str) -> "DeficiencyEvent":
        parts = topic.split("/")
        if len(parts) != 4 or not all(parts):
            raise PreconditionError(f"malformed deficiency event: {topic!r}")
        return cls(*parts)

    @property
    def topic(self) -> str:
        return f"{self.property_id}/{self.deficiency_id}/{self.kind}/{self.value}"


class EventQueue(Protocol):
    def publish(self, message: str) -> None:
        ...

    def consume(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...


@dataclass
class InMemoryEventQueue:
    items: list[str] = field(default_factory=list)

    def publish(self, message: str) -> None:
        self.items.append(message)

    def consume(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        return self.items.pop(0) if self.items else None


@dataclass
class RedisEventQueue:
    """FIFO over a Redis list: RPUSH to publish, (B)LPOP to consume."""

    url: str
    queue_key: str = "inspections:deficiency-events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, message: str) -> None:
        self.client.rpush(self.queue_key, message)

    def consume(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if not block:
                raw = self.client.lpop(self.queue_key)
            else:
                popped = self.client.blpop(self.queue_key, timeout=timeout or 0)
                raw = popped[1] if popped else None
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and report empty.
            self.client = redis.Redis.from_url(self.url)
            return None
        return raw.decode("utf-8") if raw is not None else None
