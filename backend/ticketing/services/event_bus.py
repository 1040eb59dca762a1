"""
In-process domain event bus.

The reconciler and the door validator publish events here; they hold no
reference to sockets, mail servers or other delivery channels. Subscribers
are registered at startup (see main.lifespan). A failing subscriber is
logged and does not affect other subscribers or the publisher.
"""

import json
from typing import Awaitable, Callable, Iterable

from ticketing.core.config import get_settings
from ticketing.core.logging import get_logger
from ticketing.core.metrics import redis_publish_errors
from ticketing.infrastructure.redis_client import get_redis
from ticketing.schemas.domain_events import DomainEvent

logger = get_logger(__name__)
settings = get_settings()

Handler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> Handler:
        if handler not in self._handlers:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "domain_event_handler_failed",
                    event_type=event.event_type,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )

    async def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            await self.publish(event)


event_bus = EventBus()


def get_event_bus() -> EventBus:
    return event_bus


async def publish_to_redis(event: DomainEvent) -> None:
    """Forward a domain event to the Redis pub/sub channel, best effort."""
    client = await get_redis()
    if not client:
        return
    try:
        await client.publish(settings.DOMAIN_EVENTS_CHANNEL, json.dumps(event.to_message()))
        logger.debug("domain_event_published", event_type=event.event_type)
    except Exception as e:
        redis_publish_errors.inc()
        logger.error("domain_event_publish_failed", event_type=event.event_type, error=str(e))
