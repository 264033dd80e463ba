"""
EventPublisher -- fan-out of domain events to the cache port and sinks.

Responsibility:
    After a service operation's unit of work succeeds, the service hands
    its DomainEvent to the publisher.  The publisher first tells the
    CacheInvalidator which keys went stale, then passes the event to every
    registered EventSink (e.g. AuditorService).

Failure modes:
    - Delivery is fire-and-forget.  An exception from the cache port or a
      sink is logged with its traceback and does not fail the operation
      that produced the event.  The remaining sinks still receive it.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

from stock_kernel.domain.events import DomainEvent
from stock_kernel.logging_config import get_logger

logger = get_logger("services.events")


class CacheInvalidator(ABC):
    """Port to whatever cache fronts the read side."""

    @abstractmethod
    def invalidate(self, keys: Sequence[str]) -> None:
        ...


class NullCacheInvalidator(CacheInvalidator):
    """Cache port for deployments without a cache."""

    def invalidate(self, keys: Sequence[str]) -> None:
        return None


class EventSink(ABC):
    """Consumer of domain events (audit trail, notifications, ...)."""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        ...


class EventPublisher:
    """Delivers each event to the cache port, then to every sink in order."""

    def __init__(
        self,
        cache: CacheInvalidator | None = None,
        sinks: Iterable[EventSink] = (),
    ):
        self._cache = cache or NullCacheInvalidator()
        self._sinks: list[EventSink] = list(sinks)

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def publish(self, event: DomainEvent) -> None:
        keys = event.cache_keys
        try:
            self._cache.invalidate(keys)
        except Exception:
            logger.warning(
                "cache_invalidation_failed",
                extra={"action": event.action, "cache_keys": list(keys)},
                exc_info=True,
            )

        for sink in self._sinks:
            try:
                sink.handle(event)
            except Exception:
                logger.error(
                    "event_sink_failed",
                    extra={
                        "action": event.action,
                        "entity_id": str(event.entity_id),
                        "sink": type(sink).__name__,
                    },
                    exc_info=True,
                )

        logger.debug(
            "event_published",
            extra={
                "action": event.action,
                "entity_type": event.entity_type,
                "entity_id": str(event.entity_id),
                "sink_count": len(self._sinks),
            },
        )
