"""
Shipment events

Typed events passed from the shipment orchestrator and void reconciler to
their listeners (customs workflow, audit). Subscribers are async callables
registered per event type.

Publishing awaits every subscriber in registration order. A subscriber that
raises is logged and skipped; the publisher's work is already committed and
is never undone by a listener.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaybillCreated:
    """All labels for an order were created and persisted."""
    order_id: int
    tracking_numbers: List[str]
    shipment_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class LabelsVoided:
    """At least one shipment of the order was voided and its data cleaned."""
    order_id: int
    voided_identifiers: List[str]
    tracking_numbers: List[str] = field(default_factory=list)
    partial: bool = False
    voided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[object], Awaitable[None]]


class EventBus:
    """In-process async publish/subscribe."""

    def __init__(self):
        self._subscribers: Dict[Type, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: Type) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: object) -> int:
        """
        Deliver an event to every subscriber of its type.

        Returns:
            Number of subscribers that handled the event without raising
        """
        handlers = list(self._subscribers.get(type(event), []))
        delivered = 0
        for handler in handlers:
            try:
                await handler(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Subscriber {getattr(handler, '__qualname__', handler)} failed "
                    f"for {type(event).__name__}: {e}",
                    exc_info=True,
                )
        logger.debug(f"Published {type(event).__name__} to {delivered}/{len(handlers)} subscribers")
        return delivered
