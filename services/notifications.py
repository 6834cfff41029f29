"""
Change Notification Bridge (server side)

Every committed mutation on the orders collection is published as an
`OrderChange` to all connected viewers. Publishing never blocks the writer:
each subscriber owns a bounded queue and a full queue drops its oldest event.
Viewers also poll the full collection, so a dropped or missed event is
repaired within one poll interval.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, Field

from config import SUBSCRIBER_QUEUE_SIZE
from models import Order


logger = logging.getLogger(__name__)

# Fields an UPDATE event may carry. Line items are never part of an update.
MERGEABLE_FIELDS = frozenset({
    "status",
    "payment_status",
    "driver_lat",
    "driver_lng",
    "updated_at",
    "delivered_at",
})


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


class OrderChange(BaseModel):
    type: ChangeType
    order_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    committed_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def inserted(cls, order: Order) -> "OrderChange":
        return cls(type=ChangeType.INSERT, order_id=order.id, fields=order.model_dump(mode="json"))

    @classmethod
    def updated(cls, order_id: str, **fields) -> "OrderChange":
        return cls(type=ChangeType.UPDATE, order_id=order_id, fields=fields)


_CLOSED = object()


class Subscription:
    """A viewer's handle on the change stream. Iterate it to receive changes."""

    def __init__(self, bus: "ChangeBus", maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _offer(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            if item is not _CLOSED:
                self.dropped += 1
                logger.warning("Subscriber queue full, dropped oldest change (%d total)", self.dropped)
        self._queue.put_nowait(item)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> OrderChange | None:
        """Next change, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        return None if item is _CLOSED else item

    def get_nowait(self) -> OrderChange | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)
        self._offer(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> OrderChange:
        change = await self.get()
        if change is None:
            raise StopAsyncIteration
        return change

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeBus:
    """In-process publish/subscribe channel for the orders collection."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.queue_size)
        self._subscribers.append(sub)
        logger.debug("Viewer subscribed (%d connected)", len(self._subscribers))
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.debug("Viewer unsubscribed (%d connected)", len(self._subscribers))

    def publish(self, change: OrderChange) -> None:
        """Fan a change out to every subscriber without waiting on any of them."""
        self.published += 1
        for sub in list(self._subscribers):
            sub._offer(change)

    def close(self) -> None:
        for sub in list(self._subscribers):
            sub.close()


def apply_change(orders: Iterable[Order], change: OrderChange) -> list[Order]:
    """
    Apply one change event to a local order list and return the new list.

    Inserts are idempotent by order id. Updates merge only the fields the
    event carries, so locally known line items are never overwritten.
    Updates for unknown ids are ignored until the next snapshot.
    """
    current = list(orders)

    if change.type == ChangeType.INSERT:
        if any(o.id == change.order_id for o in current):
            return current
        return [Order.model_validate(change.fields)] + current

    fields = {k: v for k, v in change.fields.items() if k in MERGEABLE_FIELDS}
    result = []
    for order in current:
        if order.id == change.order_id and fields:
            order = Order.model_validate({**order.model_dump(), **fields})
        result.append(order)
    return result
