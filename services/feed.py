"""
Order Feed - a viewer's synchronized copy of the orders collection

Two independent sources feed one reducer:

- push: change events from the bus (low latency, may drop or miss events)
- poll: a full authoritative snapshot fetched every `poll_interval` seconds

Either source alone keeps the view correct; push only makes it faster. The
feed is the single writer of its OrderState; views read from the state and
never mutate it.
"""

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterable, Awaitable, Callable, Optional

import httpx

from config import HTTP_TIMEOUT_SECONDS, POLL_INTERVAL_SECONDS
from models import Order
from .errors import KitchenError, PersistenceError
from .notifications import OrderChange, apply_change


logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[list[Order]]]
PushFactory = Callable[[], AsyncIterable[OrderChange]]
Listener = Callable[["OrderState"], None]


class OrderState:
    """Local projection of all orders a viewer can see, newest first."""

    def __init__(self):
        self._orders: list[Order] = []
        self.version = 0
        self.last_synced_at: Optional[datetime] = None

    def all(self) -> list[Order]:
        return list(self._orders)

    def get(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None

    def for_customer(self, customer_id: str) -> list[Order]:
        return [o for o in self._orders if o.user_id == customer_id]

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: str) -> bool:
        return self.get(order_id) is not None

    def _set(self, orders: list[Order]) -> bool:
        orders = sorted(orders, key=lambda o: o.created_at, reverse=True)
        if orders == self._orders:
            return False
        self._orders = orders
        self.version += 1
        return True


class OrderFeed:
    """
    Keeps an OrderState in sync from push events and a fallback poller.

    Parameters:
    -----------
    fetch : async () -> list[Order]
        Returns the authoritative snapshot
    push : () -> async iterable of OrderChange, optional
        Opens a change stream; called once per start()
    poll_interval : float
        Seconds between snapshots
    """

    def __init__(
        self,
        fetch: Fetch,
        push: Optional[PushFactory] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        state: Optional[OrderState] = None,
    ):
        self._fetch = fetch
        self._push = push
        self.poll_interval = poll_interval
        self.state = state or OrderState()
        self._listeners: list[Listener] = []
        self._tasks: list[asyncio.Task] = []
        self.poll_failures = 0

    def on_change(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("Order feed listener failed")

    # -------------------------------------------------------------------------
    # Reducer entry points
    # -------------------------------------------------------------------------

    def apply(self, change: OrderChange) -> bool:
        changed = self.state._set(apply_change(self.state.all(), change))
        if changed:
            self._notify()
        return changed

    def apply_snapshot(self, orders: list[Order]) -> bool:
        changed = self.state._set(list(orders))
        self.state.last_synced_at = datetime.now()
        if changed:
            self._notify()
        return changed

    def apply_local(self, order: Order) -> bool:
        """Show an order we just created before any event for it arrives."""
        return self.apply(OrderChange.inserted(order))

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch one snapshot. Returns False if the fetch failed."""
        try:
            orders = await self._fetch()
        except (KitchenError, httpx.HTTPError, OSError) as e:
            self.poll_failures += 1
            logger.warning("Order poll failed, retrying in %.1fs: %s", self.poll_interval, e)
            return False
        self.apply_snapshot(orders)
        return True

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()

    async def _push_loop(self, stream: AsyncIterable[OrderChange]) -> None:
        try:
            async for change in stream:
                self.apply(change)
        except (KitchenError, OSError) as e:
            logger.warning("Push channel lost, relying on polling: %s", e)
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()

    async def start(self) -> None:
        if self._tasks:
            return
        if self._push is not None:
            # Subscribe before the first snapshot so no change falls in between
            self._tasks.append(asyncio.create_task(self._push_loop(self._push())))
        await self.refresh()
        self._tasks.append(asyncio.create_task(self._poll_loop()))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "OrderFeed":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class HttpOrderSource:
    """Snapshot fetcher for viewers that talk to the API over HTTP."""

    def __init__(
        self,
        base_url: str,
        customer_id: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.customer_id = customer_id
        self.timeout = timeout
        self._transport = transport

    async def fetch(self) -> list[Order]:
        params = {"customer_id": self.customer_id} if self.customer_id else None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/orders", params=params)
                response.raise_for_status()
                return [Order.model_validate(o) for o in response.json()]
        except httpx.HTTPError as e:
            raise PersistenceError(f"Could not fetch orders from {self.base_url}: {e}") from e

    async def poll_interval(self) -> Optional[float]:
        """The poll cadence the server advertises on /status, or None if it can't be read."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/status")
                response.raise_for_status()
                return float(response.json()["poll_interval_seconds"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("Could not read poll interval from %s: %s", self.base_url, e)
            return None
