"""
Live Position Tracker

While an order is out for delivery, the delivering device reports position
samples. Writes to the store are coalesced to at most one per throttle window
(the latest sample wins), and observers recompute route/ETA on their own,
further throttled because each recompute is an external routing call.

Tracking is best-effort throughout: denied geolocation, failed routing calls
and late samples are logged and absorbed, and the order lifecycle never waits
on any of it.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from config import POSITION_THROTTLE_SECONDS, ROUTE_THROTTLE_SECONDS
from models import Order, OrderStatus, Position, RouteEstimate
from .errors import KitchenError, PersistenceError, TrackingUnavailableError
from .geo import interpolate
from .orders import OrderStore
from .routing import RoutingClient


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TrackingSession:
    """Position pipeline for one delivering order."""

    def __init__(
        self,
        order_id: str,
        store: OrderStore,
        destination: Optional[tuple[float, float]] = None,
        throttle_seconds: float = POSITION_THROTTLE_SECONDS,
        clock: Clock = time.monotonic,
        on_deactivate: Optional[Callable[["TrackingSession"], None]] = None,
    ):
        self.order_id = order_id
        self.store = store
        self.destination = destination
        self.throttle_seconds = throttle_seconds
        self._clock = clock
        self._on_deactivate = on_deactivate

        self.active = True
        self.last_position: Optional[Position] = None
        self.samples_received = 0
        self.samples_committed = 0
        self._pending: Optional[Position] = None
        self._last_commit_at: Optional[float] = None
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _due(self) -> bool:
        if self._last_commit_at is None:
            return True
        return self._clock() - self._last_commit_at >= self.throttle_seconds

    def offer(self, lat: float, lng: float, recorded_at: Optional[datetime] = None) -> bool:
        """
        Accept a device sample. Returns True if it was written immediately,
        False if it was held for the next flush or dropped.
        """
        if not self.active:
            return False
        try:
            sample = Position(lat=lat, lng=lng, recorded_at=recorded_at or datetime.now())
        except PydanticValidationError:
            logger.warning("Discarding invalid position (%s, %s) for order %s", lat, lng, self.order_id)
            return False

        self.samples_received += 1
        self._pending = sample
        if self._due():
            return self.flush()
        return False

    def flush(self) -> bool:
        """Write the held sample now. Returns whether a position was stored."""
        if not self.active or self._pending is None:
            return False
        sample, self._pending = self._pending, None

        try:
            stored = self.store.update_driver_position(self.order_id, sample.lat, sample.lng)
        except PersistenceError as e:
            logger.warning("Could not store position for order %s: %s", self.order_id, e)
            if self._pending is None:
                self._pending = sample
            return False

        self._last_commit_at = self._clock()
        if not stored:
            logger.info("Order %s is no longer delivering, stopping tracking", self.order_id)
            self.deactivate()
            return False

        self.last_position = sample
        self.samples_committed += 1
        return True

    def flush_if_due(self) -> bool:
        if self._pending is not None and self._due():
            return self.flush()
        return False

    async def _flush_loop(self) -> None:
        while self.active:
            await asyncio.sleep(self.throttle_seconds)
            self.flush_if_due()

    def start_flush_loop(self) -> None:
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def run(self, source: AsyncIterator[Position]) -> None:
        """
        Consume a continuous position watch until it ends or the session stops.

        A source that raises TrackingUnavailableError (permission denied,
        no fix) just ends tracking; the order carries on without a live marker.
        """
        try:
            async for sample in source:
                if not self.active:
                    break
                self.offer(sample.lat, sample.lng, sample.recorded_at)
        except TrackingUnavailableError as e:
            logger.warning("Geolocation unavailable for order %s: %s", self.order_id, e)
        finally:
            self.flush()

    def deactivate(self) -> None:
        if not self.active:
            return
        self.active = False
        self._pending = None
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None
        if self._on_deactivate is not None:
            self._on_deactivate(self)


class LivePositionTracker:
    """
    Registry of tracking sessions, one per delivering order.

    Sessions are acquired explicitly when the operator starts a delivery and
    released on every exit path: delivered, tracking view closed, shutdown.
    """

    def __init__(
        self,
        store: OrderStore,
        throttle_seconds: float = POSITION_THROTTLE_SECONDS,
        clock: Clock = time.monotonic,
        run_flush_loop: bool = True,
    ):
        self.store = store
        self.throttle_seconds = throttle_seconds
        self._clock = clock
        self.run_flush_loop = run_flush_loop
        self._sessions: dict[str, TrackingSession] = {}

    @property
    def active_orders(self) -> list[str]:
        return list(self._sessions)

    def session(self, order_id: str) -> Optional[TrackingSession]:
        return self._sessions.get(order_id)

    def activate(self, order: Order) -> Optional[TrackingSession]:
        """Start tracking a delivering order. Returns None for any other status."""
        if order.status != OrderStatus.DELIVERING:
            logger.debug("Not tracking order %s in status %s", order.id, order.status.value)
            return None
        existing = self._sessions.get(order.id)
        if existing is not None and existing.active:
            return existing

        destination = (order.lat, order.lng) if order.lat is not None and order.lng is not None else None
        session = TrackingSession(
            order.id,
            self.store,
            destination=destination,
            throttle_seconds=self.throttle_seconds,
            clock=self._clock,
            on_deactivate=self._forget,
        )
        self._sessions[order.id] = session
        if self.run_flush_loop:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                session.start_flush_loop()
        logger.info("Tracking started for order %s", order.order_number)
        return session

    def deactivate(self, order_id: str, clear: bool = True) -> None:
        """Stop tracking and optionally clear the stored driver position."""
        session = self._sessions.pop(order_id, None)
        if session is not None:
            session.deactivate()
            logger.info("Tracking stopped for order %s", order_id)
        if clear:
            try:
                self.store.clear_driver_position(order_id)
            except PersistenceError as e:
                logger.warning("Could not clear driver position for order %s: %s", order_id, e)

    def offer(self, order_id: str, lat: float, lng: float, recorded_at: Optional[datetime] = None) -> bool:
        """Route a device sample to its session. False when the order is not being tracked."""
        session = self._sessions.get(order_id)
        if session is None:
            return False
        return session.offer(lat, lng, recorded_at)

    def _forget(self, session: TrackingSession) -> None:
        # A session that ended itself (order left delivering) leaves the registry
        if self._sessions.get(session.order_id) is session:
            del self._sessions[session.order_id]
            logger.info("Tracking ended for order %s", session.order_id)

    @asynccontextmanager
    async def watching(self, order: Order):
        session = self.activate(order)
        try:
            yield session
        finally:
            self.deactivate(order.id, clear=False)

    def shutdown(self) -> None:
        for order_id in list(self._sessions):
            self.deactivate(order_id, clear=False)


class EtaEstimator:
    """
    Route and ETA for one map view.

    Recomputes at most once per throttle window. A failed routing call keeps
    the previous estimate on display instead of clearing it.
    """

    def __init__(
        self,
        routing: RoutingClient,
        destination: tuple[float, float],
        throttle_seconds: float = ROUTE_THROTTLE_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self.routing = routing
        self.destination = destination
        self.throttle_seconds = throttle_seconds
        self._clock = clock
        self.estimate: Optional[RouteEstimate] = None
        self.failures = 0
        self._last_request_at: Optional[float] = None

    async def update(self, origin: tuple[float, float]) -> Optional[RouteEstimate]:
        now = self._clock()
        if self._last_request_at is not None and now - self._last_request_at < self.throttle_seconds:
            return self.estimate
        self._last_request_at = now

        try:
            self.estimate = await self.routing.route(origin, self.destination)
        except TrackingUnavailableError as e:
            self.failures += 1
            logger.warning("Routing unavailable, keeping previous ETA: %s", e)
        return self.estimate


class MarkerAnimator:
    """
    Smoothly moves a map marker between sparse GPS samples.

    Each new sample starts a glide from wherever the marker is drawn now to the
    new point, lasting as long as the gap between the last two samples.
    """

    def __init__(self, default_interval: float = POSITION_THROTTLE_SECONDS, clock: Clock = time.monotonic):
        self.default_interval = default_interval
        self._clock = clock
        self._start: Optional[tuple[float, float]] = None
        self._target: Optional[tuple[float, float]] = None
        self._started_at = 0.0
        self._duration = 0.0
        self._last_sample_at: Optional[float] = None

    @property
    def target(self) -> Optional[tuple[float, float]]:
        return self._target

    def push(self, lat: float, lng: float) -> None:
        now = self._clock()
        if self._target is None:
            self._start = self._target = (lat, lng)
            self._duration = 0.0
        else:
            self._start = self.position(now)
            self._target = (lat, lng)
            gap = now - self._last_sample_at if self._last_sample_at is not None else 0.0
            self._duration = gap if gap > 0 else self.default_interval
        self._started_at = now
        self._last_sample_at = now

    def position(self, now: Optional[float] = None) -> Optional[tuple[float, float]]:
        if self._target is None:
            return None
        if self._duration <= 0:
            return self._target
        now = self._clock() if now is None else now
        return interpolate(self._start, self._target, (now - self._started_at) / self._duration)

    def reset(self) -> None:
        self._start = self._target = None
        self._last_sample_at = None
        self._duration = 0.0


class DeliveryMap:
    """
    An observer's live map for one order: animated driver marker plus ETA.

    Feed it every version of the order it sees (from push or poll); it
    ignores repeats and clears itself when the driver position goes away.
    """

    def __init__(
        self,
        order: Order,
        routing: Optional[RoutingClient] = None,
        route_throttle_seconds: float = ROUTE_THROTTLE_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self.order_id = order.id
        self.marker = MarkerAnimator(clock=clock)
        self.eta: Optional[EtaEstimator] = None
        if routing is not None and order.lat is not None and order.lng is not None:
            self.eta = EtaEstimator(routing, (order.lat, order.lng), route_throttle_seconds, clock)
        self._last_seen: Optional[tuple[float, float]] = None

    async def observe(self, order: Order) -> Optional[RouteEstimate]:
        if order.id != self.order_id:
            raise KitchenError(f"Map for {self.order_id} cannot show order {order.id}")
        if not order.has_driver_position:
            self.marker.reset()
            self._last_seen = None
            return self.eta.estimate if self.eta else None

        point = (order.driver_lat, order.driver_lng)
        if point != self._last_seen:
            self._last_seen = point
            self.marker.push(*point)
            if self.eta is not None:
                return await self.eta.update(point)
        return self.eta.estimate if self.eta else None
