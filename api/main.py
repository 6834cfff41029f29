"""
Home Kitchen Orders API

Order lifecycle and live delivery tracking for a single home kitchen:
- Customers place orders against the menu
- The operator moves orders through the kitchen and out for delivery
- Driver positions stream in while delivering, customers watch ETA and marker
- Every committed change is pushed to websocket subscribers
"""

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from pathlib import Path
import asyncio
import logging
import random
from datetime import datetime

import uvicorn

from config import DATABASE_PATH, POLL_INTERVAL_SECONDS
from db import init_database, get_table_counts
from generators import CustomerGenerator, OrderGenerator, DriverRouteSimulator
from models import MenuItem, Order, OrderStatus, Profile, StatusChange, StoreSettings
from services import (
    ChangeBus,
    ChangeType,
    DeliveryMap,
    InvalidTransitionError,
    KitchenError,
    LivePositionTracker,
    OrderNotFoundError,
    OrderStore,
    PersistenceError,
    RoutingClient,
    ValidationError,
)
from api.models import (
    ConfigUpdate,
    CreateOrderRequest,
    EtaResponse,
    PositionResponse,
    PositionUpdate,
    ServiceStatus,
    SettingsUpdate,
    StatsResponse,
    StatusUpdate,
    TrackingResponse,
)


logger = logging.getLogger(__name__)


# Global state for the store, tracker and background tasks
class AppState:
    def __init__(self, db_path: Path | str | None = None, routing: RoutingClient | None = None):
        self.configure(db_path, routing)

    def configure(self, db_path: Path | str | None = None, routing: RoutingClient | None = None):
        """(Re)build the store, bus and tracker. Call before the app starts."""
        self.db_path = db_path or DATABASE_PATH
        self.bus = ChangeBus()
        self.store = OrderStore(self.db_path, bus=self.bus)
        self.tracker = LivePositionTracker(self.store)
        self.routing = routing or RoutingClient()

        self.order_generation_active = False
        self.driver_simulation_active = False

        # Generation intervals
        self.order_interval_seconds = 30.0  # New order every N seconds
        self.driver_time_scale = 10.0  # Simulated drivers move N times faster than real time
        self.poll_interval_seconds = POLL_INTERVAL_SECONDS  # Advertised on /status for polling viewers

        # Background tasks
        self.order_task: asyncio.Task | None = None
        self.driver_task: asyncio.Task | None = None
        self.driver_runs: dict[str, asyncio.Task] = {}

        # One live map per order for the ETA endpoint
        self.maps: dict[str, DeliveryMap] = {}

        # Generators (lazy init after DB ready)
        self._customer_gen = None
        self._order_gen = None

    @property
    def customer_gen(self):
        if not self._customer_gen:
            self._customer_gen = CustomerGenerator(self.store, seed=None)  # No seed = random
        return self._customer_gen

    @property
    def order_gen(self):
        if not self._order_gen:
            self._order_gen = OrderGenerator(self.store, seed=None)
        return self._order_gen

    def release(self, order_id: str) -> None:
        self.maps.pop(order_id, None)
        run = self.driver_runs.pop(order_id, None)
        if run:
            run.cancel()


state = AppState()


def http_error(e: KitchenError) -> HTTPException:
    if isinstance(e, OrderNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


async def random_order_generator():
    """Background task: places demo orders at random intervals."""
    while state.order_generation_active:
        try:
            # Add some randomness to interval
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(state.order_interval_seconds * jitter)

            if state.order_generation_active:
                order = state.order_gen.generate_one()
                print(f"[{_timestamp()}] Placed order {order.order_number} (${order.total:.2f})")
        except (KitchenError, ValueError) as e:
            logger.warning("Error generating order: %s", e)
            await asyncio.sleep(5)


async def _drive(order: Order):
    session = state.tracker.session(order.id)
    if session is None:
        return
    simulator = DriverRouteSimulator((order.lat, order.lng))
    print(f"[{_timestamp()}] Driver left for order {order.order_number} ({simulator.distance_km:.1f} km)")
    try:
        await session.run(simulator.watch(state.driver_time_scale))
    finally:
        state.driver_runs.pop(order.id, None)


async def driver_simulator():
    """Background task: streams simulated GPS for every tracked delivering order."""
    while state.driver_simulation_active:
        try:
            for order_id in state.tracker.active_orders:
                if order_id in state.driver_runs:
                    continue
                order = state.store.get_order(order_id)
                if order.lat is None or order.lng is None:
                    continue
                state.driver_runs[order_id] = asyncio.create_task(_drive(order))
        except KitchenError as e:
            logger.warning("Error in driver simulation: %s", e)
        await asyncio.sleep(2)


async def _stop_task(task: asyncio.Task | None):
    if task:
        task.cancel()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    print("🚀 Starting Home Kitchen Orders API...")
    init_database(reset=False, path=state.db_path)

    counts = get_table_counts(state.db_path)

    if counts.get("menu_items", 0) == 0:
        print("🥟 Seeding menu...")
        state.store.seed_menu()

    print("✅ API ready!")
    yield

    # Cleanup
    state.order_generation_active = False
    state.driver_simulation_active = False

    for task in [state.order_task, state.driver_task, *state.driver_runs.values()]:
        await _stop_task(task)
    state.driver_runs.clear()
    state.tracker.shutdown()
    state.bus.close()

    print("👋 Shutting down...")


app = FastAPI(
    title="Home Kitchen Orders API",
    description="Order lifecycle and live delivery tracking for a home kitchen",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health & Status
# =============================================================================

@app.get("/", tags=["Health"])
async def root():
    return {"status": "ok", "service": "home-kitchen-orders"}


@app.get("/stats", response_model=StatsResponse, tags=["Health"])
async def get_stats():
    """Get current database statistics."""
    counts = get_table_counts(state.db_path)
    by_status: dict[str, int] = {}
    try:
        for order in state.store.list_orders():
            by_status[order.status.value] = by_status.get(order.status.value, 0) + 1
    except KitchenError as e:
        raise http_error(e)
    return StatsResponse(
        profiles=counts.get("profiles", 0),
        menu_items=counts.get("menu_items", 0),
        orders=counts.get("orders", 0),
        order_items=counts.get("order_items", 0),
        status_changes=counts.get("order_status_history", 0),
        orders_by_status=by_status,
    )


@app.get("/status", response_model=ServiceStatus, tags=["Health"])
async def get_service_status():
    """Get background service status."""
    return ServiceStatus(
        order_generation_active=state.order_generation_active,
        driver_simulation_active=state.driver_simulation_active,
        order_interval_seconds=state.order_interval_seconds,
        driver_time_scale=state.driver_time_scale,
        poll_interval_seconds=state.poll_interval_seconds,
        subscribers=state.bus.subscriber_count,
        tracked_orders=state.tracker.active_orders,
    )


# =============================================================================
# Menu & Settings
# =============================================================================

@app.get("/menu", response_model=list[MenuItem], tags=["Menu"])
async def list_menu(available_only: bool = False, category: str | None = None):
    try:
        return state.store.list_menu(available_only=available_only, category=category)
    except KitchenError as e:
        raise http_error(e)


@app.get("/settings", response_model=StoreSettings, tags=["Settings"])
async def get_settings():
    try:
        return state.store.get_settings()
    except KitchenError as e:
        raise http_error(e)


@app.patch("/settings", response_model=StoreSettings, tags=["Settings"])
async def update_settings(update: SettingsUpdate):
    """Open or close the kitchen for new orders."""
    try:
        return state.store.set_accepting_orders(update.is_open)
    except KitchenError as e:
        raise http_error(e)


# =============================================================================
# Profiles
# =============================================================================

@app.get("/profiles/{user_id}", response_model=Profile, tags=["Profiles"])
async def get_profile(user_id: str):
    try:
        profile = state.store.get_profile(user_id)
    except KitchenError as e:
        raise http_error(e)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.put("/profiles/{user_id}", response_model=Profile, tags=["Profiles"])
async def put_profile(user_id: str, profile: Profile):
    """Create or update a profile. Loyalty points are only changed by deliveries."""
    if profile.id != user_id:
        raise HTTPException(status_code=400, detail="Profile id does not match the URL")
    try:
        return state.store.upsert_profile(profile)
    except KitchenError as e:
        raise http_error(e)


# =============================================================================
# Orders
# =============================================================================

@app.post("/orders", response_model=Order, status_code=201, tags=["Orders"])
async def create_order(request: CreateOrderRequest):
    """
    Place an order. Prices are taken from the menu at this moment.

    Without coordinates the delivery address is geocoded; an address that
    cannot be located is rejected.
    """
    try:
        customer = state.store.get_profile(request.customer_id)
        if customer is None:
            if not request.customer_name:
                raise ValidationError("Unknown customer; customer_name is required for new customers")
            customer = state.store.upsert_profile(
                Profile(id=request.customer_id, name=request.customer_name)
            )

        delivery = request.delivery
        if not delivery.has_coordinates and delivery.address.strip():
            located = await state.routing.geocode(delivery.address)
            if located:
                delivery = delivery.model_copy(update={"lat": located[0], "lng": located[1]})

        return state.store.create_order(
            customer,
            request.items,
            delivery,
            payment_method=request.payment_method,
            payment_status=request.payment_status,
        )
    except KitchenError as e:
        raise http_error(e)


@app.get("/orders", response_model=list[Order], tags=["Orders"])
async def list_orders(
    customer_id: str | None = None,
    status: list[OrderStatus] | None = Query(default=None),
):
    """List orders, newest first."""
    try:
        return state.store.list_orders(customer_id=customer_id, statuses=status)
    except KitchenError as e:
        raise http_error(e)


@app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
async def get_order(order_id: str):
    try:
        return state.store.get_order(order_id)
    except KitchenError as e:
        raise http_error(e)


@app.get("/orders/{order_id}/history", response_model=list[StatusChange], tags=["Orders"])
async def get_order_history(order_id: str):
    try:
        state.store.get_order(order_id)
        return state.store.status_history(order_id)
    except KitchenError as e:
        raise http_error(e)


@app.patch("/orders/{order_id}/status", response_model=Order, tags=["Orders"])
async def update_order_status(order_id: str, update: StatusUpdate):
    """
    Move an order one step through the lifecycle.

    Entering `delivering` starts position tracking for the order and
    reaching `delivered` stops it.
    """
    try:
        order = state.store.update_status(order_id, update.status)
    except KitchenError as e:
        raise http_error(e)

    if order.status == OrderStatus.DELIVERING:
        state.tracker.activate(order)
    elif order.status == OrderStatus.DELIVERED:
        state.tracker.deactivate(order.id, clear=False)
        state.release(order.id)
    return order


# =============================================================================
# Tracking
# =============================================================================

@app.post("/orders/{order_id}/tracking/start", response_model=TrackingResponse, tags=["Tracking"])
async def start_tracking(order_id: str):
    """Resume tracking a delivering order, e.g. after the server restarted."""
    try:
        order = state.store.get_order(order_id)
    except KitchenError as e:
        raise http_error(e)
    if state.tracker.activate(order) is None:
        raise HTTPException(status_code=409, detail=f"Order is {order.status.value}, not delivering")
    return TrackingResponse(order_id=order_id, tracking=True)


@app.post("/orders/{order_id}/tracking/stop", response_model=TrackingResponse, tags=["Tracking"])
async def stop_tracking(order_id: str):
    """Stop tracking and clear the stored driver position."""
    state.tracker.deactivate(order_id, clear=True)
    state.release(order_id)
    return TrackingResponse(order_id=order_id, tracking=False)


@app.post("/orders/{order_id}/position", response_model=PositionResponse, status_code=202, tags=["Tracking"])
async def post_position(order_id: str, sample: PositionUpdate):
    """
    Accept a device position sample.

    Samples for orders that are not being tracked are ignored. Accepted
    samples are coalesced, so `stored` is False when the sample is held
    for the next write window.
    """
    stored = state.tracker.offer(order_id, sample.lat, sample.lng, sample.recorded_at)
    return PositionResponse(
        order_id=order_id,
        stored=stored,
        tracking=state.tracker.session(order_id) is not None,
    )


@app.get("/orders/{order_id}/eta", response_model=EtaResponse, tags=["Tracking"])
async def get_eta(order_id: str):
    """Driver position and route estimate. A stale estimate is kept while routing is down."""
    try:
        order = state.store.get_order(order_id)
    except KitchenError as e:
        raise http_error(e)

    estimate = None
    if order.status == OrderStatus.DELIVERING:
        live_map = state.maps.get(order_id)
        if live_map is None:
            live_map = state.maps[order_id] = DeliveryMap(order, state.routing)
        estimate = await live_map.observe(order)
    else:
        state.maps.pop(order_id, None)

    return EtaResponse(
        order_id=order.id,
        status=order.status,
        driver_lat=order.driver_lat,
        driver_lng=order.driver_lng,
        distance_km=estimate.distance_km if estimate else None,
        duration_min=estimate.duration_min if estimate else None,
        geometry=estimate.geometry if estimate else [],
        computed_at=estimate.computed_at if estimate else None,
    )


# =============================================================================
# Push Channel
# =============================================================================

async def _close_on_disconnect(websocket: WebSocket, subscription):
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()


@app.websocket("/ws/orders")
async def order_changes(websocket: WebSocket, customer_id: str | None = None):
    """
    Stream committed order changes.

    Sends a snapshot first, then one message per change. With `customer_id`
    only that customer's orders are streamed.
    """
    await websocket.accept()
    subscription = state.bus.subscribe()
    watcher = None
    try:
        orders = state.store.list_orders(customer_id=customer_id)
        visible = {o.id for o in orders}
        await websocket.send_json({
            "type": "snapshot",
            "orders": [o.model_dump(mode="json") for o in orders],
        })
        watcher = asyncio.create_task(_close_on_disconnect(websocket, subscription))
        async for change in subscription:
            if customer_id:
                if change.type == ChangeType.INSERT and change.fields.get("user_id") == customer_id:
                    visible.add(change.order_id)
                if change.order_id not in visible:
                    continue
            await websocket.send_json(change.model_dump(mode="json"))
        if not watcher.done():
            # Bus closed on shutdown
            await websocket.close()
    except WebSocketDisconnect:
        pass
    except KitchenError as e:
        logger.warning("Closing order stream: %s", e)
        await websocket.close(code=1011)
    finally:
        subscription.close()
        if watcher:
            watcher.cancel()


# =============================================================================
# Background Service Control
# =============================================================================

@app.post("/customers/generate", response_model=list[Profile], tags=["Services"])
async def generate_customers(count: int = Query(default=5, ge=1, le=100)):
    """Generate demo customer profiles near the kitchen."""
    customers = state.customer_gen.generate_batch(count)
    try:
        return state.customer_gen.save_to_db(customers)
    except KitchenError as e:
        raise http_error(e)


@app.post("/services/orders/start", tags=["Services"])
async def start_order_generation():
    """Start automatic demo order placement."""
    if state.order_generation_active:
        return {"status": "already_running"}

    state.order_generation_active = True
    state.order_task = asyncio.create_task(random_order_generator())
    return {
        "status": "started",
        "interval_seconds": state.order_interval_seconds,
    }


@app.post("/services/orders/stop", tags=["Services"])
async def stop_order_generation():
    """Stop automatic demo order placement."""
    state.order_generation_active = False
    await _stop_task(state.order_task)
    state.order_task = None
    return {"status": "stopped"}


@app.post("/services/drivers/start", tags=["Services"])
async def start_driver_simulation():
    """Start simulated driver GPS for every tracked delivering order."""
    if state.driver_simulation_active:
        return {"status": "already_running"}

    state.driver_simulation_active = True
    state.driver_task = asyncio.create_task(driver_simulator())
    return {
        "status": "started",
        "time_scale": state.driver_time_scale,
    }


@app.post("/services/drivers/stop", tags=["Services"])
async def stop_driver_simulation():
    """Stop simulated drivers. Tracking sessions stay open."""
    state.driver_simulation_active = False
    await _stop_task(state.driver_task)
    state.driver_task = None
    for order_id in list(state.driver_runs):
        await _stop_task(state.driver_runs.pop(order_id))
    return {"status": "stopped"}


@app.patch("/services/config", tags=["Services"])
async def update_service_config(config: ConfigUpdate):
    """Update service intervals."""
    if config.order_interval_seconds is not None:
        state.order_interval_seconds = config.order_interval_seconds
    if config.driver_time_scale is not None:
        state.driver_time_scale = config.driver_time_scale
    if config.poll_interval_seconds is not None:
        state.poll_interval_seconds = config.poll_interval_seconds

    return {
        "order_interval_seconds": state.order_interval_seconds,
        "driver_time_scale": state.driver_time_scale,
        "poll_interval_seconds": state.poll_interval_seconds,
    }


if __name__ == "__main__":
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=False)
