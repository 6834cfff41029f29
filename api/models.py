from datetime import datetime
from pydantic import BaseModel, Field

from models import CartItem, DeliveryInfo, OrderStatus, PaymentMethod, PaymentStatus


class CreateOrderRequest(BaseModel):
    customer_id: str
    customer_name: str | None = None
    items: list[CartItem]
    delivery: DeliveryInfo
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING


class StatusUpdate(BaseModel):
    status: OrderStatus


class PositionUpdate(BaseModel):
    lat: float
    lng: float
    recorded_at: datetime | None = None


class PositionResponse(BaseModel):
    order_id: str
    stored: bool
    tracking: bool


class TrackingResponse(BaseModel):
    order_id: str
    tracking: bool


class EtaResponse(BaseModel):
    order_id: str
    status: OrderStatus
    driver_lat: float | None = None
    driver_lng: float | None = None
    distance_km: float | None = None
    duration_min: float | None = None
    geometry: list[tuple[float, float]] = Field(default_factory=list)
    computed_at: datetime | None = None


class SettingsUpdate(BaseModel):
    is_open: bool


class StatsResponse(BaseModel):
    profiles: int
    menu_items: int
    orders: int
    order_items: int
    status_changes: int
    orders_by_status: dict[str, int] = Field(default_factory=dict)


class ServiceStatus(BaseModel):
    order_generation_active: bool
    driver_simulation_active: bool
    order_interval_seconds: float
    driver_time_scale: float
    poll_interval_seconds: float
    subscribers: int
    tracked_orders: list[str]


class ConfigUpdate(BaseModel):
    order_interval_seconds: float | None = Field(default=None, gt=0)
    driver_time_scale: float | None = Field(default=None, gt=0)
    poll_interval_seconds: float | None = Field(default=None, gt=0)
