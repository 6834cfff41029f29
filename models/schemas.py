from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COOKING = "cooking"
    READY = "ready"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class MenuItem(BaseModel):
    id: str
    name: str
    category: str
    price: float = Field(ge=0)
    image: str = ""
    description: Optional[str] = None
    prep_time: int = 25  # minutes
    is_available: bool = True


class Profile(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    points: int = 0
    avatar: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class CartItem(BaseModel):
    menu_item_id: str
    qty: int = Field(ge=1)


class DeliveryInfo(BaseModel):
    address: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    special_instructions: str = ""

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class LineItem(BaseModel):
    menu_item_id: Optional[str] = None
    name: str
    qty: int = Field(ge=1)
    price: float = Field(ge=0)  # unit price at order time

    @property
    def line_total(self) -> float:
        return self.qty * self.price


class Order(BaseModel):
    id: str
    order_number: str
    user_id: str
    user_name: str
    items: list[LineItem] = Field(default_factory=list)
    subtotal: float
    delivery_fee: float
    total: float
    status: OrderStatus = OrderStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING
    special_instructions: str = ""
    delivery_address: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    driver_lat: Optional[float] = None
    driver_lng: Optional[float] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def has_driver_position(self) -> bool:
        return self.driver_lat is not None and self.driver_lng is not None

    @property
    def is_active(self) -> bool:
        return self.status not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class StoreSettings(BaseModel):
    is_open: bool = True
    updated_at: Optional[datetime] = None


class StatusChange(BaseModel):
    order_id: str
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    changed_at: datetime


class Position(BaseModel):
    """A single device geolocation sample."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    recorded_at: datetime = Field(default_factory=datetime.now)


class RouteEstimate(BaseModel):
    distance_km: float
    duration_min: float
    geometry: list[tuple[float, float]] = Field(default_factory=list)  # (lat, lng) pairs
    computed_at: datetime = Field(default_factory=datetime.now)
