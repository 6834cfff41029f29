from .schemas import (
    CartItem,
    DeliveryInfo,
    LineItem,
    MenuItem,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Position,
    Profile,
    RouteEstimate,
    StatusChange,
    StoreSettings,
)

__all__ = [
    "CartItem",
    "DeliveryInfo",
    "LineItem",
    "MenuItem",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Position",
    "Profile",
    "RouteEstimate",
    "StatusChange",
    "StoreSettings",
]
