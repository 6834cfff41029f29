from .errors import (
    KitchenError,
    ValidationError,
    InvalidTransitionError,
    OrderNotFoundError,
    PersistenceError,
    TrackingUnavailableError,
)
from .notifications import ChangeBus, ChangeType, OrderChange, Subscription, apply_change
from .orders import OrderStore, DEFAULT_MENU
from .feed import OrderFeed, OrderState, HttpOrderSource
from .routing import RoutingClient
from .tracking import LivePositionTracker, TrackingSession, EtaEstimator, MarkerAnimator, DeliveryMap

__all__ = [
    "KitchenError",
    "ValidationError",
    "InvalidTransitionError",
    "OrderNotFoundError",
    "PersistenceError",
    "TrackingUnavailableError",
    "ChangeBus",
    "ChangeType",
    "OrderChange",
    "Subscription",
    "apply_change",
    "OrderStore",
    "DEFAULT_MENU",
    "OrderFeed",
    "OrderState",
    "HttpOrderSource",
    "RoutingClient",
    "LivePositionTracker",
    "TrackingSession",
    "EtaEstimator",
    "MarkerAnimator",
    "DeliveryMap",
]
