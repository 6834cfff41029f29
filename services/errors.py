"""
Error taxonomy for the order lifecycle.

Validation and transition errors are raised before any write. Persistence
errors wrap storage failures. Tracking errors are non-fatal and are absorbed
by the tracker; callers never see them as blocking failures.
"""


class KitchenError(Exception):
    """Base class for all order service errors."""


class ValidationError(KitchenError):
    """Order creation input was rejected (empty cart, no location, kitchen closed...)."""


class InvalidTransitionError(KitchenError):
    def __init__(self, order_id: str | None, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")


class OrderNotFoundError(KitchenError, LookupError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class PersistenceError(KitchenError):
    """The backing store failed to read or write."""


class TrackingUnavailableError(KitchenError):
    """Location permission denied or the routing service failed."""
