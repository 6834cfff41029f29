"""
Order Status State Machine

pending -> accepted -> cooking -> ready -> delivering -> delivered

Forward moves are exactly one step. `cancelled` is reachable only from
`pending`. `delivered` and `cancelled` are terminal. Entering `delivering`
starts live tracking and leaving it stops tracking.
"""

from models import OrderStatus
from .errors import InvalidTransitionError


ORDER_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.COOKING,
    OrderStatus.READY,
    OrderStatus.DELIVERING,
    OrderStatus.DELIVERED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

STATUS_LABELS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.ACCEPTED: "Accepted",
    OrderStatus.COOKING: "Cooking",
    OrderStatus.READY: "Ready",
    OrderStatus.DELIVERING: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}


def next_status(status: OrderStatus) -> OrderStatus | None:
    """The single forward step from `status`, or None at the end of the flow."""
    status = OrderStatus(status)
    if status not in ORDER_FLOW:
        return None
    idx = ORDER_FLOW.index(status)
    if idx + 1 >= len(ORDER_FLOW):
        return None
    return ORDER_FLOW[idx + 1]


def allowed_transitions(status: OrderStatus) -> frozenset[OrderStatus]:
    status = OrderStatus(status)
    if status in TERMINAL_STATUSES:
        return frozenset()
    allowed = {next_status(status)}
    if status == OrderStatus.PENDING:
        allowed.add(OrderStatus.CANCELLED)
    return frozenset(s for s in allowed if s is not None)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return OrderStatus(new) in allowed_transitions(current)


def check_transition(current: OrderStatus, new: OrderStatus, order_id: str | None = None) -> OrderStatus:
    """Raise InvalidTransitionError unless `current -> new` is legal; returns `new`."""
    try:
        target = OrderStatus(new)
    except ValueError:
        raise InvalidTransitionError(order_id, str(getattr(current, "value", current)), str(new))
    if not can_transition(current, target):
        raise InvalidTransitionError(order_id, OrderStatus(current).value, target.value)
    return target


def progress_index(status: OrderStatus) -> int:
    """Position of `status` in the flow, -1 for cancelled."""
    status = OrderStatus(status)
    return ORDER_FLOW.index(status) if status in ORDER_FLOW else -1


def starts_tracking(old: OrderStatus, new: OrderStatus) -> bool:
    return old != OrderStatus.DELIVERING and new == OrderStatus.DELIVERING


def stops_tracking(old: OrderStatus, new: OrderStatus) -> bool:
    return old == OrderStatus.DELIVERING and new != OrderStatus.DELIVERING
