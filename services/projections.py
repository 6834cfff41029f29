"""
Read-side views over a synchronized order list.

Pure functions: they take orders in and return plain dicts, holding no state
of their own. Both the customer's tracking screen and the kitchen board are
rendered from the same order list.
"""

from models import Order, OrderStatus
from .lifecycle import ORDER_FLOW, STATUS_LABELS, next_status, progress_index


ACTIVE_KITCHEN_STATUSES = (OrderStatus.ACCEPTED, OrderStatus.COOKING, OrderStatus.READY)

ACTION_LABELS = {
    OrderStatus.ACCEPTED: "Accept",
    OrderStatus.COOKING: "Start Cooking",
    OrderStatus.READY: "Mark Ready",
    OrderStatus.DELIVERING: "Out for Delivery",
    OrderStatus.DELIVERED: "Mark Delivered",
}


def _driver(order: Order) -> dict | None:
    if not order.has_driver_position:
        return None
    return {"lat": order.driver_lat, "lng": order.driver_lng}


def customer_tracking_view(orders: list[Order], customer_id: str) -> list[dict]:
    """The customer's in-flight orders with a progress bar position and live driver marker."""
    view = []
    for order in orders:
        if order.user_id != customer_id or not order.is_active:
            continue
        view.append({
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status.value,
            "label": STATUS_LABELS[order.status],
            "step": progress_index(order.status),
            "steps": len(ORDER_FLOW),
            "total": order.total,
            "items": [{"name": i.name, "qty": i.qty} for i in order.items],
            "delivery_address": order.delivery_address,
            "destination": {"lat": order.lat, "lng": order.lng} if order.lat is not None else None,
            "driver": _driver(order),
        })
    return view


def _card(order: Order) -> dict:
    step = next_status(order.status)
    actions = []
    if order.status == OrderStatus.PENDING:
        actions.append({"status": OrderStatus.CANCELLED.value, "label": "Reject"})
    if step is not None:
        actions.append({"status": step.value, "label": ACTION_LABELS[step]})
    return {
        "id": order.id,
        "order_number": order.order_number,
        "customer": order.user_name,
        "status": order.status.value,
        "label": STATUS_LABELS[order.status],
        "items": [f"{i.qty}× {i.name}" for i in order.items],
        "special_instructions": order.special_instructions,
        "total": order.total,
        "payment": order.payment_method.value,
        "delivery_address": order.delivery_address,
        "created_at": order.created_at.isoformat(),
        "driver": _driver(order),
        "actions": actions,
    }


def kitchen_board(orders: list[Order]) -> dict:
    """Kitchen dashboard columns plus running sales figures."""
    pending = [o for o in orders if o.status == OrderStatus.PENDING]
    active = [o for o in orders if o.status in ACTIVE_KITCHEN_STATUSES]
    delivering = [o for o in orders if o.status == OrderStatus.DELIVERING]
    completed = [o for o in orders if o.status == OrderStatus.DELIVERED]

    total_sales = round(sum(o.total for o in completed), 2)
    return {
        "pending": [_card(o) for o in pending],
        "active": [_card(o) for o in active],
        "delivering": [_card(o) for o in delivering],
        "completed": [_card(o) for o in completed],
        "stats": {
            "pending_count": len(pending),
            "active_count": len(active) + len(delivering),
            "completed_count": len(completed),
            "total_sales": total_sales,
            "avg_order_value": round(total_sales / len(completed), 2) if completed else 0.0,
        },
    }
