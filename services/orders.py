"""
Order Store

Durable persistence of orders and their line items, plus the small records the
order flow reads: kitchen settings, the menu (for price snapshots) and customer
profiles (for loyalty points).

Every write is scoped to the fields one actor owns: customers create orders,
the operator moves status, the tracker moves driver coordinates. Each write is
its own transaction and each committed mutation is published on the change bus.
"""

import logging
import math
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from config import (
    DELIVERY_FEE,
    DELIVERY_RADIUS_KM,
    FREE_DELIVERY_THRESHOLD,
    ORDER_NUMBER_PREFIX,
    ORDER_NUMBER_START,
    POINTS_PER_DOLLAR,
)
from db import get_cursor
from models import (
    CartItem,
    DeliveryInfo,
    LineItem,
    MenuItem,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Profile,
    StatusChange,
    StoreSettings,
)
from .errors import OrderNotFoundError, PersistenceError, ValidationError
from .geo import validate_coordinates, within_delivery_zone
from .lifecycle import check_transition, stops_tracking
from .notifications import ChangeBus, OrderChange


logger = logging.getLogger(__name__)


DEFAULT_MENU = [
    MenuItem(id="classic-buff-momo", name="Classic Buff Momo", category="steamed", price=14.99, image="🥟",
             description="Traditional steamed buffalo momos with homemade achar", prep_time=25),
    MenuItem(id="chicken-momo", name="Chicken Momo", category="steamed", price=12.99, image="🥟",
             description="Juicy chicken filling with aromatic spices", prep_time=25),
    MenuItem(id="veggie-momo", name="Veggie Momo", category="steamed", price=10.99, image="🥬",
             description="Fresh vegetables and tofu blend", prep_time=20),
    MenuItem(id="fried-buff-momo", name="Fried Buff Momo", category="fried", price=15.99, image="🍳",
             description="Crispy golden fried buffalo momos", prep_time=30),
    MenuItem(id="fried-chicken-momo", name="Fried Chicken Momo", category="fried", price=13.99, image="🍳",
             description="Crunchy fried chicken momos with chili sauce", prep_time=30),
    MenuItem(id="jhol-momo", name="Jhol Momo", category="jhol", price=16.99, image="🍜",
             description="Momos swimming in spicy sesame-tomato soup", prep_time=30),
    MenuItem(id="c-momo", name="C-Momo", category="c_momo", price=15.99, image="🌶️",
             description="Chili momos tossed in fiery sauce", prep_time=30),
    MenuItem(id="pork-momo", name="Pork Momo", category="steamed", price=14.99, image="🥟",
             description="Succulent pork momos with ginger", prep_time=25, is_available=False),
]


# =============================================================================
# Row mapping
# =============================================================================

def row_to_line_item(row: sqlite3.Row) -> LineItem:
    return LineItem(
        menu_item_id=row["menu_item_id"],
        name=row["name"],
        qty=row["qty"],
        price=row["price"],
    )


def row_to_order(row: sqlite3.Row, items: list[LineItem]) -> Order:
    return Order(
        id=row["id"],
        order_number=row["order_number"],
        user_id=row["user_id"],
        user_name=row["user_name"],
        items=items,
        subtotal=row["subtotal"],
        delivery_fee=row["delivery_fee"],
        total=row["total"],
        status=row["status"],
        payment_method=row["payment_method"],
        payment_status=row["payment_status"],
        special_instructions=row["special_instructions"] or "",
        delivery_address=row["delivery_address"],
        lat=row["lat"],
        lng=row["lng"],
        driver_lat=row["driver_lat"],
        driver_lng=row["driver_lng"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        delivered_at=row["delivered_at"],
    )


def row_to_menu_item(row: sqlite3.Row) -> MenuItem:
    return MenuItem(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        price=row["price"],
        image=row["image"] or "",
        description=row["description"],
        prep_time=row["prep_time"],
        is_available=bool(row["is_available"]),
    )


def row_to_profile(row: sqlite3.Row) -> Profile:
    return Profile(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        points=row["points"] or 0,
        avatar=row["avatar"],
        address=row["address"],
        lat=row["lat"],
        lng=row["lng"],
    )


def delivery_fee_for(subtotal: float,
                     fee: float = DELIVERY_FEE,
                     threshold: float = FREE_DELIVERY_THRESHOLD) -> float:
    """Flat fee below the threshold, free at or above it."""
    return 0.0 if subtotal >= threshold else fee


def points_for(total: float, per_dollar: int = POINTS_PER_DOLLAR) -> int:
    return int(math.floor(total * per_dollar))


class OrderStore:
    """
    Single source of truth for orders.

    Parameters:
    -----------
    db_path : Path | str | None
        sqlite database file (defaults to config.DATABASE_PATH)
    bus : ChangeBus | None
        Where committed mutations are published
    delivery_fee / free_delivery_threshold : float
        Pricing rules applied at order creation
    delivery_radius_km : float | None
        Maximum distance from the kitchen; None disables the zone check
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        bus: ChangeBus | None = None,
        delivery_fee: float = DELIVERY_FEE,
        free_delivery_threshold: float = FREE_DELIVERY_THRESHOLD,
        delivery_radius_km: float | None = DELIVERY_RADIUS_KM,
    ):
        self.db_path = db_path
        self.bus = bus or ChangeBus()
        self.delivery_fee = delivery_fee
        self.free_delivery_threshold = free_delivery_threshold
        self.delivery_radius_km = delivery_radius_km

    @contextmanager
    def _cursor(self, action: str):
        try:
            with get_cursor(self.db_path) as cursor:
                yield cursor
        except sqlite3.Error as e:
            logger.error("Failed to %s: %s", action, e)
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def _publish(self, change: OrderChange) -> None:
        self.bus.publish(change)

    # =========================================================================
    # Orders
    # =========================================================================

    def create_order(
        self,
        customer: Profile,
        items: list[CartItem],
        delivery: DeliveryInfo,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        require_coordinates: bool = True,
    ) -> Order:
        """
        Place an order in the `pending` state.

        Prices and names are copied from the menu at this moment; later menu
        edits never touch the stored line items or total.

        Raises:
            ValidationError: empty cart, bad quantity, unknown or unavailable
                item, missing or out-of-zone delivery location, kitchen closed
            PersistenceError: the order could not be written (nothing is kept)
        """
        if not items:
            raise ValidationError("Cart is empty")
        for item in items:
            if not isinstance(item.qty, int) or item.qty < 1:
                raise ValidationError(f"Quantity for {item.menu_item_id} must be a positive integer")
        if not delivery.address or not delivery.address.strip():
            raise ValidationError("Delivery address is required")
        if delivery.has_coordinates:
            lat, lng = validate_coordinates(delivery.lat, delivery.lng)
            if self.delivery_radius_km is not None and not within_delivery_zone(lat, lng, self.delivery_radius_km):
                raise ValidationError("Delivery location is outside the delivery zone")
        elif require_coordinates:
            raise ValidationError("Delivery location is required")

        now = datetime.now()
        order_id = str(uuid.uuid4())

        with self._cursor("create order") as cursor:
            cursor.execute("SELECT is_open FROM store_settings WHERE id = 1")
            settings = cursor.fetchone()
            if settings is not None and not settings["is_open"]:
                raise ValidationError("The kitchen is not accepting orders right now")

            menu_ids = sorted({i.menu_item_id for i in items})
            placeholders = ",".join("?" * len(menu_ids))
            cursor.execute(f"SELECT * FROM menu_items WHERE id IN ({placeholders})", menu_ids)
            menu = {row["id"]: row_to_menu_item(row) for row in cursor.fetchall()}

            line_items = []
            for item in items:
                entry = menu.get(item.menu_item_id)
                if entry is None:
                    raise ValidationError(f"Unknown menu item: {item.menu_item_id}")
                if not entry.is_available:
                    raise ValidationError(f"{entry.name} is currently unavailable")
                line_items.append(LineItem(menu_item_id=entry.id, name=entry.name, qty=item.qty, price=entry.price))

            subtotal = round(sum(li.line_total for li in line_items), 2)
            fee = delivery_fee_for(subtotal, self.delivery_fee, self.free_delivery_threshold)
            total = round(subtotal + fee, 2)

            cursor.execute("SELECT COALESCE(MAX(order_seq), ?) + 1 FROM orders", (ORDER_NUMBER_START,))
            seq = cursor.fetchone()[0]
            order_number = f"{ORDER_NUMBER_PREFIX}-{seq:04d}"

            cursor.execute(
                """
                INSERT INTO orders
                (id, order_seq, order_number, user_id, user_name, subtotal, delivery_fee,
                 total, status, payment_method, payment_status, special_instructions,
                 delivery_address, lat, lng, driver_lat, driver_lng, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, ?)
                """,
                (order_id, seq, order_number, customer.id, customer.name, subtotal, fee,
                 total, OrderStatus.PENDING.value, PaymentMethod(payment_method).value,
                 PaymentStatus(payment_status).value, delivery.special_instructions or "",
                 delivery.address.strip(), delivery.lat, delivery.lng,
                 now.isoformat(), now.isoformat())
            )
            cursor.executemany(
                """
                INSERT INTO order_items (id, order_id, position, menu_item_id, name, qty, price)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (str(uuid.uuid4()), order_id, pos, li.menu_item_id, li.name, li.qty, li.price)
                    for pos, li in enumerate(line_items)
                ]
            )
            cursor.execute(
                "INSERT INTO order_status_history (order_id, from_status, to_status, changed_at) VALUES (?, NULL, ?, ?)",
                (order_id, OrderStatus.PENDING.value, now.isoformat())
            )

        order = Order(
            id=order_id,
            order_number=order_number,
            user_id=customer.id,
            user_name=customer.name,
            items=line_items,
            subtotal=subtotal,
            delivery_fee=fee,
            total=total,
            status=OrderStatus.PENDING,
            payment_method=payment_method,
            payment_status=payment_status,
            special_instructions=delivery.special_instructions or "",
            delivery_address=delivery.address.strip(),
            lat=delivery.lat,
            lng=delivery.lng,
            created_at=now,
            updated_at=now,
        )
        logger.info("Order %s placed by %s ($%.2f)", order.order_number, customer.name, total)
        self._publish(OrderChange.inserted(order))
        return order

    def _fetch_items(self, cursor: sqlite3.Cursor, order_ids: list[str]) -> dict[str, list[LineItem]]:
        items: dict[str, list[LineItem]] = {oid: [] for oid in order_ids}
        if not order_ids:
            return items
        placeholders = ",".join("?" * len(order_ids))
        cursor.execute(
            f"SELECT * FROM order_items WHERE order_id IN ({placeholders}) ORDER BY order_id, position",
            order_ids
        )
        for row in cursor.fetchall():
            items[row["order_id"]].append(row_to_line_item(row))
        return items

    def get_order(self, order_id: str) -> Order:
        with self._cursor("fetch order") as cursor:
            cursor.execute("SELECT * FROM orders WHERE id = ?", (order_id,))
            row = cursor.fetchone()
            if row is None:
                raise OrderNotFoundError(order_id)
            items = self._fetch_items(cursor, [order_id])
        return row_to_order(row, items[order_id])

    def list_orders(
        self,
        customer_id: str | None = None,
        statuses: list[OrderStatus] | None = None,
    ) -> list[Order]:
        """All orders, newest first, optionally limited to one customer or some statuses."""
        query = "SELECT * FROM orders WHERE 1=1"
        params: list = []

        if customer_id:
            query += " AND user_id = ?"
            params.append(customer_id)
        if statuses:
            query += f" AND status IN ({','.join('?' * len(statuses))})"
            params.extend(OrderStatus(s).value for s in statuses)

        query += " ORDER BY created_at DESC, order_seq DESC"

        with self._cursor("list orders") as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            items = self._fetch_items(cursor, [row["id"] for row in rows])
        return [row_to_order(row, items[row["id"]]) for row in rows]

    def update_status(self, order_id: str, new_status: OrderStatus | str) -> Order:
        """
        Move an order one legal step through the lifecycle.

        The transition is checked before any write, and the write only lands if
        the stored status is still the one that was checked. Reaching
        `delivered` clears the driver coordinates and credits loyalty points.

        Raises:
            OrderNotFoundError, InvalidTransitionError, PersistenceError
        """
        current = self.get_order(order_id)
        target = check_transition(current.status, new_status, order_id)
        now = datetime.now()

        fields = {"status": target.value, "updated_at": now.isoformat()}
        if stops_tracking(current.status, target) or target == OrderStatus.DELIVERED:
            fields["driver_lat"] = None
            fields["driver_lng"] = None
        if target == OrderStatus.DELIVERED:
            fields["delivered_at"] = now.isoformat()

        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._cursor("update order status") as cursor:
            cursor.execute(
                f"UPDATE orders SET {assignments} WHERE id = ? AND status = ?",
                (*fields.values(), order_id, current.status.value)
            )
            if cursor.rowcount != 1:
                # Someone else moved the order between our read and write
                cursor.execute("SELECT status FROM orders WHERE id = ?", (order_id,))
                row = cursor.fetchone()
                if row is None:
                    raise OrderNotFoundError(order_id)
                check_transition(row["status"], target, order_id)
                raise PersistenceError(f"Order {order_id} changed while updating")
            cursor.execute(
                "INSERT INTO order_status_history (order_id, from_status, to_status, changed_at) VALUES (?, ?, ?, ?)",
                (order_id, current.status.value, target.value, now.isoformat())
            )
            if target == OrderStatus.DELIVERED:
                cursor.execute(
                    "UPDATE profiles SET points = points + ? WHERE id = ?",
                    (points_for(current.total), current.user_id)
                )

        logger.info("Order %s: %s -> %s", current.order_number, current.status.value, target.value)
        self._publish(OrderChange.updated(order_id, **fields))
        return Order.model_validate({**current.model_dump(), **fields})

    def update_driver_position(self, order_id: str, lat: float, lng: float) -> bool:
        """
        Record the driver's live position.

        Only lands while the order is `delivering`; late samples that arrive
        after delivery are dropped so they cannot bring coordinates back.
        Returns whether the position was stored.
        """
        lat, lng = validate_coordinates(lat, lng)
        now = datetime.now()
        with self._cursor("update driver position") as cursor:
            cursor.execute(
                """
                UPDATE orders SET driver_lat = ?, driver_lng = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (lat, lng, now.isoformat(), order_id, OrderStatus.DELIVERING.value)
            )
            stored = cursor.rowcount == 1

        if not stored:
            logger.debug("Ignoring driver position for order %s (not delivering)", order_id)
            return False
        self._publish(OrderChange.updated(order_id, driver_lat=lat, driver_lng=lng, updated_at=now.isoformat()))
        return True

    def clear_driver_position(self, order_id: str) -> bool:
        now = datetime.now()
        with self._cursor("clear driver position") as cursor:
            cursor.execute(
                """
                UPDATE orders SET driver_lat = NULL, driver_lng = NULL, updated_at = ?
                WHERE id = ? AND (driver_lat IS NOT NULL OR driver_lng IS NOT NULL)
                """,
                (now.isoformat(), order_id)
            )
            cleared = cursor.rowcount == 1
        if cleared:
            self._publish(OrderChange.updated(order_id, driver_lat=None, driver_lng=None, updated_at=now.isoformat()))
        return cleared

    def status_history(self, order_id: str) -> list[StatusChange]:
        with self._cursor("fetch status history") as cursor:
            cursor.execute(
                "SELECT * FROM order_status_history WHERE order_id = ? ORDER BY id",
                (order_id,)
            )
            rows = cursor.fetchall()
        return [
            StatusChange(
                order_id=row["order_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                changed_at=row["changed_at"],
            )
            for row in rows
        ]

    # =========================================================================
    # Store settings
    # =========================================================================

    def get_settings(self) -> StoreSettings:
        with self._cursor("read store settings") as cursor:
            cursor.execute("SELECT is_open, updated_at FROM store_settings WHERE id = 1")
            row = cursor.fetchone()
        if row is None:
            return StoreSettings()
        return StoreSettings(is_open=bool(row["is_open"]), updated_at=row["updated_at"])

    def set_accepting_orders(self, is_open: bool) -> StoreSettings:
        now = datetime.now()
        with self._cursor("update store settings") as cursor:
            cursor.execute(
                """
                INSERT INTO store_settings (id, is_open, updated_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET is_open = excluded.is_open, updated_at = excluded.updated_at
                """,
                (bool(is_open), now.isoformat())
            )
        logger.info("Kitchen is now %s", "accepting orders" if is_open else "closed")
        return StoreSettings(is_open=bool(is_open), updated_at=now)

    # =========================================================================
    # Menu (read side only)
    # =========================================================================

    def list_menu(self, available_only: bool = False, category: str | None = None) -> list[MenuItem]:
        query = "SELECT * FROM menu_items WHERE 1=1"
        params = []
        if available_only:
            query += " AND is_available = 1"
        if category:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY created_at, name"
        with self._cursor("list menu") as cursor:
            cursor.execute(query, params)
            return [row_to_menu_item(row) for row in cursor.fetchall()]

    def get_menu_item(self, item_id: str) -> MenuItem | None:
        with self._cursor("fetch menu item") as cursor:
            cursor.execute("SELECT * FROM menu_items WHERE id = ?", (item_id,))
            row = cursor.fetchone()
        return row_to_menu_item(row) if row else None

    def seed_menu(self, items: list[MenuItem] | None = None) -> int:
        """Insert menu items that are not already present. Returns how many were added."""
        items = DEFAULT_MENU if items is None else items
        now = datetime.now().isoformat()
        with self._cursor("seed menu") as cursor:
            cursor.executemany(
                """
                INSERT OR IGNORE INTO menu_items
                (id, name, category, price, image, description, prep_time, is_available, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (m.id, m.name, m.category, m.price, m.image, m.description,
                     m.prep_time, m.is_available, now)
                    for m in items
                ]
            )
            return cursor.rowcount

    # =========================================================================
    # Profiles
    # =========================================================================

    def get_profile(self, user_id: str) -> Profile | None:
        with self._cursor("fetch profile") as cursor:
            cursor.execute("SELECT * FROM profiles WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        return row_to_profile(row) if row else None

    def list_profiles(self) -> list[Profile]:
        with self._cursor("list profiles") as cursor:
            cursor.execute("SELECT * FROM profiles ORDER BY created_at")
            return [row_to_profile(row) for row in cursor.fetchall()]

    def upsert_profile(self, profile: Profile) -> Profile:
        """Create or edit a profile. Points are only ever changed by order completion."""
        with self._cursor("save profile") as cursor:
            cursor.execute(
                """
                INSERT INTO profiles (id, name, phone, points, avatar, address, lat, lng, created_at)
                VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name, phone = excluded.phone, avatar = excluded.avatar,
                    address = excluded.address, lat = excluded.lat, lng = excluded.lng
                """,
                (profile.id, profile.name, profile.phone, profile.avatar, profile.address,
                 profile.lat, profile.lng, datetime.now().isoformat())
            )
        return self.get_profile(profile.id)
