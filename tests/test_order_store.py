"""
Tests for OrderStore.

These tests verify that:
- Totals are computed from menu prices at order time
- Invalid carts and closed kitchens never write anything
- Status changes follow the lifecycle and are audited
- Driver coordinates only land while delivering
- Loyalty points are credited on delivery
"""
import pytest

from db import get_cursor
from models import CartItem, DeliveryInfo, OrderStatus, PaymentMethod, PaymentStatus, Profile
from services import (
    ChangeType,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderStore,
    PersistenceError,
    ValidationError,
)
from services.orders import DEFAULT_MENU, delivery_fee_for, points_for


def _walk_to(store, order_id, status):
    flow = ["accepted", "cooking", "ready", "delivering", "delivered"]
    for step in flow[:flow.index(status) + 1]:
        store.update_status(order_id, step)
    return store.get_order(order_id)


class TestPricing:

    def test_delivery_fee_below_threshold(self):
        assert delivery_fee_for(24.99) == 3.99

    def test_free_delivery_at_threshold(self):
        assert delivery_fee_for(25.00) == 0.0

    def test_points_are_floored(self):
        assert points_for(16.99) == 169
        assert points_for(0.05) == 0


class TestCreateOrder:
    """Tests for placing orders."""

    def test_totals_from_menu_prices(self, store, customer, delivery):
        """2 × $5.00 + 1 × $3.00 = $13.00, plus $3.99 delivery = $16.99."""
        order = store.create_order(
            customer,
            [CartItem(menu_item_id="dumplings", qty=2), CartItem(menu_item_id="soup", qty=1)],
            delivery,
        )

        assert order.subtotal == 13.00
        assert order.delivery_fee == 3.99
        assert order.total == 16.99
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert [(i.name, i.qty, i.price) for i in order.items] == [("Dumplings", 2, 5.00), ("Soup", 1, 3.00)]

    def test_twenty_dollar_cart_pays_delivery(self, store, customer, delivery):
        order = store.create_order(customer, [CartItem(menu_item_id="dumplings", qty=4)], delivery)
        assert order.subtotal == 20.00
        assert order.total == 23.99

    def test_free_delivery_over_threshold(self, store, customer, delivery):
        order = store.create_order(customer, [CartItem(menu_item_id="dumplings", qty=5)], delivery)
        assert order.delivery_fee == 0.0
        assert order.total == 25.00

    def test_stored_order_matches_returned_order(self, store, customer, delivery):
        order = store.create_order(
            customer, [CartItem(menu_item_id="soup", qty=3)], delivery,
            payment_method=PaymentMethod.CARD, payment_status=PaymentStatus.PAID,
        )
        stored = store.get_order(order.id)

        assert stored.order_number == order.order_number
        assert stored.total == order.total
        assert stored.items == order.items
        assert stored.payment_method == PaymentMethod.CARD
        assert stored.payment_status == PaymentStatus.PAID
        assert stored.special_instructions == "Ring doorbell"
        assert stored.user_name == "Asha Gurung"

    def test_order_numbers_are_sequential_and_unique(self, store, customer, delivery):
        first = store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)
        second = store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)

        assert first.order_number == "MOMO-1001"
        assert second.order_number == "MOMO-1002"

    def test_price_edits_do_not_touch_placed_orders(self, store, customer, delivery):
        order = store.create_order(customer, [CartItem(menu_item_id="dumplings", qty=2)], delivery)

        with get_cursor(store.db_path) as cursor:
            cursor.execute("UPDATE menu_items SET price = 99.0, name = 'Renamed' WHERE id = 'dumplings'")

        stored = store.get_order(order.id)
        assert stored.items[0].price == 5.00
        assert stored.items[0].name == "Dumplings"
        assert stored.total == 13.99

    def test_publishes_insert(self, store, bus, customer, delivery):
        subscription = bus.subscribe()
        order = store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)

        change = subscription.get_nowait()
        assert change.type == ChangeType.INSERT
        assert change.order_id == order.id
        assert change.fields["order_number"] == order.order_number


class TestCreateOrderValidation:
    """Rejected orders leave nothing behind."""

    def _assert_no_orders(self, store):
        assert store.list_orders() == []

    def test_empty_cart(self, store, customer, delivery):
        with pytest.raises(ValidationError):
            store.create_order(customer, [], delivery)
        self._assert_no_orders(store)

    def test_missing_location(self, store, customer):
        with pytest.raises(ValidationError):
            store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], DeliveryInfo(address="Somewhere"))
        self._assert_no_orders(store)

    def test_location_optional_when_not_required(self, store, customer):
        order = store.create_order(
            customer, [CartItem(menu_item_id="soup", qty=1)], DeliveryInfo(address="Pickup counter"),
            require_coordinates=False,
        )
        assert order.lat is None

    def test_outside_delivery_zone(self, store, customer):
        montreal = DeliveryInfo(address="Montreal", lat=45.5017, lng=-73.5673)
        with pytest.raises(ValidationError):
            store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], montreal)
        self._assert_no_orders(store)

    def test_invalid_coordinates(self, store, customer):
        with pytest.raises(ValidationError):
            store.create_order(
                customer, [CartItem(menu_item_id="soup", qty=1)], DeliveryInfo(address="x", lat=123.0, lng=0.0)
            )

    def test_unknown_item(self, store, customer, delivery):
        with pytest.raises(ValidationError):
            store.create_order(customer, [CartItem(menu_item_id="pizza", qty=1)], delivery)
        self._assert_no_orders(store)

    def test_unavailable_item(self, store, customer, delivery):
        with pytest.raises(ValidationError):
            store.create_order(customer, [CartItem(menu_item_id="special", qty=1)], delivery)
        self._assert_no_orders(store)

    def test_kitchen_closed(self, store, bus, customer, delivery):
        store.set_accepting_orders(False)
        subscription = bus.subscribe()

        with pytest.raises(ValidationError):
            store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)

        self._assert_no_orders(store)
        assert subscription.get_nowait() is None

    def test_storage_failure_is_a_persistence_error(self, tmp_path, customer, delivery):
        # A directory cannot be opened as a database
        broken = OrderStore(tmp_path)
        with pytest.raises(PersistenceError):
            broken.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)


class TestUpdateStatus:

    @pytest.fixture
    def order(self, store, customer, delivery):
        return store.create_order(
            customer,
            [CartItem(menu_item_id="dumplings", qty=2), CartItem(menu_item_id="soup", qty=1)],
            delivery,
        )

    def test_one_step_forward(self, store, order):
        updated = store.update_status(order.id, OrderStatus.ACCEPTED)
        assert updated.status == OrderStatus.ACCEPTED
        assert store.get_order(order.id).status == OrderStatus.ACCEPTED

    def test_skipping_is_rejected_without_writing(self, store, order):
        with pytest.raises(InvalidTransitionError):
            store.update_status(order.id, OrderStatus.COOKING)
        assert store.get_order(order.id).status == OrderStatus.PENDING
        assert len(store.status_history(order.id)) == 1

    def test_cancel_after_accept_is_rejected(self, store, order):
        store.update_status(order.id, "accepted")
        with pytest.raises(InvalidTransitionError):
            store.update_status(order.id, "cancelled")

    def test_cancel_from_pending(self, store, bus, order):
        subscription = bus.subscribe()
        cancelled = store.update_status(order.id, "cancelled")

        assert cancelled.status == OrderStatus.CANCELLED
        assert store.get_order(order.id).status == OrderStatus.CANCELLED

        change = subscription.get_nowait()
        assert change.type == ChangeType.UPDATE
        assert change.order_id == order.id
        assert change.fields["status"] == "cancelled"

        history = store.status_history(order.id)
        assert (history[-1].from_status, history[-1].to_status) == (OrderStatus.PENDING, OrderStatus.CANCELLED)

    def test_cancelled_order_is_final(self, store, order):
        store.update_status(order.id, "cancelled")
        with pytest.raises(InvalidTransitionError):
            store.update_status(order.id, "accepted")
        assert store.get_order(order.id).status == OrderStatus.CANCELLED

    def test_concurrent_change_is_not_overwritten(self, store, bus, order, monkeypatch):
        """Another writer cancels between our read and our write."""
        stale = store.get_order(order.id)
        with get_cursor(store.db_path) as cursor:
            cursor.execute("UPDATE orders SET status = 'cancelled' WHERE id = ?", (order.id,))
        monkeypatch.setattr(store, "get_order", lambda order_id: stale)
        subscription = bus.subscribe()

        with pytest.raises(InvalidTransitionError):
            store.update_status(order.id, "accepted")

        monkeypatch.undo()
        assert store.get_order(order.id).status == OrderStatus.CANCELLED
        assert len(store.status_history(order.id)) == 1
        assert subscription.get_nowait() is None

    def test_order_deleted_while_updating(self, store, order, monkeypatch):
        stale = store.get_order(order.id)
        with get_cursor(store.db_path) as cursor:
            cursor.execute("DELETE FROM order_items WHERE order_id = ?", (order.id,))
            cursor.execute("DELETE FROM order_status_history WHERE order_id = ?", (order.id,))
            cursor.execute("DELETE FROM orders WHERE id = ?", (order.id,))
        monkeypatch.setattr(store, "get_order", lambda order_id: stale)

        with pytest.raises(OrderNotFoundError):
            store.update_status(order.id, "accepted")

    def test_unknown_order(self, store):
        with pytest.raises(OrderNotFoundError):
            store.update_status("missing", OrderStatus.ACCEPTED)

    def test_history_records_every_step(self, store, order):
        _walk_to(store, order.id, "cooking")
        history = store.status_history(order.id)

        assert [(h.from_status, h.to_status) for h in history] == [
            (None, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.ACCEPTED),
            (OrderStatus.ACCEPTED, OrderStatus.COOKING),
        ]

    def test_publishes_only_changed_fields(self, store, bus, order):
        subscription = bus.subscribe()
        store.update_status(order.id, "accepted")

        change = subscription.get_nowait()
        assert change.type == ChangeType.UPDATE
        assert change.fields["status"] == "accepted"
        assert "items" not in change.fields
        assert "total" not in change.fields

    def test_delivery_credits_points_and_stamps_time(self, store, customer, order):
        delivered = _walk_to(store, order.id, "delivered")

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivered_at is not None
        assert store.get_profile(customer.id).points == 169

    def test_points_survive_profile_edits(self, store, customer, order):
        _walk_to(store, order.id, "delivered")
        store.upsert_profile(Profile(id=customer.id, name="Asha G.", points=0))

        profile = store.get_profile(customer.id)
        assert profile.name == "Asha G."
        assert profile.points == 169


class TestDriverPosition:

    @pytest.fixture
    def order(self, store, customer, delivery):
        return store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)

    def test_ignored_before_delivering(self, store, order):
        assert store.update_driver_position(order.id, 43.65, -79.38) is False
        assert store.get_order(order.id).driver_lat is None

    def test_stored_while_delivering(self, store, order):
        _walk_to(store, order.id, "delivering")

        assert store.update_driver_position(order.id, 43.655, -79.381) is True
        stored = store.get_order(order.id)
        assert (stored.driver_lat, stored.driver_lng) == (43.655, -79.381)

    def test_cleared_on_delivery_and_late_samples_dropped(self, store, order):
        _walk_to(store, order.id, "delivering")
        store.update_driver_position(order.id, 43.655, -79.381)
        store.update_status(order.id, "delivered")

        assert store.update_driver_position(order.id, 43.656, -79.382) is False
        stored = store.get_order(order.id)
        assert stored.driver_lat is None
        assert stored.driver_lng is None

    def test_invalid_coordinates_rejected(self, store, order):
        _walk_to(store, order.id, "delivering")
        with pytest.raises(ValidationError):
            store.update_driver_position(order.id, 95.0, 0.0)

    def test_clear_driver_position(self, store, order):
        _walk_to(store, order.id, "delivering")
        store.update_driver_position(order.id, 43.655, -79.381)

        assert store.clear_driver_position(order.id) is True
        assert store.clear_driver_position(order.id) is False
        assert store.get_order(order.id).has_driver_position is False


class TestQueries:

    def test_list_orders_newest_first_and_filtered(self, store, customer, delivery):
        other = store.upsert_profile(Profile(id="cust-2", name="Bikash"))
        first = store.create_order(customer, [CartItem(menu_item_id="soup", qty=1)], delivery)
        second = store.create_order(other, [CartItem(menu_item_id="soup", qty=1)], delivery)
        store.update_status(first.id, "accepted")

        assert [o.id for o in store.list_orders()] == [second.id, first.id]
        assert [o.id for o in store.list_orders(customer_id=customer.id)] == [first.id]
        assert [o.id for o in store.list_orders(statuses=[OrderStatus.ACCEPTED])] == [first.id]

    def test_get_missing_order(self, store):
        with pytest.raises(OrderNotFoundError):
            store.get_order("nope")

    def test_menu_reads(self, store):
        assert {m.id for m in store.list_menu()} == {"dumplings", "soup", "special"}
        assert {m.id for m in store.list_menu(available_only=True)} == {"dumplings", "soup"}
        assert store.get_menu_item("soup").price == 3.00
        assert store.get_menu_item("nope") is None

    def test_menu_by_category(self, store):
        assert {m.id for m in store.list_menu(category="steamed")} == {"dumplings", "special"}
        assert {m.id for m in store.list_menu(available_only=True, category="steamed")} == {"dumplings"}
        assert store.list_menu(category="fried") == []

    def test_seed_menu_is_idempotent(self, store):
        assert store.seed_menu(DEFAULT_MENU) == len(DEFAULT_MENU)
        assert store.seed_menu(DEFAULT_MENU) == 0

    def test_settings_toggle(self, store):
        assert store.get_settings().is_open is True
        store.set_accepting_orders(False)
        assert store.get_settings().is_open is False
