"""
Tests for the change bus and the order list reducer.
"""
import pytest

from factories import make_order
from models import OrderStatus
from services import ChangeBus, OrderChange, apply_change


class TestApplyChange:
    """The reducer every viewer runs over push events."""

    def test_insert_prepends(self):
        existing = make_order("o-1", minutes_ago=5)
        new = make_order("o-2")

        result = apply_change([existing], OrderChange.inserted(new))
        assert [o.id for o in result] == ["o-2", "o-1"]

    def test_insert_is_idempotent(self):
        order = make_order()
        once = apply_change([], OrderChange.inserted(order))
        twice = apply_change(once, OrderChange.inserted(order))
        assert twice == once

    def test_update_merges_only_carried_fields(self):
        order = make_order()
        change = OrderChange.updated(order.id, status="accepted", updated_at="2024-05-01T18:05:00")

        (updated,) = apply_change([order], change)
        assert updated.status == OrderStatus.ACCEPTED
        assert updated.items == order.items
        assert updated.total == order.total

    def test_update_ignores_fields_it_does_not_own(self):
        order = make_order()
        change = OrderChange.updated(order.id, total=0.0, items=[], driver_lat=43.65, driver_lng=-79.38)

        (updated,) = apply_change([order], change)
        assert updated.total == 13.99
        assert len(updated.items) == 1
        assert updated.driver_lat == 43.65

    def test_update_for_unknown_order_is_ignored(self):
        order = make_order()
        result = apply_change([order], OrderChange.updated("other", status="accepted"))
        assert result == [order]

    def test_driver_position_cleared(self):
        order = make_order(status=OrderStatus.DELIVERING, driver_lat=43.65, driver_lng=-79.38)
        (updated,) = apply_change([order], OrderChange.updated(order.id, driver_lat=None, driver_lng=None))
        assert not updated.has_driver_position

    def test_input_list_is_not_mutated(self):
        order = make_order()
        orders = [order]
        apply_change(orders, OrderChange.updated(order.id, status="accepted"))
        assert orders[0].status == OrderStatus.PENDING


class TestChangeBus:

    def test_fan_out_to_every_subscriber(self):
        bus = ChangeBus()
        first, second = bus.subscribe(), bus.subscribe()
        change = OrderChange.updated("o-1", status="accepted")

        bus.publish(change)

        assert first.get_nowait() == change
        assert second.get_nowait() == change
        assert bus.published == 1

    def test_full_queue_drops_oldest(self):
        bus = ChangeBus(queue_size=2)
        subscription = bus.subscribe()
        for status in ["accepted", "cooking", "ready"]:
            bus.publish(OrderChange.updated("o-1", status=status))

        assert subscription.dropped == 1
        assert subscription.get_nowait().fields["status"] == "cooking"
        assert subscription.get_nowait().fields["status"] == "ready"
        assert subscription.get_nowait() is None

    def test_closed_subscription_stops_receiving(self):
        bus = ChangeBus()
        subscription = bus.subscribe()
        subscription.close()

        bus.publish(OrderChange.updated("o-1", status="accepted"))

        assert bus.subscriber_count == 0
        assert subscription.get_nowait() is None

    @pytest.mark.asyncio
    async def test_iteration_ends_when_bus_closes(self):
        bus = ChangeBus()
        subscription = bus.subscribe()
        bus.publish(OrderChange.updated("o-1", status="accepted"))
        bus.publish(OrderChange.updated("o-1", status="cooking"))
        bus.close()

        received = [change.fields["status"] async for change in subscription]
        assert received == ["accepted", "cooking"]

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self):
        bus = ChangeBus()
        async with bus.subscribe():
            assert bus.subscriber_count == 1
        assert bus.subscriber_count == 0
