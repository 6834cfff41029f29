"""
Tests for OrderFeed: push and poll feeding one local order list.
"""
import asyncio

import httpx
import pytest

from factories import make_order
from models import CartItem, OrderStatus
from services import HttpOrderSource, OrderChange, OrderFeed, OrderState, PersistenceError


class FakeSource:
    """Snapshot source whose contents and health the test controls."""

    def __init__(self, orders=None):
        self.orders = list(orders or [])
        self.failing = False
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.failing:
            raise PersistenceError("database is locked")
        return list(self.orders)


class TestReducer:

    def test_snapshot_replaces_state(self):
        feed = OrderFeed(FakeSource().fetch)
        feed.apply_snapshot([make_order("o-1", minutes_ago=10), make_order("o-2")])

        assert [o.id for o in feed.state.all()] == ["o-2", "o-1"]
        assert feed.state.last_synced_at is not None

    def test_listeners_only_hear_real_changes(self):
        feed = OrderFeed(FakeSource().fetch)
        seen = []
        feed.on_change(lambda state: seen.append(state.version))

        order = make_order()
        feed.apply_local(order)
        feed.apply(OrderChange.inserted(order))

        assert seen == [1]

    def test_failing_listener_does_not_break_the_feed(self):
        feed = OrderFeed(FakeSource().fetch)
        feed.on_change(lambda state: 1 / 0)

        assert feed.apply_local(make_order()) is True
        assert len(feed.state) == 1

    def test_state_lookups(self):
        state = OrderState()
        state._set([make_order("o-1"), make_order("o-2", user_id="cust-2")])

        assert "o-1" in state
        assert state.get("missing") is None
        assert [o.id for o in state.for_customer("cust-2")] == ["o-2"]


class TestSources:

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_last_state(self):
        source = FakeSource([make_order()])
        feed = OrderFeed(source.fetch)
        assert await feed.refresh() is True

        source.failing = True
        assert await feed.refresh() is False
        assert feed.poll_failures == 1
        assert len(feed.state) == 1

    @pytest.mark.asyncio
    async def test_poll_repairs_a_missed_event(self):
        order = make_order()
        source = FakeSource([order])
        feed = OrderFeed(source.fetch, poll_interval=0.01)

        async with feed:
            assert feed.state.get(order.id).status == OrderStatus.PENDING
            # The push event for this change never arrives
            source.orders = [order.model_copy(update={"status": OrderStatus.ACCEPTED})]
            for _ in range(100):
                if feed.state.get(order.id).status == OrderStatus.ACCEPTED:
                    break
                await asyncio.sleep(0.01)

        assert feed.state.get(order.id).status == OrderStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_push_and_poll_agree(self, store, customer, delivery):
        bus = store.bus

        async def fetch():
            return store.list_orders()

        feed = OrderFeed(fetch, push=bus.subscribe, poll_interval=60)
        await feed.start()
        try:
            order = store.create_order(customer, [CartItem(menu_item_id="soup", qty=2)], delivery)
            store.update_status(order.id, "accepted")
            for _ in range(100):
                local = feed.state.get(order.id)
                if local is not None and local.status == OrderStatus.ACCEPTED:
                    break
                await asyncio.sleep(0.01)

            pushed = feed.state.all()
            await feed.refresh()
            assert feed.state.all() == pushed
        finally:
            await feed.stop()

        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_lost_push_channel_falls_back_to_polling(self):
        async def broken_stream():
            raise OSError("connection reset")
            yield  # pragma: no cover

        source = FakeSource([make_order()])
        feed = OrderFeed(source.fetch, push=broken_stream, poll_interval=0.01)
        async with feed:
            await asyncio.sleep(0.05)

        assert source.calls >= 2
        assert len(feed.state) == 1


class TestHttpOrderSource:

    @pytest.mark.asyncio
    async def test_fetches_orders_for_customer(self):
        order = make_order()

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/orders"
            assert request.url.params["customer_id"] == "cust-1"
            return httpx.Response(200, json=[order.model_dump(mode="json")])

        source = HttpOrderSource("http://kitchen.test/", customer_id="cust-1", transport=httpx.MockTransport(handler))
        assert await source.fetch() == [order]

    @pytest.mark.asyncio
    async def test_reads_advertised_poll_interval(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/status"
            return httpx.Response(200, json={"poll_interval_seconds": 7.5})

        source = HttpOrderSource("http://kitchen.test", transport=httpx.MockTransport(handler))
        assert await source.poll_interval() == 7.5

    @pytest.mark.asyncio
    async def test_unreadable_poll_interval_is_none(self):
        source = HttpOrderSource(
            "http://kitchen.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
        )
        assert await source.poll_interval() is None

    @pytest.mark.asyncio
    async def test_server_error_becomes_persistence_error(self):
        source = HttpOrderSource(
            "http://kitchen.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(PersistenceError):
            await source.fetch()
