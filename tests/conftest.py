"""
Shared pytest fixtures: a throwaway sqlite database per test, a small menu
with round prices, an open kitchen and one customer.
"""
import pytest

from db import init_database
from models import DeliveryInfo, MenuItem, Profile
from services import ChangeBus, OrderStore


# Somewhere downtown, well inside the delivery zone
NEAR_KITCHEN = (43.6561, -79.3802)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "kitchen.db"
    init_database(path=path)
    return path


@pytest.fixture
def bus():
    return ChangeBus(queue_size=16)


@pytest.fixture
def test_menu():
    return [
        MenuItem(id="dumplings", name="Dumplings", category="steamed", price=5.00),
        MenuItem(id="soup", name="Soup", category="jhol", price=3.00),
        MenuItem(id="special", name="Chef Special", category="steamed", price=9.00, is_available=False),
    ]


@pytest.fixture
def store(db_path, bus, test_menu):
    store = OrderStore(db_path, bus=bus)
    store.seed_menu(test_menu)
    return store


@pytest.fixture
def customer(store):
    return store.upsert_profile(Profile(id="cust-1", name="Asha Gurung", phone="416-555-0101"))


@pytest.fixture
def delivery():
    return DeliveryInfo(
        address="100 Queen St W, Toronto",
        lat=NEAR_KITCHEN[0],
        lng=NEAR_KITCHEN[1],
        special_instructions="Ring doorbell",
    )


@pytest.fixture
def clock():
    return FakeClock()
