import uuid
import random
from .base import BaseGenerator
from models import Profile
from services import OrderStore


class CustomerGenerator(BaseGenerator):
    """Fake customer profiles living inside the delivery zone."""

    def __init__(self, store: OrderStore, seed: int | None = 42, radius_km: float = 8.0):
        super().__init__(seed)
        self.store = store
        self.radius_km = radius_km

    def generate_one(self) -> Profile:
        lat, lng = self.random_point_near_kitchen(self.radius_km)
        return Profile(
            id=str(uuid.uuid4()),
            name=self.fake.name(),
            phone=self.fake.phone_number(),
            points=0,
            address=f"{self.fake.street_address()}, Toronto, ON",
            lat=round(lat, 6),
            lng=round(lng, 6),
            avatar=random.choice([None, "🙂", "😋", "🥟"]),
        )

    def generate_batch(self, count: int) -> list[Profile]:
        return [self.generate_one() for _ in range(count)]

    def save_to_db(self, records: list[Profile]) -> list[Profile]:
        return [self.store.upsert_profile(p) for p in records]

    def get_all(self) -> list[Profile]:
        return self.store.list_profiles()
