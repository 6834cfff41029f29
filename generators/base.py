from abc import ABC, abstractmethod
from faker import Faker
import math
import random

from config import KITCHEN_LAT, KITCHEN_LNG


class BaseGenerator(ABC):
    def __init__(self, seed: int | None = 42):
        self.fake = Faker("en_CA")
        if seed is not None:
            Faker.seed(seed)
            random.seed(seed)

    def random_point_near_kitchen(self, radius_km: float) -> tuple[float, float]:
        """Uniformly distributed point inside a circle around the kitchen."""
        r = radius_km * math.sqrt(random.random())  # sqrt for uniform distribution
        theta = random.uniform(0, 2 * math.pi)

        # 1 degree lat ≈ 111 km
        lat_offset = (r * math.cos(theta)) / 111.0
        lon_offset = (r * math.sin(theta)) / (111.0 * math.cos(math.radians(KITCHEN_LAT)))
        return KITCHEN_LAT + lat_offset, KITCHEN_LNG + lon_offset

    @abstractmethod
    def generate_one(self):
        pass

    @abstractmethod
    def generate_batch(self, count: int) -> list:
        pass

    @abstractmethod
    def save_to_db(self, records: list):
        pass
