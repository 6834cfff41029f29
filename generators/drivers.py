import asyncio
import random
from datetime import datetime, timedelta
from typing import AsyncIterator

from config import AVG_SPEED_KMH, KITCHEN_LAT, KITCHEN_LNG
from models import Position
from services.geo import haversine_distance, interpolate


class DriverRouteSimulator:
    """
    Simulated delivery device: GPS samples along a straight line from the
    kitchen to the customer, with a little receiver noise.
    """

    def __init__(
        self,
        destination: tuple[float, float],
        origin: tuple[float, float] = (KITCHEN_LAT, KITCHEN_LNG),
        speed_kmh: float = AVG_SPEED_KMH,
        sample_interval_seconds: float = 1.0,
        jitter_m: float = 5.0,
        seed: int | None = None,
    ):
        self.origin = origin
        self.destination = destination
        self.speed_kmh = speed_kmh
        self.sample_interval_seconds = sample_interval_seconds
        self.jitter_m = jitter_m
        self._random = random.Random(seed)

    @property
    def distance_km(self) -> float:
        return haversine_distance(*self.origin, *self.destination)

    @property
    def sample_count(self) -> int:
        hours = self.distance_km / self.speed_kmh if self.speed_kmh > 0 else 0
        return max(2, int(hours * 3600 / self.sample_interval_seconds) + 1)

    def _noise(self) -> float:
        # ~111 km per degree
        return self._random.gauss(0, self.jitter_m) / 111_000.0

    def positions(self, start: datetime | None = None) -> list[Position]:
        start = start or datetime.now()
        count = self.sample_count
        samples = []
        for i in range(count):
            fraction = i / (count - 1)
            lat, lng = interpolate(self.origin, self.destination, fraction)
            if 0 < i < count - 1:
                lat, lng = lat + self._noise(), lng + self._noise()
            samples.append(Position(
                lat=lat,
                lng=lng,
                recorded_at=start + timedelta(seconds=i * self.sample_interval_seconds),
            ))
        return samples

    async def watch(self, time_scale: float = 1.0) -> AsyncIterator[Position]:
        """Emit samples in real time (divided by `time_scale`), like a device position watch."""
        for sample in self.positions():
            yield sample
            await asyncio.sleep(self.sample_interval_seconds / time_scale)
