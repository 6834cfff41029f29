"""
Kitchen service configuration.

Every value can be overridden through an environment variable of the same name.
"""

import os
from pathlib import Path


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


# Storage
DATABASE_PATH = Path(os.getenv("KITCHEN_DB_PATH", Path(__file__).parent / "database" / "kitchen.db"))

# Pricing
DELIVERY_FEE = _float_env("DELIVERY_FEE", 3.99)
FREE_DELIVERY_THRESHOLD = _float_env("FREE_DELIVERY_THRESHOLD", 25.00)
POINTS_PER_DOLLAR = _int_env("POINTS_PER_DOLLAR", 10)
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "MOMO")
ORDER_NUMBER_START = _int_env("ORDER_NUMBER_START", 1000)

# Kitchen location and delivery zone (downtown Toronto)
KITCHEN_LAT = _float_env("KITCHEN_LAT", 43.6532)
KITCHEN_LNG = _float_env("KITCHEN_LNG", -79.3832)
DELIVERY_RADIUS_KM = _float_env("DELIVERY_RADIUS_KM", 25.0)

# Sync and tracking cadence
POLL_INTERVAL_SECONDS = _float_env("POLL_INTERVAL_SECONDS", 3.0)
POSITION_THROTTLE_SECONDS = _float_env("POSITION_THROTTLE_SECONDS", 1.5)
ROUTE_THROTTLE_SECONDS = _float_env("ROUTE_THROTTLE_SECONDS", 2.0)
SUBSCRIBER_QUEUE_SIZE = _int_env("SUBSCRIBER_QUEUE_SIZE", 256)

# External services
ROUTING_URL = os.getenv("ROUTING_URL", "https://router.project-osrm.org")
GEOCODING_URL = os.getenv("GEOCODING_URL", "https://nominatim.openstreetmap.org")
HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 10.0)
USER_AGENT = os.getenv("USER_AGENT", "home-kitchen-orders/1.0")

# Assumed courier speed when the routing service gives no duration
AVG_SPEED_KMH = _float_env("AVG_SPEED_KMH", 25.0)
