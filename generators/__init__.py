from .customers import CustomerGenerator
from .orders import OrderGenerator
from .drivers import DriverRouteSimulator

__all__ = [
    "CustomerGenerator",
    "OrderGenerator",
    "DriverRouteSimulator",
]
