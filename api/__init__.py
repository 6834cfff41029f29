from .main import app
from .models import (
    CreateOrderRequest,
    StatusUpdate,
    PositionUpdate,
    EtaResponse,
    StatsResponse,
    ServiceStatus,
    ConfigUpdate,
)

__all__ = [
    "app",
    "CreateOrderRequest",
    "StatusUpdate",
    "PositionUpdate",
    "EtaResponse",
    "StatsResponse",
    "ServiceStatus",
    "ConfigUpdate",
]
