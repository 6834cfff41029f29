"""
Routing Service - Driving routes, ETAs and address lookup from external HTTP services

Routes come from an OSRM-compatible server, addresses are resolved with a
Nominatim-compatible search endpoint. Both are best-effort: failures surface
as TrackingUnavailableError (routes) or None (geocoding), never as fatal errors.
"""
import logging
from typing import Optional

import httpx

from config import GEOCODING_URL, HTTP_TIMEOUT_SECONDS, ROUTING_URL, USER_AGENT
from models import RouteEstimate
from .errors import TrackingUnavailableError


logger = logging.getLogger(__name__)


class RoutingClient:
    """Client for the routing and geocoding collaborators"""

    def __init__(
        self,
        routing_url: str = ROUTING_URL,
        geocoding_url: str = GEOCODING_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.routing_url = routing_url.rstrip("/")
        self.geocoding_url = geocoding_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def route(self, origin: tuple[float, float], destination: tuple[float, float]) -> RouteEstimate:
        """
        Fetch a driving route between two (lat, lng) points.

        Args:
            origin: Driver position
            destination: Delivery location

        Returns:
            RouteEstimate with distance, duration and (lat, lng) geometry

        Raises:
            TrackingUnavailableError: the service failed or found no route
        """
        # OSRM expects lng,lat order
        coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
        url = f"{self.routing_url}/route/v1/driving/{coords}"
        params = {"overview": "full", "geometries": "geojson"}

        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TrackingUnavailableError(f"Routing request failed: {e}") from e

        routes = data.get("routes") or []
        if data.get("code", "Ok") != "Ok" or not routes:
            raise TrackingUnavailableError(f"No route found ({data.get('code')})")

        best = routes[0]
        try:
            geometry = [
                (point[1], point[0])
                for point in (best.get("geometry") or {}).get("coordinates", [])
            ]
            return RouteEstimate(
                distance_km=round(best["distance"] / 1000.0, 3),
                duration_min=round(best["duration"] / 60.0, 1),
                geometry=geometry,
            )
        except (KeyError, TypeError, IndexError) as e:
            raise TrackingUnavailableError(f"Malformed routing response: {e}") from e

    async def geocode(self, address: str) -> Optional[tuple[float, float]]:
        """
        Resolve a free-text address to (lat, lng).

        Returns None when the address is unknown or the service is unreachable.
        """
        if not address or not address.strip():
            return None
        params = {"q": address, "format": "json", "limit": 1}

        try:
            async with self._client() as client:
                response = await client.get(f"{self.geocoding_url}/search", params=params)
                response.raise_for_status()
                results = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geocoding failed for %r: %s", address, e)
            return None

        if not results:
            return None
        try:
            return (float(results[0]["lat"]), float(results[0]["lon"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed geocoding response for %r: %s", address, e)
            return None
