import logging
import math
from typing import List, Optional
from urllib.parse import quote

import httpx

from limoapp.config.settings import settings
from limoapp.workflow._state.domain import AddressCandidate, Coordinates, RouteEstimate
from limoapp.workflow.errors import CollaboratorError

logger = logging.getLogger(__name__)


class TomTomService:
    """Address search and driving distance from the TomTom APIs."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        country_set: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.tomtom_api_key
        self.base_url = (base_url or settings.TOMTOM_BASE_URL).rstrip("/")
        self.country_set = country_set or settings.TOMTOM_COUNTRY_SET
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    async def _get(self, path: str, params: dict) -> dict:
        if not self.api_key:
            raise CollaboratorError("TomTom API key not configured")

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(path, params={"key": self.api_key, **params})
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise CollaboratorError("TomTom API error", e.response.status_code) from e
            except httpx.HTTPError as e:
                raise CollaboratorError(f"TomTom unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise CollaboratorError(f"TomTom returned a non-JSON body: {e}", response.status_code) from e
        if not isinstance(data, dict):
            raise CollaboratorError("TomTom returned an unexpected body", response.status_code)
        return data

    async def search(self, query: str, limit: int = 5) -> List[AddressCandidate]:
        """
        Typeahead search for an address or point of interest.
        """
        data = await self._get(
            f"/search/2/search/{quote(query, safe='')}.json",
            {"limit": limit, "countrySet": self.country_set, "typeahead": "true"},
        )

        candidates = []
        for result in data.get("results", []):
            position = result.get("position")
            if not position:
                continue
            poi_name = (result.get("poi") or {}).get("name")
            address = (result.get("address") or {}).get("freeformAddress", "")
            label = f"{poi_name}, {address}" if poi_name and address else (poi_name or address)
            if not label:
                continue
            candidates.append(
                AddressCandidate(
                    id=result.get("id"),
                    label=label,
                    position=Coordinates(lat=position["lat"], lon=position["lon"]),
                )
            )
        return candidates

    async def calculate_distance(self, origin: Coordinates, destination: Coordinates) -> RouteEstimate:
        """
        Fastest driving route between two points, with live traffic.
        """
        data = await self._get(
            f"/routing/1/calculateRoute/{origin.lat},{origin.lon}:{destination.lat},{destination.lon}/json",
            {"routeType": "fastest", "traffic": "true"},
        )

        routes = data.get("routes") or []
        if not routes:
            raise CollaboratorError("No route found between the selected addresses")

        try:
            summary = routes[0]["summary"]
            meters = float(summary["lengthInMeters"])
            seconds = float(summary["travelTimeInSeconds"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise CollaboratorError(f"Unexpected routing response: {e}") from e

        return RouteEstimate(distance_km=round(meters / 1000, 2), duration_minutes=math.ceil(seconds / 60))
