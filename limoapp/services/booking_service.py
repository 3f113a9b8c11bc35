import logging
from typing import List

import httpx

from limoapp.workflow._state.domain import BookingPayload, BookingReceipt, VehicleType
from limoapp.workflow.errors import AuthenticationRequired, BookingError, CollaboratorError

from .platform_client import PlatformClient, error_message

logger = logging.getLogger(__name__)


class PlatformBookingClient(PlatformClient):
    """Vehicle catalog and booking creation on the platform API."""

    async def list_vehicle_types(self) -> List[VehicleType]:
        try:
            response = await self._request("GET", "/api/vehicle-types")
            response.raise_for_status()
            return [VehicleType.model_validate(item) for item in response.json()]
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(
                error_message(e.response, "Failed to fetch vehicle types"), e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Vehicle catalog unavailable: {e}") from e
        except (ValueError, TypeError) as e:
            # pydantic's ValidationError is a ValueError
            raise CollaboratorError(f"Malformed vehicle catalog: {e}") from e

    async def create_booking(self, payload: BookingPayload) -> BookingReceipt:
        try:
            response = await self._request("POST", "/api/bookings", json=payload.to_wire())
        except httpx.HTTPError as e:
            logger.error(f"Booking request failed: {e}")
            raise BookingError(f"Failed to create booking: {e}") from e

        if response.status_code == 401:
            raise AuthenticationRequired()
        if response.is_error:
            message = error_message(response, "Failed to create booking")
            logger.error(f"Booking rejected ({response.status_code}): {message}")
            raise BookingError(message, response.status_code)

        try:
            booking_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            logger.exception("Booking created but response had no id")
            raise BookingError("Booking response missing id", response.status_code) from e

        return BookingReceipt(booking_id=str(booking_id))
