import logging
from typing import Optional
from urllib.parse import urlencode

from limoapp.config.settings import settings
from limoapp.workflow._state.domain import PaymentHandoff

logger = logging.getLogger(__name__)


class CheckoutLinkBuilder:
    """Hands a created booking to the platform's checkout page, which collects the card payment."""

    def __init__(self, base_url: Optional[str] = None, checkout_path: Optional[str] = None):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.checkout_path = checkout_path or settings.CHECKOUT_URL

    async def start_checkout(self, booking_id: str, amount: str) -> PaymentHandoff:
        query = urlencode({"bookingId": booking_id, "amount": amount})
        checkout_url = f"{self.base_url}{self.checkout_path}?{query}"
        logger.info(f"Payment hand-off for booking {booking_id}: {amount}")
        return PaymentHandoff(booking_id=booking_id, amount=amount, checkout_url=checkout_url)
