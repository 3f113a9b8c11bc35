import logging
from typing import Any, Dict, Optional

import httpx

from limoapp.config.settings import settings

logger = logging.getLogger(__name__)


def error_message(response: httpx.Response, default: str) -> str:
    """The platform answers errors with ``{"message": ...}``; fall back when it doesn't."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or default
    return default


class PlatformClient:
    """
    Base for clients of the booking platform's REST API.

    ``auth_headers`` carries the customer's credentials (session cookie or bearer
    token) exactly as they reached us, so the platform sees the same customer.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.auth_headers = auth_headers if auth_headers is not None else {}
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.auth_headers,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await client.request(method, path, **kwargs)
        logger.debug(f"{method} {path} -> {response.status_code}")
        return response
